"""
GitHub OAuth device flow for Lockbox.

Manages:
- Requesting a device code for the user to enter in the browser
- Polling for the access token, as an explicit state machine
- Decoding the polymorphic poll response (token or error) once

The poll loop is the only place Lockbox retries anything, and it is bounded
by the device code's lifetime.
"""

import time
import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union
from dataclasses import dataclass

import httpx

from config import Config, VERSION
from errors import (
    CorruptState,
    DeviceFlowDenied,
    DeviceFlowError,
    DeviceFlowExpired,
    Timeout,
    Unreachable,
)

logger = logging.getLogger(__name__)

GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

# Seconds added to the interval on every slow_down answer (RFC 8628 §3.5)
SLOW_DOWN_INCREMENT = 5


@dataclass(frozen=True)
class DeviceCode:
    """Response to a device code request."""
    device_code: str
    user_code: str
    verification_uri: str
    interval: int
    expires_in: int


@dataclass(frozen=True)
class TokenGranted:
    """The user approved the device; polling is over."""
    access_token: str
    token_type: str = "bearer"
    scope: Optional[str] = None


@dataclass(frozen=True)
class PollError:
    """An error answer from the token endpoint."""
    error: str
    description: str = ""
    interval: int = 0


PollResponse = Union[TokenGranted, PollError]


def parse_device_code_response(payload: Any) -> DeviceCode:
    """Decode the device code endpoint's JSON body."""
    if isinstance(payload, dict) and "error" in payload:
        raise DeviceFlowError(
            f"GitHub API Error: {payload['error']} - {payload.get('error_description') or ''}"
        )
    try:
        return DeviceCode(
            device_code=payload["device_code"],
            user_code=payload["user_code"],
            verification_uri=payload["verification_uri"],
            interval=int(payload.get("interval", 5)),
            expires_in=int(payload["expires_in"]),
        )
    except (KeyError, TypeError, ValueError):
        raise CorruptState(f"Failed to parse device code response: {payload!r}")


def decode_poll_response(payload: Any) -> PollResponse:
    """Decode the token endpoint's JSON body into TokenGranted or PollError."""
    if not isinstance(payload, dict):
        raise CorruptState(f"Failed to parse token response: {payload!r}")
    if payload.get("access_token"):
        return TokenGranted(
            access_token=payload["access_token"],
            token_type=payload.get("token_type", "bearer"),
            scope=payload.get("scope"),
        )
    if "error" in payload:
        return PollError(
            error=str(payload["error"]),
            description=str(payload.get("error_description") or ""),
            interval=int(payload.get("interval") or 0),
        )
    raise CorruptState(f"Failed to parse token response: {payload!r}")


class PollState(Enum):
    PENDING = "pending"
    SLOWED = "slowed"
    SUCCEEDED = "succeeded"
    DENIED = "denied"
    EXPIRED = "expired"
    FAILED = "failed"


TERMINAL_STATES = frozenset({
    PollState.SUCCEEDED,
    PollState.DENIED,
    PollState.EXPIRED,
    PollState.FAILED,
})


class DevicePoller:
    """
    State machine for device-flow polling.

    It never performs I/O: the caller waits `interval` seconds, fetches a
    poll response and feeds it to advance() until `done`.
    """

    def __init__(self, device_code: DeviceCode, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            device_code: The device code being polled for
            clock: Monotonic clock in seconds
        """
        self._clock = clock
        self.deadline = clock() + device_code.expires_in
        # GitHub asks for at least `interval`; one extra second of margin.
        self.interval = device_code.interval + 1
        self.state = PollState.PENDING
        self.token: Optional[str] = None
        self.message = ""

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def check_expired(self) -> bool:
        """Move to EXPIRED once the device code's lifetime is over."""
        if not self.done and self._clock() >= self.deadline:
            self.state = PollState.EXPIRED
            self.message = "Device code expired. Please try again."
        return self.state is PollState.EXPIRED

    def advance(self, response: PollResponse) -> PollState:
        """Apply one poll response and return the new state."""
        if self.done:
            return self.state

        if isinstance(response, TokenGranted):
            self.state = PollState.SUCCEEDED
            self.token = response.access_token
        elif response.error == "authorization_pending":
            self.state = PollState.PENDING
        elif response.error == "slow_down":
            self.interval = max(self.interval + SLOW_DOWN_INCREMENT, response.interval)
            self.state = PollState.SLOWED
            logger.info("Slowing down polling to every %ss", self.interval)
        elif response.error == "expired_token":
            self.state = PollState.EXPIRED
            self.message = "Device code expired. Please try again."
        elif response.error == "access_denied":
            self.state = PollState.DENIED
            self.message = "Access denied by user."
        else:
            self.state = PollState.FAILED
            self.message = f"Authentication error: {response.description or response.error}"
        return self.state

    def result(self) -> str:
        """Return the token, or raise the error for a failed terminal state."""
        if self.state is PollState.SUCCEEDED and self.token:
            return self.token
        if self.state is PollState.EXPIRED:
            raise DeviceFlowExpired(self.message or None)
        if self.state is PollState.DENIED:
            raise DeviceFlowDenied(self.message or None)
        if self.state is PollState.FAILED:
            raise DeviceFlowError(self.message or None)
        raise RuntimeError(f"Device flow still in progress ({self.state.value})")


class DeviceFlowClient:
    """Runs the GitHub device flow against the OAuth endpoints."""

    def __init__(
        self,
        config: Config,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.oauth_url = config.oauth_url.rstrip("/")
        self.client_id = config.client_id
        self.timeout = config.timeout
        self._transport = transport
        self._sleep = sleep
        self._clock = clock

    async def _post(self, path: str, params: dict[str, str]) -> Any:
        url = f"{self.oauth_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    url,
                    params=params,
                    headers={
                        "Accept": "application/json",
                        "User-Agent": f"lockbox-cli/{VERSION}",
                    },
                )
        except httpx.TimeoutException as e:
            raise Timeout(f"Request to {url} timed out: {e}")
        except httpx.RequestError as e:
            raise Unreachable(f"Could not reach {url}: {e}")

        logger.debug("POST %s -> %s", path, response.status_code)
        try:
            return response.json()
        except ValueError:
            raise CorruptState(
                f"Failed to parse response from {url} ({response.status_code}): {response.text}"
            )

    async def request_device_code(self) -> DeviceCode:
        """Ask GitHub for a device code and user code."""
        payload = await self._post("/login/device/code", {"client_id": self.client_id})
        return parse_device_code_response(payload)

    async def poll_once(self, device_code: DeviceCode) -> PollResponse:
        """Make one request to the token endpoint."""
        payload = await self._post(
            "/login/oauth/access_token",
            {
                "client_id": self.client_id,
                "device_code": device_code.device_code,
                "grant_type": GRANT_TYPE,
            },
        )
        return decode_poll_response(payload)

    async def poll(self, device_code: DeviceCode) -> str:
        """Poll on a timer until the flow reaches a terminal state."""
        poller = DevicePoller(device_code, clock=self._clock)
        while not poller.done:
            await self._sleep(poller.interval)
            if poller.check_expired():
                break
            poller.advance(await self.poll_once(device_code))
        return poller.result()

    async def authenticate(self, on_code: Callable[[DeviceCode], None]) -> str:
        """
        Run the whole device flow.

        Args:
            on_code: Called with the device code so the user can be shown
                the verification URI and user code

        Returns:
            The GitHub access token
        """
        logger.info("Requesting device code")
        device_code = await self.request_device_code()
        on_code(device_code)
        token = await self.poll(device_code)
        logger.info("Device flow completed")
        return token


def installation_url(config: Config) -> str:
    """Where the user installs the GitHub App to grant repository access."""
    return f"{config.oauth_url}/apps/{config.app_name}/installations/new"
