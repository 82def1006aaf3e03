"""
GitHub repository contents API client.

Handles:
- Resolving the authenticated user (repository owner)
- Checking for the storage repository and creating it (private) if absent
- Reading, writing and deleting files, each guarded by the file's blob SHA
- Listing the commits that touched a path

Every response is decoded here, once, into the dataclasses below; HTTP and
transport failures are translated into Lockbox error kinds.
"""

import base64
import binascii
import logging
from typing import Any, Optional
from dataclasses import dataclass

import httpx

from config import Config, VERSION
from errors import Conflict, CorruptState, NotLoggedIn, RemoteError, Timeout, Unreachable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileContent:
    """A file as returned by the contents API."""
    path: str
    content: bytes
    sha: str


@dataclass(frozen=True)
class DirEntry:
    """One entry of a directory listing."""
    name: str
    path: str
    type: str  # "file" or "dir"
    sha: str


@dataclass(frozen=True)
class CommitInfo:
    """A commit that touched a path."""
    sha: str
    date: str
    message: str


def _error_message(response: httpx.Response) -> str:
    try:
        return str(response.json().get("message", ""))
    except (ValueError, AttributeError):
        return response.text


class GitHubBackend:
    """Client for one repository of the authenticated user."""

    def __init__(
        self,
        config: Config,
        token: str,
        repo: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the backend client.

        Args:
            config: Resolved configuration (API URL, timeout)
            token: GitHub bearer token
            repo: Repository name, owned by the authenticated user
            transport: Optional httpx transport (tests)
        """
        self.api_base_url = config.api_url.rstrip("/")
        self.timeout = config.timeout
        self.token = token
        self.repo = repo
        self.owner: Optional[str] = None
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "GitHubBackend":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _get_headers(self) -> dict[str, str]:
        """Get headers for API requests."""
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": f"lockbox-cli/{VERSION}",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.api_base_url,
                headers=self._get_headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise Timeout(f"Request to {self.api_base_url} timed out: {e}")
        except httpx.RequestError as e:
            raise Unreachable(f"Could not reach {self.api_base_url}: {e}")

        logger.debug("%s %s -> %s", method, url, response.status_code)
        if response.status_code == 401:
            raise NotLoggedIn("GitHub rejected the stored token. Please run 'lockbox login' again.")
        return response

    def _raise_for_write(self, response: httpx.Response, action: str, path: str) -> None:
        if response.is_success:
            return
        message = _error_message(response)
        if response.status_code == 409 or (
            response.status_code == 422 and "sha" in message.lower()
        ):
            raise Conflict(f"Failed to {action} {path}: remote content changed ({message})")
        raise RemoteError(
            f"Failed to {action} {path}: {response.status_code} - {message}",
            status_code=response.status_code,
        )

    def _contents_url(self, path: str) -> str:
        return f"/repos/{self.owner}/{self.repo}/contents/{path}"

    def _require_owner(self) -> None:
        if self.owner is None:
            raise RuntimeError("GitHubBackend.connect() must be called first")

    # ------------------------------------------------------------------
    # Repository
    # ------------------------------------------------------------------

    async def connect(self) -> str:
        """Resolve the authenticated user, who owns the repository."""
        response = await self._request("GET", "/user")
        if not response.is_success:
            raise RemoteError(
                f"Failed to get user info: {response.status_code}. Check if token is valid.",
                status_code=response.status_code,
            )
        try:
            self.owner = response.json()["login"]
        except (ValueError, KeyError, TypeError):
            raise CorruptState("Unexpected response from GitHub user endpoint")
        logger.debug("Authenticated as %s", self.owner)
        return self.owner

    async def ensure_repo(self) -> bool:
        """
        Make sure the storage repository exists.

        Returns:
            True if the repository was created, False if it already existed
        """
        self._require_owner()
        logger.info("Checking if repository %s/%s exists", self.owner, self.repo)
        response = await self._request("GET", f"/repos/{self.owner}/{self.repo}")

        if response.is_success:
            return False
        if response.status_code != 404:
            raise RemoteError(
                f"Error checking repo: {response.status_code}",
                status_code=response.status_code,
            )

        logger.info("Repository not found. Creating private repository %s", self.repo)
        create = await self._request(
            "POST",
            "/user/repos",
            json={
                "name": self.repo,
                "private": True,
                "description": "Secure storage for Lockbox",
            },
        )
        if not create.is_success:
            raise RemoteError(
                f"Failed to create repo: {create.status_code} - {_error_message(create)}",
                status_code=create.status_code,
            )
        return True

    # ------------------------------------------------------------------
    # Contents
    # ------------------------------------------------------------------

    async def _get_contents(self, path: str, ref: Optional[str] = None) -> Optional[Any]:
        self._require_owner()
        params = {"ref": ref} if ref else None
        response = await self._request("GET", self._contents_url(path), params=params)
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise RemoteError(
                f"Failed to fetch {path}: {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError:
            raise CorruptState(f"Unexpected response fetching {path}")

    async def read_file(self, path: str, ref: Optional[str] = None) -> Optional[FileContent]:
        """
        Fetch a file, optionally pinned to a commit.

        Returns:
            The file, or None if it does not exist (at that ref)
        """
        data = await self._get_contents(path, ref)
        if data is None:
            return None
        if not isinstance(data, dict) or data.get("type", "file") != "file":
            raise CorruptState(f"{path} is not a file")
        try:
            # GitHub returns content as base64 with newlines
            content = base64.b64decode(data["content"].replace("\n", ""), validate=True)
            return FileContent(path=path, content=content, sha=data["sha"])
        except (KeyError, AttributeError, binascii.Error, ValueError):
            raise CorruptState(f"Failed to decode content of {path} from GitHub")

    async def list_dir(self, path: str) -> list[DirEntry]:
        """List a directory. A missing directory is empty."""
        data = await self._get_contents(path)
        if data is None:
            return []
        if not isinstance(data, list):
            raise CorruptState(f"{path} is not a directory")
        try:
            return [
                DirEntry(name=item["name"], path=item["path"], type=item["type"], sha=item["sha"])
                for item in data
            ]
        except (KeyError, TypeError):
            raise CorruptState(f"Unexpected directory listing for {path}")

    async def write_file(
        self, path: str, content: bytes, message: str, sha: Optional[str] = None
    ) -> str:
        """
        Create or update a file.

        Args:
            path: Repository path
            content: Raw file content
            message: Commit message
            sha: Current blob SHA; required when the file exists

        Returns:
            The new blob SHA

        Raises:
            Conflict: sha does not match the current file
        """
        self._require_owner()
        body: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content).decode("ascii"),
        }
        if sha:
            body["sha"] = sha

        response = await self._request("PUT", self._contents_url(path), json=body)
        self._raise_for_write(response, "save", path)
        try:
            return response.json()["content"]["sha"]
        except (ValueError, KeyError, TypeError):
            raise CorruptState(f"Unexpected response saving {path}")

    async def delete_file(self, path: str, message: str, sha: str) -> bool:
        """
        Delete a file at its current SHA.

        Returns:
            False if the file was already gone, True once deleted
        """
        self._require_owner()
        response = await self._request(
            "DELETE",
            self._contents_url(path),
            json={"message": message, "sha": sha},
        )
        if response.status_code == 404:
            return False
        self._raise_for_write(response, "delete", path)
        return True

    async def list_commits(self, path: str, page: int, per_page: int) -> list[CommitInfo]:
        """List commits touching path, newest first."""
        self._require_owner()
        response = await self._request(
            "GET",
            f"/repos/{self.owner}/{self.repo}/commits",
            params={"path": path, "page": page, "per_page": per_page},
        )
        # An empty repository answers 409 "Git Repository is empty."
        if response.status_code in (404, 409):
            return []
        if not response.is_success:
            raise RemoteError(
                f"Failed to fetch history for {path}: {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return [
                CommitInfo(
                    sha=item["sha"],
                    date=item["commit"]["author"]["date"],
                    message=item["commit"]["message"],
                )
                for item in response.json()
            ]
        except (ValueError, KeyError, TypeError):
            raise CorruptState(f"Unexpected commit listing for {path}")
