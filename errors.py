"""
Error kinds for Lockbox.

Every failure the keystore can report is one of these classes. Library
exceptions (cryptography, httpx, json) are translated into them at the
boundary where they occur, so callers only ever need to catch LockboxError.
"""

from typing import Optional


class LockboxError(Exception):
    """Base class for all Lockbox errors."""

    default_message = "Lockbox operation failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)


class AuthenticationFailed(LockboxError):
    """AEAD integrity check failed: wrong key or tampered ciphertext."""

    default_message = "Decryption failed - wrong password or corrupted data"


class IncorrectPassword(AuthenticationFailed):
    """The master password does not open a stored record."""

    default_message = "Incorrect master password. Please verify your credentials."


class PasswordRejected(LockboxError):
    """A new master password does not satisfy the password rules."""

    default_message = "Password rejected"


class NotLoggedIn(LockboxError):
    default_message = "Not logged in. Please run 'lockbox login' first."


class NotConfigured(LockboxError):
    default_message = "No repository configured. Please run 'lockbox init' first."


class NotFound(LockboxError):
    default_message = "Not found"


class InvalidPath(LockboxError):
    default_message = "Invalid key or category"


class Conflict(LockboxError):
    """The remote content changed between our read and our write."""

    default_message = "Remote content changed concurrently. Please retry."


class Unreachable(LockboxError):
    default_message = "Could not reach the remote backend"


class Timeout(Unreachable):
    default_message = "Request to the remote backend timed out"


class RemoteError(LockboxError):
    """Unexpected response from the remote backend."""

    default_message = "Remote backend returned an error"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DeviceFlowExpired(LockboxError):
    default_message = "Device code expired. Please try again."


class DeviceFlowDenied(LockboxError):
    default_message = "Access denied by user."


class DeviceFlowError(LockboxError):
    default_message = "Authentication error"


class CorruptState(LockboxError):
    """Persisted or fetched data is malformed."""

    default_message = "Stored data is corrupted"
