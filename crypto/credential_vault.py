"""
Local credential storage for one profile.

Handles:
- The local master key (LMK): random key material wrapped under the master
  password, created once per profile
- The GitHub token: wrapped directly under the master password
- Profile settings (bound repository): encrypted under the LMK

All files are written with owner-only permissions.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Optional

from config import Config
from errors import AuthenticationFailed, CorruptState, IncorrectPassword, NotLoggedIn
from . import cipher
from .cipher import EncryptedRecord

logger = logging.getLogger(__name__)

FILE_MODE = 0o600


def _write_private(path: Path, data: bytes, exclusive: bool = False) -> None:
    """Write data to path, readable only by the owner.

    With exclusive=True the file must not exist yet (FileExistsError
    otherwise). Without it the file is replaced atomically.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if exclusive:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, FILE_MODE)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        return

    tmp_path = path.with_name(path.name + ".tmp")
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    os.chmod(tmp_path, FILE_MODE)
    os.replace(tmp_path, path)


def _read_record(path: Path) -> EncryptedRecord:
    return EncryptedRecord.from_json(path.read_bytes())


class CredentialVault:
    """Encrypted local credentials for a single profile."""

    def __init__(self, config: Config):
        """
        Initialize the credential vault.

        Args:
            config: Resolved configuration; config.profile selects the files
        """
        self.config = config
        self.profile = config.profile
        self.token_path = config.token_path
        self.lmk_path = config.lmk_path
        self.settings_path = config.settings_path

    def exists(self) -> bool:
        """Check if a token is stored for this profile. No decryption."""
        return self.token_path.exists()

    @property
    def has_lmk(self) -> bool:
        """Check if the local master key has been created."""
        return self.lmk_path.exists()

    # ------------------------------------------------------------------
    # Local master key
    # ------------------------------------------------------------------

    def _unwrap(self, path: Path, password: str) -> str:
        record = _read_record(path)
        try:
            return cipher.decrypt_text(record, password)
        except AuthenticationFailed:
            raise IncorrectPassword(
                "Incorrect master password or corrupted local credentials."
            )

    def bootstrap(self, password: str) -> str:
        """
        Open the local master key, creating it on first use.

        Args:
            password: The master password

        Returns:
            The LMK as a key string

        Raises:
            IncorrectPassword: An LMK exists and password does not open it
        """
        if self.lmk_path.exists():
            return self._unwrap(self.lmk_path, password)

        lmk = cipher.generate_key()
        record = cipher.encrypt(lmk.encode("utf-8"), password)
        try:
            _write_private(self.lmk_path, record.to_json(), exclusive=True)
        except FileExistsError:
            # Another invocation created it first; theirs wins.
            logger.warning("Local master key for profile %s created concurrently", self.profile)
            return self._unwrap(self.lmk_path, password)

        logger.info("Created local master key for profile %s", self.profile)
        return lmk

    def load_lmk(self, password: str) -> str:
        """Unwrap the existing local master key without creating one."""
        if not self.lmk_path.exists():
            raise NotLoggedIn(
                f"No local master key for profile '{self.profile}'. "
                "Please run 'lockbox login' first."
            )
        return self._unwrap(self.lmk_path, password)

    # ------------------------------------------------------------------
    # GitHub token
    # ------------------------------------------------------------------

    def store_token(self, token: str, password: str) -> None:
        """Encrypt the token under the master password and save it."""
        record = cipher.encrypt(token.encode("utf-8"), password)
        _write_private(self.token_path, record.to_json())
        logger.info("Stored token for profile %s", self.profile)

    def load_token(self, password: str) -> str:
        """
        Decrypt the saved token.

        Raises:
            NotLoggedIn: No token stored for this profile
            IncorrectPassword: password does not open the token
        """
        if not self.token_path.exists():
            raise NotLoggedIn(
                f"Not logged in for profile '{self.profile}'. "
                "Please run 'lockbox login' first."
            )
        return self._unwrap(self.token_path, password)

    def logout(self) -> bool:
        """Remove the stored token. Returns True if one existed."""
        if not self.token_path.exists():
            return False
        self.token_path.unlink()
        logger.info("Removed token for profile %s", self.profile)
        return True

    # ------------------------------------------------------------------
    # Password rotation
    # ------------------------------------------------------------------

    def _unwrap_either(self, path: Path, old_password: str, new_password: str) -> tuple[str, bool]:
        """Unwrap under old_password, else new_password. Second item: already re-wrapped."""
        try:
            return self._unwrap(path, old_password), False
        except IncorrectPassword:
            if new_password == old_password:
                raise
            return self._unwrap(path, new_password), True

    def _rewrap_plan(self, old_password: str, new_password: str):
        if not self.lmk_path.exists():
            raise NotLoggedIn(
                f"No local master key for profile '{self.profile}'. "
                "Please run 'lockbox login' first."
            )
        lmk, lmk_done = self._unwrap_either(self.lmk_path, old_password, new_password)
        token, token_done = None, True
        if self.exists():
            token, token_done = self._unwrap_either(self.token_path, old_password, new_password)
        return lmk, lmk_done, token, token_done

    def unlock_for_rewrap(self, old_password: str, new_password: str) -> tuple[str, Optional[str]]:
        """
        Unwrap the LMK and token the way rewrap will, without writing.

        Returns:
            Tuple of (LMK, token); token is None when none is stored

        Raises:
            NotLoggedIn: No local master key
            IncorrectPassword: A file opens under neither password
        """
        lmk, _, token, _ = self._rewrap_plan(old_password, new_password)
        return lmk, token

    def rewrap(self, old_password: str, new_password: str) -> None:
        """
        Re-encrypt the LMK and the token under a new password.

        Both are unwrapped before anything is written, so a wrong
        old_password leaves the files untouched. A file that already opens
        under new_password is left alone, so an interrupted rewrap finishes
        when run again. The LMK is written first.
        """
        lmk, lmk_done, token, token_done = self._rewrap_plan(old_password, new_password)

        if not lmk_done:
            record = cipher.encrypt(lmk.encode("utf-8"), new_password)
            _write_private(self.lmk_path, record.to_json())
        if not token_done:
            self.store_token(token, new_password)
        logger.info("Re-wrapped local credentials for profile %s", self.profile)

    # ------------------------------------------------------------------
    # Profile settings
    # ------------------------------------------------------------------

    def save_settings(self, settings: dict[str, Any], password: str) -> None:
        """Encrypt profile settings under the LMK and save them."""
        lmk = self.bootstrap(password)
        plaintext = json.dumps(settings).encode("utf-8")
        record = cipher.encrypt(plaintext, lmk)
        _write_private(self.settings_path, record.to_json())

    def load_settings(self, password: str) -> dict[str, Any]:
        """Load profile settings; empty if none were saved."""
        if not self.settings_path.exists():
            return {}
        return self.settings_from_lmk(self.load_lmk(password))

    def settings_from_lmk(self, lmk: str) -> dict[str, Any]:
        """Decrypt profile settings with an already unwrapped LMK."""
        if not self.settings_path.exists():
            return {}
        record = _read_record(self.settings_path)
        try:
            settings = json.loads(cipher.decrypt_text(record, lmk))
        except AuthenticationFailed:
            raise CorruptState(f"Profile settings for '{self.profile}' cannot be decrypted")
        except json.JSONDecodeError:
            raise CorruptState(f"Profile settings for '{self.profile}' are not valid JSON")
        if not isinstance(settings, dict):
            raise CorruptState(f"Profile settings for '{self.profile}' are malformed")
        return settings
