"""
Envelope key management for a storage repository.

All secret values are encrypted under one data encryption key (DEK). The DEK
is generated once per repository and stored in the repository itself,
wrapped under the master password. Changing the master password only
re-wraps the DEK; the secrets are never re-encrypted.
"""

import logging

from errors import AuthenticationFailed, IncorrectPassword, NotConfigured, PasswordRejected
from store.blob_store import VersionedBlobStore
from . import cipher
from .cipher import EncryptedRecord
from .credential_vault import CredentialVault

logger = logging.getLogger(__name__)

MASTER_KEY_FILE = "master_key.json"


class EnvelopeKeyManager:
    """Opens, creates and re-wraps the repository's data encryption key."""

    def __init__(self, store: VersionedBlobStore, app_dir: str = ".lockbox"):
        """
        Initialize the key manager.

        Args:
            store: Blob store of the storage repository
            app_dir: Directory holding the wrapped DEK in the repository
        """
        self.store = store
        self.path = f"{app_dir}/{MASTER_KEY_FILE}"

    async def _fetch(self) -> tuple[EncryptedRecord, str] | None:
        current = await self.store.get(self.path)
        if current is None:
            return None
        data, version = current
        return EncryptedRecord.from_json(data), version

    @staticmethod
    def _unwrap(record: EncryptedRecord, password: str) -> str:
        try:
            return cipher.decrypt_text(record, password)
        except AuthenticationFailed:
            raise IncorrectPassword()

    async def open_or_create_dek(self, password: str) -> str:
        """
        Open the repository's DEK, generating it on first use.

        This is also the check that password is the right one for this
        repository; it runs before any secret is read or written.

        Args:
            password: The master password

        Returns:
            The DEK as a key string

        Raises:
            IncorrectPassword: A DEK exists and password does not open it
            Conflict: Another client created the DEK at the same time
        """
        fetched = await self._fetch()
        if fetched is not None:
            record, _ = fetched
            return self._unwrap(record, password)

        dek = cipher.generate_key()
        record = cipher.encrypt(dek.encode("utf-8"), password)
        await self.store.create(self.path, record.to_json(), "Initialize master key")
        logger.info("Master key initialized and saved to %s", self.path)
        return dek

    async def open_dek(self, password: str) -> str:
        """Open the existing DEK without ever creating one."""
        fetched = await self._fetch()
        if fetched is None:
            raise NotConfigured(
                "Master key not found in the repository. Please run 'lockbox init' first."
            )
        record, _ = fetched
        return self._unwrap(record, password)

    async def rotate_password(
        self, vault: CredentialVault, old_password: str, new_password: str
    ) -> None:
        """
        Re-wrap the DEK and the local credentials under a new password.

        The remote DEK is written before the local files. If a previous
        rotation stopped after its remote write, the DEK already opens under
        new_password and only the local half is redone. Local files that
        already open under new_password are skipped the same way.

        Raises:
            IncorrectPassword: old_password opens neither side
            PasswordRejected: new_password equals old_password
            NotConfigured: The repository has no DEK yet
        """
        fetched = await self._fetch()
        if fetched is None:
            raise NotConfigured(
                "Master key not found in the repository. Please run 'lockbox init' first."
            )
        record, version = fetched

        # Local side must open before anything is written.
        vault.unlock_for_rewrap(old_password, new_password)

        remote_done = False
        try:
            dek = cipher.decrypt_text(record, old_password)
        except AuthenticationFailed:
            if new_password == old_password:
                raise IncorrectPassword()
            dek = self._unwrap(record, new_password)
            remote_done = True
            logger.warning("Remote master key already uses the new password; finishing local re-wrap")

        if new_password == old_password:
            raise PasswordRejected("New password must be different from the current one.")

        if not remote_done:
            new_record = cipher.encrypt(dek.encode("utf-8"), new_password)
            await self.store.put(
                self.path, new_record.to_json(), "Rotate master key password", version=version
            )
            logger.info("Re-wrapped master key in %s", self.path)

        vault.rewrap(old_password, new_password)
