"""
Keystore operations for Lockbox.

Ties the pieces together for one command:
1. Unlock the local credentials with the master password
2. Connect to the bound GitHub repository
3. Open the repository's data encryption key (this is the password check)
4. Encrypt/decrypt secret values under that key
"""

import string
import secrets
import logging
from typing import Optional

import httpx

from config import Config
from crypto import cipher
from crypto.cipher import EncryptedRecord
from crypto.credential_vault import CredentialVault
from crypto.key_manager import EnvelopeKeyManager
from errors import NotConfigured, NotLoggedIn
from store.blob_store import HistoryEntry, VersionedBlobStore
from store.github import GitHubBackend
from store.paths import category_path, display_path, secret_path, SUFFIX

logger = logging.getLogger(__name__)

VALUE_ALPHABET = string.ascii_letters + string.digits


def generate_value(min_len: int = 6, max_len: int = 36) -> str:
    """Generate a random alphanumeric value with length in [min_len, max_len]."""
    length = min_len + secrets.randbelow(max_len - min_len + 1)
    return "".join(secrets.choice(VALUE_ALPHABET) for _ in range(length))


def _resolve_token(config: Config, vault: CredentialVault, password: str) -> str:
    if config.token_override:
        return config.token_override
    return vault.load_token(password)


def _bound_repo(vault: CredentialVault, settings: dict) -> str:
    repo = settings.get("repo_name")
    if not repo:
        raise NotConfigured(
            f"No repository configured for profile '{vault.profile}'. "
            "Please run 'lockbox init' first."
        )
    return repo


async def _connect(
    config: Config,
    token: str,
    repo: str,
    transport: Optional[httpx.AsyncBaseTransport],
) -> GitHubBackend:
    backend = GitHubBackend(config, token, repo, transport=transport)
    try:
        await backend.connect()
    except BaseException:
        await backend.close()
        raise
    return backend


async def init_repository(
    config: Config,
    password: str,
    repo: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """
    Bind the profile to repo, creating the repository and its DEK if needed.

    Returns:
        True if the repository was created
    """
    vault = CredentialVault(config)
    token = _resolve_token(config, vault, password)

    backend = await _connect(config, token, repo, transport)
    async with backend:
        created = await backend.ensure_repo()
        store = VersionedBlobStore(backend)
        await EnvelopeKeyManager(store, config.remote_dir).open_or_create_dek(password)

    vault.save_settings({"repo_name": repo}, password)
    logger.info("Profile %s bound to repository %s", config.profile, repo)
    return created


async def open_keystore(
    config: Config,
    password: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> "Keystore":
    """Unlock the profile and open its repository's DEK."""
    vault = CredentialVault(config)
    token = _resolve_token(config, vault, password)
    repo = _bound_repo(vault, vault.load_settings(password))

    backend = await _connect(config, token, repo, transport)
    try:
        store = VersionedBlobStore(backend)
        dek = await EnvelopeKeyManager(store, config.remote_dir).open_or_create_dek(password)
    except BaseException:
        await backend.close()
        raise
    return Keystore(config, backend, store, dek)


async def rotate_password(
    config: Config,
    old_password: str,
    new_password: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> None:
    """Change the master password of the profile and its repository."""
    vault = CredentialVault(config)
    # Either password opens a file left half re-wrapped by an earlier run.
    lmk, stored_token = vault.unlock_for_rewrap(old_password, new_password)
    token = config.token_override or stored_token
    if token is None:
        raise NotLoggedIn(
            f"Not logged in for profile '{vault.profile}'. "
            "Please run 'lockbox login' first."
        )
    repo = _bound_repo(vault, vault.settings_from_lmk(lmk))

    backend = await _connect(config, token, repo, transport)
    async with backend:
        store = VersionedBlobStore(backend)
        manager = EnvelopeKeyManager(store, config.remote_dir)
        await manager.rotate_password(vault, old_password, new_password)
    logger.info("Master password changed for profile %s", config.profile)


class Keystore:
    """Secret values of one repository, encrypted under its DEK."""

    def __init__(
        self,
        config: Config,
        backend: GitHubBackend,
        store: VersionedBlobStore,
        dek: str,
    ):
        self.config = config
        self.backend = backend
        self.store = store
        self._dek = dek

    async def __aenter__(self) -> "Keystore":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the connection and forget the DEK."""
        self._dek = None
        await self.backend.close()

    def _decrypt(self, data: bytes) -> str:
        return cipher.decrypt_text(EncryptedRecord.from_json(data), self._dek)

    async def exists(self, name: str, category: Optional[str] = None) -> bool:
        return await self.store.get(secret_path(name, category)) is not None

    async def store_value(self, name: str, value: str, category: Optional[str] = None) -> bool:
        """
        Encrypt value and save it as name in category.

        Returns:
            True if an existing value was replaced
        """
        path = secret_path(name, category)
        current = await self.store.get(path)
        record = cipher.encrypt(value.encode("utf-8"), self._dek)
        verb = "Update" if current else "Add"
        await self.store.put(
            path,
            record.to_json(),
            f"{verb} key: {display_path(name, category)}",
            version=current[1] if current else None,
        )
        return current is not None

    async def get(
        self, name: str, category: Optional[str] = None, version: Optional[str] = None
    ) -> Optional[str]:
        """
        Decrypt the value of name, optionally as of an earlier version.

        Returns:
            The value, or None if there is no such key (at that version)
        """
        path = secret_path(name, category)
        if version:
            data = await self.store.get_at_version(path, version)
        else:
            current = await self.store.get(path)
            data = current[0] if current else None
        if data is None:
            return None
        return self._decrypt(data)

    async def delete(self, name: str, category: Optional[str] = None) -> bool:
        """Delete name. Returns False if it does not exist."""
        path = secret_path(name, category)
        return await self.store.delete(path, f"Delete key: {display_path(name, category)}")

    async def history(
        self,
        name: str,
        category: Optional[str] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> list[HistoryEntry]:
        """Changes to name, newest first."""
        return await self.store.history(secret_path(name, category), page, page_size)

    async def list(self, category: Optional[str] = None) -> tuple[list[str], list[str]]:
        """
        List what is stored directly under category.

        Returns:
            Tuple of (sub-categories, key names), both sorted
        """
        entries = await self.store.list(category_path(category))
        categories = sorted(e.name for e in entries if e.type == "dir")
        keys = sorted(
            e.name[: -len(SUFFIX)]
            for e in entries
            if e.type == "file" and e.name.endswith(SUFFIX)
        )
        return categories, keys
