"""
Shared test fixtures.

Argon2 is made cheap for the whole suite; production parameters would make
every encrypt/decrypt take a noticeable fraction of a second.
"""

import pytest
import pytest_asyncio

from config import Config
from crypto import cipher
from crypto.credential_vault import CredentialVault
from store.blob_store import VersionedBlobStore
from store.github import GitHubBackend

from fake_github import FakeGitHub

PASSWORD = "correct horse battery"
REPO = "vault"


@pytest.fixture(autouse=True)
def fast_kdf(monkeypatch):
    """Lower Argon2 cost for tests."""
    monkeypatch.setattr(cipher, "KDF", cipher.KdfParams(time_cost=1, memory_cost=64, parallelism=1))


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove env vars that would leak the developer's setup into tests."""
    for key in [
        "LOCKBOX_CONFIG_DIR",
        "LOCKBOX_PROFILE",
        "LOCKBOX_API_URL",
        "LOCKBOX_OAUTH_URL",
        "LOCKBOX_TOKEN",
        "LOCKBOX_TIMEOUT",
        "LOCKBOX_LOG_LEVEL",
        "GITHUB_CLIENT_ID",
        "GITHUB_APP_NAME",
    ]:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        home=tmp_path / "home",
        api_url="https://api.github.test",
        oauth_url="https://github.test",
        timeout=5.0,
    )


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def vault(config) -> CredentialVault:
    return CredentialVault(config)


@pytest.fixture
def logged_in(vault, fake_github) -> CredentialVault:
    """A profile holding a token for fake_github, under PASSWORD."""
    vault.bootstrap(PASSWORD)
    vault.store_token(fake_github.token, PASSWORD)
    return vault


@pytest_asyncio.fixture
async def backend(config, fake_github):
    fake_github.create_repo(REPO)
    client = GitHubBackend(config, fake_github.token, REPO, transport=fake_github.transport)
    await client.connect()
    yield client
    await client.close()


@pytest.fixture
def blob_store(backend) -> VersionedBlobStore:
    return VersionedBlobStore(backend)
