"""End-to-end tests for keystore operations against the fake GitHub."""

import json
from dataclasses import replace

import pytest

from crypto import credential_vault
from crypto.credential_vault import CredentialVault
from errors import IncorrectPassword, InvalidPath, NotConfigured, NotLoggedIn
from keystore import generate_value, init_repository, open_keystore, rotate_password

from conftest import PASSWORD, REPO


@pytest.fixture
async def keystore(config, logged_in, fake_github):
    await init_repository(config, PASSWORD, REPO, transport=fake_github.transport)
    ks = await open_keystore(config, PASSWORD, transport=fake_github.transport)
    async with ks:
        yield ks


class TestInit:
    async def test_creates_private_repo_and_dek(self, config, logged_in, fake_github):
        created = await init_repository(config, PASSWORD, REPO, transport=fake_github.transport)

        assert created is True
        assert fake_github.repos[REPO].private is True
        assert ".lockbox/master_key.json" in fake_github.repos[REPO].files
        assert logged_in.load_settings(PASSWORD) == {"repo_name": REPO}

    async def test_reuses_existing_repo(self, config, logged_in, fake_github):
        fake_github.create_repo(REPO)
        assert await init_repository(config, PASSWORD, REPO, transport=fake_github.transport) is False

    async def test_second_init_keeps_dek(self, config, logged_in, fake_github):
        await init_repository(config, PASSWORD, REPO, transport=fake_github.transport)
        dek_file = fake_github.repos[REPO].files[".lockbox/master_key.json"]
        await init_repository(config, PASSWORD, REPO, transport=fake_github.transport)
        assert fake_github.repos[REPO].files[".lockbox/master_key.json"] == dek_file

    async def test_wrong_password_for_existing_repo(self, config, logged_in, fake_github):
        await init_repository(config, PASSWORD, REPO, transport=fake_github.transport)
        other = CredentialVault(config.with_profile("other"))
        other.bootstrap("another password")
        other.store_token(fake_github.token, "another password")

        with pytest.raises(IncorrectPassword):
            await init_repository(
                config.with_profile("other"), "another password", REPO, transport=fake_github.transport
            )
        assert other.load_settings("another password") == {}

    async def test_requires_login(self, config, fake_github):
        with pytest.raises(NotLoggedIn):
            await init_repository(config, PASSWORD, REPO, transport=fake_github.transport)
        assert fake_github.requests == []

    async def test_token_override(self, config, fake_github):
        ci_config = replace(config, token_override=fake_github.token)
        assert await init_repository(ci_config, PASSWORD, REPO, transport=fake_github.transport)


class TestOpen:
    async def test_requires_init(self, config, logged_in, fake_github):
        with pytest.raises(NotConfigured):
            await open_keystore(config, PASSWORD, transport=fake_github.transport)

    async def test_wrong_password(self, config, logged_in, fake_github):
        await init_repository(config, PASSWORD, REPO, transport=fake_github.transport)
        with pytest.raises(IncorrectPassword):
            await open_keystore(config, "wrong password", transport=fake_github.transport)


class TestKeystore:
    async def test_store_and_get(self, keystore):
        assert await keystore.store_value("db-pass", "hunter2", "prod/api") is False
        assert await keystore.get("db-pass", "prod/api") == "hunter2"
        assert await keystore.get("db-pass") is None

    async def test_remote_only_sees_ciphertext(self, keystore, fake_github):
        await keystore.store_value("db-pass", "hunter2-plaintext")
        stored = fake_github.repos[REPO].files["keys/db-pass.json"]
        assert b"hunter2-plaintext" not in stored
        assert set(json.loads(stored)) == {"salt", "nonce", "ciphertext"}

    async def test_update_and_history(self, keystore):
        await keystore.store_value("api", "v1")
        assert await keystore.store_value("api", "v2") is True

        entries = await keystore.history("api")
        assert [e.message for e in entries] == ["Update key: api", "Add key: api"]
        assert await keystore.get("api") == "v2"
        assert await keystore.get("api", version=entries[1].version) == "v1"

    async def test_commit_messages_name_category(self, keystore):
        await keystore.store_value("token", "x", "/ci/")
        entries = await keystore.history("token", "ci")
        assert entries[0].message == "Add key: ci/token"

    async def test_delete(self, keystore, fake_github):
        await keystore.store_value("api", "v1")
        assert await keystore.exists("api")
        assert await keystore.delete("api") is True
        assert not await keystore.exists("api")
        assert await keystore.get("api") is None

        writes = fake_github.write_count
        assert await keystore.delete("api") is False
        assert fake_github.write_count == writes

        entries = await keystore.history("api")
        assert entries[0].message == "Delete key: api"
        assert await keystore.get("api", version=entries[1].version) == "v1"

    async def test_list(self, keystore):
        await keystore.store_value("b", "1")
        await keystore.store_value("a", "1")
        await keystore.store_value("c", "1", "prod")
        await keystore.store_value("d", "1", "prod/api")

        assert await keystore.list() == (["prod"], ["a", "b"])
        assert await keystore.list("prod") == (["api"], ["c"])
        assert await keystore.list("empty") == ([], [])

    async def test_invalid_names(self, keystore, fake_github):
        requests = len(fake_github.requests)
        with pytest.raises(InvalidPath):
            await keystore.store_value("a/b", "x")
        with pytest.raises(InvalidPath):
            await keystore.get("a", "../x")
        assert len(fake_github.requests) == requests

    async def test_history_paging(self, keystore):
        for i in range(3):
            await keystore.store_value("api", f"v{i}")
        page = await keystore.history("api", page=2, page_size=2)
        assert [e.message for e in page] == ["Add key: api"]


class TestRotate:
    async def test_values_survive_rotation(self, config, logged_in, fake_github):
        await init_repository(config, PASSWORD, REPO, transport=fake_github.transport)
        async with await open_keystore(config, PASSWORD, transport=fake_github.transport) as ks:
            await ks.store_value("api", "s3cret")
        stored = fake_github.repos[REPO].files["keys/api.json"]

        await rotate_password(config, PASSWORD, "the new password", transport=fake_github.transport)

        assert fake_github.repos[REPO].files["keys/api.json"] == stored
        async with await open_keystore(config, "the new password", transport=fake_github.transport) as ks:
            assert await ks.get("api") == "s3cret"
        with pytest.raises(IncorrectPassword):
            await open_keystore(config, PASSWORD, transport=fake_github.transport)

    async def test_retry_after_token_write_failed(self, config, logged_in, fake_github, monkeypatch):
        await init_repository(config, PASSWORD, REPO, transport=fake_github.transport)
        async with await open_keystore(config, PASSWORD, transport=fake_github.transport) as ks:
            await ks.store_value("api", "s3cret")
        original = credential_vault._write_private

        def fail_token(path, data, exclusive=False):
            if path == logged_in.token_path:
                raise OSError("disk full")
            original(path, data, exclusive)

        monkeypatch.setattr(credential_vault, "_write_private", fail_token)
        with pytest.raises(OSError):
            await rotate_password(config, PASSWORD, "the new password", transport=fake_github.transport)
        monkeypatch.setattr(credential_vault, "_write_private", original)

        # LMK already moved, token did not; the same command finishes the job.
        await rotate_password(config, PASSWORD, "the new password", transport=fake_github.transport)

        assert logged_in.load_token("the new password") == fake_github.token
        async with await open_keystore(config, "the new password", transport=fake_github.transport) as ks:
            assert await ks.get("api") == "s3cret"


class TestGenerateValue:
    def test_length_and_alphabet(self):
        for _ in range(50):
            value = generate_value()
            assert 6 <= len(value) <= 36
            assert value.isalnum()
            assert value.isascii()

    def test_fixed_length(self):
        assert len(generate_value(12, 12)) == 12
