"""Tests for VaultSession: create, unlock, save, lock, attachments."""

from __future__ import annotations

import base64

import pytest

from emmavault.errors import (
    CorruptContainer,
    InvalidPassphrase,
    ManifestMismatch,
    VaultError,
    VaultLocked,
)
from emmavault.storage.base import OpenOptions
from emmavault.storage.memory import InMemoryAdapter
from emmavault.storage.private_fs import PrivateFilesystemAdapter
from emmavault.vault.session import VaultSession

from conftest import FAST_ITERATIONS


def make_session(adapter, kv_store, fast_kdf, fast_limiter):
    return VaultSession(
        adapter,
        settings_store=kv_store,
        kdf_params=fast_kdf,
        rate_limiter=fast_limiter,
        iterations=FAST_ITERATIONS,
    )


@pytest.fixture
def session(tmp_path, kv_store, fast_kdf, fast_limiter):
    adapter = PrivateFilesystemAdapter(tmp_path / "vaults", min_free_bytes=0)
    return make_session(adapter, kv_store, fast_kdf, fast_limiter)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_create_save_unlock(self, session, passphrase):
        doc = await session.create("Family", passphrase)
        assert doc.name == "Family"
        memory_id = session.add_memory({"text": "first steps"})
        await session.save()
        session.lock()
        assert not session.is_unlocked

        reopened = await session.unlock(passphrase, name="Family")
        assert reopened.memories[memory_id]["text"] == "first steps"
        await session.close()

    @pytest.mark.asyncio
    async def test_wrong_passphrase(self, session, passphrase):
        await session.create("Family", passphrase)
        session.lock()
        with pytest.raises(InvalidPassphrase):
            await session.unlock("wrong", name="Family")
        assert not session.is_unlocked
        with pytest.raises(VaultLocked):
            session.document
        await session.close()

    @pytest.mark.asyncio
    async def test_create_refuses_existing(self, session, passphrase):
        await session.create("Family", passphrase)
        with pytest.raises(VaultError, match="already exists"):
            await session.create("Family", passphrase)
        await session.close()

    @pytest.mark.asyncio
    async def test_unlock_empty_vault(self, session, passphrase):
        with pytest.raises(CorruptContainer):
            await session.unlock(passphrase, name="Nothing")
        await session.close()

    @pytest.mark.asyncio
    async def test_locked_operations(self, session):
        with pytest.raises(VaultLocked):
            await session.save()
        with pytest.raises(VaultLocked):
            session.add_memory({"text": "x"})

    @pytest.mark.asyncio
    async def test_imported_vault_enrolls_after_decrypt(
        self, passphrase, kv_store, fast_kdf, fast_limiter
    ):
        source = make_session(InMemoryAdapter(), kv_store, fast_kdf, fast_limiter)
        await source.create("Shared", passphrase)
        blob = await source.adapter.read_vault()

        target = make_session(InMemoryAdapter(), type(kv_store)(), fast_kdf, fast_limiter)
        await target.adapter.open_vault(OpenOptions(vault_name="Shared"))
        await target.adapter.import_vault(blob)
        with pytest.raises(InvalidPassphrase):
            await target.unlock("wrong")
        doc = await target.unlock(passphrase)
        assert doc.name == "Shared"
        assert target.keyring.load_settings().verifier is not None


class TestContent:
    @pytest.mark.asyncio
    async def test_people(self, session, passphrase):
        await session.create("Family", passphrase)
        person_id = session.add_person("Ann", relation="grandmother")
        assert session.document.people[person_id] == {
            "name": "Ann",
            "relation": "grandmother",
            "created": session.document.people[person_id]["created"],
        }
        assert session.document.stats()["peopleCount"] == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_media_roundtrip(self, session, passphrase):
        await session.create("Family", passphrase)
        memory_id = session.add_memory({"text": "beach"})
        media_id = session.add_media(b"\x89PNG...", name="beach.png", mime_type="image/png", memory_id=memory_id)
        await session.save()
        session.lock()

        await session.unlock(passphrase, name="Family")
        assert session.get_media(media_id) == b"\x89PNG..."
        assert session.document.media[media_id]["memoryId"] == memory_id
        await session.close()

    @pytest.mark.asyncio
    async def test_media_tamper_detected(self, session, passphrase):
        await session.create("Family", passphrase)
        media_id = session.add_media(b"original", name="a.bin")
        session.document.media[media_id]["data"] = base64.b64encode(b"modified").decode()
        with pytest.raises(ManifestMismatch):
            session.get_media(media_id)
        await session.close()

    @pytest.mark.asyncio
    async def test_unknown_media(self, session, passphrase):
        await session.create("Family", passphrase)
        with pytest.raises(KeyError):
            session.get_media("media_missing")
        await session.close()
