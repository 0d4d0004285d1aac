"""VaultSession: one open vault document behind one storage adapter.

The session owns its Keyring (no process-wide key state), keeps the
passphrase in SecureMemory for re-encrypting on save, and attaches an
integrity manifest to every media attachment it stores.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import secrets
from typing import TYPE_CHECKING, Any, Dict, Optional

from emmavault.config import Config
from emmavault.crypto.codec import decrypt_container_async, encrypt_container_async
from emmavault.crypto.formats import CONTAINER_ITERATIONS
from emmavault.crypto.journal import IntegrityManifest, create_manifest, require_valid
from emmavault.errors import (
    CorruptContainer,
    DecryptionFailure,
    ManifestMismatch,
    VaultError,
    VaultLocked,
)
from emmavault.storage.base import OpenOptions, StorageAdapter
from emmavault.storage.kv import KeyValueStore, MemoryKeyValueStore
from emmavault.util.memory import SecureMemory
from emmavault.util.rate_limit import RateLimiter
from emmavault.util.timeutil import utc_now_iso
from emmavault.vault.keyring import Keyring
from emmavault.vault.models import VaultDocument

if TYPE_CHECKING:
    from emmavault.crypto.worker_client import CryptoWorkerClient

logger = logging.getLogger("emmavault.session")


def _new_id(prefix: str) -> str:
    return f"{prefix}_{secrets.token_hex(8)}"


class VaultSession:
    """Create, unlock, edit, save and lock a vault through one adapter."""

    def __init__(
        self,
        adapter: StorageAdapter,
        *,
        settings_store: Optional[KeyValueStore] = None,
        worker: Optional[CryptoWorkerClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
        kdf_params: Optional[dict] = None,
        iterations: int = CONTAINER_ITERATIONS,
    ):
        self.adapter = adapter
        self.settings_store = settings_store if settings_store is not None else MemoryKeyValueStore()
        self.worker = worker
        self.rate_limiter = rate_limiter
        self.kdf_params = kdf_params
        self.iterations = iterations
        self.keyring: Optional[Keyring] = None
        self._document: Optional[VaultDocument] = None
        self._passphrase: Optional[SecureMemory] = None

    # ------------------------------------------------------------------
    @property
    def is_unlocked(self) -> bool:
        return self._document is not None and self.keyring is not None and self.keyring.is_unlocked()

    @property
    def document(self) -> VaultDocument:
        if not self.is_unlocked:
            raise VaultLocked("Vault session is locked")
        return self._document

    def _keyring_for(self, name: str) -> Keyring:
        return Keyring(
            self.settings_store,
            settings_key=f"{Config.SETTINGS_KEY}:{self.adapter.id}://{name}",
            worker=self.worker,
            rate_limiter=self.rate_limiter,
            kdf_params=self.kdf_params,
            auto_enroll=False,
        )

    # ------------------------------------------------------------------
    #  Lifecycle
    # ------------------------------------------------------------------
    async def create(self, name: str, passphrase: str) -> VaultDocument:
        """Start a new, empty vault called *name* and save it."""
        self.lock()
        await self.adapter.open_vault(OpenOptions(vault_name=name))
        if await self.adapter.read_vault():
            raise VaultError(f"Vault '{name}' already exists")

        keyring = self._keyring_for(name)
        await asyncio.to_thread(keyring.settings_store.delete, keyring.settings_key)
        await keyring.unlock_with_passphrase(passphrase)
        await keyring.enroll_verifier()

        self.keyring = keyring
        self._passphrase = SecureMemory(passphrase)
        self._document = VaultDocument.new(name)
        await self.save()
        logger.info("Vault %s created", name)
        return self._document

    async def unlock(self, passphrase: str, name: Optional[str] = None) -> VaultDocument:
        """Open *name* (or the adapter's current vault) and decrypt it."""
        self.lock()
        await self.adapter.open_vault(OpenOptions(vault_name=name))
        name = self.adapter.name

        keyring = self._keyring_for(name)
        await keyring.unlock_with_passphrase(passphrase)
        data = await self.adapter.read_vault()
        if not data:
            keyring.lock()
            raise CorruptContainer(f"Vault '{name}' is empty")

        try:
            document = await decrypt_container_async(
                data, passphrase, worker=self.worker, iterations=self.iterations
            )
        except (DecryptionFailure, CorruptContainer):
            keyring.lock()
            raise

        settings = await asyncio.to_thread(keyring.load_settings)
        if settings.verifier is None:
            await keyring.enroll_verifier()

        self.keyring = keyring
        self._passphrase = SecureMemory(passphrase)
        self._document = document
        logger.info("Vault %s unlocked", name)
        return document

    async def save(self) -> None:
        document = self.document
        blob = await encrypt_container_async(
            document,
            self._passphrase,
            worker=self.worker,
            iterations=self.iterations,
        )
        await self.adapter.write_vault(blob)
        logger.info("Vault %s saved", document.name)

    def lock(self) -> None:
        if self.keyring is not None:
            self.keyring.lock()
            self.keyring = None
        if self._passphrase is not None:
            self._passphrase.clear()
            self._passphrase = None
        self._document = None

    async def close(self) -> None:
        self.lock()
        await self.adapter.close()

    async def __aenter__(self) -> VaultSession:
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # ------------------------------------------------------------------
    #  Content
    # ------------------------------------------------------------------
    def add_memory(self, content: Dict[str, Any], memory_id: Optional[str] = None) -> str:
        memory_id = memory_id or _new_id("memory")
        record = dict(content)
        record.setdefault("created", utc_now_iso())
        self.document.memories[memory_id] = record
        return memory_id

    def add_person(self, name: str, **details: Any) -> str:
        person_id = _new_id("person")
        self.document.people[person_id] = dict(details, name=name, created=utc_now_iso())
        return person_id

    def add_media(
        self,
        data: bytes,
        *,
        name: str,
        mime_type: str = "application/octet-stream",
        memory_id: Optional[str] = None,
    ) -> str:
        """Store an attachment together with its integrity manifest."""
        payload = bytes(data)
        media_id = _new_id("media")
        self.document.media[media_id] = {
            "name": name,
            "type": mime_type,
            "size": len(payload),
            "memoryId": memory_id,
            "created": utc_now_iso(),
            "data": base64.b64encode(payload).decode("ascii"),
            "manifest": create_manifest(payload).to_dict(),
        }
        return media_id

    def get_media(self, media_id: str) -> bytes:
        """Attachment bytes; ManifestMismatch if they no longer match."""
        record = self.document.media.get(media_id)
        if record is None:
            raise KeyError(media_id)
        try:
            payload = base64.b64decode(record.get("data", ""), validate=True)
        except (binascii.Error, TypeError) as exc:
            raise ManifestMismatch(f"Media {media_id} is not valid base64") from exc
        manifest = record.get("manifest")
        if manifest is None:
            raise ManifestMismatch(f"Media {media_id} has no integrity manifest")
        require_valid(payload, IntegrityManifest.from_dict(manifest))
        return payload
