"""Keyring: derives, checks and holds the session master key.

State machine: Locked -> (Unlocking) -> Unlocked -> Locked. The master key is
never persisted; only VaultSettings (KDF parameters, salt and an optional
verifier) go to the settings store. A failed unlock discards the candidate
key and leaves the keyring Locked.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator, Optional, Tuple

from cryptography.exceptions import InvalidTag

from emmavault.config import DEFAULT_ITERATIONS, Config
from emmavault.crypto.engine import CryptoEngine, Passphrase, passphrase_bytes
from emmavault.crypto.formats import KDF_PBKDF2_SHA256, SALT_SIZE
from emmavault.errors import DecryptionFailure, InvalidPassphrase, VaultError, VaultLocked
from emmavault.storage.kv import KeyValueStore, MemoryKeyValueStore
from emmavault.util.memory import KeyObfuscator
from emmavault.util.rate_limit import RateLimiter
from emmavault.vault.models import VaultSettings, Verifier

if TYPE_CHECKING:
    from emmavault.crypto.worker_client import CryptoWorkerClient

logger = logging.getLogger("emmavault.keyring")


class Keyring:
    """Owns one session's master key; create one per vault session."""

    def __init__(
        self,
        settings_store: Optional[KeyValueStore] = None,
        *,
        settings_key: str = Config.SETTINGS_KEY,
        worker: Optional[CryptoWorkerClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
        kdf_params: Optional[dict] = None,
        auto_enroll: bool = True,
    ):
        self.settings_store = settings_store if settings_store is not None else MemoryKeyValueStore()
        self.settings_key = settings_key
        self.worker = worker
        self.rate_limiter = rate_limiter
        self.kdf_params = dict(
            kdf_params or {"algorithm": KDF_PBKDF2_SHA256, "iterations": DEFAULT_ITERATIONS}
        )
        self.auto_enroll = auto_enroll
        self.unlocked_at: float = 0
        self.dev_session = False
        self._key: Optional[KeyObfuscator] = None

    # ------------------------------------------------------------------
    #  Settings
    # ------------------------------------------------------------------
    def load_settings(self) -> Optional[VaultSettings]:
        raw = self.settings_store.get(self.settings_key)
        if raw is None:
            return None
        try:
            return VaultSettings.from_dict(raw)
        except ValueError as exc:
            raise VaultError(f"Stored vault settings are unusable: {exc}") from exc

    def save_settings(self, settings: VaultSettings) -> None:
        self.settings_store.set(self.settings_key, settings.to_dict())

    async def ensure_settings(self) -> VaultSettings:
        """Return the persisted settings, creating them with a fresh salt once."""
        settings = await asyncio.to_thread(self.load_settings)
        if settings is not None:
            return settings
        settings = VaultSettings(
            kdf=self.kdf_params.get("algorithm", KDF_PBKDF2_SHA256),
            iterations=int(self.kdf_params.get("iterations", DEFAULT_ITERATIONS)),
            salt=secrets.token_bytes(SALT_SIZE),
            memory_cost=int(self.kdf_params.get("memory_cost", 0)),
            parallelism=int(self.kdf_params.get("parallelism", 0)),
        )
        await asyncio.to_thread(self.save_settings, settings)
        logger.info("Vault settings created (%s, %d iterations)", settings.kdf, settings.iterations)
        return settings

    # ------------------------------------------------------------------
    #  Key derivation
    # ------------------------------------------------------------------
    async def _derive(self, passphrase: Passphrase, settings: VaultSettings) -> bytes:
        if self.worker is not None and settings.kdf == KDF_PBKDF2_SHA256:
            result = await self.worker.pbkdf2(
                passphrase_bytes(passphrase), settings.salt, settings.iterations
            )
            return result["key"]
        engine = CryptoEngine(settings.kdf_params())
        return await asyncio.to_thread(engine.derive_key, passphrase, settings.salt)

    def _verify(self, key: bytes, verifier: Verifier) -> bool:
        try:
            plain = CryptoEngine().decrypt_data(key, verifier.iv, verifier.data)
        except InvalidTag:
            return False
        return CryptoEngine.constant_time_compare(plain, Config.VERIFIER_SENTINEL.encode("utf-8"))

    # ------------------------------------------------------------------
    #  State transitions
    # ------------------------------------------------------------------
    async def unlock_with_passphrase(self, passphrase: Passphrase) -> bool:
        """Derive the master key and check it against the verifier.

        Raises InvalidPassphrase on any mismatch; the keyring stays Locked.
        """
        if self._is_dev_passphrase(passphrase):
            return await self._dev_unlock()

        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()

        settings = await self.ensure_settings()
        self.lock()
        if not passphrase_bytes(passphrase):
            raise InvalidPassphrase("Passphrase rejected")
        candidate = bytearray(await self._derive(passphrase, settings))

        try:
            if settings.verifier is not None and not self._verify(bytes(candidate), settings.verifier):
                logger.warning("Unlock rejected: verifier mismatch")
                raise InvalidPassphrase("Passphrase rejected")
            self._key = KeyObfuscator(candidate)
        finally:
            for i in range(len(candidate)):
                candidate[i] = 0

        self.unlocked_at = time.time()
        if self.rate_limiter is not None:
            self.rate_limiter.reset()
        logger.info("Keyring unlocked")

        if settings.verifier is None and self.auto_enroll:
            await self.enroll_verifier()
        return True

    def lock(self) -> None:
        """Discard the master key; safe in any state."""
        if self._key is not None:
            self._key.clear()
            self._key = None
            logger.info("Keyring locked")
        self.unlocked_at = 0
        self.dev_session = False

    def is_unlocked(self) -> bool:
        return self._key is not None

    # ------------------------------------------------------------------
    #  Development bypass
    # ------------------------------------------------------------------
    @staticmethod
    def _is_dev_passphrase(passphrase: Passphrase) -> bool:
        if not Config.dev_unlock_enabled():
            return False
        try:
            return passphrase_bytes(passphrase) == Config.DEV_PASSPHRASE.encode("utf-8")
        except ValueError:
            return False

    async def _dev_unlock(self) -> bool:
        # Deterministic key for tests and demos; settings are left untouched
        logger.warning("Development unlock bypass used (%s=1)", Config.DEV_UNLOCK_ENV)
        engine = CryptoEngine({"algorithm": KDF_PBKDF2_SHA256})
        key = await asyncio.to_thread(
            engine.derive_key, Config.DEV_PASSPHRASE, Config.DEV_SALT, DEFAULT_ITERATIONS
        )
        self.lock()
        self._key = KeyObfuscator(key)
        self.unlocked_at = time.time()
        self.dev_session = True
        return True

    # ------------------------------------------------------------------
    #  Using the key
    # ------------------------------------------------------------------
    @contextmanager
    def master_key(self) -> Iterator[bytes]:
        """The clear master key, only for the duration of the with-block."""
        if self._key is None:
            raise VaultLocked("Keyring is locked")
        with self._key.exposed() as key:
            yield key

    def encrypt_with_key(self, plaintext: bytes) -> Tuple[bytes, bytes]:
        with self.master_key() as key:
            return CryptoEngine().encrypt_data(key, plaintext)

    def decrypt_with_key(self, iv: bytes, ciphertext: bytes) -> bytes:
        with self.master_key() as key:
            try:
                return CryptoEngine().decrypt_data(key, iv, ciphertext)
            except InvalidTag:
                raise DecryptionFailure("Payload failed authentication") from None

    async def enroll_verifier(self) -> Verifier:
        """Encrypt the sentinel under the master key and persist it."""
        if self.dev_session:
            raise VaultError("Cannot enrol a verifier from a development unlock")
        settings = await self.ensure_settings()
        iv, data = self.encrypt_with_key(Config.VERIFIER_SENTINEL.encode("utf-8"))
        settings.verifier = Verifier(iv=iv, data=data)
        await asyncio.to_thread(self.save_settings, settings)
        logger.info("Passphrase verifier enrolled")
        return settings.verifier
