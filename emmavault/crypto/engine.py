"""CryptoEngine: passphrase KDFs (PBKDF2-SHA256, Argon2id) and AES-256-GCM."""

from __future__ import annotations

import hmac as hmac_mod
import logging
import secrets
import time
from typing import Tuple, Union

import argon2
import argon2.low_level
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from emmavault.crypto.formats import (
    CONTAINER_ITERATIONS,
    IV_SIZE,
    KDF_ARGON2ID,
    KDF_PBKDF2_SHA256,
    KEY_SIZE,
)
from emmavault.util.memory import SecureMemory

logger = logging.getLogger("emmavault.crypto")

Passphrase = Union[str, bytes, bytearray, SecureMemory]


def passphrase_bytes(passphrase: Passphrase) -> bytes:
    """UTF-8 bytes of a passphrase given as text, bytes or SecureMemory."""
    if isinstance(passphrase, SecureMemory):
        return passphrase.get_bytes()
    if isinstance(passphrase, str):
        return passphrase.encode("utf-8")
    return bytes(passphrase)


# ============================================================================
#  CryptoEngine
# ============================================================================
class CryptoEngine:
    """PBKDF2-HMAC-SHA256 or Argon2id KDF + AES-256-GCM AEAD."""

    def __init__(self, kdf_params: dict | None = None):
        kdf_params = kdf_params or {}
        self.algorithm = kdf_params.get("algorithm", KDF_PBKDF2_SHA256)
        self.iterations = kdf_params.get("iterations", CONTAINER_ITERATIONS)
        self.memory_cost = kdf_params.get("memory_cost", 0)
        self.parallelism = kdf_params.get("parallelism", 0)

        logger.debug("CryptoEngine: %s(iterations=%d)", self.algorithm, self.iterations)

    # ------------------------------------------------------------------
    def derive_key(
        self,
        passphrase: Passphrase,
        salt: bytes,
        iterations: int | None = None,
    ) -> bytes:
        """Deterministic 32-byte key for (passphrase, salt, work factor)."""
        secret = passphrase_bytes(passphrase)
        if not secret:
            raise ValueError("Empty passphrase")
        if iterations is None:
            iterations = self.iterations
        if iterations < 1:
            raise ValueError("Iteration count must be positive")

        if self.algorithm == KDF_PBKDF2_SHA256:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=KEY_SIZE,
                salt=bytes(salt),
                iterations=iterations,
            )
            return kdf.derive(secret)

        if self.algorithm == KDF_ARGON2ID:
            try:
                return argon2.low_level.hash_secret_raw(
                    secret,
                    bytes(salt),
                    time_cost=iterations,
                    memory_cost=self.memory_cost,
                    parallelism=self.parallelism,
                    hash_len=KEY_SIZE,
                    type=argon2.Type.ID,
                )
            except MemoryError:
                raise RuntimeError(
                    f"Not enough RAM for KDF ({self.memory_cost // 1024} MiB required). "
                    "Try a lower KDF profile."
                )

        raise ValueError(f"Unsupported KDF algorithm: {self.algorithm}")

    def profile_pbkdf2(
        self, passphrase: Passphrase, salt: bytes, iterations: int
    ) -> Tuple[float, bytes]:
        """Derive a PBKDF2 key and report how long it took, in milliseconds."""
        engine = self
        if self.algorithm != KDF_PBKDF2_SHA256:
            engine = CryptoEngine({"algorithm": KDF_PBKDF2_SHA256})
        t0 = time.perf_counter()
        key = engine.derive_key(passphrase, salt, iterations)
        return (time.perf_counter() - t0) * 1_000, key

    # ------------------------------------------------------------------
    def encrypt_data(self, key: bytes, plaintext: bytes) -> Tuple[bytes, bytes]:
        """Encrypt under a fresh random IV; returns (iv, ciphertext || tag)."""
        iv = secrets.token_bytes(IV_SIZE)
        return iv, AESGCM(bytes(key)).encrypt(iv, bytes(plaintext), None)

    def decrypt_data(self, key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
        """Raises cryptography.exceptions.InvalidTag on any authentication failure."""
        return AESGCM(bytes(key)).decrypt(bytes(iv), bytes(ciphertext), None)

    # ------------------------------------------------------------------
    @staticmethod
    def constant_time_compare(a: bytes, b: bytes) -> bool:
        return hmac_mod.compare_digest(a, b)
