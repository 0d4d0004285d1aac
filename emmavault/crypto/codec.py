"""Vault container codec: document <-> ``MAGIC || salt || iv || ciphertext``.

Every encryption draws a fresh salt and IV, so two containers of the same
document never match bit for bit. Decryption validates the magic before
trusting any offset and fails closed: an authentication failure never yields
partial plaintext.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from typing import TYPE_CHECKING, Any, Mapping, Optional, Union

from cryptography.exceptions import InvalidTag

from emmavault.crypto.engine import CryptoEngine, Passphrase, passphrase_bytes
from emmavault.crypto.formats import (
    CONTAINER_ITERATIONS,
    KDF_PBKDF2_SHA256,
    SALT_SIZE,
    VaultContainer,
)
from emmavault.errors import CorruptContainer, InvalidPassphrase, WorkerError
from emmavault.vault.models import VaultDocument

if TYPE_CHECKING:
    from emmavault.crypto.worker_client import CryptoWorkerClient

logger = logging.getLogger("emmavault.codec")

DocumentLike = Union[VaultDocument, Mapping[str, Any]]


# ============================================================================
#  Canonical encoding
# ============================================================================
def encode_document(document: DocumentLike) -> bytes:
    """Canonical UTF-8 JSON: sorted keys, compact separators.

    Raises ValueError for anything decode_document would not give back
    unchanged (non-object documents, non-string keys, tuples, NaN), so a
    container is never written that cannot be read back.
    """
    if isinstance(document, VaultDocument):
        data = document.to_dict()
    elif isinstance(document, Mapping):
        data = dict(document)
    else:
        raise ValueError(f"Vault document must be an object, got {type(document).__name__}")
    try:
        text = json.dumps(
            data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False
        )
    except TypeError as exc:
        raise ValueError(f"Vault document is not JSON-serialisable: {exc}") from exc
    if json.loads(text) != data:
        raise ValueError("Vault document does not survive JSON encoding unchanged")
    return text.encode("utf-8")


def decode_document(plaintext: bytes) -> VaultDocument:
    try:
        return VaultDocument.from_dict(json.loads(bytes(plaintext).decode("utf-8")))
    except (UnicodeDecodeError, json.JSONDecodeError, TypeError) as exc:
        raise CorruptContainer(f"Vault document could not be parsed: {exc}") from exc


def _require_passphrase(passphrase: Passphrase) -> bytes:
    # An empty or wiped passphrase can never open a container
    try:
        secret = passphrase_bytes(passphrase)
    except ValueError:
        secret = b""
    if not secret:
        raise InvalidPassphrase("Passphrase rejected")
    return secret


def _engine(engine: Optional[CryptoEngine]) -> CryptoEngine:
    if engine is None or engine.algorithm != KDF_PBKDF2_SHA256:
        return CryptoEngine({"algorithm": KDF_PBKDF2_SHA256})
    return engine


# ============================================================================
#  Synchronous codec
# ============================================================================
def encrypt_container(
    document: DocumentLike,
    passphrase: Passphrase,
    *,
    iterations: int = CONTAINER_ITERATIONS,
    engine: Optional[CryptoEngine] = None,
) -> bytes:
    engine = _engine(engine)
    plaintext = encode_document(document)
    salt = secrets.token_bytes(SALT_SIZE)
    key = engine.derive_key(passphrase, salt, iterations)
    iv, ciphertext = engine.encrypt_data(key, plaintext)
    blob = VaultContainer(salt=salt, iv=iv, ciphertext=ciphertext).to_bytes()
    logger.debug("Container encrypted: %d bytes", len(blob))
    return blob


def decrypt_container(
    data: bytes,
    passphrase: Passphrase,
    *,
    iterations: int = CONTAINER_ITERATIONS,
    engine: Optional[CryptoEngine] = None,
) -> VaultDocument:
    container = VaultContainer.from_bytes(data)
    _require_passphrase(passphrase)
    engine = _engine(engine)
    key = engine.derive_key(passphrase, container.salt, iterations)
    try:
        plaintext = engine.decrypt_data(key, container.iv, container.ciphertext)
    except InvalidTag:
        logger.warning("Container authentication failed")
        raise InvalidPassphrase("Passphrase rejected") from None
    return decode_document(plaintext)


# ============================================================================
#  Asynchronous codec (worker process or thread)
# ============================================================================
async def encrypt_container_async(
    document: DocumentLike,
    passphrase: Passphrase,
    *,
    worker: Optional[CryptoWorkerClient] = None,
    iterations: int = CONTAINER_ITERATIONS,
) -> bytes:
    """Like encrypt_container, without blocking the event loop."""
    if worker is None:
        return await asyncio.to_thread(
            encrypt_container, document, passphrase, iterations=iterations
        )

    plaintext = encode_document(document)
    salt = secrets.token_bytes(SALT_SIZE)
    derived = await worker.pbkdf2(passphrase_bytes(passphrase), salt, iterations)
    sealed = await worker.encrypt(derived["key"], plaintext)
    return VaultContainer(salt=salt, iv=sealed["iv"], ciphertext=sealed["ciphertext"]).to_bytes()


async def decrypt_container_async(
    data: bytes,
    passphrase: Passphrase,
    *,
    worker: Optional[CryptoWorkerClient] = None,
    iterations: int = CONTAINER_ITERATIONS,
) -> VaultDocument:
    """Like decrypt_container, without blocking the event loop."""
    if worker is None:
        return await asyncio.to_thread(
            decrypt_container, data, passphrase, iterations=iterations
        )

    container = VaultContainer.from_bytes(data)
    secret = _require_passphrase(passphrase)
    derived = await worker.pbkdf2(secret, container.salt, iterations)
    try:
        opened = await worker.decrypt(derived["key"], container.iv, container.ciphertext)
    except WorkerError as exc:
        if exc.kind == "InvalidTag":
            logger.warning("Container authentication failed")
            raise InvalidPassphrase("Passphrase rejected") from None
        raise
    return decode_document(opened["plaintext"])
