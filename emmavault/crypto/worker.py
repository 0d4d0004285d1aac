"""Crypto worker: runs KDF and AES-GCM requests in a separate process.

Wire protocol, one reply per request:

    request   {"id": int, "op": str, "payload": dict}
    response  {"id": int, "ok": True, "result": dict}
              {"id": int, "ok": False, "error": "ExceptionName: message"}

A ``None`` request asks the worker to exit once earlier requests are done.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict

from emmavault.crypto.engine import CryptoEngine

logger = logging.getLogger("emmavault.worker")

_engine = CryptoEngine()


def _to_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, list):
        return bytes(value)
    raise TypeError("Unsupported input type")


# ============================================================================
#  Operations
# ============================================================================
def _pbkdf2(payload: Dict[str, Any]) -> Dict[str, Any]:
    t0 = time.perf_counter()
    key = _engine.derive_key(
        _to_bytes(payload["passphrase"]), _to_bytes(payload["salt"]), int(payload["iterations"])
    )
    return {"key": key, "ms": (time.perf_counter() - t0) * 1_000}


def _profile_pbkdf2(payload: Dict[str, Any]) -> Dict[str, Any]:
    ms, key = _engine.profile_pbkdf2(
        _to_bytes(payload["passphrase"]), _to_bytes(payload["salt"]), int(payload["iterations"])
    )
    return {"ms": ms, "key": key}


def _encrypt(payload: Dict[str, Any]) -> Dict[str, Any]:
    iv, ciphertext = _engine.encrypt_data(_to_bytes(payload["key"]), _to_bytes(payload["plaintext"]))
    return {"iv": iv, "ciphertext": ciphertext}


def _decrypt(payload: Dict[str, Any]) -> Dict[str, Any]:
    plaintext = _engine.decrypt_data(
        _to_bytes(payload["key"]), _to_bytes(payload["iv"]), _to_bytes(payload["ciphertext"])
    )
    return {"plaintext": plaintext}


OPERATIONS: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    "pbkdf2": _pbkdf2,
    "encrypt": _encrypt,
    "decrypt": _decrypt,
    "profilePBKDF2": _profile_pbkdf2,
}


def handle_request(message: Dict[str, Any]) -> Dict[str, Any]:
    """Run one request and build its reply; failures become ok=False replies."""
    request_id = (message or {}).get("id")
    try:
        op = message.get("op")
        handler = OPERATIONS.get(op)
        if handler is None:
            raise ValueError(f"Unknown op: {op}")
        return {"id": request_id, "ok": True, "result": handler(message.get("payload") or {})}
    except Exception as exc:
        detail = str(exc) or "operation failed"
        return {"id": request_id, "ok": False, "error": f"{type(exc).__name__}: {detail}"}


# ============================================================================
#  Process entry point
# ============================================================================
def worker_main(conn) -> None:
    """Serve requests from *conn* until a ``None`` request or end of stream."""
    try:
        while True:
            try:
                message = conn.recv()
            except EOFError:
                break
            if message is None:
                break
            conn.send(handle_request(message))
    except KeyboardInterrupt:
        pass
    finally:
        conn.close()
