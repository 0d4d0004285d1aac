"""Asyncio client for the crypto worker process.

Many logical calls share one pipe. Each call registers a future in a
correlation table keyed by request id; a reader thread settles the matching
future when the reply arrives. The protocol has no cancel message: a call
that times out is abandoned, the worker still finishes it, and the late reply
is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import multiprocessing
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from emmavault.crypto.worker import worker_main
from emmavault.errors import WorkerError

logger = logging.getLogger("emmavault.worker")

SHUTDOWN_GRACE = 5.0  # seconds


@dataclass
class _Pending:
    op: str
    future: asyncio.Future
    loop: asyncio.AbstractEventLoop
    started: float


def _buffer(value: Any) -> Any:
    # memoryview does not pickle; hand the worker an immutable copy
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    return value


def _worker_error(message: str) -> WorkerError:
    kind, sep, _ = message.partition(":")
    return WorkerError(message, kind if sep and kind.isidentifier() else None)


class CryptoWorkerClient:
    """Dispatches pbkdf2/encrypt/decrypt/profilePBKDF2 to a worker process."""

    def __init__(self, start_method: str = "spawn"):
        self._ctx = multiprocessing.get_context(start_method)
        self._conn = None
        self._process = None
        self._reader: Optional[threading.Thread] = None
        self._next_id = 1
        self._pending: Dict[int, _Pending] = {}
        self._lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._closed = False

    # -- lifecycle ----------------------------------------------------------
    def start(self) -> None:
        if self._process is not None:
            return
        parent_conn, child_conn = self._ctx.Pipe(duplex=True)
        self._process = self._ctx.Process(
            target=worker_main, args=(child_conn,), name="emma-crypto-worker", daemon=True
        )
        self._process.start()
        child_conn.close()
        self._conn = parent_conn
        self._reader = threading.Thread(
            target=self._read_loop, name="emma-crypto-reader", daemon=True
        )
        self._reader.start()
        logger.info("Crypto worker started (pid %s)", self._process.pid)

    async def close(self) -> None:
        """Stop the worker; every call still pending fails with WorkerError."""
        if self._closed:
            return
        self._closed = True
        if self._process is None:
            return
        try:
            await asyncio.to_thread(self._send, None)
        except (OSError, ValueError) as exc:
            logger.debug("Worker already gone: %s", exc)
        await asyncio.to_thread(self._shutdown)
        self._fail_all("Crypto worker closed")

    def _shutdown(self) -> None:
        self._process.join(SHUTDOWN_GRACE)
        if self._process.is_alive():
            logger.warning("Crypto worker did not exit, terminating")
            self._process.terminate()
            self._process.join()
        if self._reader is not None:
            self._reader.join(SHUTDOWN_GRACE)
        self._conn.close()
        logger.info("Crypto worker stopped")

    async def __aenter__(self) -> CryptoWorkerClient:
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @property
    def running(self) -> bool:
        return self._process is not None and not self._closed and self._process.is_alive()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # -- correlation table ----------------------------------------------------
    def _send(self, message: Optional[Dict[str, Any]]) -> None:
        with self._send_lock:
            self._conn.send(message)

    def _discard(self, request_id: int) -> None:
        with self._lock:
            self._pending.pop(request_id, None)

    def _read_loop(self) -> None:
        while True:
            try:
                message = self._conn.recv()
            except (EOFError, OSError):
                break
            with self._lock:
                pending = self._pending.pop(message.get("id"), None)
            if pending is None:
                logger.debug("Dropping reply for abandoned request %s", message.get("id"))
                continue
            self._dispatch(pending, message)
        self._fail_all("Crypto worker terminated")

    def _dispatch(self, pending: _Pending, message: Dict[str, Any]) -> None:
        try:
            pending.loop.call_soon_threadsafe(self._settle, pending.future, message)
        except RuntimeError:
            logger.debug("Event loop closed before %s reply arrived", pending.op)

    @staticmethod
    def _settle(future: asyncio.Future, message: Dict[str, Any]) -> None:
        if future.done():
            return
        if message.get("ok"):
            future.set_result(message.get("result"))
        else:
            future.set_exception(_worker_error(message.get("error") or "Worker error"))

    def _fail_all(self, reason: str) -> None:
        with self._lock:
            abandoned = list(self._pending.values())
            self._pending.clear()
        for pending in abandoned:
            self._dispatch(pending, {"ok": False, "error": f"WorkerError: {reason}"})

    async def _call(self, op: str, payload: Dict[str, Any], timeout: Optional[float] = None):
        if self._closed or self._process is None:
            raise WorkerError("Crypto worker is not running")

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        with self._lock:
            request_id = self._next_id
            self._next_id += 1
            self._pending[request_id] = _Pending(op, future, loop, time.monotonic())

        message = {"id": request_id, "op": op, "payload": {k: _buffer(v) for k, v in payload.items()}}
        try:
            await asyncio.to_thread(self._send, message)
        except (OSError, ValueError) as exc:
            self._discard(request_id)
            raise WorkerError(f"Could not reach crypto worker: {exc}") from exc

        try:
            if timeout is None:
                return await future
            return await asyncio.wait_for(asyncio.shield(future), timeout)
        except asyncio.TimeoutError:
            self._discard(request_id)
            logger.warning("Worker %s abandoned after %.1fs", op, timeout)
            raise WorkerError(f"{op} timed out after {timeout}s", "Timeout") from None
        except asyncio.CancelledError:
            self._discard(request_id)
            raise

    # -- operations -----------------------------------------------------------
    async def pbkdf2(self, passphrase, salt: bytes, iterations: int, *, timeout=None) -> dict:
        """Returns ``{"key": bytes, "ms": float}``."""
        return await self._call(
            "pbkdf2", {"passphrase": passphrase, "salt": salt, "iterations": iterations}, timeout
        )

    async def encrypt(self, key: bytes, plaintext: bytes, *, timeout=None) -> dict:
        """Returns ``{"iv": bytes, "ciphertext": bytes}``."""
        return await self._call("encrypt", {"key": key, "plaintext": plaintext}, timeout)

    async def decrypt(self, key: bytes, iv: bytes, ciphertext: bytes, *, timeout=None) -> dict:
        """Returns ``{"plaintext": bytes}``."""
        return await self._call(
            "decrypt", {"key": key, "iv": iv, "ciphertext": ciphertext}, timeout
        )

    async def profile_pbkdf2(self, passphrase, salt: bytes, iterations: int, *, timeout=None) -> dict:
        """Returns ``{"ms": float, "key": bytes}``."""
        return await self._call(
            "profilePBKDF2",
            {"passphrase": passphrase, "salt": salt, "iterations": iterations},
            timeout,
        )
