"""Secure in-memory holding for key material: SecureMemory, SplitSecret,
KeyObfuscator."""

from __future__ import annotations

import ctypes
import logging
import platform
import secrets
import threading
from contextlib import contextmanager
from typing import Iterator, Optional, Union

logger = logging.getLogger("emmavault.memory")

BytesLike = Union[bytes, bytearray, memoryview, str]


def _wipe(buf: bytearray) -> None:
    for i in range(len(buf)):
        buf[i] = 0


# ---------------------------------------------------------------------------
#  SecureMemory
# ---------------------------------------------------------------------------
class SecureMemory:
    """A bytearray pinned in RAM where the OS allows it, wiped on clear()."""

    def __init__(self, data: BytesLike):
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._data = bytearray(data)
        self._locked = False
        self._pin()

    def _pin(self) -> None:
        if not self._data:
            return
        try:
            address = ctypes.addressof(ctypes.c_char.from_buffer(self._data))
            size = ctypes.c_size_t(len(self._data))
            if platform.system() == "Windows":
                kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
                self._locked = bool(kernel32.VirtualLock(ctypes.c_void_p(address), size))
            else:
                libc = ctypes.CDLL(None)
                self._locked = libc.mlock(ctypes.c_void_p(address), size) == 0
        except (OSError, AttributeError, TypeError) as exc:
            logger.debug("Memory pinning unavailable: %s", exc)

    def _unpin(self) -> None:
        try:
            address = ctypes.addressof(ctypes.c_char.from_buffer(self._data))
            size = ctypes.c_size_t(len(self._data))
            if platform.system() == "Windows":
                ctypes.WinDLL("kernel32", use_last_error=True).VirtualUnlock(
                    ctypes.c_void_p(address), size
                )
            else:
                ctypes.CDLL(None).munlock(ctypes.c_void_p(address), size)
        except (OSError, AttributeError, TypeError) as exc:
            logger.debug("Memory unpinning failed: %s", exc)

    # -- public API ---------------------------------------------------------
    def get_bytes(self) -> bytes:
        if not self._data:
            raise ValueError("Memory already cleared")
        return bytes(self._data)

    def clear(self) -> None:
        if not self._data:
            return
        try:
            size = len(self._data)
            for pattern in (b"\xff" * size, secrets.token_bytes(size)):
                self._data[:] = pattern
            _wipe(self._data)
            if self._locked:
                self._unpin()
        finally:
            self._data = bytearray()
            self._locked = False

    def __len__(self) -> int:
        return len(self._data)

    def __bool__(self) -> bool:
        return bool(self._data)

    def __del__(self):
        self.clear()

    @property
    def is_protected(self) -> bool:
        return self._locked


# ---------------------------------------------------------------------------
#  SplitSecret
# ---------------------------------------------------------------------------
class SplitSecret:
    """XOR-splits a secret into N shares; all of them rebuild the original."""

    def __init__(self, data: BytesLike, parts: int = 3):
        if parts < 2:
            raise ValueError("A split secret needs at least 2 parts")
        raw = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        masks = [secrets.token_bytes(len(raw)) for _ in range(parts - 1)]
        last = bytearray(raw)
        for mask in masks:
            for i, b in enumerate(mask):
                last[i] ^= b
        self._shares = [SecureMemory(m) for m in masks] + [SecureMemory(last)]
        _wipe(last)

    def join(self) -> SecureMemory:
        out = bytearray(self._shares[-1].get_bytes())
        for share in self._shares[:-1]:
            for i, b in enumerate(share.get_bytes()):
                out[i] ^= b
        try:
            return SecureMemory(out)
        finally:
            _wipe(out)

    def clear(self) -> None:
        for share in self._shares:
            share.clear()
        self._shares = []


# ---------------------------------------------------------------------------
#  KeyObfuscator
# ---------------------------------------------------------------------------
class KeyObfuscator:
    """Holds a key masked and split; the clear key exists only inside exposed()."""

    def __init__(self, key: BytesLike):
        plain = key if isinstance(key, SecureMemory) else SecureMemory(key)
        if not plain:
            raise ValueError("Cannot obfuscate an empty key")
        self._lock = threading.Lock()
        kb = plain.get_bytes()
        mask = secrets.token_bytes(len(kb))
        masked = bytes(a ^ b for a, b in zip(kb, mask))
        self._mask: Optional[SecureMemory] = SecureMemory(mask)
        self._shares: Optional[SplitSecret] = SplitSecret(masked, 3)
        plain.clear()

    @property
    def cleared(self) -> bool:
        return self._shares is None

    def reveal(self) -> SecureMemory:
        """Return a fresh SecureMemory with the clear key; caller must clear it."""
        with self._lock:
            if self._shares is None or self._mask is None:
                raise ValueError("Key already cleared")
            masked = self._shares.join()
            try:
                return SecureMemory(
                    bytes(a ^ b for a, b in zip(masked.get_bytes(), self._mask.get_bytes()))
                )
            finally:
                masked.clear()

    @contextmanager
    def exposed(self) -> Iterator[bytes]:
        plain = self.reveal()
        try:
            yield plain.get_bytes()
        finally:
            plain.clear()

    def clear(self) -> None:
        with self._lock:
            if self._mask is not None:
                self._mask.clear()
                self._mask = None
            if self._shares is not None:
                self._shares.clear()
                self._shares = None
