"""Host-platform adapter: the vault lives in a storage surface the embedding
host application exposes (an extension's local storage area, say).

The host only stores JSON values, so container bytes travel base64-encoded.
"""

from __future__ import annotations

import base64
import binascii
import copy
import json
import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from emmavault.errors import CorruptContainer, StorageQuotaExceeded
from emmavault.storage.base import (
    ExportOptions,
    OpenOptions,
    RecentVaults,
    StorageAdapter,
    ensure_bytes,
    hand_off_export,
    read_import_input,
)

logger = logging.getLogger("emmavault.storage")

DATA_KEY_PREFIX = "vaultData:"
FILE_NAME_KEY = "vaultFileName"
READY_KEY = "vaultReady"


@runtime_checkable
class HostStorage(Protocol):
    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...


class MemoryHostStorage:
    """HostStorage kept in a dict, with an optional byte quota like the real ones."""

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self._items: Dict[str, Any] = {}

    def _usage(self, items: Dict[str, Any]) -> int:
        return sum(len(k) + len(json.dumps(v)) for k, v in items.items())

    async def get(self, key: str) -> Any:
        return copy.deepcopy(self._items.get(key))

    async def set(self, key: str, value: Any) -> None:
        candidate = dict(self._items)
        candidate[key] = json.loads(json.dumps(value))
        if self.quota_bytes is not None and self._usage(candidate) > self.quota_bytes:
            raise StorageQuotaExceeded(f"Host storage quota of {self.quota_bytes} bytes exceeded")
        self._items = candidate


class HostStorageAdapter(StorageAdapter):
    adapter_id = "extension"

    def __init__(self, host: HostStorage, recents: Optional[RecentVaults] = None):
        super().__init__(recents)
        if not isinstance(host, HostStorage):
            raise TypeError("host must provide async get(key) and set(key, value)")
        self.host = host

    @property
    def _data_key(self) -> str:
        return DATA_KEY_PREFIX + self.name

    async def open_vault(self, options: Optional[OpenOptions] = None) -> None:
        options = options or OpenOptions()
        self.name = options.vault_name or self.name
        if await self.host.get(self._data_key) is None:
            await self.host.set(self._data_key, "")
        await self.host.set(FILE_NAME_KEY, self.export_filename(ExportOptions()))
        await self.host.set(READY_KEY, True)
        await self._remember_recent()

    async def read_vault(self) -> bytes:
        encoded = await self.host.get(self._data_key)
        if not encoded:
            return b""
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, TypeError) as exc:
            raise CorruptContainer(f"Host storage holds malformed vault data: {exc}") from exc

    async def write_vault(self, data: bytes) -> None:
        payload = ensure_bytes(data)
        await self.host.set(self._data_key, base64.b64encode(payload).decode("ascii"))
        await self._remember_recent()
        logger.debug("Host vault %s: %d bytes", self.name, len(payload))

    async def export_vault(self, options: Optional[ExportOptions] = None) -> None:
        options = options or ExportOptions()
        await hand_off_export(options, self.export_filename(options), await self.read_vault())

    async def import_vault(self, source: Any) -> None:
        await self.write_vault(await read_import_input(source))
