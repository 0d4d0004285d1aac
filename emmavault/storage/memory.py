"""In-memory adapter: the conformance baseline and last-resort fallback."""

from __future__ import annotations

import logging
from typing import Any, Optional

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


class InMemoryAdapter(StorageAdapter):
    """Holds one container buffer; only the recent list outlives the process."""

    adapter_id = "memory"

    def __init__(self, recents: Optional[RecentVaults] = None):
        super().__init__(recents)
        self.name = "untitled"
        self._bytes = b""

    async def open_vault(self, options: Optional[OpenOptions] = None) -> None:
        options = options or OpenOptions()
        self.name = options.vault_name or self.name
        await self._remember_recent()

    async def read_vault(self) -> bytes:
        return self._bytes

    async def write_vault(self, data: bytes) -> None:
        self._bytes = ensure_bytes(data)
        await self._remember_recent()
        logger.debug("Memory vault %s: %d bytes", self.name, len(self._bytes))

    async def export_vault(self, options: Optional[ExportOptions] = None) -> None:
        options = options or ExportOptions()
        await hand_off_export(options, self.export_filename(options), self._bytes)

    async def import_vault(self, source: Any) -> None:
        self._bytes = await read_import_input(source)
        await self._remember_recent()
