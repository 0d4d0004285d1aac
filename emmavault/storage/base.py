"""Storage adapter contract, recent-vaults list, and shared input helpers.

Every adapter must satisfy ``await write_vault(x); await read_vault() == x``
for any byte buffer, including empty and multi-megabyte payloads.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from emmavault.config import Config
from emmavault.storage.kv import KeyValueStore, MemoryKeyValueStore
from emmavault.util.timeutil import utc_now_iso

logger = logging.getLogger("emmavault.storage")

# (suggested_name, data, mime_type) -> None; a save dialog or share sheet
ExportSink = Callable[[str, bytes, str], Any]


# ============================================================================
#  Options and records
# ============================================================================
@dataclass
class OpenOptions:
    vault_name: Optional[str] = None


@dataclass
class ExportOptions:
    suggested_name: Optional[str] = None
    mime_type: str = "application/octet-stream"
    sink: Optional[ExportSink] = None


@dataclass(frozen=True)
class RecentVaultRecord:
    id: str
    name: str
    source: str
    last_opened_at: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "source": self.source,
            "lastOpenedAt": self.last_opened_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> RecentVaultRecord:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            source=str(data.get("source", "")),
            last_opened_at=str(data.get("lastOpenedAt", "")),
        )


class RecentVaults:
    """Capped, de-duplicated, most-recent-first list kept in a key-value store."""

    def __init__(self, store: Optional[KeyValueStore] = None, limit: int = Config.RECENT_LIMIT):
        self.store = store if store is not None else MemoryKeyValueStore()
        self.limit = limit

    def list(self) -> List[RecentVaultRecord]:
        raw = self.store.get(Config.RECENT_KEY) or []
        records = []
        for item in raw if isinstance(raw, list) else []:
            try:
                records.append(RecentVaultRecord.from_dict(item))
            except (KeyError, TypeError):
                logger.debug("Skipping malformed recent-vault entry")
        return records

    def remember(self, source: str, name: str) -> RecentVaultRecord:
        entry = RecentVaultRecord(
            id=f"{source}://{name}", name=name, source=source, last_opened_at=utc_now_iso()
        )
        kept = [r for r in self.list() if r.id != entry.id]
        records = [entry] + kept
        self.store.set(Config.RECENT_KEY, [r.to_dict() for r in records[: self.limit]])
        return entry


# ============================================================================
#  Input helpers
# ============================================================================
def ensure_bytes(data: Any) -> bytes:
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError("write_vault expects a bytes-like object")
    return bytes(data)


async def read_import_input(source: Any) -> bytes:
    """Bytes from a buffer, a filesystem path, or a binary file-like object."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)
    if isinstance(source, (str, Path)):
        return await asyncio.to_thread(Path(source).read_bytes)
    if hasattr(source, "read"):
        data = await asyncio.to_thread(source.read)
        return ensure_bytes(data)
    raise TypeError(f"Unsupported import input: {type(source).__name__}")


async def hand_off_export(options: ExportOptions, name: str, data: bytes) -> None:
    if options.sink is None:
        return
    result = options.sink(options.suggested_name or name, data, options.mime_type)
    if asyncio.iscoroutine(result):
        await result


# ============================================================================
#  StorageAdapter
# ============================================================================
class StorageAdapter(ABC):
    """Uniform vault I/O over one persistence backend."""

    adapter_id: str = "abstract"

    def __init__(self, recents: Optional[RecentVaults] = None):
        self.recents = recents if recents is not None else RecentVaults()
        self.name = Config.DEFAULT_VAULT_NAME

    @property
    def id(self) -> str:
        return self.adapter_id

    def export_filename(self, options: ExportOptions) -> str:
        return options.suggested_name or (self.name + Config.VAULT_SUFFIX)

    async def _remember_recent(self) -> RecentVaultRecord:
        # The recents store may be a file; keep its I/O off the event loop
        return await asyncio.to_thread(self.recents.remember, self.adapter_id, self.name)

    @abstractmethod
    async def open_vault(self, options: Optional[OpenOptions] = None) -> None:
        """Open or create a vault for subsequent operations."""

    @abstractmethod
    async def read_vault(self) -> bytes:
        """Return the whole stored container."""

    @abstractmethod
    async def write_vault(self, data: bytes) -> None:
        """Persist container bytes, replacing the previous version."""

    @abstractmethod
    async def export_vault(self, options: Optional[ExportOptions] = None) -> Optional[Path]:
        """Hand the stored bytes to an external destination."""

    @abstractmethod
    async def import_vault(self, source: Any) -> None:
        """Ingest bytes from an external source and store them."""

    async def list_recent_vaults(self) -> List[RecentVaultRecord]:
        return await asyncio.to_thread(self.recents.list)

    async def close(self) -> None:
        """Release backend resources; the default has none."""
