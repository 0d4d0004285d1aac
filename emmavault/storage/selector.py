"""One-time storage backend selection by explicit capability probing.

Priority: private filesystem, host-platform storage, native-mobile
filesystem, then the in-memory adapter. The choice is made once per session.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from emmavault.config import Config
from emmavault.errors import AdapterUnavailable
from emmavault.paths import get_data_dir, get_vaults_dir
from emmavault.storage.base import RecentVaults, StorageAdapter
from emmavault.storage.host import HostStorage, HostStorageAdapter
from emmavault.storage.local_store import LocalLogStore
from emmavault.storage.memory import InMemoryAdapter
from emmavault.storage.mobile import NativeFilesystem, NativeFilesystemAdapter
from emmavault.storage.private_fs import PrivateFilesystemAdapter

logger = logging.getLogger("emmavault.storage")

PRIORITY = (
    PrivateFilesystemAdapter.adapter_id,
    HostStorageAdapter.adapter_id,
    NativeFilesystemAdapter.adapter_id,
    InMemoryAdapter.adapter_id,
)


@dataclass
class Capabilities:
    private_fs_root: Optional[Path] = None
    host: Optional[HostStorage] = None
    native_fs: Optional[NativeFilesystem] = None

    @property
    def available(self) -> tuple:
        found = []
        if self.private_fs_root is not None:
            found.append(PrivateFilesystemAdapter.adapter_id)
        if self.host is not None:
            found.append(HostStorageAdapter.adapter_id)
        if self.native_fs is not None:
            found.append(NativeFilesystemAdapter.adapter_id)
        return tuple(found)


def _writable_dir(path: Path) -> bool:
    probe = Path(path)
    while not probe.exists() and probe != probe.parent:
        probe = probe.parent
    return probe.is_dir() and os.access(probe, os.W_OK | os.X_OK)


def probe_capabilities(
    data_dir: Optional[Path] = None,
    *,
    host: Optional[HostStorage] = None,
    native_fs: Optional[NativeFilesystem] = None,
    private_fs: bool = True,
) -> Capabilities:
    """Detect which backends this environment can serve."""
    caps = Capabilities(
        host=host if isinstance(host, HostStorage) else None,
        native_fs=native_fs if isinstance(native_fs, NativeFilesystem) else None,
    )
    if private_fs:
        root = get_vaults_dir(Path(data_dir) if data_dir is not None else get_data_dir())
        if _writable_dir(root):
            caps.private_fs_root = root
        else:
            logger.info("Private filesystem not writable at %s", root)
    logger.debug("Storage capabilities: %s", ", ".join(caps.available) or "none")
    return caps


def select_adapter(
    caps: Capabilities,
    prefer: Optional[str] = None,
    *,
    allow_memory_fallback: bool = True,
    recents: Optional[RecentVaults] = None,
    history: Optional[LocalLogStore] = None,
    min_free_bytes: int = Config.MIN_FREE_SPACE,
) -> StorageAdapter:
    """Build the highest-priority capable adapter, or *prefer* if it is capable."""
    if prefer is not None:
        if prefer not in PRIORITY:
            raise ValueError(f"Unknown storage adapter: {prefer}")
        if prefer != InMemoryAdapter.adapter_id and prefer not in caps.available:
            raise AdapterUnavailable(f"Storage adapter '{prefer}' is not available here")
        order = (prefer,)
    else:
        order = PRIORITY

    for adapter_id in order:
        if adapter_id == PrivateFilesystemAdapter.adapter_id and caps.private_fs_root is not None:
            adapter = PrivateFilesystemAdapter(
                caps.private_fs_root, recents, history=history, min_free_bytes=min_free_bytes
            )
        elif adapter_id == HostStorageAdapter.adapter_id and caps.host is not None:
            adapter = HostStorageAdapter(caps.host, recents)
        elif adapter_id == NativeFilesystemAdapter.adapter_id and caps.native_fs is not None:
            adapter = NativeFilesystemAdapter(caps.native_fs, recents)
        elif adapter_id == InMemoryAdapter.adapter_id and (allow_memory_fallback or prefer):
            adapter = InMemoryAdapter(recents)
        else:
            continue
        logger.info("Selected storage adapter: %s", adapter.id)
        return adapter

    raise AdapterUnavailable("No capable storage backend in this environment")
