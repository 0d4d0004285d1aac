"""Emma Vault storage adapters."""

from emmavault.storage.base import (
    ExportOptions,
    OpenOptions,
    RecentVaultRecord,
    RecentVaults,
    StorageAdapter,
)
from emmavault.storage.host import HostStorage, HostStorageAdapter, MemoryHostStorage
from emmavault.storage.kv import JsonFileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from emmavault.storage.local_store import LocalLogStore, LogEntry, content_id
from emmavault.storage.memory import InMemoryAdapter
from emmavault.storage.mobile import (
    LocalNativeFilesystem,
    NativeFilesystem,
    NativeFilesystemAdapter,
)
from emmavault.storage.private_fs import PrivateFilesystemAdapter
from emmavault.storage.selector import Capabilities, probe_capabilities, select_adapter

__all__ = [
    "Capabilities",
    "ExportOptions",
    "HostStorage",
    "HostStorageAdapter",
    "InMemoryAdapter",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "LocalLogStore",
    "LocalNativeFilesystem",
    "LogEntry",
    "MemoryHostStorage",
    "MemoryKeyValueStore",
    "NativeFilesystem",
    "NativeFilesystemAdapter",
    "OpenOptions",
    "PrivateFilesystemAdapter",
    "RecentVaultRecord",
    "RecentVaults",
    "StorageAdapter",
    "content_id",
    "probe_capabilities",
    "select_adapter",
]
