"""Private filesystem adapter: one ``<name>.emma`` file per vault in an
app-private directory.

Writes go to a temp file that is fsynced, chmod'ed 0600 and renamed over the
vault, after copying the previous version to ``<name>.emma.backup``. While a
vault is open the adapter holds an exclusive lock file, so a second process
opening the same vault gets VaultInUse. When a LocalLogStore is attached,
every write is also kept as a content-addressed blob with a log entry.
"""

from __future__ import annotations

import asyncio
import logging
import os
import platform
import shutil
import tempfile
import time
from pathlib import Path
from typing import Any, List, Optional

from emmavault.config import Config
from emmavault.crypto.formats import is_vault_container
from emmavault.errors import StorageQuotaExceeded, VaultInUse, VaultLocked
from emmavault.paths import get_data_dir, get_exports_dir, get_vaults_dir
from emmavault.storage.base import (
    ExportOptions,
    OpenOptions,
    RecentVaults,
    StorageAdapter,
    ensure_bytes,
    hand_off_export,
    read_import_input,
)
from emmavault.storage.local_store import LocalLogStore, LogEntry, content_id
from emmavault.storage.preflight import ensure_sufficient_space

logger = logging.getLogger("emmavault.storage")

TEMP_PREFIX = "ev_tmp_"
STALE_TEMP_AGE = 3600  # seconds


# ============================================================================
#  File helpers
# ============================================================================
def secure_permissions(path: Path) -> None:
    if platform.system() == "Windows":
        return
    try:
        os.chmod(path, 0o600)
    except OSError as exc:
        logger.warning("Error setting permissions on %s: %s", path, exc)


def write_atomic(path: Path, data: bytes) -> None:
    """Replace *path* with *data* so readers see the old or the new file, never a mix."""
    old_umask = None
    try:
        if os.name != "nt":
            old_umask = os.umask(0o077)
        with tempfile.NamedTemporaryFile(
            mode="wb", dir=path.parent, prefix=TEMP_PREFIX, suffix=".dat", delete=False
        ) as tmp:
            temp_path = Path(tmp.name)
            try:
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            except BaseException:
                tmp.close()
                temp_path.unlink(missing_ok=True)
                raise
    finally:
        if old_umask is not None:
            os.umask(old_umask)

    secure_permissions(temp_path)
    temp_path.replace(path)
    secure_permissions(path)


def cleanup_temp_files(directory: Path) -> None:
    for tmp in directory.glob(TEMP_PREFIX + "*"):
        try:
            if time.time() - tmp.stat().st_mtime > STALE_TEMP_AGE:
                tmp.unlink()
                logger.debug("Removed stale temp file %s", tmp.name)
        except OSError:
            pass


# ============================================================================
#  Lock file
# ============================================================================
class VaultLockFile:
    """Exclusive advisory lock on ``<vault>.lock`` for the life of an open vault."""

    def __init__(self, path: Path):
        self.path = path
        self._handle = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        try:
            self.path.touch(mode=0o600, exist_ok=True)
            self._handle = open(self.path, "r+b")
            if platform.system() != "Windows":
                import fcntl

                fcntl.flock(self._handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            if self._handle is not None:
                self._handle.close()
                self._handle = None
            raise VaultInUse(f"Vault is already in use: {self.path.stem}") from exc

    def release(self) -> None:
        # The file stays on disk; unlinking it would let two later openers
        # lock different inodes
        if self._handle is None:
            return
        try:
            self._handle.close()
        finally:
            self._handle = None


# ============================================================================
#  Adapter
# ============================================================================
class PrivateFilesystemAdapter(StorageAdapter):
    adapter_id = "opfs"

    def __init__(
        self,
        root: Optional[Path] = None,
        recents: Optional[RecentVaults] = None,
        *,
        exports_dir: Optional[Path] = None,
        history: Optional[LocalLogStore] = None,
        min_free_bytes: int = Config.MIN_FREE_SPACE,
    ):
        super().__init__(recents)
        self.root = Path(root) if root is not None else get_vaults_dir(get_data_dir())
        self.exports_dir = (
            Path(exports_dir) if exports_dir is not None else get_exports_dir(self.root.parent)
        )
        self.history_store = history
        self.min_free_bytes = min_free_bytes
        self.vault_path: Optional[Path] = None
        self._lock: Optional[VaultLockFile] = None

    # -- paths --------------------------------------------------------------
    @property
    def backup_path(self) -> Path:
        return self._require_open().with_name(self._require_open().name + ".backup")

    def _require_open(self) -> Path:
        if self.vault_path is None:
            raise VaultLocked("Vault not opened")
        return self.vault_path

    def _prepare_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        if platform.system() != "Windows":
            try:
                os.chmod(self.root, 0o700)
            except OSError:
                pass

    # -- contract -----------------------------------------------------------
    async def open_vault(self, options: Optional[OpenOptions] = None) -> None:
        options = options or OpenOptions()
        name = options.vault_name or self.name
        await self.close()
        await asyncio.to_thread(self._open_sync, name)
        self.name = name
        await self._remember_recent()
        logger.info("Opened vault %s", name)

    def _vault_file(self, name: str) -> Path:
        root = self.root.resolve()
        path = (root / (name + Config.VAULT_SUFFIX)).resolve()
        if path.parent != root:
            raise ValueError(f"Vault name escapes the vault directory: {name!r}")
        return path

    def _open_sync(self, name: str) -> None:
        self._prepare_root()
        path = self._vault_file(name)
        lock = VaultLockFile(path.with_name(path.name + ".lock"))
        lock.acquire()
        if not path.exists():
            path.touch(mode=0o600)
        cleanup_temp_files(self.root)
        self._lock = lock
        self.vault_path = path

    async def read_vault(self) -> bytes:
        path = self._require_open()
        return await asyncio.to_thread(self._read_sync, path)

    @staticmethod
    def _read_sync(path: Path) -> bytes:
        size = path.stat().st_size
        if size > Config.MAX_VAULT_SIZE:
            raise StorageQuotaExceeded(f"Vault too large: {size} bytes (max {Config.MAX_VAULT_SIZE})")
        if platform.system() != "Windows" and path.stat().st_mode & 0o077:
            logger.warning("Vault permissions too open, fixing...")
            secure_permissions(path)
        return path.read_bytes()

    async def write_vault(self, data: bytes) -> None:
        payload = ensure_bytes(data)
        path = self._require_open()
        await asyncio.to_thread(ensure_sufficient_space, self.root, len(payload), self.min_free_bytes)
        await asyncio.to_thread(self._write_sync, path, payload)
        if self.history_store is not None:
            await self._record_version(payload)
        await self._remember_recent()
        logger.info("Vault %s saved (%d bytes)", self.name, len(payload))

    def _write_sync(self, path: Path, payload: bytes) -> None:
        if path.exists() and path.stat().st_size > 0:
            shutil.copy2(path, self.backup_path)
            secure_permissions(self.backup_path)
        write_atomic(path, payload)

    async def export_vault(self, options: Optional[ExportOptions] = None) -> Path:
        options = options or ExportOptions()
        data = await self.read_vault()
        filename = self.export_filename(options)
        target = self.exports_dir / Path(filename).name

        def _export() -> None:
            self.exports_dir.mkdir(parents=True, exist_ok=True)
            write_atomic(target, data)

        await asyncio.to_thread(_export)
        await hand_off_export(options, filename, data)
        logger.info("Vault exported to %s", target)
        return target

    async def import_vault(self, source: Any) -> None:
        await self.write_vault(await read_import_input(source))

    async def close(self) -> None:
        if self._lock is not None:
            self._lock.release()
            self._lock = None
        self.vault_path = None

    # -- backup -------------------------------------------------------------
    async def restore_backup(self) -> bool:
        """Put the previous version back if the backup looks like a container."""
        path = self._require_open()
        backup = self.backup_path

        def _restore() -> bool:
            if not backup.exists() or not is_vault_container(backup.read_bytes()):
                return False
            shutil.copy2(backup, path)
            secure_permissions(path)
            return True

        restored = await asyncio.to_thread(_restore)
        if restored:
            logger.info("Vault %s restored from backup", self.name)
        return restored

    # -- version history ----------------------------------------------------
    async def _record_version(self, payload: bytes) -> None:
        cid = content_id(payload)
        ts = time.time()
        await self.history_store.put_blob(cid, payload)
        await self.history_store.put_log(
            LogEntry(
                id=f"{self.adapter_id}://{self.name}@{ts:.6f}",
                ts=ts,
                body={"vault": self.name, "cid": cid, "size": len(payload)},
            )
        )

    async def history(self, limit: int = 20) -> List[LogEntry]:
        """Saved versions of the open vault, newest first."""
        self._require_open()
        if self.history_store is None:
            return []
        entries = await self.history_store.list_log(limit=max(limit * 4, 100))
        return [e for e in entries if e.body.get("vault") == self.name][:limit]

    async def restore_version(self, cid: str) -> None:
        if self.history_store is None:
            raise KeyError(cid)
        data = await self.history_store.get_blob(cid)
        if data is None:
            raise KeyError(cid)
        await self.write_vault(data)
