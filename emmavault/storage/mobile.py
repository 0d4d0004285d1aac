"""Native-mobile adapter over a platform filesystem bridge.

The bridge moves file contents as base64 text, as mobile plugin bridges do.
A save writes ``<name>.tmp`` and ``<name>.manifest.json`` first, verifies the
temp file against the manifest, then promotes it over ``<name>.emma``. If a
save was interrupted, the next ``open_vault`` promotes a temp file that still
verifies and keeps one that does not as ``<name>.recovery-<ms>.emma``.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from emmavault.config import Config
from emmavault.crypto.journal import IntegrityManifest, create_manifest, verify_manifest
from emmavault.errors import ManifestMismatch
from emmavault.storage.base import (
    ExportOptions,
    OpenOptions,
    RecentVaults,
    StorageAdapter,
    ensure_bytes,
    hand_off_export,
    read_import_input,
)

logger = logging.getLogger("emmavault.storage.mobile")

VAULT_DIR = "Emma"
EXPORT_DIR = VAULT_DIR + "/Exports"


@runtime_checkable
class NativeFilesystem(Protocol):
    async def write_file(self, path: str, data: str) -> None: ...

    async def read_file(self, path: str) -> str: ...

    async def exists(self, path: str) -> bool: ...

    async def delete_file(self, path: str) -> None: ...

    async def get_uri(self, path: str) -> Optional[str]: ...


class LocalNativeFilesystem:
    """NativeFilesystem backed by a directory on the local disk."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if not target.is_relative_to(self.root.resolve()):
            raise ValueError(f"Path escapes the filesystem root: {path}")
        return target

    async def write_file(self, path: str, data: str) -> None:
        target = self._resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(base64.b64decode(data))

        await asyncio.to_thread(_write)

    async def read_file(self, path: str) -> str:
        raw = await asyncio.to_thread(self._resolve(path).read_bytes)
        return base64.b64encode(raw).decode("ascii")

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._resolve(path).exists)

    async def delete_file(self, path: str) -> None:
        await asyncio.to_thread(self._resolve(path).unlink, True)

    async def get_uri(self, path: str) -> Optional[str]:
        return self._resolve(path).as_uri()


class NativeFilesystemAdapter(StorageAdapter):
    adapter_id = "capacitor"

    def __init__(self, fs: NativeFilesystem, recents: Optional[RecentVaults] = None):
        super().__init__(recents)
        if not isinstance(fs, NativeFilesystem):
            raise TypeError("fs must implement the NativeFilesystem bridge")
        self.fs = fs

    # -- paths --------------------------------------------------------------
    @property
    def vault_path(self) -> str:
        return f"{VAULT_DIR}/{self.name}{Config.VAULT_SUFFIX}"

    @property
    def temp_path(self) -> str:
        return f"{VAULT_DIR}/{self.name}.tmp"

    @property
    def manifest_path(self) -> str:
        return f"{VAULT_DIR}/{self.name}.manifest.json"

    def _recovery_path(self) -> str:
        return f"{VAULT_DIR}/{self.name}.recovery-{int(time.time() * 1000)}{Config.VAULT_SUFFIX}"

    # -- bridge helpers -------------------------------------------------------
    async def _write(self, path: str, data: bytes) -> None:
        await self.fs.write_file(path, base64.b64encode(data).decode("ascii"))

    async def _read(self, path: str) -> bytes:
        return base64.b64decode(await self.fs.read_file(path) or "")

    async def _keep_recovery(self, data: bytes) -> str:
        path = self._recovery_path()
        await self._write(path, data)
        logger.warning("Unverified vault data preserved as %s", path)
        return path

    # -- contract -----------------------------------------------------------
    async def open_vault(self, options: Optional[OpenOptions] = None) -> None:
        options = options or OpenOptions()
        self.name = options.vault_name or self.name
        if not await self.fs.exists(self.vault_path):
            await self._write(self.vault_path, b"")
        await self.repair()
        await self._remember_recent()

    async def repair(self) -> Optional[bool]:
        """Finish or quarantine an interrupted save.

        Returns True if a temp file was promoted, False if it was kept as a
        recovery file, None if there was nothing to repair.
        """
        if not (await self.fs.exists(self.temp_path) and await self.fs.exists(self.manifest_path)):
            return None
        pending = await self._read(self.temp_path)
        try:
            manifest = IntegrityManifest.from_json(await self._read(self.manifest_path))
            ok = verify_manifest(pending, manifest)
        except ManifestMismatch:
            ok = False

        if ok:
            await self._write(self.vault_path, pending)
            await self.fs.delete_file(self.temp_path)
            logger.info("Completed interrupted save of %s", self.name)
        else:
            await self._keep_recovery(pending)
            await self.fs.delete_file(self.temp_path)
        await self.fs.delete_file(self.manifest_path)
        return ok

    async def read_vault(self) -> bytes:
        return await self._read(self.vault_path)

    async def write_vault(self, data: bytes) -> None:
        payload = ensure_bytes(data)
        manifest = create_manifest(payload)
        await self._write(self.temp_path, payload)
        await self._write(self.manifest_path, manifest.to_json().encode("utf-8"))

        staged = await self._read(self.temp_path)
        if not verify_manifest(staged, manifest):
            await self._keep_recovery(staged)
            raise ManifestMismatch("Staged vault failed verification; previous version kept")

        await self._write(self.vault_path, staged)
        await self.fs.delete_file(self.temp_path)
        await self.fs.delete_file(self.manifest_path)
        await self._remember_recent()
        logger.debug("Mobile vault %s: %d bytes", self.name, len(payload))

    async def export_vault(self, options: Optional[ExportOptions] = None) -> Optional[str]:
        """Copy the vault into Exports/ and offer it to the share sink."""
        options = options or ExportOptions()
        data = await self.read_vault()
        filename = self.export_filename(options)
        export_path = f"{EXPORT_DIR}/{filename}"
        await self._write(export_path, data)
        await hand_off_export(options, filename, data)
        return await self.fs.get_uri(export_path) or export_path

    async def import_vault(self, source: Any) -> None:
        await self.write_vault(await read_import_input(source))
