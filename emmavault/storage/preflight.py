"""Pre-write capacity checks."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import psutil

from emmavault.config import Config
from emmavault.errors import StorageQuotaExceeded

logger = logging.getLogger("emmavault.preflight")

_UNITS = ("B", "KB", "MB", "GB", "TB")


def bytes_to_human(count: Optional[int]) -> str:
    if count is None:
        return "unknown"
    value = float(count)
    unit = 0
    while value >= 1024 and unit < len(_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{value:.1f} {_UNITS[unit]}"


def free_space_bytes(path: Path) -> Optional[int]:
    """Free bytes on the volume holding *path*, or None if it cannot be measured."""
    probe = Path(path)
    while not probe.exists() and probe != probe.parent:
        probe = probe.parent
    try:
        return psutil.disk_usage(str(probe)).free
    except OSError as exc:
        logger.debug("Free space unknown for %s: %s", path, exc)
        return None


def ensure_sufficient_space(
    path: Path,
    required_bytes: int,
    min_free_bytes: int = Config.MIN_FREE_SPACE,
) -> Optional[int]:
    """Raise StorageQuotaExceeded unless *required_bytes* fit with headroom."""
    if required_bytes > Config.MAX_VAULT_SIZE:
        raise StorageQuotaExceeded(
            f"Vault too large: {required_bytes} bytes (max {Config.MAX_VAULT_SIZE})"
        )
    free = free_space_bytes(path)
    if free is None:
        return None
    if free < min_free_bytes + required_bytes:
        logger.error("Low storage: %s free", bytes_to_human(free))
        raise StorageQuotaExceeded(f"Low storage: {bytes_to_human(free)} free")
    return free
