"""Cross-platform directory resolution."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import platformdirs

logger = logging.getLogger("emmavault.paths")

_APP_NAME = "EmmaVault"
_APP_AUTHOR = "Emma"
DATA_DIR_ENV = "EMMA_VAULT_HOME"


def get_data_dir() -> Path:
    """Platform data directory, overridable with ``EMMA_VAULT_HOME``."""
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        return Path(override)
    return Path(platformdirs.user_data_dir(_APP_NAME, _APP_AUTHOR))


# -- path helpers -----------------------------------------------------------
def get_vaults_dir(data_dir: Path) -> Path:
    return data_dir / "vaults"


def get_exports_dir(data_dir: Path) -> Path:
    return data_dir / "Exports"


def get_log_path(data_dir: Path) -> Path:
    return data_dir / "emmavault.log"


def get_config_path(data_dir: Path) -> Path:
    return data_dir / "config.ini"
