"""Secure logging setup: no secrets in logs, rotation, OS-appropriate dir."""

from __future__ import annotations

import logging
import logging.handlers
import os
import platform
from pathlib import Path

from emmavault.paths import get_log_path

MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 3


class SecureFormatter(logging.Formatter):
    """Replaces byte arguments and long strings with their sizes."""

    def format(self, record):
        if record.args and isinstance(record.args, tuple):
            safe = []
            for arg in record.args:
                if isinstance(arg, (bytes, bytearray, memoryview)):
                    safe.append(f"<{len(arg)} bytes>")
                elif isinstance(arg, str) and len(arg) > 50:
                    safe.append(f"<{len(arg)} chars>")
                else:
                    safe.append(arg)
            record.args = tuple(safe)
        return super().format(record)


def setup_secure_logging(log_dir: Path, level: int = logging.INFO) -> logging.Logger:
    """Attach a rotating, sanitising file handler to the ``emmavault`` logger."""
    log_dir.mkdir(parents=True, exist_ok=True)
    if platform.system() != "Windows":
        try:
            os.chmod(log_dir, 0o700)
        except OSError:
            pass

    log_file = get_log_path(log_dir)
    handler = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
    )
    handler.setFormatter(
        SecureFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    root_logger = logging.getLogger("emmavault")
    root_logger.setLevel(level)
    if not root_logger.handlers:
        root_logger.addHandler(handler)
    else:
        handler.close()
    root_logger.propagate = False

    if platform.system() != "Windows":
        try:
            os.chmod(log_file, 0o600)
        except OSError:
            pass

    return root_logger
