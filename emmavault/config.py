"""Centralised configuration, KDF profiles, and config.ini I/O."""

from __future__ import annotations

import configparser
import logging
import multiprocessing
import os
import secrets
import tempfile
import time
from pathlib import Path

import psutil

from emmavault.crypto.formats import KDF_ALGORITHMS, KDF_ARGON2ID, KDF_PBKDF2_SHA256
from emmavault.paths import get_config_path, get_data_dir

logger = logging.getLogger("emmavault.config")


# ============================================================================
#  KDF profiles
# ============================================================================
# Argon2id profiles (iterations == Argon2 time cost)
ARGON2_PROFILES = {
    "compat": {
        "iterations": 3,
        "memory_cost": 65_536,  # 64 MiB
        "parallelism": 2,
    },
    "balanced": {
        "iterations": 4,
        "memory_cost": 262_144,  # 256 MiB
        "parallelism": min(4, multiprocessing.cpu_count() or 2),
    },
    "high": {
        "iterations": 6,
        "memory_cost": 524_288,  # 512 MiB
        "parallelism": min(8, multiprocessing.cpu_count() or 2),
    },
}

DEFAULT_ITERATIONS = 250_000
MIN_ITERATIONS = 100_000
MAX_ITERATIONS = 5_000_000

_PBKDF2_DEFAULT = {
    "algorithm": KDF_PBKDF2_SHA256,
    "iterations": DEFAULT_ITERATIONS,
    "memory_cost": 0,
    "parallelism": 0,
}

# Security floor: never go below these
_PBKDF2_FLOOR = dict(_PBKDF2_DEFAULT, iterations=MIN_ITERATIONS)
_ARGON2_FLOOR = dict(ARGON2_PROFILES["compat"], algorithm=KDF_ARGON2ID)


# ============================================================================
#  Config class
# ============================================================================
class Config:
    """Centralised settings."""

    # Keyring
    SETTINGS_KEY = "emma_vault_settings"
    VERIFIER_SENTINEL = "emma:verifier:v1"
    DEV_UNLOCK_ENV = "EMMA_VAULT_DEV_UNLOCK"
    DEV_PASSPHRASE = "demo"
    DEV_SALT = b"emma-demo-salt-v1"

    # Storage
    RECENT_KEY = "emma.vault.recent"
    RECENT_LIMIT = 5
    VAULT_SUFFIX = ".emma"
    DEFAULT_VAULT_NAME = "vault"
    MAX_VAULT_SIZE = 512 * 1024 * 1024  # 512 MB
    MIN_FREE_SPACE = 200 * 1024 * 1024  # 200 MB headroom

    # ------------------------------------------------------------------
    @staticmethod
    def dev_unlock_enabled() -> bool:
        """True only when the development unlock bypass is explicitly switched on."""
        return os.environ.get(Config.DEV_UNLOCK_ENV, "") == "1"

    # ------------------------------------------------------------------
    #  KDF helpers
    # ------------------------------------------------------------------
    @staticmethod
    def get_kdf_params(data_dir: Path | None = None) -> dict:
        """Read KDF params from config.ini, enforcing a security floor."""
        if data_dir is None:
            data_dir = get_data_dir()

        config_path = get_config_path(data_dir)
        if not config_path.exists():
            return dict(_PBKDF2_DEFAULT)

        cfg = configparser.ConfigParser()
        try:
            cfg.read(config_path)
            algorithm = cfg.get("kdf", "algorithm", fallback=KDF_PBKDF2_SHA256)
            if algorithm not in KDF_ALGORITHMS:
                logger.warning("Unknown KDF '%s' in config.ini, using default", algorithm)
                return dict(_PBKDF2_DEFAULT)
            floor = _ARGON2_FLOOR if algorithm == KDF_ARGON2ID else _PBKDF2_FLOOR
            default = _ARGON2_FLOOR if algorithm == KDF_ARGON2ID else _PBKDF2_DEFAULT
            pars = {
                "algorithm": algorithm,
                "iterations": cfg.getint("kdf", "iterations", fallback=default["iterations"]),
                "memory_cost": cfg.getint("kdf", "memory_cost", fallback=floor["memory_cost"]),
                "parallelism": cfg.getint("kdf", "parallelism", fallback=floor["parallelism"]),
            }
        except (configparser.Error, ValueError) as exc:
            logger.warning("Unreadable config.ini (%s), using defaults", exc)
            return dict(_PBKDF2_DEFAULT)

        pars["iterations"] = max(pars["iterations"], floor["iterations"])
        pars["memory_cost"] = max(pars["memory_cost"], floor["memory_cost"])
        pars["parallelism"] = max(pars["parallelism"], floor["parallelism"])
        return pars

    @staticmethod
    def calibrate_kdf(
        data_dir: Path, target_ms: int = 1000, algorithm: str = KDF_PBKDF2_SHA256
    ) -> dict:
        """Pick KDF parameters that take about *target_ms* on this machine."""
        if algorithm == KDF_ARGON2ID:
            params = _calibrate_argon2()
        else:
            params = _calibrate_pbkdf2(target_ms)
        _write_config(data_dir, params)
        logger.info(
            "KDF calibrated: %s iterations=%d", params["algorithm"], params["iterations"]
        )
        return params

    @staticmethod
    def config_exists(data_dir: Path) -> bool:
        return get_config_path(data_dir).exists()


# ============================================================================
#  Calibration
# ============================================================================
_PROBE_ITERATIONS = 50_000


def _calibrate_pbkdf2(target_ms: int) -> dict:
    from emmavault.crypto.engine import CryptoEngine

    engine = CryptoEngine()
    elapsed_ms, _ = engine.profile_pbkdf2("benchmark", secrets.token_bytes(32), _PROBE_ITERATIONS)
    per_iteration = max(elapsed_ms, 0.001) / _PROBE_ITERATIONS
    iterations = int(target_ms / per_iteration)
    # Round to 10k and clamp into the supported range
    iterations = max(MIN_ITERATIONS, min(MAX_ITERATIONS, (iterations // 10_000) * 10_000))
    logger.info("PBKDF2 probe: %d iterations in %.0f ms", _PROBE_ITERATIONS, elapsed_ms)
    return dict(_PBKDF2_DEFAULT, iterations=iterations)


def _calibrate_argon2() -> dict:
    """Select the highest Argon2id profile the hardware supports."""
    import argon2
    import argon2.low_level as low

    ram_cap = psutil.virtual_memory().total * 3 // 4
    cores = multiprocessing.cpu_count() or 2

    best_profile = "compat"
    best = dict(_ARGON2_FLOOR)
    for name in ("compat", "balanced", "high"):
        profile = ARGON2_PROFILES[name]
        if profile["memory_cost"] * 1024 > ram_cap:
            logger.info("Skipping profile '%s': exceeds RAM cap", name)
            continue

        par = min(profile["parallelism"], cores)
        try:
            t0 = time.perf_counter()
            low.hash_secret_raw(
                b"benchmark",
                secrets.token_bytes(16),
                time_cost=profile["iterations"],
                memory_cost=profile["memory_cost"],
                parallelism=par,
                hash_len=32,
                type=argon2.Type.ID,
            )
            dt = (time.perf_counter() - t0) * 1_000
        except (MemoryError, OSError):
            logger.warning("Profile '%s' failed (not enough RAM)", name)
            break

        best_profile = name
        best = dict(profile, parallelism=max(par, 2), algorithm=KDF_ARGON2ID)
        logger.info("Profile '%s' OK (%.0f ms)", name, dt)

    logger.info("Argon2id profile selected: '%s'", best_profile)
    return best


# ============================================================================
#  Atomic config writer
# ============================================================================
def _write_config(data_dir: Path, kdf_params: dict) -> None:
    data_dir.mkdir(parents=True, exist_ok=True)
    if os.name != "nt":
        try:
            os.chmod(data_dir, 0o700)
        except OSError:
            logger.debug("Could not restrict permissions on %s", data_dir)

    config_path = get_config_path(data_dir)
    cfg = configparser.ConfigParser()
    cfg["kdf"] = {
        "algorithm": kdf_params["algorithm"],
        "iterations": str(kdf_params["iterations"]),
        "memory_cost": str(kdf_params["memory_cost"]),
        "parallelism": str(kdf_params["parallelism"]),
    }

    fd = tempfile.NamedTemporaryFile(
        mode="w", dir=data_dir, prefix="cfg_tmp_", suffix=".ini", delete=False
    )
    try:
        cfg.write(fd)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        tmp = Path(fd.name)
        if os.name != "nt":
            os.chmod(tmp, 0o600)
        tmp.replace(config_path)
    except BaseException:
        fd.close()
        Path(fd.name).unlink(missing_ok=True)
        raise
