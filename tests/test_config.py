"""Tests for Config: KDF parameters from config.ini, floor, calibration."""

from __future__ import annotations

import pytest

from emmavault.config import (
    DEFAULT_ITERATIONS,
    MAX_ITERATIONS,
    MIN_ITERATIONS,
    Config,
)
from emmavault.crypto.formats import KDF_ARGON2ID, KDF_PBKDF2_SHA256
from emmavault.paths import get_config_path, get_data_dir


def _write_ini(data_dir, body):
    data_dir.mkdir(parents=True, exist_ok=True)
    (data_dir / "config.ini").write_text(body)


class TestKdfParams:
    def test_defaults_without_file(self, tmp_path):
        params = Config.get_kdf_params(tmp_path)
        assert params["algorithm"] == KDF_PBKDF2_SHA256
        assert params["iterations"] == DEFAULT_ITERATIONS
        assert not Config.config_exists(tmp_path)

    def test_default_location_is_data_dir(self):
        _write_ini(get_data_dir(), "[kdf]\nalgorithm = PBKDF2-SHA256\niterations = 300000\n")
        assert get_config_path(get_data_dir()).exists()
        assert Config.get_kdf_params()["iterations"] == 300_000

    def test_reads_file(self, tmp_path):
        _write_ini(tmp_path, "[kdf]\nalgorithm = PBKDF2-SHA256\niterations = 400000\n")
        assert Config.get_kdf_params(tmp_path)["iterations"] == 400_000

    def test_floor_enforced(self, tmp_path):
        _write_ini(tmp_path, "[kdf]\nalgorithm = PBKDF2-SHA256\niterations = 10\n")
        assert Config.get_kdf_params(tmp_path)["iterations"] == MIN_ITERATIONS

    def test_argon2_floor(self, tmp_path):
        _write_ini(tmp_path, "[kdf]\nalgorithm = ARGON2ID\niterations = 1\nmemory_cost = 8\nparallelism = 1\n")
        params = Config.get_kdf_params(tmp_path)
        assert params["algorithm"] == KDF_ARGON2ID
        assert params["iterations"] >= 3
        assert params["memory_cost"] >= 65_536

    def test_unknown_algorithm_falls_back(self, tmp_path):
        _write_ini(tmp_path, "[kdf]\nalgorithm = ROT13\n")
        assert Config.get_kdf_params(tmp_path)["algorithm"] == KDF_PBKDF2_SHA256

    def test_garbage_falls_back(self, tmp_path):
        _write_ini(tmp_path, "[kdf]\niterations = lots\n")
        assert Config.get_kdf_params(tmp_path)["iterations"] == DEFAULT_ITERATIONS

    def test_default_data_dir_from_env(self, tmp_path):
        # EMMA_VAULT_HOME points into tmp_path (see conftest)
        _write_ini(tmp_path / "home", "[kdf]\niterations = 300000\n")
        assert Config.get_kdf_params()["iterations"] == 300_000


class TestCalibrate:
    def test_pbkdf2_writes_config(self, tmp_path):
        params = Config.calibrate_kdf(tmp_path, target_ms=50)
        assert MIN_ITERATIONS <= params["iterations"] <= MAX_ITERATIONS
        assert params["iterations"] % 10_000 == 0
        assert Config.config_exists(tmp_path)
        assert Config.get_kdf_params(tmp_path)["iterations"] == params["iterations"]


class TestDevSwitch:
    def test_off_by_default(self):
        assert not Config.dev_unlock_enabled()

    @pytest.mark.parametrize("value,expected", [("1", True), ("0", False), ("yes", False)])
    def test_values(self, monkeypatch, value, expected):
        monkeypatch.setenv(Config.DEV_UNLOCK_ENV, value)
        assert Config.dev_unlock_enabled() is expected
