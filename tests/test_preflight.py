"""Tests for the pre-write storage checks."""

from __future__ import annotations

import pytest

from emmavault.config import Config
from emmavault.errors import StorageQuotaExceeded
from emmavault.storage.preflight import bytes_to_human, ensure_sufficient_space, free_space_bytes


class TestPreflight:
    def test_free_space_of_missing_dir(self, tmp_path):
        assert free_space_bytes(tmp_path / "not" / "yet") > 0

    def test_enough_space(self, tmp_path):
        assert ensure_sufficient_space(tmp_path, 1024, min_free_bytes=0) > 0

    def test_low_space(self, tmp_path):
        with pytest.raises(StorageQuotaExceeded, match="Low storage"):
            ensure_sufficient_space(tmp_path, 1024, min_free_bytes=2**62)

    def test_vault_too_large(self, tmp_path):
        with pytest.raises(StorageQuotaExceeded, match="too large"):
            ensure_sufficient_space(tmp_path, Config.MAX_VAULT_SIZE + 1, min_free_bytes=0)

    @pytest.mark.parametrize(
        "count,text", [(None, "unknown"), (512, "512.0 B"), (200 * 1024 * 1024, "200.0 MB")]
    )
    def test_bytes_to_human(self, count, text):
        assert bytes_to_human(count) == text
