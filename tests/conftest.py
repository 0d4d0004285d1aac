"""Shared test fixtures."""

from __future__ import annotations

import pytest

from emmavault.storage.kv import MemoryKeyValueStore
from emmavault.storage.base import RecentVaults
from emmavault.util.rate_limit import RateLimiter
from emmavault.vault.models import VaultDocument

# Low KDF cost for speed; tests of the default count pass it explicitly
FAST_ITERATIONS = 1_000


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep every test away from the real data dir and the dev unlock switch."""
    monkeypatch.setenv("EMMA_VAULT_HOME", str(tmp_path / "home"))
    monkeypatch.delenv("EMMA_VAULT_DEV_UNLOCK", raising=False)


@pytest.fixture
def tmp_dir(tmp_path):
    """A temporary directory for vault files."""
    return tmp_path


@pytest.fixture
def passphrase():
    return "correct-horse-battery"


@pytest.fixture
def sample_document():
    return VaultDocument.from_dict(
        {"metadata": {"name": "Test"}, "content": {"memories": {"m1": {"text": "hello"}}}}
    )


@pytest.fixture
def kv_store():
    return MemoryKeyValueStore()


@pytest.fixture
def recents(kv_store):
    return RecentVaults(kv_store)


@pytest.fixture
def fast_limiter():
    return RateLimiter(max_attempts=5, delay_base=0)


@pytest.fixture
def fast_kdf():
    return {"algorithm": "PBKDF2-SHA256", "iterations": FAST_ITERATIONS}
