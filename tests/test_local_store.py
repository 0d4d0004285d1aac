"""Tests for the content-addressed log/blob store."""

from __future__ import annotations

import hashlib

import pytest

from emmavault.storage.local_store import LocalLogStore, LogEntry, content_id


@pytest.fixture
def store(tmp_path):
    s = LocalLogStore(tmp_path / "store.sqlite3")
    yield s
    s.close()


class TestLog:
    @pytest.mark.asyncio
    async def test_newest_first(self, store):
        for i, ts in enumerate([10.0, 30.0, 20.0]):
            await store.put_log(LogEntry(id=f"e{i}", ts=ts, body={"n": i}))
        entries = await store.list_log()
        assert [e.id for e in entries] == ["e1", "e2", "e0"]
        assert entries[0].body == {"n": 1}

    @pytest.mark.asyncio
    async def test_cursor_and_limit(self, store):
        for ts in range(1, 11):
            await store.put_log(LogEntry(id=f"e{ts}", ts=float(ts)))
        newer = await store.list_log(after_ts=7)
        assert [e.ts for e in newer] == [10.0, 9.0, 8.0]
        capped = await store.list_log(limit=2)
        assert [e.id for e in capped] == ["e10", "e9"]
        assert await store.list_log(limit=0) == []

    @pytest.mark.asyncio
    async def test_no_cursor_lists_zero_and_negative_stamps(self, store):
        for ts in (-5.0, 0.0, 3.0):
            await store.put_log(LogEntry(id=f"t{ts}", ts=ts))
        assert [e.ts for e in await store.list_log()] == [3.0, 0.0, -5.0]
        assert [e.ts for e in await store.list_log(after_ts=0)] == [3.0]

    @pytest.mark.asyncio
    async def test_same_id_replaces(self, store):
        await store.put_log(LogEntry(id="x", ts=1.0, body={"v": 1}))
        await store.put_log(LogEntry(id="x", ts=2.0, body={"v": 2}))
        entries = await store.list_log()
        assert len(entries) == 1
        assert entries[0].to_dict() == {"id": "x", "ts": 2.0, "v": 2}

    @pytest.mark.asyncio
    async def test_persists(self, tmp_path):
        path = tmp_path / "persist.sqlite3"
        first = LocalLogStore(path)
        await first.put_log(LogEntry(id="kept", ts=5.0))
        first.close()
        second = LocalLogStore(path)
        assert [e.id for e in await second.list_log()] == ["kept"]
        second.close()


class TestBlobs:
    @pytest.mark.asyncio
    async def test_put_get(self, store):
        await store.put_blob("cid-1", b"\x00binary\xff")
        assert await store.get_blob("cid-1") == b"\x00binary\xff"

    @pytest.mark.asyncio
    async def test_missing(self, store):
        assert await store.get_blob("nope") is None

    @pytest.mark.asyncio
    async def test_rewrite_overwrites(self, store):
        await store.put_blob("cid", b"one")
        await store.put_blob("cid", b"two")
        assert await store.get_blob("cid") == b"two"

    def test_content_id(self):
        assert content_id(b"abc") == "sha256:" + hashlib.sha256(b"abc").hexdigest()

    @pytest.mark.asyncio
    async def test_in_memory(self):
        store = LocalLogStore()
        await store.put_blob(content_id(b"x"), b"x")
        assert await store.get_blob(content_id(b"x")) == b"x"
        store.close()
