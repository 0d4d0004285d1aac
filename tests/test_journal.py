"""Tests for the integrity journal manifests."""

from __future__ import annotations

import hashlib
import os

import pytest

from emmavault.crypto.journal import (
    DEFAULT_CHUNK_SIZE,
    MANIFEST_VERSION,
    IntegrityManifest,
    ManifestChunk,
    create_manifest,
    require_valid,
    verify_manifest,
)
from emmavault.errors import ManifestMismatch


class TestCreate:
    def test_chunking(self):
        data = os.urandom(DEFAULT_CHUNK_SIZE * 2 + 10)
        m = create_manifest(data)
        assert m.version == MANIFEST_VERSION
        assert m.total_bytes == len(data)
        assert m.chunk_count == 3
        assert [c.size for c in m.chunks] == [DEFAULT_CHUNK_SIZE, DEFAULT_CHUNK_SIZE, 10]
        assert [c.index for c in m.chunks] == [0, 1, 2]

    def test_root_hash_is_whole_payload_digest(self):
        data = b"abc" * 1000
        m = create_manifest(data, chunk_size=100)
        assert m.root_hash == hashlib.sha256(data).hexdigest()
        assert m.chunks[0].hash == hashlib.sha256(data[:100]).hexdigest()

    def test_empty_payload(self):
        m = create_manifest(b"")
        assert m.chunk_count == 0
        assert verify_manifest(b"", m)

    def test_bad_chunk_size(self):
        with pytest.raises(ValueError):
            create_manifest(b"x", chunk_size=0)


class TestVerify:
    def test_valid(self):
        data = os.urandom(5000)
        assert verify_manifest(data, create_manifest(data, chunk_size=1024))

    @pytest.mark.parametrize("position", [0, 1023, 1024, 4999])
    def test_any_byte_change_detected(self, position):
        data = bytearray(os.urandom(5000))
        m = create_manifest(bytes(data), chunk_size=1024)
        data[position] ^= 0x01
        assert not verify_manifest(bytes(data), m)

    def test_length_mismatch(self):
        data = os.urandom(100)
        m = create_manifest(data)
        assert not verify_manifest(data + b"\x00", m)

    def test_version_mismatch(self):
        data = b"payload"
        m = create_manifest(data)
        m.version = MANIFEST_VERSION + 1
        assert not verify_manifest(data, m)

    def test_forged_chunk_list_rejected(self):
        data = os.urandom(300)
        m = create_manifest(data, chunk_size=100)
        m.chunks = m.chunks[:2]
        m.chunk_count = 2
        assert not verify_manifest(data, m)

    def test_root_hash_checked_independently(self):
        data = os.urandom(300)
        m = create_manifest(data, chunk_size=100)
        m.root_hash = "0" * 64
        assert not verify_manifest(data, m)

    @pytest.mark.parametrize("garbled", ["é" * 64, "\ud800" * 64, ""])
    def test_non_hex_digests_are_plain_failures(self, garbled):
        data = os.urandom(300)
        m = create_manifest(data, chunk_size=100)
        m.chunks[1] = ManifestChunk(index=1, size=100, hash=garbled)
        assert verify_manifest(data, m) is False

        m = create_manifest(data, chunk_size=100)
        m.root_hash = garbled
        assert verify_manifest(data, m) is False

    def test_require_valid_raises(self):
        m = create_manifest(b"one")
        require_valid(b"one", m)
        with pytest.raises(ManifestMismatch):
            require_valid(b"two", m)


class TestSerialisation:
    def test_json_roundtrip(self):
        data = os.urandom(2000)
        m = create_manifest(data, chunk_size=512)
        restored = IntegrityManifest.from_json(m.to_json())
        assert restored == m
        assert verify_manifest(data, restored)

    def test_camel_case_schema(self):
        d = create_manifest(b"x").to_dict()
        assert set(d) == {
            "version", "createdAt", "totalBytes", "chunkSize", "chunkCount", "rootHash", "chunks",
        }

    def test_sha256_key_alias(self):
        d = create_manifest(b"hello").to_dict()
        d["chunks"] = [{"index": c["index"], "size": c["size"], "sha256": c["hash"]} for c in d["chunks"]]
        assert verify_manifest(b"hello", IntegrityManifest.from_dict(d))

    def test_malformed(self):
        with pytest.raises(ManifestMismatch):
            IntegrityManifest.from_dict({"version": 1})
        with pytest.raises(ManifestMismatch):
            IntegrityManifest.from_json("{not json")
