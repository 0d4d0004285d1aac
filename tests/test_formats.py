"""Tests for the binary container framing."""

from __future__ import annotations

import secrets

import pytest

from emmavault.crypto.formats import (
    HEADER_SIZE,
    IV_OFFSET,
    IV_SIZE,
    MAGIC,
    MIN_CONTAINER_SIZE,
    SALT_OFFSET,
    SALT_SIZE,
    TAG_SIZE,
    VaultContainer,
    is_vault_container,
)
from emmavault.errors import CorruptContainer


def _make(ciphertext: bytes = b"\x01" * 40) -> VaultContainer:
    return VaultContainer(
        salt=secrets.token_bytes(SALT_SIZE),
        iv=secrets.token_bytes(IV_SIZE),
        ciphertext=ciphertext,
    )


class TestLayout:
    def test_offsets(self):
        assert len(MAGIC) == 4
        assert SALT_OFFSET == 4
        assert IV_OFFSET == 36
        assert HEADER_SIZE == 48
        assert MIN_CONTAINER_SIZE == HEADER_SIZE + TAG_SIZE

    def test_to_bytes_layout(self):
        c = _make()
        raw = c.to_bytes()
        assert raw[:4] == MAGIC
        assert raw[4:36] == c.salt
        assert raw[36:48] == c.iv
        assert raw[48:] == c.ciphertext
        assert len(raw) == len(c) == 48 + 40


class TestParsing:
    def test_roundtrip(self):
        c = _make()
        assert VaultContainer.from_bytes(c.to_bytes()) == c

    def test_bad_magic_rejected_first(self):
        raw = bytearray(_make().to_bytes())
        raw[0:4] = b"NOPE"
        with pytest.raises(CorruptContainer, match="magic"):
            VaultContainer.from_bytes(bytes(raw))

    def test_short_garbage_is_bad_magic(self):
        with pytest.raises(CorruptContainer, match="magic"):
            VaultContainer.from_bytes(b"EM")

    def test_truncated_rejected(self):
        raw = _make().to_bytes()[: MIN_CONTAINER_SIZE - 1]
        with pytest.raises(CorruptContainer, match="truncated"):
            VaultContainer.from_bytes(raw)

    def test_corrupt_container_is_value_error(self):
        with pytest.raises(ValueError):
            VaultContainer.from_bytes(b"")

    def test_wrong_salt_length(self):
        with pytest.raises(CorruptContainer):
            VaultContainer(salt=b"short", iv=b"\x00" * IV_SIZE, ciphertext=b"")


class TestDetection:
    def test_is_vault_container(self):
        assert is_vault_container(_make().to_bytes())
        assert not is_vault_container(b"PK\x03\x04rest")
        assert not is_vault_container(b"")
