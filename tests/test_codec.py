"""Tests for the vault container codec."""

from __future__ import annotations

import secrets

import pytest

from emmavault.crypto.codec import (
    decode_document,
    decrypt_container,
    decrypt_container_async,
    encode_document,
    encrypt_container,
    encrypt_container_async,
)
from emmavault.crypto.engine import CryptoEngine
from emmavault.crypto.formats import CONTAINER_ITERATIONS, HEADER_SIZE, MAGIC, SALT_SIZE, TAG_SIZE
from emmavault.errors import CorruptContainer, DecryptionFailure, InvalidPassphrase
from emmavault.util.memory import SecureMemory
from emmavault.vault.models import VaultDocument

from conftest import FAST_ITERATIONS


def _encrypt(document, passphrase):
    return encrypt_container(document, passphrase, iterations=FAST_ITERATIONS)


def _decrypt(blob, passphrase):
    return decrypt_container(blob, passphrase, iterations=FAST_ITERATIONS)


class TestEncoding:
    def test_canonical_is_sorted_and_compact(self):
        raw = encode_document({"b": 1, "a": {"d": 2, "c": 3}})
        assert raw == b'{"a":{"c":3,"d":2},"b":1}'

    def test_document_roundtrip(self, sample_document):
        assert decode_document(encode_document(sample_document)) == sample_document

    def test_extra_keys_survive(self):
        doc = VaultDocument.from_dict({"metadata": {}, "content": {}, "schema": 2})
        assert decode_document(encode_document(doc)).to_dict()["schema"] == 2

    @pytest.mark.parametrize(
        "document",
        [[1, 2], {1: "int key"}, {"t": (1, 2)}, {"n": float("nan")}, {"o": object()}],
        ids=["list", "int-key", "tuple", "nan", "object"],
    )
    def test_unreadable_documents_refused(self, document):
        with pytest.raises(ValueError):
            encode_document(document)

    def test_garbage_is_corrupt(self):
        with pytest.raises(CorruptContainer):
            decode_document(b"\xff\xfe not json")

    def test_non_object_is_corrupt(self):
        with pytest.raises(CorruptContainer):
            decode_document(b"[1, 2, 3]")


class TestContainer:
    def test_concrete_scenario(self, sample_document, passphrase):
        blob = encrypt_container(sample_document, passphrase)
        plaintext_len = len(encode_document(sample_document))
        assert blob[:4] == MAGIC
        assert len(blob) == HEADER_SIZE + plaintext_len + TAG_SIZE

        restored = decrypt_container(blob, passphrase)
        assert restored.to_dict() == {
            "metadata": {"name": "Test"},
            "content": {"memories": {"m1": {"text": "hello"}}},
        }
        with pytest.raises(InvalidPassphrase):
            decrypt_container(blob, "wrong", iterations=CONTAINER_ITERATIONS)

    def test_roundtrip(self, sample_document, passphrase):
        assert _decrypt(_encrypt(sample_document, passphrase), passphrase) == sample_document

    def test_mapping_input(self, passphrase):
        doc = {"metadata": {"name": "Plain"}, "content": {"people": {"p1": {"name": "Ann"}}}}
        assert _decrypt(_encrypt(doc, passphrase), passphrase).to_dict() == doc

    @pytest.mark.parametrize(
        "doc",
        [
            {"foo": 1},
            {"metadata": None, "content": {"memories": {}}},
            {"metadata": {"name": "x"}, "content": ["not", "an", "object"]},
            {},
        ],
        ids=["no-sections", "null-metadata", "list-content", "empty"],
    )
    def test_any_json_object_roundtrips_exactly(self, doc, passphrase):
        assert _decrypt(_encrypt(doc, passphrase), passphrase).to_dict() == doc

    @pytest.mark.parametrize("empty", ["", b""])
    def test_empty_passphrase_rejected(self, sample_document, passphrase, empty):
        blob = _encrypt(sample_document, passphrase)
        with pytest.raises(InvalidPassphrase):
            _decrypt(blob, empty)

    def test_wiped_passphrase_rejected(self, sample_document, passphrase):
        blob = _encrypt(sample_document, passphrase)
        wiped = SecureMemory(passphrase)
        wiped.clear()
        with pytest.raises(DecryptionFailure):
            _decrypt(blob, wiped)

    def test_fresh_salt_and_iv(self, sample_document, passphrase):
        a = _encrypt(sample_document, passphrase)
        b = _encrypt(sample_document, passphrase)
        assert a != b
        assert a[4:36] != b[4:36]
        assert a[36:48] != b[36:48]

    def test_wrong_passphrase(self, sample_document, passphrase):
        blob = _encrypt(sample_document, passphrase)
        with pytest.raises(InvalidPassphrase):
            _decrypt(blob, "not-the-passphrase")

    def test_wrong_passphrase_is_decryption_failure(self, sample_document, passphrase):
        blob = _encrypt(sample_document, passphrase)
        with pytest.raises(DecryptionFailure):
            _decrypt(blob, "nope")

    @pytest.mark.parametrize("offset", [HEADER_SIZE, HEADER_SIZE + 7, -1])
    def test_bit_flip_in_ciphertext_fails(self, sample_document, passphrase, offset):
        blob = bytearray(_encrypt(sample_document, passphrase))
        blob[offset] ^= 0x01
        with pytest.raises(DecryptionFailure):
            _decrypt(bytes(blob), passphrase)

    def test_salt_tamper_fails(self, sample_document, passphrase):
        blob = bytearray(_encrypt(sample_document, passphrase))
        blob[10] ^= 0x80
        with pytest.raises(InvalidPassphrase):
            _decrypt(bytes(blob), passphrase)

    def test_bad_magic(self, sample_document, passphrase):
        blob = b"XXXX" + _encrypt(sample_document, passphrase)[4:]
        with pytest.raises(CorruptContainer):
            _decrypt(blob, passphrase)

    def test_truncated(self, sample_document, passphrase):
        with pytest.raises(CorruptContainer):
            _decrypt(_encrypt(sample_document, passphrase)[:50], passphrase)

    def test_valid_cipher_invalid_document(self, passphrase):
        engine = CryptoEngine()
        salt = secrets.token_bytes(SALT_SIZE)
        key = engine.derive_key(passphrase, salt, FAST_ITERATIONS)
        iv, ct = engine.encrypt_data(key, b"not json at all")
        with pytest.raises(CorruptContainer):
            _decrypt(MAGIC + salt + iv + ct, passphrase)


class TestAsyncCodec:
    @pytest.mark.asyncio
    async def test_thread_roundtrip(self, sample_document, passphrase):
        blob = await encrypt_container_async(
            sample_document, passphrase, iterations=FAST_ITERATIONS
        )
        restored = await decrypt_container_async(blob, passphrase, iterations=FAST_ITERATIONS)
        assert restored == sample_document

    @pytest.mark.asyncio
    async def test_thread_wrong_passphrase(self, sample_document, passphrase):
        blob = _encrypt(sample_document, passphrase)
        with pytest.raises(InvalidPassphrase):
            await decrypt_container_async(blob, "wrong", iterations=FAST_ITERATIONS)

    @pytest.mark.asyncio
    async def test_thread_empty_passphrase(self, sample_document, passphrase):
        blob = _encrypt(sample_document, passphrase)
        with pytest.raises(InvalidPassphrase):
            await decrypt_container_async(blob, "", iterations=FAST_ITERATIONS)
