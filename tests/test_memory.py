"""Tests for SecureMemory, SplitSecret and KeyObfuscator."""

from __future__ import annotations

import pytest

from emmavault.util.memory import KeyObfuscator, SecureMemory, SplitSecret


class TestSecureMemory:
    def test_store_and_retrieve(self):
        sm = SecureMemory(b"secret")
        assert sm.get_bytes() == b"secret"
        assert len(sm) == 6

    def test_clear(self):
        sm = SecureMemory(b"secret")
        sm.clear()
        assert len(sm) == 0
        assert not sm
        with pytest.raises(ValueError):
            sm.get_bytes()

    def test_from_string(self):
        assert SecureMemory("hello").get_bytes() == b"hello"

    def test_double_clear_safe(self):
        sm = SecureMemory(b"x")
        sm.clear()
        sm.clear()


class TestSplitSecret:
    def test_join(self):
        ss = SplitSecret(b"my secret data", parts=3)
        sm = ss.join()
        assert sm.get_bytes() == b"my secret data"
        sm.clear()

    def test_needs_two_parts(self):
        with pytest.raises(ValueError):
            SplitSecret(b"x", parts=1)


class TestKeyObfuscator:
    def test_reveal(self):
        ko = KeyObfuscator(b"a" * 32)
        recovered = ko.reveal()
        assert recovered.get_bytes() == b"a" * 32
        recovered.clear()
        ko.clear()

    def test_exposed_context(self):
        ko = KeyObfuscator(SecureMemory(b"c" * 32))
        with ko.exposed() as key:
            assert key == b"c" * 32
        ko.clear()

    def test_clear(self):
        ko = KeyObfuscator(b"k" * 32)
        ko.clear()
        assert ko.cleared
        with pytest.raises(ValueError):
            ko.reveal()

    def test_source_is_wiped(self):
        source = SecureMemory(b"z" * 32)
        KeyObfuscator(source)
        assert len(source) == 0

    def test_empty_key(self):
        with pytest.raises(ValueError):
            KeyObfuscator(b"")
