"""Typed failures raised by the vault engine."""

from __future__ import annotations


class VaultError(Exception):
    """Base class for every vault engine failure."""


class DecryptionFailure(VaultError):
    """AEAD authentication failed on a payload."""


class InvalidPassphrase(DecryptionFailure):
    """The passphrase was rejected.

    Raised for verifier mismatches and for tag failures on a container, so a
    caller never learns whether the salt, the iteration count or the
    ciphertext was the cause.
    """


class CorruptContainer(VaultError, ValueError):
    """Bad magic, truncated framing or an unparseable document."""


class ManifestMismatch(VaultError):
    """Integrity journal verification failed."""


class AdapterUnavailable(VaultError):
    """No storage backend is capable in this environment."""


class StorageQuotaExceeded(VaultError):
    """Pre-write capacity check failed."""


class WorkerError(VaultError):
    """An exception raised inside the crypto worker, carried as a string.

    ``kind`` is the worker-side exception class name when the message carries
    one (``"InvalidTag: ..."``), else None.
    """

    def __init__(self, message: str, kind: str | None = None):
        super().__init__(message)
        self.kind = kind


class VaultLocked(VaultError):
    """The operation needs an unlocked keyring or an open session."""


class VaultInUse(VaultError):
    """Another process holds the lock on this vault."""


class TooManyAttempts(VaultError):
    """Unlock attempts exceeded the configured limit."""
