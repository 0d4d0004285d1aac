"""Vault container framing, protocol constants, and header helpers."""

from __future__ import annotations

from dataclasses import dataclass

from emmavault.errors import CorruptContainer

# ============================================================================
#  Protocol constants
# ============================================================================
MAGIC = b"EMMA"
MAGIC_LEN = 4

SALT_SIZE = 32  # 256 bits
IV_SIZE = 12  # 96 bits (AES-GCM)
KEY_SIZE = 32  # 256 bits (AES-256)
TAG_SIZE = 16  # 128 bits, appended to the ciphertext

# -- container layout -------------------------------------------------------
#  magic(4) + salt(32) + iv(12) = 48 bytes, then ciphertext || tag
SALT_OFFSET = MAGIC_LEN
IV_OFFSET = SALT_OFFSET + SALT_SIZE  # 36
HEADER_SIZE = IV_OFFSET + IV_SIZE  # 48

# Smallest well-formed container: header plus an empty plaintext's tag
MIN_CONTAINER_SIZE = HEADER_SIZE + TAG_SIZE

# KDF algorithm identifiers as persisted in VaultSettings
KDF_PBKDF2_SHA256 = "PBKDF2-SHA256"
KDF_ARGON2ID = "ARGON2ID"
KDF_ALGORITHMS = (KDF_PBKDF2_SHA256, KDF_ARGON2ID)

# Iteration count used for every container (the header does not carry it)
CONTAINER_ITERATIONS = 250_000


# ============================================================================
#  VaultContainer
# ============================================================================
@dataclass(frozen=True)
class VaultContainer:
    salt: bytes
    iv: bytes
    ciphertext: bytes

    def __post_init__(self):
        if len(self.salt) != SALT_SIZE:
            raise CorruptContainer(f"Salt must be {SALT_SIZE} bytes, got {len(self.salt)}")
        if len(self.iv) != IV_SIZE:
            raise CorruptContainer(f"IV must be {IV_SIZE} bytes, got {len(self.iv)}")

    def to_bytes(self) -> bytes:
        return MAGIC + self.salt + self.iv + self.ciphertext

    @classmethod
    def from_bytes(cls, data: bytes) -> VaultContainer:
        """Slice raw bytes into salt, IV and ciphertext after checking magic."""
        data = bytes(data)
        if len(data) < MAGIC_LEN or data[:MAGIC_LEN] != MAGIC:
            raise CorruptContainer("Unrecognised vault magic")
        if len(data) < MIN_CONTAINER_SIZE:
            raise CorruptContainer(
                f"Container truncated: {len(data)} bytes (minimum {MIN_CONTAINER_SIZE})"
            )
        return cls(
            salt=data[SALT_OFFSET:IV_OFFSET],
            iv=data[IV_OFFSET:HEADER_SIZE],
            ciphertext=data[HEADER_SIZE:],
        )

    def __len__(self) -> int:
        return HEADER_SIZE + len(self.ciphertext)


# ============================================================================
#  Detection
# ============================================================================
def is_vault_container(data: bytes) -> bool:
    """Quick check whether data starts with the container magic."""
    return bytes(data[:MAGIC_LEN]) == MAGIC
