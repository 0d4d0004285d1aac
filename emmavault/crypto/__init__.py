"""Emma Vault cryptographic modules."""

from emmavault.crypto.engine import CryptoEngine
from emmavault.crypto.formats import (
    CONTAINER_ITERATIONS,
    HEADER_SIZE,
    MAGIC,
    VaultContainer,
    is_vault_container,
)
from emmavault.crypto.journal import (
    IntegrityManifest,
    create_manifest,
    verify_manifest,
)

__all__ = [
    "CryptoEngine",
    "CONTAINER_ITERATIONS",
    "HEADER_SIZE",
    "MAGIC",
    "VaultContainer",
    "is_vault_container",
    "IntegrityManifest",
    "create_manifest",
    "verify_manifest",
]
