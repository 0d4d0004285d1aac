"""Emma Vault key management and data model."""

from emmavault.vault.keyring import Keyring
from emmavault.vault.models import VaultDocument, VaultSettings, Verifier

__all__ = ["Keyring", "VaultDocument", "VaultSettings", "Verifier"]
