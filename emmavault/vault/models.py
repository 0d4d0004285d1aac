"""Vault data model: VaultDocument, VaultSettings, Verifier."""

from __future__ import annotations

import base64
import binascii
import copy
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from emmavault.crypto.formats import IV_SIZE, KDF_ALGORITHMS, KDF_ARGON2ID, SALT_SIZE
from emmavault.util.timeutil import utc_now_iso

DOCUMENT_VERSION = "1.0"
CONTENT_SECTIONS = ("memories", "people", "media", "relationships", "settings")


# ============================================================================
#  VaultDocument
# ============================================================================
@dataclass
class VaultDocument:
    """Decrypted vault content, kept as the exact JSON object it was built from.

    ``metadata`` and ``content`` are the conventional top-level keys; any other
    keys, and documents that lack either of them, round-trip unchanged through
    encode/decode.
    """

    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def new(cls, name: str) -> VaultDocument:
        return cls(
            {
                "metadata": {"name": name, "created": utc_now_iso(), "version": DOCUMENT_VERSION},
                "content": {section: {} for section in CONTENT_SECTIONS},
            }
        )

    @property
    def metadata(self) -> Any:
        return self.data.get("metadata")

    @property
    def content(self) -> Any:
        return self.data.get("content")

    # -- collections --------------------------------------------------------
    def section(self, name: str) -> Dict[str, Any]:
        content = self.data.setdefault("content", {})
        if not isinstance(content, dict):
            raise TypeError("Vault document 'content' is not an object")
        return content.setdefault(name, {})

    @property
    def name(self) -> str:
        metadata = self.metadata
        return metadata.get("name", "") if isinstance(metadata, dict) else ""

    @property
    def memories(self) -> Dict[str, Any]:
        return self.section("memories")

    @property
    def people(self) -> Dict[str, Any]:
        return self.section("people")

    @property
    def media(self) -> Dict[str, Any]:
        return self.section("media")

    def stats(self) -> Dict[str, int]:
        content = self.content if isinstance(self.content, dict) else {}

        def count(section: str) -> int:
            records = content.get(section)
            return len(records) if isinstance(records, dict) else 0

        return {
            "memoryCount": count("memories"),
            "peopleCount": count("people"),
            "mediaCount": count("media"),
        }

    # -- serialisation ------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self.data)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> VaultDocument:
        if not isinstance(data, Mapping):
            raise TypeError(f"Vault document must be an object, got {type(data).__name__}")
        return cls(copy.deepcopy(dict(data)))


# ============================================================================
#  Verifier / VaultSettings
# ============================================================================
@dataclass(frozen=True)
class Verifier:
    """Authenticated ciphertext of the sentinel text under the master key."""

    iv: bytes
    data: bytes

    def to_dict(self) -> Dict[str, list]:
        return {"iv": list(self.iv), "data": list(self.data)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional[Verifier]:
        if not data or not data.get("iv") or not data.get("data"):
            return None
        iv = bytes(data["iv"])
        if len(iv) != IV_SIZE:
            raise ValueError(f"Verifier IV must be {IV_SIZE} bytes")
        return cls(iv=iv, data=bytes(data["data"]))


@dataclass
class VaultSettings:
    """Persisted KDF parameters for one vault; never holds key material."""

    kdf: str
    iterations: int
    salt: bytes
    verifier: Optional[Verifier] = None
    memory_cost: int = 0
    parallelism: int = 0
    created: float = field(default_factory=time.time)

    def __post_init__(self):
        if self.kdf not in KDF_ALGORITHMS:
            raise ValueError(f"Unsupported KDF algorithm: {self.kdf}")
        if self.iterations < 1:
            raise ValueError("Iteration count must be positive")
        if len(self.salt) != SALT_SIZE:
            raise ValueError(f"Salt must be {SALT_SIZE} bytes")

    def kdf_params(self) -> dict:
        return {
            "algorithm": self.kdf,
            "iterations": self.iterations,
            "memory_cost": self.memory_cost,
            "parallelism": self.parallelism,
        }

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "kdf": self.kdf,
            "iterations": self.iterations,
            "salt": base64.b64encode(self.salt).decode("ascii"),
            "verifier": self.verifier.to_dict() if self.verifier else None,
            "created": self.created,
        }
        if self.kdf == KDF_ARGON2ID:
            data["memoryCost"] = self.memory_cost
            data["parallelism"] = self.parallelism
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> VaultSettings:
        try:
            salt = base64.b64decode(data["salt"], validate=True)
            return cls(
                kdf=data["kdf"],
                iterations=int(data["iterations"]),
                salt=salt,
                verifier=Verifier.from_dict(data.get("verifier")),
                memory_cost=int(data.get("memoryCost", 0)),
                parallelism=int(data.get("parallelism", 0)),
                created=data.get("created", time.time()),
            )
        except (KeyError, TypeError, binascii.Error) as exc:
            raise ValueError(f"Malformed vault settings: {exc}") from exc
