"""Integrity journal: chunked SHA-256 manifests over arbitrary payloads.

The root hash is a digest of the whole payload, not of the chunk digests, so
it is a second check independent of the per-chunk hashes.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from emmavault.errors import ManifestMismatch
from emmavault.util.timeutil import utc_now_iso

logger = logging.getLogger("emmavault.journal")

MANIFEST_VERSION = 1
DEFAULT_CHUNK_SIZE = 64 * 1024


def _sha256_hex(data) -> str:
    return hashlib.sha256(data).hexdigest()


def _same_digest(actual: str, recorded: str) -> bool:
    # compare_digest refuses non-ASCII str; compare the encoded forms instead
    return hmac.compare_digest(
        actual.encode("ascii"), recorded.encode("utf-8", errors="surrogatepass")
    )


@dataclass(frozen=True)
class ManifestChunk:
    index: int
    size: int
    hash: str

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "size": self.size, "hash": self.hash}


@dataclass
class IntegrityManifest:
    version: int
    created_at: str
    total_bytes: int
    chunk_size: int
    chunk_count: int
    root_hash: str
    chunks: List[ManifestChunk] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "createdAt": self.created_at,
            "totalBytes": self.total_bytes,
            "chunkSize": self.chunk_size,
            "chunkCount": self.chunk_count,
            "rootHash": self.root_hash,
            "chunks": [c.to_dict() for c in self.chunks],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> IntegrityManifest:
        try:
            return cls(
                version=int(data["version"]),
                created_at=str(data["createdAt"]),
                total_bytes=int(data["totalBytes"]),
                chunk_size=int(data["chunkSize"]),
                chunk_count=int(data["chunkCount"]),
                root_hash=str(data["rootHash"]),
                chunks=[
                    ManifestChunk(
                        index=int(c["index"]),
                        size=int(c["size"]),
                        # browser-written manifests name the digest "sha256"
                        hash=str(c["hash"] if "hash" in c else c["sha256"]),
                    )
                    for c in data["chunks"]
                ],
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ManifestMismatch(f"Malformed manifest: {exc}") from exc

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_json(cls, text: str | bytes) -> IntegrityManifest:
        try:
            return cls.from_dict(json.loads(text))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ManifestMismatch(f"Manifest is not valid JSON: {exc}") from exc


# ============================================================================
#  Create / verify
# ============================================================================
def create_manifest(data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> IntegrityManifest:
    if chunk_size < 1:
        raise ValueError("Chunk size must be positive")
    view = memoryview(data)
    total = len(view)
    chunks = [
        ManifestChunk(index=i, size=len(view[start : start + chunk_size]),
                      hash=_sha256_hex(view[start : start + chunk_size]))
        for i, start in enumerate(range(0, total, chunk_size))
    ]
    return IntegrityManifest(
        version=MANIFEST_VERSION,
        created_at=utc_now_iso(),
        total_bytes=total,
        chunk_size=chunk_size,
        chunk_count=len(chunks),
        root_hash=_sha256_hex(view),
        chunks=chunks,
    )


def verify_manifest(data: bytes, manifest: IntegrityManifest) -> bool:
    """True only if every chunk digest and the root digest match."""
    if manifest.version != MANIFEST_VERSION:
        return False
    view = memoryview(data)
    total = len(view)
    if manifest.total_bytes != total:
        return False
    if manifest.chunk_size < 1 or manifest.chunk_count != len(manifest.chunks):
        return False

    # Chunks must tile the payload exactly, in order
    offset = 0
    for position, chunk in enumerate(manifest.chunks):
        expected_size = min(manifest.chunk_size, total - offset)
        if chunk.index != position or chunk.size != expected_size or expected_size <= 0:
            return False
        digest = _sha256_hex(view[offset : offset + chunk.size])
        if not _same_digest(digest, chunk.hash):
            return False
        offset += chunk.size
    if offset != total:
        return False

    return _same_digest(_sha256_hex(view), manifest.root_hash)


def require_valid(data: bytes, manifest: IntegrityManifest) -> None:
    """verify_manifest that raises ManifestMismatch instead of returning False."""
    if not verify_manifest(data, manifest):
        logger.error("Integrity manifest verification failed (%d bytes)", len(data))
        raise ManifestMismatch("Payload does not match its integrity manifest")
