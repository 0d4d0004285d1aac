"""Content-addressed local store: a timestamped event log plus a blob table.

Log entries are keyed by a caller-supplied id (writing an id again replaces
the entry) and listed newest first. Blobs are keyed by an opaque content id;
``put_blob`` on an existing id overwrites it. Nothing is ever compacted here.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger("emmavault.local_store")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS log (
  id TEXT PRIMARY KEY,
  ts REAL NOT NULL,
  body_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS blobs (
  cid TEXT PRIMARY KEY,
  data BLOB NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_log_ts ON log(ts);
"""


def content_id(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(bytes(data)).hexdigest()


@dataclass
class LogEntry:
    id: str
    ts: float = field(default_factory=time.time)
    body: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.body)
        data["id"] = self.id
        data["ts"] = self.ts
        return data


class LocalLogStore:
    """SQLite-backed log/blob store; ``":memory:"`` keeps everything in RAM."""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self._path = str(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def _ensure(self) -> sqlite3.Connection:
        if self._conn is None:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self._path, check_same_thread=False)
            self._conn.executescript(_SCHEMA)
            logger.debug("Local store opened at %s", self._path)
        return self._conn

    # -- sync core ------------------------------------------------------------
    def _put_log(self, entry: LogEntry) -> None:
        with self._lock:
            conn = self._ensure()
            conn.execute(
                "INSERT OR REPLACE INTO log (id, ts, body_json) VALUES (?, ?, ?)",
                (entry.id, float(entry.ts), json.dumps(entry.body, sort_keys=True)),
            )
            conn.commit()

    def _list_log(self, limit: int, after_ts: Optional[float]) -> List[LogEntry]:
        query = "SELECT id, ts, body_json FROM log"
        params: list = []
        if after_ts is not None:
            query += " WHERE ts > ?"
            params.append(float(after_ts))
        query += " ORDER BY ts DESC, id DESC LIMIT ?"
        params.append(int(limit))
        with self._lock:
            rows = self._ensure().execute(query, params).fetchall()
        return [LogEntry(id=row[0], ts=row[1], body=json.loads(row[2])) for row in rows]

    def _put_blob(self, cid: str, data: bytes) -> None:
        with self._lock:
            conn = self._ensure()
            conn.execute(
                "INSERT OR REPLACE INTO blobs (cid, data) VALUES (?, ?)",
                (cid, sqlite3.Binary(bytes(data))),
            )
            conn.commit()

    def _get_blob(self, cid: str) -> Optional[bytes]:
        with self._lock:
            row = self._ensure().execute(
                "SELECT data FROM blobs WHERE cid = ?", (cid,)
            ).fetchone()
        return bytes(row[0]) if row else None

    # -- async API ------------------------------------------------------------
    async def put_log(self, entry: LogEntry) -> None:
        await asyncio.to_thread(self._put_log, entry)

    async def list_log(
        self, limit: int = 100, after_ts: Optional[float] = None
    ) -> List[LogEntry]:
        """Newest-first entries, at most *limit* of them.

        With *after_ts* only entries stamped strictly later are returned.
        """
        if limit <= 0:
            return []
        return await asyncio.to_thread(self._list_log, limit, after_ts)

    async def put_blob(self, cid: str, data: bytes) -> None:
        await asyncio.to_thread(self._put_blob, cid, data)

    async def get_blob(self, cid: str) -> Optional[bytes]:
        return await asyncio.to_thread(self._get_blob, cid)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
