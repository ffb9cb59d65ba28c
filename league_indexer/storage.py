"""SQLite persistence: a small key-value store for the cached leaderboard and
the idempotency ledger of submitted result pairs."""

import asyncio
import sqlite3
import time
from typing import Dict, Iterable, List, Optional, Protocol, Set, Tuple

from .errors import LedgerConflictError

Pair = Tuple[str, int]

PENDING = "pending"
CONFIRMED = "confirmed"


class KVStore(Protocol):
    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


class MemoryKVStore:
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


def _connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


class SqliteKVStore:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self.db_lock = asyncio.Lock()

    def _db(self) -> sqlite3.Connection:
        if self.conn is None:
            self.conn = _connect(self.db_path)
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            self.conn.commit()
        return self.conn

    async def get(self, key: str) -> Optional[str]:
        async with self.db_lock:
            row = self._db().execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    async def set(self, key: str, value: str) -> None:
        async with self.db_lock:
            conn = self._db()
            conn.execute(
                "INSERT OR REPLACE INTO kv (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)",
                (key, value),
            )
            conn.commit()

    async def delete(self, key: str) -> None:
        async with self.db_lock:
            conn = self._db()
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None


class IdempotencyLedger:
    """Persisted set of (participant, matchId) pairs handed to the write path.

    A pair is reserved as ``pending`` before the write call and moved to
    ``confirmed`` once the write returns. Pending pairs block resubmission
    until an operator releases them.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self.db_lock = asyncio.Lock()

    def _db(self) -> sqlite3.Connection:
        if self.conn is None:
            self.conn = _connect(self.db_path)
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS recorded_pairs (
                    participant TEXT NOT NULL,
                    match_id INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    batch_id TEXT,
                    tx_hash TEXT,
                    submitted_at INTEGER NOT NULL,
                    confirmed_at INTEGER,
                    PRIMARY KEY (participant, match_id)
                )
                """
            )
            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_recorded_pairs_status ON recorded_pairs(status)")
            self.conn.commit()
        return self.conn

    async def recorded_pairs(self) -> Set[Pair]:
        async with self.db_lock:
            rows = self._db().execute("SELECT participant, match_id FROM recorded_pairs").fetchall()
        return {(row["participant"], int(row["match_id"])) for row in rows}

    async def reserve(self, pairs: Iterable[Pair], batch_id: str) -> None:
        """Insert all pairs as pending, or none of them if any is already present."""
        now = int(time.time())
        unique = list(dict.fromkeys((p.lower(), int(m)) for p, m in pairs))
        async with self.db_lock:
            conn = self._db()
            existing = [
                pair
                for pair in unique
                if conn.execute(
                    "SELECT 1 FROM recorded_pairs WHERE participant = ? AND match_id = ?", pair
                ).fetchone()
            ]
            if existing:
                raise LedgerConflictError(tuple(existing))
            try:
                conn.executemany(
                    """
                    INSERT INTO recorded_pairs (participant, match_id, status, batch_id, submitted_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [(p, m, PENDING, batch_id, now) for p, m in unique],
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    async def confirm(self, pairs: Iterable[Pair], tx_hash: Optional[str]) -> None:
        now = int(time.time())
        async with self.db_lock:
            conn = self._db()
            conn.executemany(
                """
                UPDATE recorded_pairs SET status = ?, tx_hash = ?, confirmed_at = ?
                WHERE participant = ? AND match_id = ?
                """,
                [(CONFIRMED, tx_hash, now, p.lower(), int(m)) for p, m in pairs],
            )
            conn.commit()

    async def release(self, pairs: Iterable[Pair]) -> int:
        """Remove pending pairs. Confirmed pairs are terminal and never released."""
        async with self.db_lock:
            conn = self._db()
            cur = conn.cursor()
            released = 0
            for participant, match_id in pairs:
                cur.execute(
                    "DELETE FROM recorded_pairs WHERE participant = ? AND match_id = ? AND status = ?",
                    (participant.lower(), int(match_id), PENDING),
                )
                released += cur.rowcount
            conn.commit()
        return released

    async def entries(self, status: Optional[str] = None) -> List[Dict[str, object]]:
        sql = "SELECT participant, match_id, status, batch_id, tx_hash, submitted_at, confirmed_at FROM recorded_pairs"
        params: List[object] = []
        if status:
            sql += " WHERE status = ?"
            params.append(status)
        sql += " ORDER BY submitted_at ASC, participant ASC, match_id ASC"
        async with self.db_lock:
            rows = self._db().execute(sql, params).fetchall()
        return [dict(row) for row in rows]

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None
