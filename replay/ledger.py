"""
Nonce ledger (single-use keys with expiry)
==========================================

The ledger is the only shared mutable state of the trust core. It remembers
every token nonce (and, optionally, proof nullifier) that has been redeemed
until the record's expiry passes, and answers one question atomically:

    claim(key, expires_at) -> bool

``True`` means the key was unseen (or its previous record had expired) and is
now recorded; ``False`` means it is still live and the caller must treat the
presentation as a replay. There is no separate check-then-mark pair, so two
concurrent claims of the same key can never both succeed.

Two implementations are provided:

  • MemoryNonceLedger: dict guarded by a lock; single process only.

  • SQLiteNonceLedger: ``nonces(nonce PRIMARY KEY, first_seen_at, expires_at)``
    table; a claim is one ``BEGIN IMMEDIATE`` transaction that drops an
    expired row for the key and then ``INSERT OR IGNORE``s. Shared by every
    process that opens the same database file.

Any storage failure raises `LedgerUnavailable`. Callers fail closed and
reject the presentation.

Notes
-----
- Wall-clock seconds (float) are the time source; a `clock` callable is
  injectable for tests.
- Records are never mutated after insert; expired ones are purged by
  `purge()` or lazily when their key is claimed again.
"""

from __future__ import annotations

import heapq
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Protocol, Tuple

from core.errors import LedgerUnavailable
from core.logging import get_logger

log = get_logger(__name__)

Clock = Callable[[], float]

# -----------------------------------------------------------------------------
# Public protocol
# -----------------------------------------------------------------------------


class NonceLedger(Protocol):
    def claim(self, key: str, expires_at: float) -> bool: ...
    def seen(self, key: str) -> bool: ...
    def purge(self, now: Optional[float] = None) -> int: ...
    def size(self) -> int: ...


@dataclass(frozen=True)
class NonceRecord:
    nonce: str
    first_seen_at: float
    expires_at: float

    def expired(self, now: float) -> bool:
        return self.expires_at <= now


# -----------------------------------------------------------------------------
# In-memory implementation
# -----------------------------------------------------------------------------


class MemoryNonceLedger:
    """
    In-process ledger.

    `max_entries` is a soft cap: when exceeded, expired records are purged.
    Live records are never evicted to make room, since forgetting a live
    nonce would re-open a replay window. Expiries are kept in a heap, so a
    purge only touches records that have actually expired.
    """

    __slots__ = ("max_entries", "_clock", "_records", "_expiries", "_lock")

    def __init__(self, *, max_entries: int = 1_000_000, clock: Clock = time.time):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._clock = clock
        self._records: Dict[str, NonceRecord] = {}
        self._expiries: List[Tuple[float, str]] = []
        self._lock = threading.Lock()

    def claim(self, key: str, expires_at: float) -> bool:
        now = self._clock()
        with self._lock:
            existing = self._records.get(key)
            if existing is not None and not existing.expired(now):
                return False
            rec = NonceRecord(key, now, float(expires_at))
            self._records[key] = rec
            heapq.heappush(self._expiries, (rec.expires_at, key))
            if len(self._records) > self.max_entries:
                self._purge_locked(now)
            return True

    def seen(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            rec = self._records.get(key)
            return rec is not None and not rec.expired(now)

    def purge(self, now: Optional[float] = None) -> int:
        with self._lock:
            return self._purge_locked(self._clock() if now is None else now)

    def size(self) -> int:
        with self._lock:
            return len(self._records)

    def _purge_locked(self, now: float) -> int:
        n = 0
        heap = self._expiries
        while heap and heap[0][0] <= now:
            expires_at, key = heapq.heappop(heap)
            rec = self._records.get(key)
            # a re-claimed key leaves its older heap entry behind
            if rec is not None and rec.expires_at == expires_at:
                del self._records[key]
                n += 1
        if n:
            log.debug("replay.ledger.purged", backend="memory", count=n)
        return n


# -----------------------------------------------------------------------------
# SQLite implementation
# -----------------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS nonces (
    nonce TEXT PRIMARY KEY,
    first_seen_at REAL NOT NULL,
    expires_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS nonces_expires_at ON nonces (expires_at);
"""


class SQLiteNonceLedger:
    """
    Durable ledger over a SQLite file.

    Each thread gets its own connection (autocommit mode, explicit
    transactions). ``BEGIN IMMEDIATE`` takes the database write lock up front,
    so concurrent claims from threads or processes serialise on SQLite's own
    locking rather than on anything in Python.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = 5000,
        clock: Clock = time.time,
    ):
        self.path = Path(path).expanduser().resolve()
        self.busy_timeout_ms = int(busy_timeout_ms)
        self._clock = clock
        self._tlocal = threading.local()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._db().executescript(_SCHEMA)
        except (OSError, sqlite3.Error) as e:
            raise LedgerUnavailable("cannot open nonce ledger", path=str(self.path)).with_cause(e)

    # Connection management ----------------------------------------------------

    def _db(self) -> sqlite3.Connection:
        conn: Optional[sqlite3.Connection] = getattr(self._tlocal, "conn", None)
        if conn is None:
            conn = sqlite3.connect(
                self.path.as_posix(),
                timeout=self.busy_timeout_ms / 1000.0,
                check_same_thread=False,
                isolation_level=None,
            )
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute(f"PRAGMA busy_timeout={self.busy_timeout_ms};")
            self._tlocal.conn = conn
        return conn

    def close(self) -> None:
        """Close the calling thread's connection, if any."""
        conn: Optional[sqlite3.Connection] = getattr(self._tlocal, "conn", None)
        if conn is not None:
            try:
                conn.close()
            finally:
                self._tlocal.conn = None

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            db = self._db()
            db.execute("BEGIN IMMEDIATE;")
        except sqlite3.Error as e:
            log.error("replay.ledger.unavailable", backend="sqlite", error=str(e))
            raise LedgerUnavailable("nonce ledger transaction failed", path=str(self.path)).with_cause(e)
        try:
            yield db
            db.execute("COMMIT;")
        except sqlite3.Error as e:
            db.execute("ROLLBACK;")
            log.error("replay.ledger.unavailable", backend="sqlite", error=str(e))
            raise LedgerUnavailable("nonce ledger write failed", path=str(self.path)).with_cause(e)
        except BaseException:
            db.execute("ROLLBACK;")
            raise

    # Protocol methods ---------------------------------------------------------

    def claim(self, key: str, expires_at: float) -> bool:
        now = self._clock()
        with self._transaction() as db:
            db.execute("DELETE FROM nonces WHERE nonce = ? AND expires_at <= ?", (key, now))
            cur = db.execute(
                "INSERT OR IGNORE INTO nonces (nonce, first_seen_at, expires_at) VALUES (?, ?, ?)",
                (key, now, float(expires_at)),
            )
            return cur.rowcount == 1

    def seen(self, key: str) -> bool:
        try:
            row = self._db().execute(
                "SELECT expires_at FROM nonces WHERE nonce = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise LedgerUnavailable("nonce ledger read failed", path=str(self.path)).with_cause(e)
        return row is not None and float(row[0]) > self._clock()

    def purge(self, now: Optional[float] = None) -> int:
        cutoff = self._clock() if now is None else now
        with self._transaction() as db:
            cur = db.execute("DELETE FROM nonces WHERE expires_at <= ?", (cutoff,))
            n = cur.rowcount
        if n:
            log.debug("replay.ledger.purged", backend="sqlite", count=n)
        return n

    def size(self) -> int:
        try:
            (n,) = self._db().execute("SELECT COUNT(*) FROM nonces").fetchone()
        except sqlite3.Error as e:
            raise LedgerUnavailable("nonce ledger read failed", path=str(self.path)).with_cause(e)
        return int(n)


# -----------------------------------------------------------------------------
# Factory
# -----------------------------------------------------------------------------


def open_ledger(settings, *, clock: Clock = time.time) -> NonceLedger:
    """Build the ledger selected by `core.config.LedgerSettings`."""
    if settings.backend == "sqlite":
        return SQLiteNonceLedger(settings.sqlite_path, busy_timeout_ms=settings.busy_timeout_ms, clock=clock)
    return MemoryNonceLedger(max_entries=settings.max_entries, clock=clock)


__all__ = [
    "NonceLedger",
    "NonceRecord",
    "MemoryNonceLedger",
    "SQLiteNonceLedger",
    "open_ledger",
]
