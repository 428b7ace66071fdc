# src/prodcrawl/frontier.py
"""Durable frontier store: pending/claimed/done entries, visited set and counters."""

import sqlite3
import threading
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional
import logging

from prodcrawl.constants import FRONTIER_DB_FILENAME
from prodcrawl.models import EntryState, FrontierEntry
from prodcrawl.url_utils import normalize_url

logger = logging.getLogger(__name__)

# SQL schema for one task's frontier
CREATE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS frontier_entries (
    normalized_key TEXT PRIMARY KEY,
    url TEXT NOT NULL,
    state TEXT NOT NULL,
    claimed_at REAL,
    claim_token TEXT,
    claimed_by TEXT,
    enqueued_seq INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_frontier_state
    ON frontier_entries (state, enqueued_seq);

CREATE TABLE IF NOT EXISTS visited (
    normalized_key TEXT PRIMARY KEY,
    visited_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS counters (
    name TEXT PRIMARY KEY,
    value INTEGER NOT NULL
);

INSERT OR IGNORE INTO counters (name, value) VALUES ('accepted', 0);
INSERT OR IGNORE INTO counters (name, value) VALUES ('sequence', 0);
INSERT OR IGNORE INTO counters (name, value) VALUES ('enqueued', 0);
"""


class FrontierStoreError(Exception):
    """Raised when the underlying frontier storage cannot be used."""


class AbstractFrontierStore(ABC):
    """Abstract base class defining the frontier store interface.

    Every state transition is atomic with respect to every other one, so
    concurrent workers can share one store without further locking.
    """

    @property
    @abstractmethod
    def run_id(self) -> str:
        """Identifier of the invocation this handle belongs to."""
        pass

    @abstractmethod
    def enqueue(self, url: str) -> bool:
        """Add a Pending entry unless the normalized key is already known.

        Returns:
            True if a new entry was created, False for a duplicate.
        """
        pass

    @abstractmethod
    def claim_next(self) -> Optional[FrontierEntry]:
        """Move the oldest Pending entry to Claimed and return it.

        Returns:
            The claimed entry, or None when nothing is Pending.
        """
        pass

    @abstractmethod
    def mark_done(self, entry: FrontierEntry, accepted: bool, cap: Optional[int] = None) -> bool:
        """Move an entry to Done and record it in the visited set.

        Args:
            entry: Entry returned by claim_next()
            accepted: Whether the page was accepted as a product page
            cap: Upper bound for the accepted counter

        Returns:
            True if an acceptance was counted.
        """
        pass

    @abstractmethod
    def requeue_stuck(self, entry: FrontierEntry) -> bool:
        """Move a Claimed entry back to Pending without visiting it.

        Returns:
            True if the entry was still held by the same claim.
        """
        pass

    @abstractmethod
    def refresh_claim(self, entry: FrontierEntry) -> bool:
        """Restamp a held claim so the watchdog does not treat it as stuck.

        Returns:
            True if the entry is still held by the same claim.
        """
        pass

    @abstractmethod
    def claimed_older_than(self, seconds: float) -> List[FrontierEntry]:
        """Claimed entries whose claim is older than ``seconds``."""
        pass

    @abstractmethod
    def is_visited(self, url: str) -> bool:
        pass

    @abstractmethod
    def accepted_count(self) -> int:
        pass

    @abstractmethod
    def next_sequence(self) -> int:
        """Atomically read-and-increment the output sequence counter."""
        pass

    @abstractmethod
    def is_drained(self) -> bool:
        """True when no entry is Pending or Claimed."""
        pass

    @abstractmethod
    def counts(self) -> Dict[str, int]:
        """Number of entries per state plus visited and accepted totals."""
        pass

    @abstractmethod
    def reopen(self) -> None:
        """Drop the current connection and open the store again."""
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class SqliteFrontierStore(AbstractFrontierStore):
    """SQLite frontier store, one database file per task."""

    def __init__(
        self,
        db_path: str,
        run_id: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Open (or create) a task's frontier database.

        Args:
            db_path: Path to the SQLite file
            run_id: Identifier stamped on claims made through this handle
            clock: Time source for claim timestamps
        """
        self.db_path = str(db_path)
        self._run_id = run_id or uuid.uuid4().hex[:8]
        self._clock = clock
        self._lock = threading.Lock()
        self.conn: Optional[sqlite3.Connection] = None
        self.connect()
        self.create_schema()

    @property
    def run_id(self) -> str:
        return self._run_id

    def connect(self) -> None:
        """Establish SQLite connection."""
        try:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                isolation_level=None,  # Explicit transactions below
            )
        except (sqlite3.Error, OSError) as e:
            raise FrontierStoreError(f"Cannot open frontier {self.db_path}: {e}") from e
        self.conn.row_factory = sqlite3.Row
        logger.debug(f"Opened frontier database: {self.db_path} (run {self._run_id})")

    def create_schema(self) -> None:
        """Create the frontier tables if they don't exist."""
        # executescript() manages its own transaction
        with self._lock:
            try:
                self.conn.executescript(CREATE_SCHEMA_SQL)
            except sqlite3.Error as e:
                raise FrontierStoreError(f"Cannot create frontier schema in {self.db_path}: {e}") from e

    def close(self) -> None:
        """Close SQLite connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None
                logger.debug(f"Closed frontier database: {self.db_path}")

    def reopen(self) -> None:
        """Reconnect under the same path and run identifier."""
        with self._lock:
            if self.conn is not None:
                try:
                    self.conn.close()
                except sqlite3.Error as e:
                    logger.debug(f"Ignoring error while closing broken frontier: {e}")
                self.conn = None
        self.connect()
        self.create_schema()
        logger.info(f"Reopened frontier database: {self.db_path}")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def enqueue(self, url: str) -> bool:
        key = normalize_url(url)
        with self._transaction() as conn:
            if conn.execute(
                "SELECT 1 FROM visited WHERE normalized_key = ?", (key,)
            ).fetchone():
                return False

            seq = self._bump_counter(conn, "enqueued")
            cursor = conn.execute(
                "INSERT OR IGNORE INTO frontier_entries "
                "(normalized_key, url, state, enqueued_seq) VALUES (?, ?, ?, ?)",
                (key, url, EntryState.PENDING.value, seq),
            )
            return cursor.rowcount == 1

    def claim_next(self) -> Optional[FrontierEntry]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT normalized_key FROM frontier_entries WHERE state = ? "
                "ORDER BY enqueued_seq LIMIT 1",
                (EntryState.PENDING.value,),
            ).fetchone()
            if row is None:
                return None

            token = uuid.uuid4().hex
            now = self._clock()
            cursor = conn.execute(
                "UPDATE frontier_entries SET state = ?, claimed_at = ?, claim_token = ?, claimed_by = ? "
                "WHERE normalized_key = ? AND state = ?",
                (
                    EntryState.CLAIMED.value, now, token, self._run_id,
                    row["normalized_key"], EntryState.PENDING.value,
                ),
            )
            if cursor.rowcount != 1:
                return None
            return self._fetch_entry(conn, row["normalized_key"])

    def mark_done(self, entry: FrontierEntry, accepted: bool, cap: Optional[int] = None) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE frontier_entries SET state = ?, claim_token = NULL "
                "WHERE normalized_key = ? AND state != ?",
                (EntryState.DONE.value, entry.normalized_key, EntryState.DONE.value),
            )
            if cursor.rowcount != 1:
                # Already finished by another holder of a requeued claim
                return False

            conn.execute(
                "INSERT OR IGNORE INTO visited (normalized_key, visited_at) VALUES (?, ?)",
                (entry.normalized_key, self._clock()),
            )

            if not accepted:
                return False

            if cap is None:
                cursor = conn.execute(
                    "UPDATE counters SET value = value + 1 WHERE name = 'accepted'"
                )
            else:
                cursor = conn.execute(
                    "UPDATE counters SET value = value + 1 WHERE name = 'accepted' AND value < ?",
                    (cap,),
                )
            return cursor.rowcount == 1

    def requeue_stuck(self, entry: FrontierEntry) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE frontier_entries SET state = ?, claimed_at = NULL, claim_token = NULL, claimed_by = NULL "
                "WHERE normalized_key = ? AND state = ? AND claim_token = ?",
                (
                    EntryState.PENDING.value, entry.normalized_key,
                    EntryState.CLAIMED.value, entry.claim_token,
                ),
            )
            return cursor.rowcount == 1

    def refresh_claim(self, entry: FrontierEntry) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE frontier_entries SET claimed_at = ? "
                "WHERE normalized_key = ? AND state = ? AND claim_token = ?",
                (self._clock(), entry.normalized_key, EntryState.CLAIMED.value, entry.claim_token),
            )
            return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def claimed_older_than(self, seconds: float) -> List[FrontierEntry]:
        cutoff = self._clock() - seconds
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM frontier_entries WHERE state = ? AND claimed_at < ? "
                "ORDER BY claimed_at",
                (EntryState.CLAIMED.value, cutoff),
            ).fetchall()
            return [self._row_to_entry(row) for row in rows]

    def is_visited(self, url: str) -> bool:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM visited WHERE normalized_key = ?", (normalize_url(url),)
            ).fetchone()
            return row is not None

    def accepted_count(self) -> int:
        with self._transaction() as conn:
            return self._read_counter(conn, "accepted")

    def next_sequence(self) -> int:
        with self._transaction() as conn:
            return self._bump_counter(conn, "sequence")

    def is_drained(self) -> bool:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM frontier_entries WHERE state IN (?, ?)",
                (EntryState.PENDING.value, EntryState.CLAIMED.value),
            ).fetchone()
            return row["n"] == 0

    def counts(self) -> Dict[str, int]:
        with self._transaction() as conn:
            result = {state.value: 0 for state in EntryState}
            for row in conn.execute(
                "SELECT state, COUNT(*) AS n FROM frontier_entries GROUP BY state"
            ):
                result[row["state"]] = row["n"]
            result["visited"] = conn.execute(
                "SELECT COUNT(*) AS n FROM visited"
            ).fetchone()["n"]
            result["accepted"] = self._read_counter(conn, "accepted")
            return result

    def visited_keys(self) -> List[str]:
        """All normalized keys in the visited set."""
        with self._transaction() as conn:
            return [
                row["normalized_key"]
                for row in conn.execute("SELECT normalized_key FROM visited ORDER BY visited_at")
            ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transaction(self) -> "_Transaction":
        return _Transaction(self)

    def _bump_counter(self, conn: sqlite3.Connection, name: str) -> int:
        """Return the counter's current value and increment it."""
        value = self._read_counter(conn, name)
        conn.execute("UPDATE counters SET value = value + 1 WHERE name = ?", (name,))
        return value

    @staticmethod
    def _read_counter(conn: sqlite3.Connection, name: str) -> int:
        row = conn.execute("SELECT value FROM counters WHERE name = ?", (name,)).fetchone()
        return row["value"] if row else 0

    def _fetch_entry(self, conn: sqlite3.Connection, key: str) -> FrontierEntry:
        row = conn.execute(
            "SELECT * FROM frontier_entries WHERE normalized_key = ?", (key,)
        ).fetchone()
        return self._row_to_entry(row)

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> FrontierEntry:
        return FrontierEntry(
            url=row["url"],
            normalized_key=row["normalized_key"],
            state=EntryState(row["state"]),
            claimed_at=row["claimed_at"],
            claim_token=row["claim_token"],
            claimed_by=row["claimed_by"],
        )


class _Transaction:
    """Holds the store lock and an immediate SQLite transaction.

    Any sqlite3 failure inside the block surfaces as FrontierStoreError.
    """

    def __init__(self, store: SqliteFrontierStore):
        self._store = store

    def __enter__(self) -> sqlite3.Connection:
        self._store._lock.acquire()
        conn = self._store.conn
        if conn is None:
            self._store._lock.release()
            raise FrontierStoreError(f"Frontier {self._store.db_path} is closed")
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            self._store._lock.release()
            raise FrontierStoreError(f"Frontier {self._store.db_path} unavailable: {e}") from e
        return conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        conn = self._store.conn
        try:
            if exc_type is None:
                conn.execute("COMMIT")
            else:
                conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            if exc_type is None:
                raise FrontierStoreError(f"Frontier {self._store.db_path} commit failed: {e}") from e
            logger.debug(f"Rollback failed on {self._store.db_path}: {e}")
        finally:
            self._store._lock.release()

        if exc_type is not None and issubclass(exc_type, sqlite3.Error):
            raise FrontierStoreError(f"Frontier {self._store.db_path} operation failed: {exc_val}") from exc_val
        return False


def open_frontier(
    task_id: str,
    tasks_dir: str,
    run_id: Optional[str] = None,
    **kwargs,
) -> SqliteFrontierStore:
    """Factory function to open a task's frontier store.

    Args:
        task_id: Task identifier; selects the database file
        tasks_dir: Directory holding one sub-directory per task
        run_id: Identifier of the invocation (defaults to ``<task_id>-<nonce>``)
        **kwargs: Additional arguments passed to the store constructor.

    Returns:
        An open SqliteFrontierStore.
    """
    db_path = Path(tasks_dir) / task_id / FRONTIER_DB_FILENAME
    run_id = run_id or f"{task_id}-{uuid.uuid4().hex[:8]}"
    logger.debug(f"Opening frontier for task {task_id} at {db_path}")
    return SqliteFrontierStore(str(db_path), run_id=run_id, **kwargs)
