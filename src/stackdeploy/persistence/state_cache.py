"""State cache of per-dependency fingerprints and last run outcomes.

The runner reads an entry before deploying a node (to decide whether the build
can be skipped) and writes it after the node's operation finishes, whether it
succeeded or failed. Each entry records the operation (deploy or purge) that
produced it; only a successful deploy vouches for a build. Entries are keyed by node id and never deleted by a run.
"""

import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType

import structlog

logger = structlog.get_logger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StateEntry:
    """Last known state of one dependency node."""

    id: str
    last_fingerprint: str
    last_run_status: str
    name: str | None = None
    last_operation: str = "deploy"
    updated_at: str = field(default_factory=_now)


class StateCache(ABC):
    """Persistent map of node id -> StateEntry."""

    @abstractmethod
    def get(self, node_id: str) -> StateEntry | None:
        """Entry for a node, or None if the node never ran."""

    @abstractmethod
    def put(self, node_id: str, entry: StateEntry) -> None:
        """Insert or replace the entry for a node."""

    @abstractmethod
    def entries(self) -> list[StateEntry]:
        """All entries, most recently updated first."""

    def close(self) -> None:
        """Release any held resources."""

    def __enter__(self) -> "StateCache":
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Context manager exit."""
        self.close()


class MemoryStateCache(StateCache):
    """Dictionary-backed cache, used for dry runs and tests."""

    def __init__(self) -> None:
        self._entries: dict[str, StateEntry] = {}

    def get(self, node_id: str) -> StateEntry | None:
        return self._entries.get(node_id)

    def put(self, node_id: str, entry: StateEntry) -> None:
        self._entries[node_id] = entry

    def entries(self) -> list[StateEntry]:
        return sorted(self._entries.values(), key=lambda e: e.updated_at, reverse=True)


class SQLiteStateCache(StateCache):
    """
    SQLite-based state cache.

    One row per node id; writes are upserts committed immediately so an
    interrupted run keeps the state of every node that finished.
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize SQLiteStateCache.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn: sqlite3.Connection | None = self._initialize_db()

        logger.debug("State cache opened", db_path=str(self.db_path))

    def _initialize_db(self) -> sqlite3.Connection:
        """Initialize database schema."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS dependency_state (
                id TEXT PRIMARY KEY,
                name TEXT,
                last_fingerprint TEXT NOT NULL,
                last_run_status TEXT NOT NULL,
                last_operation TEXT NOT NULL DEFAULT 'deploy',
                updated_at TEXT NOT NULL
            )
        """
        )
        conn.commit()
        return conn

    def _connection(self) -> sqlite3.Connection:
        if self.conn is None:
            raise RuntimeError(f"State cache {self.db_path} is closed")
        return self.conn

    def get(self, node_id: str) -> StateEntry | None:
        row = self._connection().execute(
            "SELECT * FROM dependency_state WHERE id = ?",
            (node_id,),
        ).fetchone()

        if not row:
            return None
        return self._row_to_entry(row)

    def put(self, node_id: str, entry: StateEntry) -> None:
        conn = self._connection()
        conn.execute(
            """
            INSERT INTO dependency_state
                (id, name, last_fingerprint, last_run_status, last_operation, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                last_fingerprint = excluded.last_fingerprint,
                last_run_status = excluded.last_run_status,
                last_operation = excluded.last_operation,
                updated_at = excluded.updated_at
            """,
            (
                node_id,
                entry.name,
                entry.last_fingerprint,
                entry.last_run_status,
                entry.last_operation,
                entry.updated_at,
            ),
        )
        conn.commit()

        logger.debug(
            "State cache updated",
            node_id=node_id,
            operation=entry.last_operation,
            status=entry.last_run_status,
            fingerprint=entry.last_fingerprint[:12],
        )

    def entries(self) -> list[StateEntry]:
        rows = self._connection().execute(
            "SELECT * FROM dependency_state ORDER BY updated_at DESC, id"
        ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def _row_to_entry(self, row: sqlite3.Row) -> StateEntry:
        """
        Convert SQLite row to StateEntry.

        Args:
            row: SQLite row object.

        Returns:
            StateEntry object.
        """
        return StateEntry(
            id=row["id"],
            name=row["name"],
            last_fingerprint=row["last_fingerprint"],
            last_run_status=row["last_run_status"],
            last_operation=row["last_operation"],
            updated_at=row["updated_at"],
        )

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("State cache closed", db_path=str(self.db_path))
