"""SQLite persistence for router state across suspension points.

This module provides:
- StateStore: durable save/restore/delete of RouterState keyed by task id
- Task: the per-invocation handle the router reads and writes through
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from triage_router.models import RouterState

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS router_state (
    task_id TEXT PRIMARY KEY,
    state_json TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_router_state_updated ON router_state(updated_at);
"""


class StateStore:
    """SQLite-backed router state store.

    Provides:
    - WAL mode for crash recovery
    - Commit on every save, so state is durable before the next suspension
    - TTL-based cleanup of abandoned tasks
    """

    DEFAULT_TTL_SECONDS = 3600  # 1 hour

    def __init__(self, db_path: str, ttl_seconds: int | None = None) -> None:
        """Open (and create if needed) the state database.

        Args:
            db_path: Path to the SQLite database file, or ``:memory:``.
            ttl_seconds: Age after which an unfinished task's state is expired.
        """
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = sqlite3.connect(
            db_path, check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()
        self._ttl_seconds = ttl_seconds or self.DEFAULT_TTL_SECONDS

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("Database connection is closed")
        return self._conn

    def save(self, task_id: str, state: RouterState) -> None:
        conn = self._connection()
        conn.execute(
            """INSERT INTO router_state (task_id, state_json, updated_at)
               VALUES (?, ?, ?)
               ON CONFLICT(task_id) DO UPDATE SET
                   state_json = excluded.state_json,
                   updated_at = excluded.updated_at""",
            (task_id, state.model_dump_json(), datetime.now(UTC).isoformat()),
        )
        conn.commit()

    def restore(self, task_id: str) -> RouterState | None:
        """Return the last state saved for ``task_id``.

        Returns None when nothing was saved or the stored record no longer
        validates against RouterState.
        """
        row = self._connection().execute(
            "SELECT state_json FROM router_state WHERE task_id = ?", (task_id,),
        ).fetchone()
        if row is None:
            return None
        try:
            return RouterState.model_validate_json(row["state_json"])
        except ValidationError as exc:
            logger.warning("Discarding unreadable state for task %s: %s", task_id, exc)
            return None

    def delete(self, task_id: str) -> None:
        conn = self._connection()
        conn.execute("DELETE FROM router_state WHERE task_id = ?", (task_id,))
        conn.commit()

    def cleanup_expired(self) -> int:
        """Remove states not updated within the TTL.

        Returns:
            Number of task states removed.
        """
        cutoff = (datetime.now(UTC) - timedelta(seconds=self._ttl_seconds)).isoformat()
        conn = self._connection()
        cursor = conn.execute("DELETE FROM router_state WHERE updated_at < ?", (cutoff,))
        conn.commit()
        return cursor.rowcount

    def task(self, task_id: str) -> Task:
        return Task(self, task_id)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> StateStore:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()


class Task:
    """Handle for one router invocation's persisted state."""

    def __init__(self, store: StateStore, task_id: str) -> None:
        self._store = store
        self.task_id = task_id

    def save(self, state: RouterState) -> None:
        self._store.save(self.task_id, state)

    def restore(self) -> RouterState | None:
        return self._store.restore(self.task_id)

    def clear(self) -> None:
        self._store.delete(self.task_id)
