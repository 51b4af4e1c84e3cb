"""Replay protection for Slack Events API deliveries.

Slack redelivers an event (same ``event_id``) when the first delivery is
not acknowledged quickly enough. Each redelivery would otherwise start a
second triage, so seen event ids are remembered in SQLite and duplicates
are dropped.
"""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path


class ReplayProtection:
    """Remembers Slack event ids using SQLite-backed state."""

    DEFAULT_MAX_AGE_SECONDS = 86400  # 24 hours

    def __init__(self, db_path: str) -> None:
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.execute(
            """CREATE TABLE IF NOT EXISTS slack_events (
                event_id TEXT PRIMARY KEY,
                received_at INTEGER NOT NULL
            )"""
        )
        self._conn.commit()

    def check_event(self, event_id: str) -> bool:
        """Return True if event_id has not been seen before, and record it."""
        cursor = self._conn.execute(
            "INSERT OR IGNORE INTO slack_events (event_id, received_at) VALUES (?, ?)",
            (event_id, int(time.time())),
        )
        self._conn.commit()
        return cursor.rowcount == 1

    def cleanup(self, max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS) -> int:
        """Forget event ids older than max_age_seconds. Returns rows removed."""
        cutoff = int(time.time()) - max_age_seconds
        cursor = self._conn.execute(
            "DELETE FROM slack_events WHERE received_at < ?", (cutoff,),
        )
        self._conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        self._conn.close()
