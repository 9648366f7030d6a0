"""
SQLite database initialization and connection management.

Single responsibility: own the connection, create tables, run migrations.
All actual queries live in EventRepository.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Default DB lives next to the repo root
DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent.parent / "focusorb.db"

V1_CREATE_EVENTS = """
CREATE TABLE IF NOT EXISTS orb_events (
    id          TEXT    PRIMARY KEY,
    timestamp   TEXT    NOT NULL,
    type        TEXT    NOT NULL,
    session_id  TEXT    NOT NULL,
    meta        TEXT                -- JSON-encoded string map
);

CREATE INDEX IF NOT EXISTS idx_events_timestamp ON orb_events(timestamp);
CREATE INDEX IF NOT EXISTS idx_events_session   ON orb_events(session_id);
"""


def _v1_create_events(conn: sqlite3.Connection) -> None:
    conn.executescript(V1_CREATE_EVENTS)


def _v2_add_parent_session_id(conn: sqlite3.Connection) -> None:
    columns = {row[1] for row in conn.execute("PRAGMA table_info(orb_events)")}
    if "parent_session_id" not in columns:
        conn.execute("ALTER TABLE orb_events ADD COLUMN parent_session_id TEXT")


# Additive only. Position in the list is the schema version it produces.
MIGRATIONS: List[Tuple[str, Callable[[sqlite3.Connection], None]]] = [
    ("v1_create_events", _v1_create_events),
    ("v2_add_parent_session_id", _v2_add_parent_session_id),
]


def migrate(conn: sqlite3.Connection) -> int:
    """Apply any migrations newer than the stored user_version. Returns the new version."""
    current = conn.execute("PRAGMA user_version").fetchone()[0]
    for version, (name, step) in enumerate(MIGRATIONS, start=1):
        if version <= current:
            continue
        logger.info("Applying migration %s", name)
        step(conn)
        conn.execute(f"PRAGMA user_version = {version}")
        conn.commit()
    return max(current, len(MIGRATIONS))


class Database:
    """Thin wrapper around a SQLite connection."""

    def __init__(self, db_path: Optional[Path] = None) -> None:
        self.db_path = db_path or DEFAULT_DB_PATH
        self.conn: Optional[sqlite3.Connection] = None

    # -- lifecycle -----------------------------------------------------------

    def connect(self) -> sqlite3.Connection:
        """Open (or return existing) connection and ensure schema exists."""
        if self.conn is not None:
            return self.conn
        logger.info("Connecting to SQLite at %s", self.db_path)
        if str(self.db_path) != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row          # dict-like rows
        self.conn.execute("PRAGMA journal_mode=WAL")  # readers don't block the writer
        version = migrate(self.conn)
        logger.info("Database schema at version %d.", version)
        return self.conn

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Database connection closed.")
