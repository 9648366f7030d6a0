"""
EventRepository — the single place where SQL lives.

Every other module talks to the repository (usually through EventStore),
never to raw SQL. sqlite3 errors are translated into the core's persistence
errors here, and rows that fail to decode are skipped one at a time.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime
from typing import Dict, List, Optional

from focusorb.errors import MalformedEventRow, PersistenceReadFailure, PersistenceWriteFailure

from .models import Event, EventType

logger = logging.getLogger(__name__)

_ORDER = "ORDER BY timestamp ASC, rowid ASC"


def format_ts(ts: datetime) -> str:
    # fixed width so lexical order in SQLite matches chronological order
    return ts.isoformat(timespec="microseconds")


class EventRepository:
    """Data-access layer for the append-only event log."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self._write_lock = threading.Lock()

    # ── Writes ──────────────────────────────────────────────────────────────

    def append(self, event: Event) -> None:
        """Insert one event. Raises PersistenceWriteFailure on any SQLite error."""
        meta = json.dumps(dict(event.meta), sort_keys=True) if event.meta else None
        with self._write_lock:
            try:
                self.conn.execute(
                    "INSERT INTO orb_events (id, timestamp, type, session_id, parent_session_id, meta) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (event.id, format_ts(event.timestamp), event.type.value,
                     event.session_id, event.parent_session_id, meta),
                )
                self.conn.commit()
            except sqlite3.Error as exc:
                self.conn.rollback()
                raise PersistenceWriteFailure(event.id, exc) from exc

    def reset_all_data(self) -> None:
        """Delete every event. Requires explicit confirmation in the UI."""
        with self._write_lock:
            try:
                self.conn.execute("DELETE FROM orb_events")
                self.conn.commit()
            except sqlite3.Error as exc:
                self.conn.rollback()
                raise PersistenceWriteFailure("*", exc) from exc
        logger.warning("All events have been deleted.")

    # ── Reads ───────────────────────────────────────────────────────────────

    def fetch_all(self) -> List[Event]:
        return self._fetch(f"SELECT * FROM orb_events {_ORDER}")

    def fetch_events(self, session_id: str) -> List[Event]:
        return self._fetch(
            f"SELECT * FROM orb_events WHERE session_id = ? {_ORDER}", (session_id,)
        )

    def fetch_last_event_of_type(self, event_type: EventType) -> Optional[Event]:
        # newest first; skip undecodable rows rather than giving up
        rows = self._query(
            "SELECT * FROM orb_events WHERE type = ? ORDER BY timestamp DESC, rowid DESC",
            (event_type.value,),
        )
        for row in rows:
            try:
                return self.row_to_event(row)
            except MalformedEventRow as exc:
                logger.warning("Skipping row: %s", exc)
        return None

    def count_events(self) -> int:
        return self._query("SELECT COUNT(*) FROM orb_events")[0][0]

    # ── Internal ────────────────────────────────────────────────────────────

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            return self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceReadFailure(str(exc)) from exc

    def _fetch(self, sql: str, params: tuple = ()) -> List[Event]:
        events: List[Event] = []
        for row in self._query(sql, params):
            try:
                events.append(self.row_to_event(row))
            except MalformedEventRow as exc:
                logger.warning("Skipping row: %s", exc)
        return events

    # ── Row mapper ──────────────────────────────────────────────────────────

    @staticmethod
    def row_to_event(row: sqlite3.Row) -> Event:
        """Decode one row. Optional columns that are missing or garbled read as absent."""
        keys = set(row.keys())
        row_id = row["id"] if "id" in keys else None
        if not row_id:
            raise MalformedEventRow(row_id, "missing id")
        session_id = row["session_id"] if "session_id" in keys else None
        if not session_id:
            raise MalformedEventRow(row_id, "missing session_id")
        raw_type = row["type"] if "type" in keys else None
        try:
            event_type = EventType(raw_type)
        except ValueError as exc:
            raise MalformedEventRow(row_id, f"unknown type {raw_type!r}") from exc
        raw_ts = row["timestamp"] if "timestamp" in keys else None
        try:
            timestamp = datetime.fromisoformat(raw_ts)
        except (TypeError, ValueError) as exc:
            raise MalformedEventRow(row_id, f"bad timestamp {raw_ts!r}") from exc

        parent = row["parent_session_id"] if "parent_session_id" in keys else None
        return Event(
            id=row_id,
            timestamp=timestamp,
            type=event_type,
            session_id=session_id,
            parent_session_id=parent or None,
            meta=_decode_meta(row["meta"] if "meta" in keys else None),
        )


def _decode_meta(raw: Optional[str]) -> Optional[Dict[str, str]]:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(value, dict):
        return None
    return {str(k): str(v) for k, v in value.items()}
