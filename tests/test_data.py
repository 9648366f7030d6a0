"""Unit tests for the data layer (database, repository, event store)."""

import sqlite3
import pytest
from datetime import datetime, timedelta

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from focusorb.data.database import V1_CREATE_EVENTS, Database, migrate
from focusorb.data.event_store import EventStore
from focusorb.data.models import Event, EventType
from focusorb.data.repository import EventRepository
from focusorb.errors import PersistenceWriteFailure

T0 = datetime(2026, 3, 2, 9, 0, 0)


def _at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


@pytest.fixture
def repo(conn):
    return EventRepository(conn)


class FailingRepository(EventRepository):
    """Repository whose writes fail while `failing` is set."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        super().__init__(conn)
        self.failing = False

    def append(self, event: Event) -> None:
        if self.failing:
            raise PersistenceWriteFailure(event.id, sqlite3.OperationalError("disk I/O error"))
        super().append(event)


class TestDatabase:
    def test_connect_runs_migrations(self, tmp_path):
        db = Database(db_path=tmp_path / "orb.db")
        conn = db.connect()
        columns = {r[1] for r in conn.execute("PRAGMA table_info(orb_events)")}
        assert {"id", "timestamp", "type", "session_id", "parent_session_id", "meta"} <= columns
        assert conn.execute("PRAGMA user_version").fetchone()[0] == 2
        db.close()
        assert db.conn is None

    def test_migrate_is_idempotent(self, conn):
        assert migrate(conn) == 2
        assert migrate(conn) == 2

    def test_upgrade_from_v1_keeps_rows(self):
        conn = sqlite3.connect(":memory:")
        conn.row_factory = sqlite3.Row
        conn.executescript(V1_CREATE_EVENTS)
        conn.execute("PRAGMA user_version = 1")
        conn.execute(
            "INSERT INTO orb_events (id, timestamp, type, session_id) VALUES (?, ?, ?, ?)",
            ("e1", T0.isoformat(), "sessionStart", "s1"),
        )
        conn.commit()

        migrate(conn)
        events = EventRepository(conn).fetch_all()
        assert len(events) == 1
        assert events[0].parent_session_id is None


class TestRepository:
    def test_append_and_fetch_all(self, repo):
        repo.append(Event(type=EventType.SESSION_START, session_id="s1", timestamp=_at(0)))
        repo.append(Event(type=EventType.SESSION_END, session_id="s1", timestamp=_at(60)))
        events = repo.fetch_all()
        assert [e.type for e in events] == [EventType.SESSION_START, EventType.SESSION_END]
        assert events[0].timestamp == _at(0)

    def test_fetch_all_orders_by_time_then_insertion(self, repo):
        repo.append(Event(type=EventType.SESSION_END, session_id="s1", timestamp=_at(30), id="late"))
        repo.append(Event(type=EventType.SESSION_START, session_id="s1", timestamp=_at(0), id="first"))
        repo.append(Event(type=EventType.SESSION_REFLECTION, session_id="s1", timestamp=_at(30), id="tie"))
        assert [e.id for e in repo.fetch_all()] == ["first", "late", "tie"]

    def test_fetch_events_by_session(self, repo):
        repo.append(Event(type=EventType.SESSION_START, session_id="a", timestamp=_at(0)))
        repo.append(Event(type=EventType.SESSION_START, session_id="b", timestamp=_at(10)))
        repo.append(Event(type=EventType.SESSION_END, session_id="a", timestamp=_at(20)))
        assert [e.type for e in repo.fetch_events("a")] == [
            EventType.SESSION_START, EventType.SESSION_END]

    def test_fetch_last_event_of_type(self, repo):
        repo.append(Event(type=EventType.SESSION_END, session_id="a", timestamp=_at(10)))
        repo.append(Event(type=EventType.SESSION_END, session_id="b", timestamp=_at(50)))
        repo.append(Event(type=EventType.SESSION_START, session_id="c", timestamp=_at(60)))
        last = repo.fetch_last_event_of_type(EventType.SESSION_END)
        assert last.session_id == "b"
        assert repo.fetch_last_event_of_type(EventType.CONFIRM_BREAK_START) is None

    def test_meta_and_parent_round_trip(self, repo):
        repo.append(Event(type=EventType.SESSION_START, session_id="b", timestamp=_at(0),
                          parent_session_id="a"))
        repo.append(Event(type=EventType.SESSION_REFLECTION, session_id="b", timestamp=_at(5),
                          meta={"mood": "calm"}))
        start, reflection = repo.fetch_all()
        assert start.parent_session_id == "a"
        assert start.meta is None
        assert reflection.meta == {"mood": "calm"}

    def test_duplicate_id_is_write_failure(self, repo):
        event = Event(type=EventType.SESSION_START, session_id="s1", timestamp=_at(0))
        repo.append(event)
        with pytest.raises(PersistenceWriteFailure):
            repo.append(event)

    def test_malformed_rows_are_skipped(self, repo, conn):
        repo.append(Event(type=EventType.SESSION_START, session_id="s1", timestamp=_at(0)))
        conn.execute(
            "INSERT INTO orb_events (id, timestamp, type, session_id) VALUES (?, ?, ?, ?)",
            ("bad-type", _at(1).isoformat(), "teleport", "s1"),
        )
        conn.execute(
            "INSERT INTO orb_events (id, timestamp, type, session_id) VALUES (?, ?, ?, ?)",
            ("bad-time", "yesterday-ish", "sessionEnd", "s1"),
        )
        conn.commit()
        events = repo.fetch_all()
        assert len(events) == 1
        assert events[0].type == EventType.SESSION_START

    def test_garbled_meta_reads_as_absent(self, repo, conn):
        conn.execute(
            "INSERT INTO orb_events (id, timestamp, type, session_id, meta) VALUES (?, ?, ?, ?, ?)",
            ("e1", _at(0).isoformat(), "sessionReflection", "s1", "{not json"),
        )
        conn.commit()
        (event,) = repo.fetch_all()
        assert event.meta is None

    def test_reset_all_data(self, repo):
        repo.append(Event(type=EventType.SESSION_START, session_id="s1", timestamp=_at(0)))
        repo.reset_all_data()
        assert repo.count_events() == 0


class TestEventStore:
    def test_reload_reads_existing_log(self, repo):
        repo.append(Event(type=EventType.SESSION_START, session_id="s1", timestamp=_at(0)))
        store = EventStore(repo)
        assert len(store.events) == 1

    def test_append_updates_cache_and_db(self, repo):
        store = EventStore(repo)
        store.append(Event(type=EventType.SESSION_START, session_id="s1", timestamp=_at(0)))
        assert len(store.events) == 1
        assert repo.count_events() == 1

    def test_cache_stays_time_ordered(self, repo):
        store = EventStore(repo)
        store.append(Event(type=EventType.SESSION_END, session_id="s1", timestamp=_at(30), id="b"))
        store.append(Event(type=EventType.SESSION_START, session_id="s1", timestamp=_at(0), id="a"))
        store.append(Event(type=EventType.SESSION_REFLECTION, session_id="s1", timestamp=_at(30), id="c"))
        assert [e.id for e in store.events] == ["a", "b", "c"]

    def test_unreadable_log_falls_back_to_empty(self, conn):
        repo = EventRepository(conn)
        repo.append(Event(type=EventType.SESSION_START, session_id="s1", timestamp=_at(0)))
        conn.execute("DROP TABLE orb_events")
        store = EventStore(repo)
        assert store.events == []

    def test_write_failure_keeps_event_and_queues_it(self, conn):
        repo = FailingRepository(conn)
        store = EventStore(repo)
        repo.failing = True
        event = Event(type=EventType.SESSION_START, session_id="s1", timestamp=_at(0))
        with pytest.raises(PersistenceWriteFailure):
            store.append(event)
        assert store.events == [event]
        assert store.pending_writes == [event]
        assert repo.count_events() == 0

        repo.failing = False
        assert store.flush_pending() == 1
        assert store.pending_writes == []
        assert repo.count_events() == 1

    def test_next_append_flushes_queue_first(self, conn):
        repo = FailingRepository(conn)
        store = EventStore(repo)
        repo.failing = True
        with pytest.raises(PersistenceWriteFailure):
            store.append(Event(type=EventType.SESSION_START, session_id="s1", timestamp=_at(0), id="a"))
        repo.failing = False
        store.append(Event(type=EventType.SESSION_END, session_id="s1", timestamp=_at(10), id="b"))
        assert [e.id for e in repo.fetch_all()] == ["a", "b"]

    def test_last_state_event_skips_reflections(self, repo):
        store = EventStore(repo)
        store.append(Event(type=EventType.SESSION_START, session_id="s1", timestamp=_at(0)))
        store.append(Event(type=EventType.SESSION_END, session_id="s1", timestamp=_at(10)))
        store.append(Event(type=EventType.SESSION_REFLECTION, session_id="s1", timestamp=_at(20),
                           meta={"mood": "good"}))
        assert store.last_state_event().type == EventType.SESSION_END
        assert store.last_session_end_event().session_id == "s1"

    def test_cached_meta_is_read_only(self, repo):
        store = EventStore(repo)
        source = {"mood": "calm"}
        event = store.append(Event(type=EventType.SESSION_REFLECTION, session_id="s1",
                                   timestamp=_at(0), meta=source))
        source["mood"] = "tired"
        with pytest.raises(TypeError):
            store.events[0].meta["mood"] = "stressed"
        assert store.events[0].meta == {"mood": "calm"}
        assert repo.fetch_all()[0].meta == {"mood": "calm"}
        assert hash(event) == hash(repo.fetch_all()[0])

    def test_events_for_session(self, repo):
        store = EventStore(repo)
        store.append(Event(type=EventType.SESSION_START, session_id="a", timestamp=_at(0)))
        store.append(Event(type=EventType.SESSION_START, session_id="b", timestamp=_at(5)))
        assert [e.session_id for e in store.events_for("b")] == ["b"]

    def test_subscribe_and_unsubscribe(self, repo):
        store = EventStore(repo)
        seen = []
        unsubscribe = store.subscribe(seen.append)
        first = store.append(Event(type=EventType.SESSION_START, session_id="a", timestamp=_at(0)))
        unsubscribe()
        store.append(Event(type=EventType.SESSION_END, session_id="a", timestamp=_at(5)))
        assert seen == [first]

    def test_reset_clears_everything(self, repo):
        store = EventStore(repo)
        store.append(Event(type=EventType.SESSION_START, session_id="a", timestamp=_at(0)))
        store.reset()
        assert store.events == []
        assert repo.count_events() == 0
