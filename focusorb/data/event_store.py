"""
EventStore — in-memory view of the event log, backed by EventRepository.

The state machine and the statistics layer both read from here. The cache
is only updated alongside an append, so no reconciliation pass is needed.
Writes that fail are kept in the cache and queued for a later retry.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from focusorb.errors import PersistenceReadFailure, PersistenceWriteFailure

from .models import Event, EventType
from .repository import EventRepository

logger = logging.getLogger(__name__)

EventListener = Callable[[Event], None]


class EventStore:
    """Cached, append-only event log."""

    def __init__(self, repo: EventRepository) -> None:
        self.repo = repo
        self.events: List[Event] = []
        self.pending_writes: List[Event] = []
        self._listeners: List[EventListener] = []
        self.reload()

    # ── Public API ──────────────────────────────────────────────────────────

    def reload(self) -> None:
        """Re-read the whole log. An unreadable log degrades to an empty one."""
        try:
            events = self.repo.fetch_all()
        except PersistenceReadFailure as exc:
            logger.error("Failed to fetch events, starting empty: %s", exc)
            events = []
        # queued events never reached the database; keep them visible
        for event in self.pending_writes:
            self._insert_sorted(events, event)
        self.events = events

    def append(self, event: Event) -> Event:
        """
        Persist and cache an event.

        The cache is always updated. If the write fails the event is queued
        for flush_pending() and PersistenceWriteFailure is re-raised so the
        caller can surface it.
        """
        failure: Optional[PersistenceWriteFailure] = None
        if self.pending_writes:
            # keep the database in log order; don't jump the queue
            self.flush_pending()
        if self.pending_writes:
            self.pending_writes.append(event)
            failure = PersistenceWriteFailure(event.id, RuntimeError("earlier writes still pending"))
        else:
            try:
                self.repo.append(event)
            except PersistenceWriteFailure as exc:
                logger.error("Failed to insert event %s (%s): %s", event.id, event.type.value, exc.cause)
                self.pending_writes.append(event)
                failure = exc

        self._insert_sorted(self.events, event)
        self._notify(event)
        if failure is not None:
            raise failure
        return event

    def flush_pending(self) -> int:
        """Retry queued writes in order. Returns how many were written."""
        written = 0
        while self.pending_writes:
            event = self.pending_writes[0]
            try:
                self.repo.append(event)
            except PersistenceWriteFailure as exc:
                logger.warning("Retry of event %s failed: %s", event.id, exc.cause)
                break
            self.pending_writes.pop(0)
            written += 1
        if written:
            logger.info("Flushed %d pending event(s).", written)
        return written

    def events_for(self, session_id: str) -> List[Event]:
        return [e for e in self.events if e.session_id == session_id]

    def last_event_of_type(self, event_type: EventType) -> Optional[Event]:
        for event in reversed(self.events):
            if event.type == event_type:
                return event
        return None

    def last_session_end_event(self) -> Optional[Event]:
        """Latest sessionEnd, used by auto-merge."""
        return self.last_event_of_type(EventType.SESSION_END)

    def last_state_event(self) -> Optional[Event]:
        """Latest event that changes state (reflections are annotations only)."""
        for event in reversed(self.events):
            if event.type != EventType.SESSION_REFLECTION:
                return event
        return None

    def reset(self) -> None:
        """Full data reset: the only way events ever disappear."""
        self.repo.reset_all_data()
        self.events = []
        self.pending_writes = []

    # ── Subscriptions ───────────────────────────────────────────────────────

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ── Internal ────────────────────────────────────────────────────────────

    def _notify(self, event: Event) -> None:
        for listener in list(self._listeners):
            listener(event)

    @staticmethod
    def _insert_sorted(events: List[Event], event: Event) -> None:
        # stable: an equal timestamp goes after existing ones
        index = len(events)
        while index > 0 and events[index - 1].timestamp > event.timestamp:
            index -= 1
        events.insert(index, event)


# ---------------------------------------------------------------------------
# Explanation
# ---------------------------------------------------------------------------
# What this file does:
#   Keeps every event in memory, in time order, next to the SQLite copy.
#   The state machine appends here; the stats layer only reads `events`.
#
# Failure handling:
#   - Read failure on reload(): the app starts with an empty log.
#   - Write failure on append(): the event stays in the cache and in
#     pending_writes; the next append (or flush_pending) retries in order.
