"""
Orb State Machine — the single owner of the Focus/Break session state.

Handles: starting and ending sessions, the click protocol with its debounced
pending-break countdown, auto-merge of back-to-back sessions, and restoring
the state from the tail of the event log after a restart.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional, Union

from PySide6.QtCore import QTimer

from focusorb.config import PENDING_BREAK_DURATION, Settings
from focusorb.data.event_store import EventStore
from focusorb.data.models import Event, EventType, SegmentType, SessionMood, new_id
from focusorb.errors import InvalidTransition, PersistenceWriteFailure
from focusorb.services.stats import calculate_segments, session_stats

logger = logging.getLogger(__name__)

PENDING_TICK_MS = 100
DURATION_TICK_MS = 1000


class StateKind(Enum):
    IDLE = "idle"
    FOCUS = "focus"
    PENDING_BREAK = "pending_break"
    BREAK = "break"


@dataclass(frozen=True)
class OrbState:
    """Current state. start_time is None only for IDLE; remaining only matters while pending."""
    kind: StateKind
    start_time: Optional[datetime] = None
    remaining: float = 0.0

    @classmethod
    def idle(cls) -> "OrbState":
        return cls(StateKind.IDLE)

    @classmethod
    def focus(cls, start: datetime) -> "OrbState":
        return cls(StateKind.FOCUS, start)

    @classmethod
    def pending_break(cls, start: datetime, remaining: float) -> "OrbState":
        return cls(StateKind.PENDING_BREAK, start, remaining)

    @classmethod
    def break_(cls, start: datetime) -> "OrbState":
        return cls(StateKind.BREAK, start)


StateListener = Callable[[OrbState], None]


class OrbStateMachine:
    """
    Exactly one per process. Mutated only through start(), click(),
    end_session(), auto_break() and the timers it owns.

        Idle -> Focus -> PendingBreak -> Break -> Focus ... -> Idle
                              \\-> Focus (cancelled)
    """

    def __init__(
        self,
        store: EventStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.now,
        on_error: Optional[Callable[[PersistenceWriteFailure], None]] = None,
    ) -> None:
        self.store = store
        self.settings = settings or Settings()
        self.clock = clock
        self.on_error = on_error

        self.state = OrbState.idle()
        self.current_session_id: Optional[str] = None
        self.current_session_duration: float = 0.0
        self.last_ended_session_id: Optional[str] = None
        self.last_ended_session_duration: float = 0.0
        self.last_error: Optional[PersistenceWriteFailure] = None

        self._focus_start_before_pending: Optional[datetime] = None
        self._listeners: List[StateListener] = []

        # Countdown for PendingBreak; must never outlive that state
        self._pending_timer = QTimer()
        self._pending_timer.setInterval(PENDING_TICK_MS)
        self._pending_timer.timeout.connect(self.pending_tick)

        # Display-only ticker for Focus/Break
        self._duration_timer = QTimer()
        self._duration_timer.setInterval(DURATION_TICK_MS)
        self._duration_timer.timeout.connect(self.update_duration)

        self.restore_state()

    # ── Public API ──────────────────────────────────────────────────────────

    @property
    def is_idle(self) -> bool:
        return self.state.kind == StateKind.IDLE

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a callback run after every state change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def start(self) -> Event:
        """Begin a new session in Focus."""
        if not self.is_idle:
            raise InvalidTransition("start a session", self.state.kind.value)
        now = self.clock()
        session_id = new_id()
        parent_id = self._merge_parent(now)

        self.current_session_id = session_id
        event = self._emit(Event(
            type=EventType.SESSION_START, session_id=session_id,
            timestamp=now, parent_session_id=parent_id,
        ))
        if parent_id:
            logger.info("Session %s started, merged into %s", session_id, parent_id)
        else:
            logger.info("Session %s started", session_id)
        self._set_state(OrbState.focus(now))
        return event

    def click(self) -> Event:
        """The single user gesture: start, ask for a break, cancel it, or resume focus."""
        kind = self.state.kind
        if kind == StateKind.IDLE or self.current_session_id is None:
            return self.start()

        now = self.clock()
        if self._expire_pending(now):
            kind = self.state.kind

        if kind == StateKind.FOCUS:
            self._focus_start_before_pending = self.state.start_time
            event = self._emit(self._event(EventType.ENTER_PENDING_BREAK, now))
            self._set_state(OrbState.pending_break(now, PENDING_BREAK_DURATION))
            return event

        if kind == StateKind.PENDING_BREAK:
            event = self._emit(self._event(EventType.CANCEL_PENDING_BREAK, now))
            restored = self._focus_start_before_pending or now
            self._focus_start_before_pending = None
            self._set_state(OrbState.focus(restored))
            return event

        # BREAK
        event = self._emit(self._event(EventType.SWITCH_TO_FOCUS, now))
        self._set_state(OrbState.focus(now))
        return event

    def end_session(self) -> Event:
        """End the current session from any non-idle state."""
        if self.is_idle or self.current_session_id is None:
            raise InvalidTransition("end the session", self.state.kind.value)
        now = self.clock()
        self._expire_pending(now)
        session_id = self.current_session_id
        event = self._emit(self._event(EventType.SESSION_END, now))

        stats = session_stats(self.store.events_for(session_id), now)
        self.last_ended_session_id = session_id
        self.last_ended_session_duration = stats.total
        self.current_session_id = None
        self._focus_start_before_pending = None
        logger.info("Session %s ended after %.0fs", session_id, stats.total)
        self._set_state(OrbState.idle())
        return event

    def auto_break(self, idle_since: datetime) -> Optional[Event]:
        """
        Switch straight from Focus to Break because the user went idle.

        The break is backdated to idle_since, but never earlier than the
        session's last recorded event. No-op outside Focus.
        """
        if self.state.kind != StateKind.FOCUS or self.current_session_id is None:
            return None
        now = self.clock()
        session_events = self.store.events_for(self.current_session_id)
        floor = session_events[-1].timestamp if session_events else self.state.start_time
        at = min(max(idle_since, floor, self.state.start_time), now)

        event = self._emit(self._event(EventType.CONFIRM_BREAK_START, at))
        logger.info("Auto-break after idle, backdated to %s", at.isoformat())
        self._set_state(OrbState.break_(at))
        return event

    def reflect(self, mood: Union[SessionMood, str],
                session_id: Optional[str] = None) -> Optional[Event]:
        """Attach a mood to a finished session (the last one by default)."""
        if not self.settings.enable_session_reflection:
            return None
        target = session_id or self.last_ended_session_id
        if target is None:
            return None
        mood = SessionMood(mood)
        return self._emit(Event(
            type=EventType.SESSION_REFLECTION, session_id=target,
            timestamp=self.clock(), meta={"mood": mood.value},
        ))

    def shutdown(self) -> None:
        self._pending_timer.stop()
        self._duration_timer.stop()

    # ── Timer slots ─────────────────────────────────────────────────────────

    def pending_tick(self) -> None:
        """Countdown step. Confirms the break once the full duration has elapsed."""
        if self.state.kind != StateKind.PENDING_BREAK:
            self._pending_timer.stop()
            return
        start = self.state.start_time
        elapsed = (self.clock() - start).total_seconds()
        remaining = max(PENDING_BREAK_DURATION - elapsed, 0.0)
        if remaining == 0:
            self._confirm_break(start)
        else:
            self.state = OrbState.pending_break(start, remaining)
            self._notify()

    def update_duration(self) -> None:
        if self.state.kind in (StateKind.FOCUS, StateKind.BREAK):
            self.current_session_duration = (self.clock() - self.state.start_time).total_seconds()
            self._notify()

    # ── Restoration ─────────────────────────────────────────────────────────

    def restore_state(self) -> None:
        """Rebuild the state implied by the latest non-reflection event."""
        last = self.store.last_state_event()
        if last is None or last.type == EventType.SESSION_END:
            self.current_session_id = None
            self._set_state(OrbState.idle(), notify=False)
            return

        self.current_session_id = last.session_id
        ts = last.timestamp

        if last.type in (EventType.SESSION_START, EventType.SWITCH_TO_FOCUS,
                         EventType.CANCEL_PENDING_BREAK):
            self._set_state(OrbState.focus(self._open_focus_start(ts)), notify=False)

        elif last.type == EventType.CONFIRM_BREAK_START:
            self._set_state(OrbState.break_(ts), notify=False)

        elif last.type == EventType.ENTER_PENDING_BREAK:
            elapsed = (self.clock() - ts).total_seconds()
            if elapsed >= PENDING_BREAK_DURATION:
                logger.info("Pending break expired while not running; confirming it.")
                self._confirm_break(ts, notify=False)
            else:
                self._focus_start_before_pending = self._open_focus_start(ts)
                self._set_state(
                    OrbState.pending_break(ts, PENDING_BREAK_DURATION - elapsed), notify=False
                )
        logger.info("Restored state %s for session %s", self.state.kind.value, last.session_id)

    # ── Internal ────────────────────────────────────────────────────────────

    def _confirm_break(self, pending_start: datetime, notify: bool = True) -> None:
        self._pending_timer.stop()
        if self.current_session_id is None:
            return
        confirm_at = pending_start + timedelta(seconds=PENDING_BREAK_DURATION)
        self._focus_start_before_pending = None
        self._emit(self._event(EventType.CONFIRM_BREAK_START, confirm_at))
        self._set_state(OrbState.break_(confirm_at), notify=notify)

    def _expire_pending(self, now: datetime) -> bool:
        """Confirm a pending break whose countdown ran out before a tick got to it."""
        if self.state.kind != StateKind.PENDING_BREAK:
            return False
        if (now - self.state.start_time).total_seconds() < PENDING_BREAK_DURATION:
            return False
        logger.info("Pending break expired before the countdown tick; confirming it.")
        self._confirm_break(self.state.start_time)
        return True

    def _open_focus_start(self, fallback: datetime) -> datetime:
        """Start of the session's still-open Focus segment, found by replay."""
        segments = calculate_segments(self.store.events_for(self.current_session_id))
        if segments and segments[-1].is_open and segments[-1].type == SegmentType.FOCUS:
            return segments[-1].start_time
        return fallback

    def _merge_parent(self, now: datetime) -> Optional[str]:
        window = self.settings.auto_merge_window_seconds
        if window <= 0:
            return None
        last_end = self.store.last_session_end_event()
        if last_end is None:
            return None
        if (now - last_end.timestamp).total_seconds() <= window:
            return last_end.session_id
        return None

    def _event(self, event_type: EventType, timestamp: datetime) -> Event:
        return Event(type=event_type, session_id=self.current_session_id, timestamp=timestamp)

    def _emit(self, event: Event) -> Event:
        """Append to the log. A failed write is reported but never blocks the transition."""
        try:
            self.store.append(event)
        except PersistenceWriteFailure as exc:
            logger.error("Event %s kept in memory only: %s", event.type.value, exc)
            self.last_error = exc
            if self.on_error:
                self.on_error(exc)
        return event

    def _set_state(self, state: OrbState, notify: bool = True) -> None:
        self._pending_timer.stop()
        self._duration_timer.stop()
        self.state = state

        if state.kind == StateKind.PENDING_BREAK:
            self._pending_timer.start()
        elif state.kind in (StateKind.FOCUS, StateKind.BREAK):
            self._duration_timer.start()
            self.current_session_duration = max(
                (self.clock() - state.start_time).total_seconds(), 0.0
            )
        else:
            self.current_session_duration = 0.0

        if notify:
            self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self.state)


# ---------------------------------------------------------------------------
# Explanation
# ---------------------------------------------------------------------------
# What this file does:
#   Owns the one live session state and turns user gestures into events.
#   A click means something different in each state: start in Idle, ask for
#   a break in Focus, undo that request in PendingBreak, resume in Break.
#
# Timers:
#   - _pending_timer (100 ms) exists only while PendingBreak. When it runs
#     out, the break is stamped at pending start + 3 s, not at the moment
#     the callback happened to fire.
#   - _duration_timer (1 s) only refreshes current_session_duration.
#   _set_state() stops both before every transition, so a late tick can
#   never confirm a break that was already cancelled.
#
# Data flow:
#   click() -> Event -> EventStore.append() -> SQLite + cache -> listeners
#   startup -> restore_state() -> last non-reflection event -> state
