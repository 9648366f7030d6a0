"""
Statistics — everything the dashboard shows, derived by replaying events.

Nothing here touches the database or mutates the log. Every function is a
pure function of its inputs (plus an explicit `now` for open segments), so
the whole view can be recomputed at any time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from focusorb.config import MIN_SESSION_DURATION
from focusorb.data.event_store import EventStore
from focusorb.data.models import Event, EventType, Segment, SegmentType, SessionMood

logger = logging.getLogger(__name__)


class StatsPeriod(Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


@dataclass
class DailyStats:
    date: date
    focus_total: float
    break_total: float


@dataclass
class SessionStats:
    total: float
    focus: float
    break_: float
    segments: List[Segment]
    avg_focus_streak: float
    max_focus_streak: float


@dataclass
class SessionDisplay:
    """One row of the session list; may stand for several merged sessions."""
    session_id: str
    start_time: datetime
    end_time: datetime
    focus_duration: float
    break_duration: float
    merged_count: int = 1
    mood: Optional[SessionMood] = None
    session_ids: Set[str] = field(default_factory=set)

    @property
    def total_duration(self) -> float:
        return self.focus_duration + self.break_duration


@dataclass
class DashboardStats:
    period: StatsPeriod
    start: datetime
    end: datetime
    focus_total: float
    break_total: float
    focus_ratio: float
    avg_focus_streak: float
    max_focus_streak: float
    daily_trend: List[DailyStats]
    sessions: List[SessionDisplay]


# ── Segment reconstruction ──────────────────────────────────────────────────

def sort_events(events: Iterable[Event]) -> List[Event]:
    # sorted() is stable, so equal timestamps keep insertion order
    return sorted(events, key=lambda e: e.timestamp)


def calculate_segments(events: Iterable[Event]) -> List[Segment]:
    """Replay events in time order into closed (and at most one open) segments."""
    segments: List[Segment] = []
    open_start: Optional[datetime] = None
    open_type: Optional[SegmentType] = None
    open_session: Optional[str] = None

    def close(at: datetime) -> None:
        if open_start is not None and open_type is not None and open_session is not None:
            segments.append(Segment(open_session, open_start, open_type, end_time=at))

    for event in sort_events(events):
        ts = event.timestamp

        if event.type == EventType.SESSION_START:
            close(ts)
            open_start, open_type, open_session = ts, SegmentType.FOCUS, event.session_id

        elif event.type in (EventType.SWITCH_TO_FOCUS, EventType.CANCEL_PENDING_BREAK):
            if open_type == SegmentType.BREAK:
                close(ts)
                open_start, open_type = ts, SegmentType.FOCUS
            elif open_type is None:
                open_start, open_type, open_session = ts, SegmentType.FOCUS, event.session_id

        elif event.type == EventType.CONFIRM_BREAK_START:
            if open_type == SegmentType.FOCUS:
                close(ts)
                open_start, open_type = ts, SegmentType.BREAK
            elif open_type is None:
                open_start, open_type, open_session = ts, SegmentType.BREAK, event.session_id

        elif event.type == EventType.SESSION_END:
            close(ts)
            open_start = open_type = open_session = None

        # enterPendingBreak and sessionReflection don't bound segments

    if open_start is not None and open_type is not None and open_session is not None:
        segments.append(Segment(open_session, open_start, open_type))
    return segments


def _start_of_day(ts: datetime) -> datetime:
    return datetime.combine(ts.date(), time.min, tzinfo=ts.tzinfo)


def split_segments_by_day(segments: Iterable[Segment]) -> List[Segment]:
    """Cut closed segments at every local midnight they cross."""
    result: List[Segment] = []
    for seg in segments:
        if seg.end_time is None:
            result.append(seg)
            continue
        current = seg.start_time
        midnight = _start_of_day(current) + timedelta(days=1)
        while midnight < seg.end_time:
            result.append(Segment(seg.session_id, current, seg.type, end_time=midnight))
            current = midnight
            midnight += timedelta(days=1)
        result.append(Segment(seg.session_id, current, seg.type, end_time=seg.end_time))
    return result


def close_open_segments(segments: Iterable[Segment], now: datetime) -> List[Segment]:
    """Treat `now` as the end of any ongoing segment (live views only)."""
    return [
        Segment(s.session_id, s.start_time, s.type, end_time=now) if s.end_time is None else s
        for s in segments
    ]


# ── Aggregates ──────────────────────────────────────────────────────────────

def filter_segments(segments: Iterable[Segment], start: datetime, end: datetime) -> List[Segment]:
    """Closed segments lying fully inside the range."""
    return [
        s for s in segments
        if s.end_time is not None and s.start_time >= start and s.end_time <= end
    ]


def _durations(segments: Iterable[Segment], kind: SegmentType,
               now: Optional[datetime] = None) -> np.ndarray:
    return np.array([s.duration(now) for s in segments if s.type == kind], dtype=float)


def focus_total(segments: Sequence[Segment], now: Optional[datetime] = None) -> float:
    return float(_durations(segments, SegmentType.FOCUS, now).sum())


def break_total(segments: Sequence[Segment], now: Optional[datetime] = None) -> float:
    return float(_durations(segments, SegmentType.BREAK, now).sum())


def focus_ratio(segments: Sequence[Segment], now: Optional[datetime] = None) -> float:
    focus = focus_total(segments, now)
    total = focus + break_total(segments, now)
    return focus / total if total > 0 else 0.0


def avg_focus_streak(segments: Sequence[Segment], now: Optional[datetime] = None) -> float:
    durations = _durations(segments, SegmentType.FOCUS, now)
    return float(durations.mean()) if durations.size else 0.0


def max_focus_streak(segments: Sequence[Segment], now: Optional[datetime] = None) -> float:
    durations = _durations(segments, SegmentType.FOCUS, now)
    return float(durations.max()) if durations.size else 0.0


def daily_trend(segments: Iterable[Segment], start: datetime, end: datetime,
                now: Optional[datetime] = None) -> List[DailyStats]:
    """
    One bucket per calendar day in [start, end), zero-filled.

    Ongoing segments count up to `now`. Segments are split at midnight
    first, so each piece lands in exactly one bucket.
    """
    now = now or datetime.now()
    first_day = start.date()
    days: List[date] = []
    cursor = _start_of_day(start)
    while cursor < end:
        days.append(cursor.date())
        cursor += timedelta(days=1)
    if not days:
        return []

    pieces = split_segments_by_day(close_open_segments(segments, now))
    index = np.array([(p.start_time.date() - first_day).days for p in pieces], dtype=int)
    durations = np.array([p.duration(now) for p in pieces], dtype=float)
    is_focus = np.array([p.type == SegmentType.FOCUS for p in pieces], dtype=bool)
    in_range = (index >= 0) & (index < len(days))

    focus = np.bincount(index[in_range & is_focus],
                        weights=durations[in_range & is_focus], minlength=len(days))
    breaks = np.bincount(index[in_range & ~is_focus],
                         weights=durations[in_range & ~is_focus], minlength=len(days))

    return [
        DailyStats(date=d, focus_total=float(focus[i]), break_total=float(breaks[i]))
        for i, d in enumerate(days)
    ]


def session_stats(events: Iterable[Event], now: Optional[datetime] = None) -> SessionStats:
    segments = calculate_segments(events)
    focus = focus_total(segments, now)
    brk = break_total(segments, now)
    return SessionStats(
        total=focus + brk,
        focus=focus,
        break_=brk,
        segments=segments,
        avg_focus_streak=avg_focus_streak(segments, now),
        max_focus_streak=max_focus_streak(segments, now),
    )


# ── Date ranges ─────────────────────────────────────────────────────────────

def today_range(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    start = _start_of_day(now or datetime.now())
    return start, start + timedelta(days=1)


def this_week_range(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Monday 00:00 to the following Monday."""
    today = _start_of_day(now or datetime.now())
    monday = today - timedelta(days=today.weekday())
    return monday, monday + timedelta(days=7)


def this_month_range(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    start = _start_of_day(now or datetime.now()).replace(day=1)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def this_year_range(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    start = _start_of_day(now or datetime.now()).replace(month=1, day=1)
    return start, start.replace(year=start.year + 1)


def period_range(period: StatsPeriod, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    return {
        StatsPeriod.DAY: today_range,
        StatsPeriod.WEEK: this_week_range,
        StatsPeriod.MONTH: this_month_range,
        StatsPeriod.YEAR: this_year_range,
    }[period](now)


# ── Session grouping ────────────────────────────────────────────────────────

def parent_map(events: Iterable[Event]) -> Dict[str, str]:
    """session id -> parent session id, from sessionStart back-references."""
    return {
        e.session_id: e.parent_session_id
        for e in events
        if e.type == EventType.SESSION_START and e.parent_session_id
    }


def effective_session_id(session_id: str, parents: Dict[str, str]) -> str:
    """Follow the parent chain to its root."""
    seen = {session_id}
    current = session_id
    while current in parents:
        current = parents[current]
        if current in seen:  # corrupt cycle; stop where we are
            break
        seen.add(current)
    return current


def latest_mood(events: Iterable[Event], session_ids: Set[str]) -> Optional[SessionMood]:
    latest: Optional[Event] = None
    for e in sort_events(events):
        if e.type == EventType.SESSION_REFLECTION and e.session_id in session_ids:
            latest = e
    if latest is None or not latest.meta:
        return None
    try:
        return SessionMood(latest.meta.get("mood"))
    except ValueError:
        logger.debug("Ignoring unknown mood %r", latest.meta.get("mood"))
        return None


def group_sessions(segments: Iterable[Segment], events: Sequence[Event],
                   min_duration: float = MIN_SESSION_DURATION) -> List[SessionDisplay]:
    """
    Collapse closed segments into display sessions, newest first.

    Sessions linked by auto-merge share one row. Rows shorter than
    min_duration are dropped here only; totals elsewhere still count them.
    """
    parents = parent_map(events)
    groups: Dict[str, List[Segment]] = {}
    for seg in segments:
        if seg.end_time is None:
            continue
        groups.setdefault(effective_session_id(seg.session_id, parents), []).append(seg)

    result: List[SessionDisplay] = []
    for group_id, segs in groups.items():
        focus = focus_total(segs)
        brk = break_total(segs)
        if focus + brk < min_duration:
            continue
        ids = {s.session_id for s in segs}
        result.append(SessionDisplay(
            session_id=group_id,
            start_time=min(s.start_time for s in segs),
            end_time=max(s.end_time for s in segs),
            focus_duration=focus,
            break_duration=brk,
            merged_count=len(ids),
            mood=latest_mood(events, ids),
            session_ids=ids,
        ))
    result.sort(key=lambda d: d.start_time, reverse=True)
    return result


# ── Calculator over a live store ────────────────────────────────────────────

class StatsCalculator:
    """Builds dashboard snapshots from an EventStore's cached log."""

    def __init__(self, store: EventStore) -> None:
        self.store = store

    def all_segments(self) -> List[Segment]:
        return split_segments_by_day(calculate_segments(self.store.events))

    def summary(self, period: StatsPeriod, now: Optional[datetime] = None) -> DashboardStats:
        now = now or datetime.now()
        start, end = period_range(period, now)
        segments = self.all_segments()
        in_range = filter_segments(segments, start, end)
        return DashboardStats(
            period=period,
            start=start,
            end=end,
            focus_total=focus_total(in_range),
            break_total=break_total(in_range),
            focus_ratio=focus_ratio(in_range),
            avg_focus_streak=avg_focus_streak(in_range),
            max_focus_streak=max_focus_streak(in_range),
            daily_trend=daily_trend(segments, start, end, now),
            sessions=group_sessions(in_range, self.store.events),
        )

    def session_summary(self, session_id: str, now: Optional[datetime] = None) -> SessionStats:
        """Stats for one physical session; an ongoing one counts up to `now`."""
        return session_stats(self.store.events_for(session_id), now)
