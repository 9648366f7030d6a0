"""
Data models for FocusOrb.

Event is the only persisted type: an immutable record of one state
transition. Segment is derived by replaying events and is never stored.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional


class EventType(str, Enum):
    """Every kind of transition the state machine can record."""
    SESSION_START = "sessionStart"
    ENTER_PENDING_BREAK = "enterPendingBreak"
    CANCEL_PENDING_BREAK = "cancelPendingBreak"
    CONFIRM_BREAK_START = "confirmBreakStart"
    SWITCH_TO_FOCUS = "switchToFocus"
    SESSION_END = "sessionEnd"
    SESSION_REFLECTION = "sessionReflection"


class SegmentType(str, Enum):
    FOCUS = "focus"
    BREAK = "break"


class SessionMood(str, Enum):
    """Mood tag attached to a finished session via a reflection event."""
    CALM = "calm"
    GOOD = "good"
    STRESSED = "stressed"
    TIRED = "tired"


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Event:
    """
    One immutable entry in the event log.

    parent_session_id is only set on a sessionStart that auto-merge linked
    to an earlier session. meta carries free-form string data such as the
    mood of a sessionReflection; it is copied into a read-only mapping.
    """
    type: EventType
    session_id: str
    timestamp: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=new_id)
    parent_session_id: Optional[str] = None
    meta: Optional[Mapping[str, str]] = field(default=None, hash=False)

    def __post_init__(self) -> None:
        if self.meta is not None:
            object.__setattr__(self, "meta", MappingProxyType(dict(self.meta)))


@dataclass
class Segment:
    """A typed interval reconstructed from events. end_time None = still open."""
    session_id: str
    start_time: datetime
    type: SegmentType
    end_time: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def duration(self, now: Optional[datetime] = None) -> float:
        """Seconds covered by this segment; open segments run until `now`."""
        end = self.end_time or now or datetime.now()
        return (end - self.start_time).total_seconds()
