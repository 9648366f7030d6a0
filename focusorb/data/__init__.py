from .database import Database
from .event_store import EventStore
from .models import Event, EventType, Segment, SegmentType, SessionMood
from .repository import EventRepository

__all__ = [
    "Database", "EventStore", "Event", "EventType", "Segment", "SegmentType",
    "SessionMood", "EventRepository",
]
