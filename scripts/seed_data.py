"""
Seed Data Generator — writes a realistic event log for development and demos.

Run: python scripts/seed_data.py [days]
"""

import random
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from focusorb.config import PENDING_BREAK_DURATION
from focusorb.data.database import Database
from focusorb.data.models import Event, EventType, SessionMood, new_id
from focusorb.data.repository import EventRepository


def generate_events(days: int = 14, now: Optional[datetime] = None,
                    rng: Optional[random.Random] = None) -> List[Event]:
    """Build 1-3 sessions per day, with breaks, cancelled breaks and merges."""
    rng = rng or random.Random()
    now = now or datetime.now()
    pending = timedelta(seconds=PENDING_BREAK_DURATION)
    events: List[Event] = []

    for day in range(days, 0, -1):
        base = (now - timedelta(days=day)).replace(hour=9, minute=0, second=0, microsecond=0)
        cursor = base + timedelta(minutes=rng.randint(0, 90))
        last_end: Optional[Event] = None

        for _ in range(rng.randint(1, 3)):
            if cursor.date() != base.date() or cursor.hour >= 20:
                break
            sid = new_id()
            parent = None
            # sometimes come back quickly so auto-merge kicks in
            if last_end is not None and rng.random() < 0.3:
                cursor = last_end.timestamp + timedelta(minutes=rng.randint(1, 4))
                parent = last_end.session_id
            events.append(Event(type=EventType.SESSION_START, session_id=sid,
                                timestamp=cursor, parent_session_id=parent))

            for _ in range(rng.randint(0, 4)):
                cursor += timedelta(minutes=rng.uniform(10, 50))
                events.append(Event(type=EventType.ENTER_PENDING_BREAK, session_id=sid, timestamp=cursor))
                if rng.random() < 0.2:
                    # changed their mind within the countdown
                    cursor += timedelta(seconds=rng.uniform(0.5, 2.5))
                    events.append(Event(type=EventType.CANCEL_PENDING_BREAK, session_id=sid, timestamp=cursor))
                    continue
                cursor += pending
                events.append(Event(type=EventType.CONFIRM_BREAK_START, session_id=sid, timestamp=cursor))
                cursor += timedelta(minutes=rng.uniform(3, 20))
                events.append(Event(type=EventType.SWITCH_TO_FOCUS, session_id=sid, timestamp=cursor))

            cursor += timedelta(minutes=rng.uniform(10, 45))
            last_end = Event(type=EventType.SESSION_END, session_id=sid, timestamp=cursor)
            events.append(last_end)

            if rng.random() < 0.5:
                mood = rng.choice(list(SessionMood))
                events.append(Event(type=EventType.SESSION_REFLECTION, session_id=sid,
                                    timestamp=cursor + timedelta(seconds=5),
                                    meta={"mood": mood.value}))
            cursor += timedelta(minutes=rng.randint(30, 180))

    return events


def seed(days: int = 14) -> None:
    db = Database()
    db.connect()
    repo = EventRepository(db.conn)
    events = generate_events(days)
    for event in events:
        repo.append(event)
    db.close()
    print(f"Seeded {len(events)} events over {days} days.")


if __name__ == "__main__":
    count = int(sys.argv[1]) if len(sys.argv) > 1 else 14
    seed(count)
