"""Shared fixtures: a Qt core application for QTimer, and a controllable clock."""

import sqlite3
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from PySide6.QtCore import QCoreApplication

from focusorb.data.database import migrate


@pytest.fixture(scope="session", autouse=True)
def qt_app():
    """QTimer needs an application instance in the main thread."""
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


class FakeClock:
    """Callable clock the state machine reads instead of datetime.now."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def conn():
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    migrate(conn)
    yield conn
    conn.close()


@pytest.fixture
def clock():
    # a Monday morning
    return FakeClock(datetime(2026, 3, 2, 9, 0, 0))
