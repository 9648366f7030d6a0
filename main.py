"""
FocusOrb — floating focus/break tracker.
Entry point for the headless core; the orb window and dashboard attach to
the objects built here.
"""

import faulthandler
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

faulthandler.enable()

# Ensure focusorb is importable when run from a checkout
sys.path.insert(0, str(Path(__file__).resolve().parent))

from PySide6.QtCore import QCoreApplication

from focusorb.config import Settings
from focusorb.data.database import Database
from focusorb.data.event_store import EventStore
from focusorb.data.repository import EventRepository
from focusorb.services.idle import AutoBreakMonitor, IdleTimeProvider
from focusorb.services.state_machine import OrbStateMachine
from focusorb.services.stats import StatsCalculator


def setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler("focusorb.log", encoding="utf-8"),
        ],
    )


@dataclass
class Core:
    db: Database
    store: EventStore
    state_machine: OrbStateMachine
    stats: StatsCalculator
    auto_break: AutoBreakMonitor

    def shutdown(self) -> None:
        self.auto_break.stop()
        self.state_machine.shutdown()
        self.store.flush_pending()
        self.db.close()


def build_core(
    db_path: Optional[Path] = None,
    settings: Optional[Settings] = None,
    idle_provider: Optional[IdleTimeProvider] = None,
) -> Core:
    """Wire database -> store -> state machine -> stats and auto-break."""
    settings = settings or Settings.load()
    db = Database(db_path)
    db.connect()
    store = EventStore(EventRepository(db.conn))
    state_machine = OrbStateMachine(store, settings)
    return Core(
        db=db,
        store=store,
        state_machine=state_machine,
        stats=StatsCalculator(store),
        auto_break=AutoBreakMonitor(state_machine, settings, idle_provider),
    )


def main() -> None:
    setup_logging()
    logger = logging.getLogger(__name__)
    logger.info("Starting FocusOrb...")

    app = QCoreApplication(sys.argv)
    app.setApplicationName("FocusOrb")
    app.setOrganizationName("FocusOrb")

    core = build_core()
    core.auto_break.start()
    logger.info("Current state: %s", core.state_machine.state.kind.value)
    app.aboutToQuit.connect(core.shutdown)

    sys.exit(app.exec())


if __name__ == "__main__":
    main()
