"""
Error types raised by the FocusOrb core.

None of these are fatal. Persistence errors degrade the app to in-memory
operation for the affected event; decode errors are isolated to one row.
"""

from __future__ import annotations


class FocusOrbError(Exception):
    """Base class for every error the core raises."""


class PersistenceWriteFailure(FocusOrbError):
    """An event could not be written to the log. The in-memory state still moved."""

    def __init__(self, event_id: str, cause: BaseException) -> None:
        super().__init__(f"Failed to persist event {event_id}: {cause}")
        self.event_id = event_id
        self.cause = cause


class PersistenceReadFailure(FocusOrbError):
    """The event log could not be read."""


class MalformedEventRow(FocusOrbError):
    """A single stored row could not be decoded into an Event."""

    def __init__(self, row_id: object, reason: str) -> None:
        super().__init__(f"Malformed event row {row_id!r}: {reason}")
        self.row_id = row_id
        self.reason = reason


class InvalidTransition(FocusOrbError):
    """An operation was invoked that is not valid for the current state."""

    def __init__(self, action: str, state: str) -> None:
        super().__init__(f"Cannot {action}: current state is '{state}'.")
        self.action = action
        self.state = state
