"""FocusOrb — session state machine and event-sourced focus/break statistics."""

__version__ = "1.0.0"
