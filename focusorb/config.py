"""
User settings for FocusOrb.

Settings live in a small JSON file that the (external) settings panel writes.
The core only reads them. Missing keys fall back to DEFAULT_SETTINGS.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "settings.json"

# Countdown before a pending break is confirmed (seconds). Fixed, not a setting.
PENDING_BREAK_DURATION = 3.0

# Sessions shorter than this are hidden from the session list (seconds).
MIN_SESSION_DURATION = 60.0

DEFAULT_SETTINGS = {
    "auto_merge_window_minutes": 5,
    "auto_break_idle_minutes": 0,
    "auto_break_fill_seconds": 60,
    "enable_session_reflection": True,
}


@dataclass
class Settings:
    """Read-only inputs to the core, owned by the settings collaborator."""
    auto_merge_window_minutes: int = 5      # 0 = auto-merge disabled
    auto_break_idle_minutes: int = 0        # 0 = auto-break disabled
    auto_break_fill_seconds: int = 60
    enable_session_reflection: bool = True

    @property
    def auto_merge_window_seconds(self) -> float:
        return float(self.auto_merge_window_minutes * 60)

    @property
    def auto_break_idle_seconds(self) -> float:
        return float(self.auto_break_idle_minutes * 60)

    # ── Persistence ─────────────────────────────────────────────────────────

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Settings":
        path = path or CONFIG_PATH
        merged = DEFAULT_SETTINGS.copy()
        if path.exists():
            try:
                with open(path, encoding="utf-8") as f:
                    cfg = json.load(f)
                if isinstance(cfg, dict):
                    merged.update({k: v for k, v in cfg.items() if k in DEFAULT_SETTINGS})
                else:
                    logger.warning("Settings file %s is not an object, using defaults.", path)
            except (json.JSONDecodeError, OSError):
                logger.warning("Bad settings file %s, using defaults.", path)
        return cls.from_dict(merged)

    @classmethod
    def from_dict(cls, values: dict) -> "Settings":
        """Build Settings, replacing out-of-range values with defaults."""
        clean = DEFAULT_SETTINGS.copy()
        for key in ("auto_merge_window_minutes", "auto_break_idle_minutes"):
            value = values.get(key, clean[key])
            if _is_int(value) and value >= 0:
                clean[key] = value
            else:
                logger.warning("Invalid %s=%r, using default %r", key, value, clean[key])

        fill = values.get("auto_break_fill_seconds", clean["auto_break_fill_seconds"])
        if _is_int(fill) and fill > 0:
            clean["auto_break_fill_seconds"] = fill
        else:
            logger.warning("Invalid auto_break_fill_seconds=%r, using default", fill)

        reflection = values.get("enable_session_reflection", clean["enable_session_reflection"])
        if isinstance(reflection, bool):
            clean["enable_session_reflection"] = reflection
        else:
            logger.warning("Invalid enable_session_reflection=%r, using default", reflection)

        return cls(**clean)

    def save(self, path: Optional[Path] = None) -> None:
        path = path or CONFIG_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(asdict(self), f, indent=2)


def _is_int(value: object) -> bool:
    # bool is a subclass of int; "True" minutes makes no sense
    return isinstance(value, int) and not isinstance(value, bool)
