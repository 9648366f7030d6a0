"""
Idle detection and the auto-break policy built on it.

SystemIdleTimeProvider reads the seconds since the last keyboard/mouse input
from the OS. AutoBreakMonitor polls it while the user is in Focus and, once
the idle threshold has passed and the fill period has run out, asks the
state machine to switch to Break.
"""

from __future__ import annotations

import logging
import platform
import subprocess
from datetime import timedelta
from typing import Callable, Optional

from PySide6.QtCore import QTimer

from focusorb.config import Settings
from focusorb.services.state_machine import OrbStateMachine, StateKind

logger = logging.getLogger(__name__)

IDLE_CHECK_INTERVAL_MS = 1000


class IdleTimeProvider:
    """Anything with idle_seconds() can feed the monitor (tests use a stub)."""

    def idle_seconds(self) -> float:
        raise NotImplementedError


class SystemIdleTimeProvider(IdleTimeProvider):
    """Seconds since last user input. Returns 0.0 when detection is unavailable."""

    def __init__(self) -> None:
        self._impl: Optional[Callable[[], float]] = None

    def idle_seconds(self) -> float:
        if self._impl is None:
            self._impl = self._detect_impl()
        try:
            return float(self._impl())
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            logger.debug("Idle time unavailable: %s", exc)
            return 0.0

    @staticmethod
    def _detect_impl() -> Callable[[], float]:
        system = platform.system()
        try:
            if system == "Windows":
                import ctypes
                from ctypes import Structure, byref, c_uint, sizeof, windll

                class LASTINPUTINFO(Structure):
                    _fields_ = [("cbSize", c_uint), ("dwTime", c_uint)]

                def _win_idle() -> float:
                    lii = LASTINPUTINFO()
                    lii.cbSize = sizeof(LASTINPUTINFO)
                    if windll.user32.GetLastInputInfo(byref(lii)):
                        return (windll.kernel32.GetTickCount() - lii.dwTime) / 1000.0
                    return 0.0

                return _win_idle

            if system == "Darwin":
                import ctypes
                import ctypes.util

                cg = ctypes.cdll.LoadLibrary(ctypes.util.find_library("CoreGraphics"))
                fn = cg.CGEventSourceSecondsSinceLastEventType
                fn.restype = ctypes.c_double
                fn.argtypes = [ctypes.c_int32, ctypes.c_uint32]
                # kCGEventSourceStateCombinedSessionState = 0, kCGAnyInputEventType = ~0
                return lambda: fn(0, 0xFFFFFFFF)

            def _linux_idle() -> float:
                result = subprocess.run(
                    ["xprintidle"], capture_output=True, text=True, timeout=2, check=True)
                return int(result.stdout.strip()) / 1000.0

            return _linux_idle
        except (ImportError, OSError, AttributeError, TypeError) as exc:
            logger.warning("No idle detection on %s: %s", system, exc)
            return lambda: 0.0


class AutoBreakMonitor:
    """
    Turns inactivity into a Break.

    Disabled when auto_break_idle_minutes is 0. fill_progress goes from 0 to 1
    over auto_break_fill_seconds once the idle threshold is crossed; any input
    before it reaches 1 resets it.
    """

    def __init__(
        self,
        state_machine: OrbStateMachine,
        settings: Settings,
        provider: Optional[IdleTimeProvider] = None,
    ) -> None:
        self.state_machine = state_machine
        self.settings = settings
        self.provider = provider or SystemIdleTimeProvider()
        self.fill_progress: float = 0.0
        self.on_progress: Optional[Callable[[float], None]] = None

        self._timer = QTimer()
        self._timer.setInterval(IDLE_CHECK_INTERVAL_MS)
        self._timer.timeout.connect(self.check)

    @property
    def enabled(self) -> bool:
        return self.settings.auto_break_idle_minutes > 0

    def start(self) -> None:
        if self.enabled:
            self._timer.start()
            logger.info("Auto-break monitor started: idle >= %d min",
                        self.settings.auto_break_idle_minutes)

    def stop(self) -> None:
        self._timer.stop()
        self._set_progress(0.0)

    def check(self) -> None:
        """One poll. Called by the timer every second."""
        if not self.enabled or self.state_machine.state.kind != StateKind.FOCUS:
            self._set_progress(0.0)
            return

        idle = self.provider.idle_seconds()
        threshold = self.settings.auto_break_idle_seconds
        if idle < threshold:
            self._set_progress(0.0)
            return

        fill = float(self.settings.auto_break_fill_seconds)
        progress = min((idle - threshold) / fill, 1.0)
        self._set_progress(progress)
        if progress >= 1.0:
            idle_since = self.state_machine.clock() - timedelta(seconds=idle)
            self.state_machine.auto_break(idle_since)
            self._set_progress(0.0)

    def _set_progress(self, value: float) -> None:
        if value == self.fill_progress:
            return
        self.fill_progress = value
        if self.on_progress:
            self.on_progress(value)
