from .idle import AutoBreakMonitor, IdleTimeProvider, SystemIdleTimeProvider
from .state_machine import OrbState, OrbStateMachine, StateKind
from .stats import StatsCalculator, StatsPeriod

__all__ = [
    "AutoBreakMonitor", "IdleTimeProvider", "SystemIdleTimeProvider",
    "OrbState", "OrbStateMachine", "StateKind", "StatsCalculator", "StatsPeriod",
]
