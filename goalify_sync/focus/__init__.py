"""Focus timer - a wall-clock driven session that survives restarts."""

from .cadence import Cadence, ManualCadence, SchedulerCadence
from .session import FocusSession, FocusState, TimerMode
from .state_machine import FocusEvent, FocusEventKind, FocusTimerStateMachine, InvalidTransitionError

__all__ = [
    "FocusTimerStateMachine",
    "FocusSession",
    "FocusState",
    "TimerMode",
    "FocusEvent",
    "FocusEventKind",
    "InvalidTransitionError",
    "Cadence",
    "SchedulerCadence",
    "ManualCadence",
]
