"""Focus session model and its persisted snapshot."""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

__all__ = ["TimerMode", "FocusState", "FocusSession"]


class TimerMode(str, Enum):
    COUNTDOWN = "countdown"
    COUNT_UP = "countup"


class FocusState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass
class FocusSession:
    """A single focus session.

    ``start_time`` is wall-clock epoch seconds and is the source of truth:
    ``elapsed`` and ``remaining`` are always recomputed from it, never
    accumulated from ticks. While paused, ``paused_at`` freezes the clock.
    """

    title: str
    mode: TimerMode
    start_time: float
    initial_duration: int = 0
    elapsed: int = 0
    remaining: int = 0
    external_task_ref: Optional[str] = None
    active: bool = True
    completed: bool = False
    completion_time: Optional[float] = None
    pending_alert: bool = False
    paused_at: Optional[float] = None

    @property
    def is_countdown(self) -> bool:
        return self.mode == TimerMode.COUNTDOWN

    @property
    def state(self) -> FocusState:
        if self.completed:
            return FocusState.COMPLETED
        return FocusState.RUNNING if self.active else FocusState.PAUSED

    def recompute(self, now: float) -> None:
        """Derive elapsed/remaining from the wall clock."""
        reference = self.paused_at if self.paused_at is not None else now
        elapsed = max(0, int(reference - self.start_time))
        if self.is_countdown:
            elapsed = min(elapsed, self.initial_duration)
            self.remaining = self.initial_duration - elapsed
        self.elapsed = elapsed

    def formatted_time(self) -> str:
        seconds = self.remaining if self.is_countdown else self.elapsed
        minutes, seconds = divmod(seconds, 60)
        return f"{minutes:02d}:{seconds:02d}"

    def copy(self) -> "FocusSession":
        return replace(self)

    def to_snapshot(self) -> dict:
        return {
            "title": self.title,
            "timeMode": self.mode.value,
            "timeRemaining": self.remaining,
            "timeElapsed": self.elapsed,
            "startTime": self.start_time,
            "initialDuration": self.initial_duration,
            "isActive": self.active,
            "pendingAlert": self.pending_alert,
            "isCompleted": self.completed,
            "completionTime": self.completion_time,
            "taskRef": self.external_task_ref,
            "pausedAt": self.paused_at,
        }

    @classmethod
    def from_snapshot(cls, data: dict, initial_duration: Optional[int] = None) -> "FocusSession":
        """Rebuild a session from a snapshot.

        Args:
            data: Snapshot produced by :meth:`to_snapshot`
            initial_duration: Separately persisted duration, used when the
                snapshot predates the ``initialDuration`` field

        Raises:
            KeyError, TypeError, ValueError: On a malformed snapshot
        """
        mode = TimerMode(data.get("timeMode", TimerMode.COUNTDOWN.value))
        duration = data.get("initialDuration")
        if duration is None:
            duration = initial_duration
        if duration is None:
            duration = int(data.get("timeRemaining", 0)) + int(data.get("timeElapsed", 0))
        paused_at = data.get("pausedAt")
        completion_time = data.get("completionTime")
        return cls(
            title=str(data.get("title", "")),
            mode=mode,
            start_time=float(data["startTime"]),
            initial_duration=int(duration) if mode == TimerMode.COUNTDOWN else 0,
            elapsed=int(data.get("timeElapsed", 0)),
            remaining=int(data.get("timeRemaining", 0)),
            external_task_ref=data.get("taskRef"),
            active=bool(data.get("isActive", False)),
            completed=bool(data.get("isCompleted", False)),
            completion_time=float(completion_time) if completion_time is not None else None,
            pending_alert=bool(data.get("pendingAlert", False)),
            paused_at=float(paused_at) if paused_at is not None else None,
        )
