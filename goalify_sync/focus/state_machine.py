"""Focus timer state machine driven by wall-clock time."""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterator, Optional, Union

from ..config import DEFAULT_FOCUS_DURATION, DEFAULT_TICK_INTERVAL
from ..notifications import notify_focus_complete
from ..storage.kv_store import KeyValueStore, get_json, set_json
from .cadence import Cadence, SchedulerCadence
from .session import FocusSession, FocusState, TimerMode

__all__ = [
    "FocusTimerStateMachine",
    "FocusEvent",
    "FocusEventKind",
    "InvalidTransitionError",
]

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "focus.timer_state"
INITIAL_DURATION_KEY = "focus.initial_duration"


class InvalidTransitionError(Exception):
    """The requested operation is not valid in the current state."""

    pass


class FocusEventKind(str, Enum):
    STARTED = "started"
    TICK = "tick"
    PAUSED = "paused"
    RESUMED = "resumed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    CLEARED = "cleared"
    RESTORED = "restored"


@dataclass(frozen=True)
class FocusEvent:
    kind: FocusEventKind
    session: Optional[FocusSession]


FocusListener = Callable[[FocusEvent], None]


class FocusTimerStateMachine:
    """Tracks one focus session across suspension and process restarts.

    States: idle -> running <-> paused, running -> completed, and any
    non-idle state -> idle through cancel/complete. Elapsed and remaining
    time are always recomputed as ``now - start_time``; the cadence only
    decides how often that happens. All state access is serialised by one
    re-entrant lock, so ticks from the scheduler thread never interleave
    with caller operations. Listeners and the notifier are called after
    that lock is released, so a slow callback never stalls the timer.

    Snapshot writes and notifications are best effort: a failure is logged
    and the timer carries on, since restoring recomputes from the wall
    clock anyway.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        cadence: Optional[Cadence] = None,
        clock: Callable[[], float] = time.time,
        notifier: Optional[Callable[[str], None]] = notify_focus_complete,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        default_duration: int = DEFAULT_FOCUS_DURATION,
    ):
        """Initialize the state machine.

        Args:
            kv: Key-value store holding the session snapshot
            cadence: Tick source; defaults to an APScheduler job
            clock: Wall-clock source returning epoch seconds
            notifier: Called with the session title on completion; None
                disables notifications
            tick_interval: Seconds between recomputations while running
            default_duration: Countdown length used when start() gets none
        """
        self.kv = kv
        self.cadence = cadence if cadence is not None else SchedulerCadence()
        self._clock = clock
        self._notifier = notifier
        self.tick_interval = tick_interval
        self.default_duration = default_duration
        self._session: Optional[FocusSession] = None
        self._lock = threading.RLock()
        self._listeners: list[FocusListener] = []
        self._depth = 0
        self._pending_events: list[FocusEvent] = []
        self._pending_notifications: list[str] = []

    # -- observation ------------------------------------------------------

    def add_listener(self, listener: FocusListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: FocusListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(self, kind: FocusEventKind) -> None:
        """Queue an event; it is delivered when the outermost transition ends."""
        self._pending_events.append(FocusEvent(kind, self._session.copy() if self._session else None))

    @contextmanager
    def _transition(self) -> Iterator[None]:
        """Hold the lock for the body, then deliver queued events unlocked."""
        events: list[FocusEvent] = []
        notifications: list[str] = []
        listeners: list[FocusListener] = []
        try:
            with self._lock:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                    if self._depth == 0:
                        events, self._pending_events = self._pending_events, []
                        notifications, self._pending_notifications = self._pending_notifications, []
                        listeners = list(self._listeners)
        finally:
            self._dispatch(events, notifications, listeners)

    def _dispatch(
        self,
        events: list[FocusEvent],
        notifications: list[str],
        listeners: list[FocusListener],
    ) -> None:
        for event in events:
            for listener in listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception(f"Focus listener failed on {event.kind.value}")
        for title in notifications:
            self._send_notification(title)

    @property
    def state(self) -> FocusState:
        with self._lock:
            if self._session is None:
                return FocusState.IDLE
            return self._session.state

    @property
    def session(self) -> Optional[FocusSession]:
        """A copy of the current session, or None when idle."""
        with self._lock:
            return self._session.copy() if self._session else None

    def formatted_time(self) -> str:
        with self._lock:
            return self._session.formatted_time() if self._session else "00:00"

    # -- transitions ------------------------------------------------------

    def start(
        self,
        title: str,
        mode: Union[TimerMode, str] = TimerMode.COUNTDOWN,
        duration: Optional[int] = None,
        external_task_ref: Optional[str] = None,
    ) -> FocusSession:
        """Start a new session. Only valid when idle.

        ``duration`` defaults to ``default_duration`` and is ignored for
        count-up sessions.

        Raises:
            InvalidTransitionError: A session already exists
            ValueError: Countdown duration is not positive
        """
        mode = TimerMode(mode)
        if duration is None:
            duration = self.default_duration
        with self._transition():
            if self._session is not None:
                raise InvalidTransitionError(f"Cannot start while {self.state.value}")
            if mode == TimerMode.COUNTDOWN and duration <= 0:
                raise ValueError(f"Countdown duration must be positive, got {duration}")

            countdown = mode == TimerMode.COUNTDOWN
            self._session = FocusSession(
                title=title,
                mode=mode,
                start_time=self._clock(),
                initial_duration=int(duration) if countdown else 0,
                remaining=int(duration) if countdown else 0,
                external_task_ref=external_task_ref,
            )
            self._store_initial_duration(self._session.initial_duration)
            self._persist()
            self.cadence.start(self.tick, self.tick_interval)
            logger.info(f"Focus session started: {title!r} ({mode.value}, {duration}s)")
            self._emit(FocusEventKind.STARTED)
            return self._session.copy()

    def tick(self) -> None:
        """Recompute from the wall clock. Called by the cadence."""
        with self._transition():
            session = self._session
            if session is None or not session.active or session.completed:
                return
            self._recompute(self._clock())
            if self._session is session and not session.completed:
                self._persist()
                self._emit(FocusEventKind.TICK)

    def pause(self) -> None:
        """Freeze elapsed/remaining. Only valid while running.

        Raises:
            InvalidTransitionError: Not running
        """
        with self._transition():
            if self.state != FocusState.RUNNING:
                raise InvalidTransitionError(f"Cannot pause while {self.state.value}")
            session = self._session
            now = self._clock()
            self._recompute(now)
            if self._session is not session or session.completed:
                # Reached zero on this very recomputation.
                return
            session.paused_at = now
            session.active = False
            self.cadence.stop()
            self._persist()
            logger.info(f"Focus session paused at {session.formatted_time()}")
            self._emit(FocusEventKind.PAUSED)

    def resume(self) -> None:
        """Continue a paused session without counting the paused interval.

        A session restored from its snapshot is already running again, so
        this is the only resume path.

        Raises:
            InvalidTransitionError: Not paused
        """
        with self._transition():
            if self.state != FocusState.PAUSED:
                raise InvalidTransitionError(f"Cannot resume while {self.state.value}")
            session = self._session
            now = self._clock()
            paused_at = session.paused_at if session.paused_at is not None else now
            session.start_time += max(0.0, now - paused_at)
            session.paused_at = None
            session.active = True
            self._recompute(now)
            if session.completed:
                return
            self.cadence.start(self.tick, self.tick_interval)
            self._persist()
            logger.info(f"Focus session resumed at {session.formatted_time()}")
            self._emit(FocusEventKind.RESUMED)

    def cancel(self) -> None:
        """Abandon the session and clear its snapshot."""
        with self._transition():
            if self._session is None:
                return
            logger.info(f"Focus session cancelled: {self._session.title!r}")
            self._clear(FocusEventKind.CANCELLED)

    def complete(self) -> Optional[tuple[datetime, datetime]]:
        """Finish the session and clear its snapshot.

        Returns:
            The ``(start, end)`` interval to record, or None when idle
        """
        with self._transition():
            if self._session is None:
                return None
            interval = self.get_focus_time_to_record()
            logger.info(f"Focus session completed: {self._session.title!r}")
            self._clear(FocusEventKind.CLEARED)
            return interval

    def consume_pending_alert(self) -> bool:
        """Return and clear the completion alert flag."""
        with self._lock:
            if self._session is None or not self._session.pending_alert:
                return False
            self._session.pending_alert = False
            self._persist()
            return True

    # -- recovery ---------------------------------------------------------

    def restore_from_persisted_state(self) -> bool:
        """Rebuild the session from its snapshot after a restart.

        A countdown that ran out while the process was gone completes
        retroactively, raising the pending alert. A session that should be
        running gets its cadence back.

        Returns:
            True if a session was restored
        """
        with self._transition():
            data = get_json(self.kv, SNAPSHOT_KEY)
            if not isinstance(data, dict) or not data.get("startTime"):
                return False
            try:
                session = FocusSession.from_snapshot(data, self._load_initial_duration())
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Discarding corrupt focus snapshot: {e}")
                self._delete_snapshot()
                return False
            if session.start_time <= 0:
                return False

            self._session = session
            if not session.completed:
                self._recompute(self._clock())
            if self._session is not None and self._session.state == FocusState.RUNNING:
                if not self.cadence.is_running:
                    self.cadence.start(self.tick, self.tick_interval)
            self._persist()
            logger.info(
                f"Focus session restored: {session.title!r} "
                f"({session.state.value}, {session.formatted_time()})"
            )
            self._emit(FocusEventKind.RESTORED)
            return True

    def resume_from_background(self) -> bool:
        """Periodic wake-up entry point.

        Restores from the snapshot when nothing is loaded; otherwise
        recomputes, fires a completion that became due, and restarts a
        missing cadence.

        Returns:
            True if a session exists afterwards
        """
        with self._transition():
            if self._session is None:
                return self.restore_from_persisted_state()

            session = self._session
            if session.state == FocusState.RUNNING:
                self._recompute(self._clock())
                if session.state == FocusState.RUNNING:
                    if not self.cadence.is_running:
                        self.cadence.start(self.tick, self.tick_interval)
                    self._persist()
                    self._emit(FocusEventKind.TICK)
            elif session.completed and session.pending_alert:
                # Nobody has acknowledged the completion yet.
                self._emit(FocusEventKind.COMPLETED)
            return True

    # -- queries ----------------------------------------------------------

    def get_focus_time_to_record(self) -> Optional[tuple[datetime, datetime]]:
        """The interval to write to a calendar entry.

        Returns:
            ``(start, end)`` as aware UTC datetimes, or None when idle
        """
        with self._lock:
            session = self._session
            if session is None:
                return None
            start = session.start_time
            if session.is_countdown and session.completed:
                end = session.completion_time
                if end is None:
                    end = start + session.initial_duration
            else:
                end = self._clock()
            return _to_datetime(start), _to_datetime(end)

    def close(self) -> None:
        """Stop ticking, keeping the snapshot for the next restore."""
        with self._lock:
            self.cadence.stop()

    # -- internals --------------------------------------------------------

    def _recompute(self, now: float) -> None:
        session = self._session
        session.recompute(now)
        if session.is_countdown and session.remaining == 0 and not session.completed:
            self._handle_countdown_complete(now)

    def _handle_countdown_complete(self, now: float) -> None:
        session = self._session
        if session.completed:
            return
        session.completed = True
        # The moment the countdown hit zero; earlier than now when it
        # happened while the process was suspended.
        session.completion_time = min(now, session.start_time + session.initial_duration)
        session.pending_alert = True
        session.active = False
        session.paused_at = None
        self.cadence.stop()
        self._persist()
        logger.info(f"Focus countdown complete: {session.title!r}")
        self._emit(FocusEventKind.COMPLETED)
        if self._notifier is not None:
            self._pending_notifications.append(session.title)

    def _send_notification(self, title: str) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier(title)
        except Exception as e:
            logger.debug(f"Completion notification failed: {e}")

    def _clear(self, kind: FocusEventKind) -> None:
        self.cadence.stop()
        self._session = None
        self._delete_snapshot()
        self._emit(kind)

    def _persist(self) -> None:
        if self._session is None:
            return
        try:
            set_json(self.kv, SNAPSHOT_KEY, self._session.to_snapshot())
        except Exception as e:
            logger.warning(f"Failed to persist focus snapshot: {e}")

    def _delete_snapshot(self) -> None:
        try:
            self.kv.delete(SNAPSHOT_KEY)
            self.kv.delete(INITIAL_DURATION_KEY)
        except Exception as e:
            logger.warning(f"Failed to clear focus snapshot: {e}")

    def _store_initial_duration(self, duration: int) -> None:
        try:
            set_json(self.kv, INITIAL_DURATION_KEY, duration)
        except Exception as e:
            logger.warning(f"Failed to persist initial duration: {e}")

    def _load_initial_duration(self) -> Optional[int]:
        value = get_json(self.kv, INITIAL_DURATION_KEY)
        return value if isinstance(value, int) else None


def _to_datetime(epoch_seconds: float) -> datetime:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
