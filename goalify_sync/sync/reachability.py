"""Network connectivity observation with a short-lived cache."""

import logging
import threading
import time
from typing import Callable, Optional

__all__ = ["ConnectivityMonitor"]

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Caches the result of a reachability probe to avoid excessive checks.

    The probe is usually ``GoalifyClient.ping``. An embedding layer that
    observes OS connectivity changes can push them with
    :meth:`set_connected`.
    """

    def __init__(
        self,
        probe: Callable[[], bool],
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize monitor.

        Args:
            probe: Callable returning True when the server is reachable
            ttl_seconds: How long to cache reachability status
            clock: Monotonic time source
        """
        self._probe = probe
        self.ttl = ttl_seconds
        self._clock = clock
        self._cached: Optional[tuple[bool, float]] = None
        self._lock = threading.Lock()

    def is_connected(self) -> bool:
        """Return the cached status, re-probing once it has expired."""
        with self._lock:
            if self._cached is not None:
                status, timestamp = self._cached
                if self._clock() - timestamp <= self.ttl:
                    return status

        status = bool(self._probe())
        if not status:
            logger.info("Goalify API unreachable")
        self.set_connected(status)
        return status

    def set_connected(self, status: bool) -> None:
        with self._lock:
            self._cached = (status, self._clock())

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None
