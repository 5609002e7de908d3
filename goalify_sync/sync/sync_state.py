"""Persisted sync watermarks and the pending-deletion log."""

import logging
import threading
from datetime import datetime
from typing import Iterable

from ..storage.kv_store import KeyValueStore, get_json, set_json
from .models import PendingDeletion
from .timestamps import DISTANT_PAST, from_storage, to_storage

__all__ = ["SyncStateStore"]

logger = logging.getLogger(__name__)

LAST_FETCH_KEY = "sync.last_fetch_at"
LAST_PUSH_KEY = "sync.last_emotion_push_at"
PENDING_DELETIONS_KEY = "sync.pending_deletions"


class SyncStateStore:
    """Watermarks advanced only after a confirmed successful sync step.

    The fetch and push watermarks are independent: pulling remote updates
    never marks local edits as pushed.
    """

    def __init__(self, kv: KeyValueStore):
        self.kv = kv
        self._lock = threading.Lock()

    def _get_timestamp(self, key: str) -> datetime:
        raw = self.kv.get(key)
        if raw is None:
            return DISTANT_PAST
        try:
            return from_storage(raw.decode("utf-8")) or DISTANT_PAST
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning(f"Discarding corrupt watermark {key}: {e}")
            return DISTANT_PAST

    def _set_timestamp(self, key: str, value: datetime) -> None:
        self.kv.set(key, to_storage(value).encode("utf-8"))

    @property
    def last_fetch_at(self) -> datetime:
        return self._get_timestamp(LAST_FETCH_KEY)

    @last_fetch_at.setter
    def last_fetch_at(self, value: datetime) -> None:
        self._set_timestamp(LAST_FETCH_KEY, value)

    @property
    def last_push_at(self) -> datetime:
        return self._get_timestamp(LAST_PUSH_KEY)

    @last_push_at.setter
    def last_push_at(self, value: datetime) -> None:
        self._set_timestamp(LAST_PUSH_KEY, value)

    # Pending deletions

    def pending_deletions(self) -> list[PendingDeletion]:
        entries = get_json(self.kv, PENDING_DELETIONS_KEY, default=[])
        if not isinstance(entries, list):
            logger.warning("Pending deletion log is not a list, ignoring it")
            return []
        result = []
        for entry in entries:
            try:
                result.append(PendingDeletion.from_dict(entry))
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed pending deletion {entry!r}: {e}")
        return result

    def append_pending_deletions(self, batch: Iterable[PendingDeletion]) -> int:
        """Append to the log. Returns the new log length."""
        with self._lock:
            entries = self.pending_deletions()
            entries.extend(batch)
            set_json(self.kv, PENDING_DELETIONS_KEY, [e.to_dict() for e in entries])
            return len(entries)

    def clear_pending_deletions(self) -> None:
        with self._lock:
            self.kv.delete(PENDING_DELETIONS_KEY)

    def reset(self) -> None:
        """Forget both watermarks, e.g. after the user signs out."""
        self.kv.delete(LAST_FETCH_KEY)
        self.kv.delete(LAST_PUSH_KEY)
