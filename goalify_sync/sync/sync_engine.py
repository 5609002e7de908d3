"""Sync engine - reconciles the local record store with the Goalify server."""

import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Iterable, Iterator, Optional

from ..config import FETCH_DEBOUNCE_SECONDS
from .errors import AuthError, GoalifyClientError, NetworkError, SyncCancelledError
from .models import EmotionRecord, MergeStats, PendingDeletion, SyncStats, UserProfile
from .protocols import ApiClientProtocol, ConnectivityProtocol, RecordStoreProtocol
from .sync_state import SyncStateStore
from .timestamps import utcnow

__all__ = ["SyncEngine"]

logger = logging.getLogger(__name__)

KIND_PROFILE = "profile"
KIND_FETCH = "fetch"
KIND_PUSH = "push"
KIND_ENERGY = "energy"

ENTITY_EMOTION = "emotion"


class SyncEngine:
    """Pull-then-push sync with last-write-wins on ``last_modified``.

    Every operation kind has its own in-flight lock. A call that finds its
    kind already running returns immediately instead of queueing, so
    repeated triggers from the UI never double-apply effects.
    """

    def __init__(
        self,
        client: ApiClientProtocol,
        records: RecordStoreProtocol,
        state: SyncStateStore,
        connectivity: ConnectivityProtocol,
        clock: Callable[[], datetime] = utcnow,
        debounce_seconds: float = FETCH_DEBOUNCE_SECONDS,
        on_profile_updated: Optional[Callable[[UserProfile], None]] = None,
    ):
        self.client = client
        self.records = records
        self.state = state
        self.connectivity = connectivity
        self._clock = clock
        self.debounce = timedelta(seconds=debounce_seconds)
        self._on_profile_updated = on_profile_updated

        kinds = (KIND_PROFILE, KIND_FETCH, KIND_PUSH, KIND_ENERGY)
        self._locks = {kind: threading.Lock() for kind in kinds}
        self._cancelled = {kind: threading.Event() for kind in kinds}

    # -- concurrency ------------------------------------------------------

    @contextmanager
    def _exclusive(self, kind: str) -> Iterator[bool]:
        """Yield True if this call owns ``kind``; False if one is in flight."""
        lock = self._locks[kind]
        acquired = lock.acquire(blocking=False)
        if acquired:
            self._cancelled[kind].clear()
        try:
            yield acquired
        finally:
            if acquired:
                self._cancelled[kind].clear()
                lock.release()

    def _check_cancelled(self, kind: str) -> None:
        if self._cancelled[kind].is_set():
            logger.info(f"Sync {kind} cancelled before commit")
            raise SyncCancelledError(f"{kind} cancelled")

    def cancel(self) -> bool:
        """Cancel whatever is in flight.

        The running operations raise ``SyncCancelledError`` at their next
        checkpoint, before anything is committed locally.

        Returns:
            True if at least one operation was in flight
        """
        cancelled = False
        for kind, lock in self._locks.items():
            if lock.locked():
                self._cancelled[kind].set()
                cancelled = True
        return cancelled

    def is_syncing(self) -> bool:
        return any(lock.locked() for lock in self._locks.values())

    def _require_token(self) -> None:
        if not self.client.has_token():
            raise AuthError()

    def _require_connection(self) -> None:
        if not self.connectivity.is_connected():
            raise NetworkError("No network connection")

    # -- profile ----------------------------------------------------------

    def sync_user_profile(self) -> Optional[UserProfile]:
        """Overwrite the local profile with the server's copy.

        Returns:
            The stored profile (the current local one if a profile sync
            is already in flight)

        Raises:
            AuthError: No stored token
            NetworkError: Offline, timeout or transport failure
            ClientError/ServerError/UnknownError: Non-2xx response
            ParseError: Malformed user object
        """
        with self._exclusive(KIND_PROFILE) as acquired:
            if not acquired:
                logger.debug("Profile sync already in flight")
                return self.records.get_profile()

            self._require_token()
            self._require_connection()

            profile = UserProfile.from_dict(self.client.get_user())
            self._check_cancelled(KIND_PROFILE)
            profile = self.records.upsert_profile(profile)
            logger.info(f"Profile synced for {profile.username} (energy: {profile.energy})")

        if self._on_profile_updated:
            self._on_profile_updated(profile)
        return profile

    def fetch_energy_balance(self) -> Optional[int]:
        """Reconcile the local energy balance with the server's value.

        Returns:
            The server balance (the local one if a fetch is already in flight)
        """
        with self._exclusive(KIND_ENERGY) as acquired:
            if not acquired:
                profile = self.records.get_profile()
                return profile.energy if profile else None

            self._require_token()
            self._require_connection()

            energy = self.client.get_energy()
            self._check_cancelled(KIND_ENERGY)
            if not self.records.set_energy(energy):
                logger.debug("No local profile yet, energy not stored")
            return energy

    # -- pull -------------------------------------------------------------

    def fetch_remote_updates(self) -> Optional[MergeStats]:
        """Pull records changed on the server since the last fetch.

        Skipped (returns None, no request) when offline or when the last
        successful fetch is less than the debounce window old. The whole
        batch is parsed before anything is written, so one bad record
        aborts the batch and leaves the watermark untouched.

        Returns:
            Merge statistics, or None if the fetch was skipped
        """
        with self._exclusive(KIND_FETCH) as acquired:
            if not acquired:
                logger.debug("Fetch already in flight")
                return None

            if not self.connectivity.is_connected():
                logger.info("No network connection, skipping fetch")
                return None

            last_fetch = self.state.last_fetch_at
            started = self._clock()
            if started - last_fetch < self.debounce:
                logger.debug(f"Last fetch at {last_fetch.isoformat()}, skipping")
                return None

            self._require_token()
            payload = self.client.get_updates(last_fetch)
            remote = [EmotionRecord.from_dict(item) for item in payload]

            self._check_cancelled(KIND_FETCH)
            stats = self._apply_remote(remote)
            self.state.last_fetch_at = started

        logger.info(
            f"Fetched {len(remote)} remote records: {stats.inserted} inserted, "
            f"{stats.updated} updated, {stats.discarded} discarded"
        )
        return stats

    def _apply_remote(self, remote: list[EmotionRecord]) -> MergeStats:
        """Merge a parsed batch with last-write-wins and commit it at once."""
        stats = MergeStats()
        pending: dict[uuid.UUID, EmotionRecord] = {}

        for incoming in remote:
            local = pending.get(incoming.id) or self.records.get_emotion(incoming.id)
            if local is None:
                pending[incoming.id] = incoming
                stats.inserted += 1
            elif incoming.last_modified > local.last_modified:
                local.apply_remote(incoming)
                pending[incoming.id] = local
                stats.updated += 1
            else:
                stats.discarded += 1

        self.records.upsert_emotions(list(pending.values()))
        return stats

    # -- push -------------------------------------------------------------

    def _push_candidates(self) -> list[EmotionRecord]:
        return self.records.emotions_modified_since(self.state.last_push_at)

    def push_local_changes(self) -> int:
        """Upload records modified since the last successful push.

        Returns:
            Number of records pushed (0 means no request was made)
        """
        with self._exclusive(KIND_PUSH) as acquired:
            if not acquired:
                logger.debug("Push already in flight")
                return 0

            started = self._clock()
            candidates = self._push_candidates()
            if not candidates:
                return 0

            self._require_token()
            response = self.client.push_emotions([r.to_dict() for r in candidates])
            self._check_cancelled(KIND_PUSH)
            self.state.last_push_at = started

        logger.info(f"Pushed {len(candidates)} emotion records: {response}")
        return len(candidates)

    def has_unsynced_changes(self) -> bool:
        """True if a push would send something. Never moves a watermark."""
        try:
            return bool(self._push_candidates())
        except Exception as e:
            logger.warning(f"Failed to check for unsynced changes: {e}")
            return False

    # -- deletions --------------------------------------------------------

    def delete_emotion(self, record_id: uuid.UUID) -> bool:
        """Delete a local record and log it as a pending deletion."""
        removed = self.records.delete_emotion(record_id)
        if removed:
            self.record_pending_deletion(ENTITY_EMOTION, record_id)
        return removed

    def record_pending_deletion(self, entity_type: str, record_id) -> None:
        self.state.append_pending_deletions(
            [PendingDeletion(entity_type=entity_type, id=str(record_id).upper())]
        )

    def append_pending_deletions(self, batch: Iterable[PendingDeletion]) -> None:
        self.state.append_pending_deletions(batch)

    def pending_deletions(self) -> list[PendingDeletion]:
        return self.state.pending_deletions()

    def clear_pending_deletions(self) -> None:
        self.state.clear_pending_deletions()

    # -- full cycle -------------------------------------------------------

    def sync(self) -> SyncStats:
        """Perform a sync cycle.

        1. Refresh the user profile (server wins)
        2. Pull remote updates (debounced)
        3. Push local changes

        Each step is independent: a failing step is recorded in the stats
        and the next one still runs. Cancellation stops the cycle.
        """
        stats = SyncStats()

        try:
            stats.profile_synced = self.sync_user_profile() is not None
        except SyncCancelledError:
            stats.errors.append("Sync cancelled")
            return stats
        except GoalifyClientError as e:
            logger.warning(f"Profile sync failed: {e}")
            stats.errors.append(f"Profile sync failed: {e}")

        try:
            stats.merge = self.fetch_remote_updates()
        except SyncCancelledError:
            stats.errors.append("Sync cancelled")
            return stats
        except GoalifyClientError as e:
            logger.warning(f"Fetching updates failed: {e}")
            stats.errors.append(f"Fetching updates failed: {e}")

        try:
            stats.pushed = self.push_local_changes()
        except SyncCancelledError:
            stats.errors.append("Sync cancelled")
        except GoalifyClientError as e:
            logger.warning(f"Pushing changes failed: {e}")
            stats.errors.append(f"Pushing changes failed: {e}")

        return stats
