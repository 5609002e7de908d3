"""Tests for persisted sync state and connectivity caching."""

from datetime import datetime, timezone
from unittest.mock import Mock

from goalify_sync.storage import MemoryKeyValueStore
from goalify_sync.sync.models import PendingDeletion
from goalify_sync.sync.reachability import ConnectivityMonitor
from goalify_sync.sync.sync_state import (
    LAST_FETCH_KEY,
    LAST_PUSH_KEY,
    PENDING_DELETIONS_KEY,
    SyncStateStore,
)
from goalify_sync.sync.timestamps import DISTANT_PAST


class TestSyncStateStore:
    """Tests for SyncStateStore."""

    def setup_method(self):
        """Set up test fixtures."""
        self.kv = MemoryKeyValueStore()
        self.state = SyncStateStore(self.kv)

    def test_defaults_to_distant_past(self):
        assert self.state.last_fetch_at == DISTANT_PAST
        assert self.state.last_push_at == DISTANT_PAST

    def test_watermarks_are_independent(self):
        fetched = datetime(2024, 1, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)

        self.state.last_fetch_at = fetched

        assert self.state.last_fetch_at == fetched
        assert self.state.last_push_at == DISTANT_PAST
        assert self.kv.get(LAST_FETCH_KEY) is not None
        assert self.kv.get(LAST_PUSH_KEY) is None

    def test_corrupt_watermark_reads_as_distant_past(self):
        self.kv.set(LAST_PUSH_KEY, b"yesterday")

        assert self.state.last_push_at == DISTANT_PAST

    def test_reset(self):
        self.state.last_fetch_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.state.last_push_at = datetime(2024, 1, 1, tzinfo=timezone.utc)

        self.state.reset()

        assert self.state.last_fetch_at == DISTANT_PAST
        assert self.state.last_push_at == DISTANT_PAST

    def test_pending_deletions_append_and_clear(self):
        assert self.state.pending_deletions() == []

        count = self.state.append_pending_deletions([PendingDeletion("emotion", "A")])
        count = self.state.append_pending_deletions(
            [PendingDeletion("emotion", "B"), PendingDeletion("emotion", "C")]
        )

        assert count == 3
        assert [d.id for d in self.state.pending_deletions()] == ["A", "B", "C"]

        self.state.clear_pending_deletions()
        assert self.state.pending_deletions() == []

    def test_corrupt_pending_deletions_read_as_empty(self):
        self.kv.set(PENDING_DELETIONS_KEY, b"{broken")

        assert self.state.pending_deletions() == []

    def test_malformed_entries_skipped(self):
        self.kv.set(PENDING_DELETIONS_KEY, b'[{"type": "emotion", "id": "A"}, {"id": "B"}, 3]')

        assert self.state.pending_deletions() == [PendingDeletion("emotion", "A")]


class TestConnectivityMonitor:
    """Tests for ConnectivityMonitor."""

    def setup_method(self):
        """Set up test fixtures."""
        self.now = 1000.0
        self.probe = Mock(return_value=True)
        self.monitor = ConnectivityMonitor(self.probe, ttl_seconds=30, clock=lambda: self.now)

    def test_caches_within_ttl(self):
        assert self.monitor.is_connected() is True
        self.now += 29
        assert self.monitor.is_connected() is True

        assert self.probe.call_count == 1

    def test_reprobes_after_ttl(self):
        self.monitor.is_connected()
        self.probe.return_value = False
        self.now += 31

        assert self.monitor.is_connected() is False
        assert self.probe.call_count == 2

    def test_set_connected_overrides_cache(self):
        self.monitor.is_connected()

        self.monitor.set_connected(False)

        assert self.monitor.is_connected() is False
        assert self.probe.call_count == 1

    def test_invalidate(self):
        self.monitor.is_connected()

        self.monitor.invalidate()
        self.monitor.is_connected()

        assert self.probe.call_count == 2
