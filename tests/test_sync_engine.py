"""Tests for sync engine."""

import threading
import uuid
import pytest
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock

from goalify_sync.storage import MemoryKeyValueStore, RecordStore
from goalify_sync.sync.errors import (
    AuthError,
    NetworkError,
    ParseError,
    ServerError,
    SyncCancelledError,
)
from goalify_sync.sync.models import EmotionRecord, Intensity, PendingDeletion, UserProfile
from goalify_sync.sync.sync_engine import SyncEngine
from goalify_sync.sync.sync_state import SyncStateStore
from goalify_sync.sync.timestamps import DISTANT_PAST, format_iso8601

T0 = datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)


def make_record(last_modified: datetime = T0, **kwargs) -> EmotionRecord:
    defaults = dict(
        id=uuid.uuid4(),
        emotion_type="anxiety",
        intensity=Intensity.MEDIUM,
        record_date=T0,
        last_modified=last_modified,
    )
    defaults.update(kwargs)
    return EmotionRecord(**defaults)


def make_dto(record_id: uuid.UUID, last_modified: str, emotion_type: str = "remote") -> dict:
    return {
        "id": str(record_id).upper(),
        "emotionType": emotion_type,
        "intensity": 1,
        "trigger": "",
        "unhealthyBeliefs": "",
        "healthyEmotion": "",
        "copingStrategies": "",
        "recordDate": "2024-01-01T09:00:00Z",
        "lastModified": last_modified,
    }


class SyncEngineTestBase:
    """Real stores, mocked server and connectivity, controllable clock."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.records = RecordStore(db_path=Path(self.temp_dir) / "records.db")
        self.kv = MemoryKeyValueStore()
        self.state = SyncStateStore(self.kv)

        self.client = Mock()
        self.client.has_token.return_value = True
        self.client.get_updates.return_value = []
        self.client.push_emotions.return_value = {"message": "ok"}
        self.client.get_user.return_value = {"username": "ada", "email": "ada@example.com", "energy": 30}
        self.client.get_energy.return_value = 30

        self.connectivity = Mock()
        self.connectivity.is_connected.return_value = True

        self.now = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
        self.on_profile_updated = Mock()
        self.engine = SyncEngine(
            client=self.client,
            records=self.records,
            state=self.state,
            connectivity=self.connectivity,
            clock=lambda: self.now,
            on_profile_updated=self.on_profile_updated,
        )

    def teardown_method(self):
        """Clean up."""
        self.records.close()


class TestProfileSync(SyncEngineTestBase):
    """Tests for sync_user_profile() and fetch_energy_balance()."""

    def test_overwrites_local_profile(self):
        self.records.upsert_profile(UserProfile(username="old", email="old@example.com", energy=1, id="local"))

        profile = self.engine.sync_user_profile()

        assert profile.username == "ada"
        stored = self.records.get_profile()
        assert stored.username == "ada"
        assert stored.energy == 30
        assert stored.id == "local"
        self.on_profile_updated.assert_called_once_with(profile)

    def test_missing_token(self):
        self.client.has_token.return_value = False

        with pytest.raises(AuthError):
            self.engine.sync_user_profile()

        self.client.get_user.assert_not_called()

    def test_offline(self):
        self.connectivity.is_connected.return_value = False

        with pytest.raises(NetworkError):
            self.engine.sync_user_profile()

        self.client.get_user.assert_not_called()

    def test_malformed_profile_not_stored(self):
        self.client.get_user.return_value = {"username": "ada"}

        with pytest.raises(ParseError):
            self.engine.sync_user_profile()

        assert self.records.get_profile() is None
        self.on_profile_updated.assert_not_called()

    def test_server_error_propagates(self):
        self.client.get_user.side_effect = ServerError(500, "down")

        with pytest.raises(ServerError):
            self.engine.sync_user_profile()

    def test_fetch_energy_balance(self):
        self.records.upsert_profile(UserProfile(username="ada", email="ada@example.com", energy=1))
        self.client.get_energy.return_value = 55

        assert self.engine.fetch_energy_balance() == 55
        assert self.records.get_profile().energy == 55

    def test_fetch_energy_without_local_profile(self):
        assert self.engine.fetch_energy_balance() == 30
        assert self.records.get_profile() is None


class TestFetchRemoteUpdates(SyncEngineTestBase):
    """Tests for fetch_remote_updates()."""

    def test_inserts_unknown_records_verbatim(self):
        record_id = uuid.uuid4()
        self.client.get_updates.return_value = [make_dto(record_id, "2024-05-01T00:00:00.250Z")]

        stats = self.engine.fetch_remote_updates()

        assert stats.inserted == 1
        stored = self.records.get_emotion(record_id)
        assert stored.emotion_type == "remote"
        assert stored.last_modified == datetime(2024, 5, 1, 0, 0, 0, 250000, tzinfo=timezone.utc)

    def test_first_fetch_uses_distant_past(self):
        self.engine.fetch_remote_updates()

        self.client.get_updates.assert_called_once_with(DISTANT_PAST)

    def test_remote_newer_wins(self):
        local = make_record(last_modified=T0, emotion_type="local")
        self.records.add_emotion(local)
        self.client.get_updates.return_value = [
            make_dto(local.id, format_iso8601(T0 + timedelta(seconds=1)))
        ]

        stats = self.engine.fetch_remote_updates()

        assert stats.updated == 1
        stored = self.records.get_emotion(local.id)
        assert stored.emotion_type == "remote"
        assert stored.intensity == Intensity.LOW

    def test_local_newer_wins(self):
        local = make_record(last_modified=T0 + timedelta(seconds=1), emotion_type="local")
        self.records.add_emotion(local)
        self.client.get_updates.return_value = [make_dto(local.id, format_iso8601(T0))]

        stats = self.engine.fetch_remote_updates()

        assert stats.discarded == 1
        assert self.records.get_emotion(local.id).emotion_type == "local"

    def test_equal_timestamps_keep_local(self):
        local = make_record(last_modified=T0, emotion_type="local")
        self.records.add_emotion(local)
        self.client.get_updates.return_value = [make_dto(local.id, format_iso8601(T0))]

        stats = self.engine.fetch_remote_updates()

        assert stats.discarded == 1
        assert self.records.get_emotion(local.id).emotion_type == "local"

    def test_applying_same_batch_twice_is_idempotent(self):
        ids = [uuid.uuid4(), uuid.uuid4()]
        batch = [make_dto(i, "2024-05-01T00:00:00Z") for i in ids]
        self.client.get_updates.return_value = batch

        self.engine.fetch_remote_updates()
        snapshot = {r.id: r for r in self.records.list_emotions()}
        self.now += timedelta(minutes=5)
        second = self.engine.fetch_remote_updates()

        assert second.applied == 0
        assert second.discarded == 2
        assert {r.id: r for r in self.records.list_emotions()} == snapshot

    def test_duplicate_ids_in_one_batch(self):
        record_id = uuid.uuid4()
        self.client.get_updates.return_value = [
            make_dto(record_id, "2024-05-01T00:00:00Z", emotion_type="first"),
            make_dto(record_id, "2024-05-02T00:00:00Z", emotion_type="second"),
        ]

        self.engine.fetch_remote_updates()

        assert self.records.count_emotions() == 1
        assert self.records.get_emotion(record_id).emotion_type == "second"

    def test_debounce_within_sixty_seconds(self):
        self.engine.fetch_remote_updates()
        self.now += timedelta(seconds=59)

        assert self.engine.fetch_remote_updates() is None
        assert self.client.get_updates.call_count == 1

    def test_debounce_expires(self):
        self.engine.fetch_remote_updates()
        self.now += timedelta(seconds=60)

        assert self.engine.fetch_remote_updates() is not None
        assert self.client.get_updates.call_count == 2

    def test_watermark_set_on_success(self):
        self.engine.fetch_remote_updates()

        assert self.state.last_fetch_at == self.now

    def test_offline_skips_without_request(self):
        self.connectivity.is_connected.return_value = False

        assert self.engine.fetch_remote_updates() is None
        self.client.get_updates.assert_not_called()
        assert self.state.last_fetch_at == DISTANT_PAST

    def test_missing_token(self):
        self.client.has_token.return_value = False

        with pytest.raises(AuthError):
            self.engine.fetch_remote_updates()

        self.client.get_updates.assert_not_called()

    def test_one_bad_record_aborts_whole_batch(self):
        good_id = uuid.uuid4()
        bad = make_dto(uuid.uuid4(), "2024-05-01T00:00:00Z")
        bad["lastModified"] = "01/05/2024"
        self.client.get_updates.return_value = [make_dto(good_id, "2024-05-01T00:00:00Z"), bad]

        with pytest.raises(ParseError):
            self.engine.fetch_remote_updates()

        assert self.records.count_emotions() == 0
        assert self.state.last_fetch_at == DISTANT_PAST

    def test_server_error_leaves_watermark(self):
        self.client.get_updates.side_effect = ServerError(503, "busy")

        with pytest.raises(ServerError):
            self.engine.fetch_remote_updates()

        assert self.state.last_fetch_at == DISTANT_PAST

    def test_fetch_does_not_move_push_watermark(self):
        self.client.get_updates.return_value = [make_dto(uuid.uuid4(), "2024-05-01T00:00:00Z")]

        self.engine.fetch_remote_updates()

        assert self.state.last_push_at == DISTANT_PAST

    def test_fetched_records_are_echoed_on_next_push(self):
        record_id = uuid.uuid4()
        self.client.get_updates.return_value = [make_dto(record_id, "2024-05-01T00:00:00Z")]

        self.engine.fetch_remote_updates()

        assert self.engine.has_unsynced_changes() is True
        assert self.engine.push_local_changes() == 1
        assert self.client.push_emotions.call_args[0][0][0]["id"] == str(record_id).upper()


class TestPushLocalChanges(SyncEngineTestBase):
    """Tests for push_local_changes()."""

    def test_nothing_to_push_makes_no_request(self):
        assert self.engine.push_local_changes() == 0
        self.client.push_emotions.assert_not_called()
        self.client.has_token.assert_not_called()

    def test_pushes_serialised_batch(self):
        record = make_record(last_modified=T0)
        self.records.add_emotion(record)

        assert self.engine.push_local_changes() == 1

        batch = self.client.push_emotions.call_args[0][0]
        assert batch == [record.to_dict()]
        assert self.state.last_push_at == self.now

    def test_only_records_after_watermark(self):
        self.state.last_push_at = T0
        old = make_record(last_modified=T0)
        new = make_record(last_modified=T0 + timedelta(seconds=1))
        self.records.upsert_emotions([old, new])

        assert self.engine.push_local_changes() == 1
        assert self.client.push_emotions.call_args[0][0][0]["id"] == str(new.id).upper()

    def test_second_push_sends_nothing(self):
        self.records.add_emotion(make_record())
        self.engine.push_local_changes()

        assert self.engine.push_local_changes() == 0
        assert self.client.push_emotions.call_count == 1

    def test_local_edit_after_push_is_pushed_again(self):
        record = make_record()
        self.records.add_emotion(record)
        self.engine.push_local_changes()

        self.records.update_emotion(record, now=self.now + timedelta(seconds=1))
        self.now += timedelta(seconds=2)

        assert self.engine.push_local_changes() == 1

    def test_skewed_remote_stamp_does_not_hide_local_edits(self):
        remote_id = uuid.uuid4()
        skewed = format_iso8601(self.now + timedelta(minutes=10))
        self.client.get_updates.return_value = [make_dto(remote_id, skewed)]
        self.engine.fetch_remote_updates()
        self.engine.push_local_changes()

        assert self.state.last_push_at == self.now

        local = make_record(last_modified=self.now + timedelta(minutes=1))
        self.records.add_emotion(local)
        self.now += timedelta(minutes=2)

        assert self.engine.has_unsynced_changes() is True
        self.engine.push_local_changes()
        pushed_ids = [item["id"] for item in self.client.push_emotions.call_args[0][0]]
        assert str(local.id).upper() in pushed_ids

    def test_watermark_is_push_start_time(self):
        self.records.add_emotion(make_record(last_modified=self.now + timedelta(hours=1)))

        self.engine.push_local_changes()

        assert self.state.last_push_at == self.now

    def test_failure_leaves_watermark(self):
        self.records.add_emotion(make_record())
        self.client.push_emotions.side_effect = NetworkError("offline")

        with pytest.raises(NetworkError):
            self.engine.push_local_changes()

        assert self.state.last_push_at == DISTANT_PAST
        assert self.engine.has_unsynced_changes() is True

    def test_missing_token(self):
        self.records.add_emotion(make_record())
        self.client.has_token.return_value = False

        with pytest.raises(AuthError):
            self.engine.push_local_changes()

        self.client.push_emotions.assert_not_called()

    def test_has_unsynced_changes_is_pure(self):
        self.records.add_emotion(make_record())

        assert self.engine.has_unsynced_changes() is True
        assert self.engine.has_unsynced_changes() is True
        assert self.state.last_push_at == DISTANT_PAST

    def test_has_unsynced_changes_storage_error(self):
        self.engine.records = Mock()
        self.engine.records.emotions_modified_since.side_effect = RuntimeError("disk")

        assert self.engine.has_unsynced_changes() is False


class TestCancellation(SyncEngineTestBase):
    """Tests for cancel() and the in-flight guard."""

    def test_cancel_before_commit_discards_fetch(self):
        def cancel_during_request(since):
            self.engine.cancel()
            return [make_dto(uuid.uuid4(), "2024-05-01T00:00:00Z")]

        self.client.get_updates.side_effect = cancel_during_request

        with pytest.raises(SyncCancelledError):
            self.engine.fetch_remote_updates()

        assert self.records.count_emotions() == 0
        assert self.state.last_fetch_at == DISTANT_PAST

    def test_cancel_before_commit_keeps_push_watermark(self):
        self.records.add_emotion(make_record())

        def cancel_during_request(batch):
            self.engine.cancel()
            return {}

        self.client.push_emotions.side_effect = cancel_during_request

        with pytest.raises(SyncCancelledError):
            self.engine.push_local_changes()

        assert self.state.last_push_at == DISTANT_PAST

    def test_flag_reset_for_next_operation(self):
        def cancel_during_request(since):
            self.engine.cancel()
            return []

        self.client.get_updates.side_effect = cancel_during_request
        with pytest.raises(SyncCancelledError):
            self.engine.fetch_remote_updates()

        self.client.get_updates.side_effect = None
        self.client.get_updates.return_value = []
        assert self.engine.fetch_remote_updates() is not None

    def test_cancel_when_idle(self):
        assert self.engine.cancel() is False
        assert self.engine.is_syncing() is False

    def test_concurrent_fetch_returns_immediately(self):
        entered = threading.Event()
        release = threading.Event()

        def slow_request(since):
            entered.set()
            release.wait(5)
            return []

        self.client.get_updates.side_effect = slow_request
        worker = threading.Thread(target=self.engine.fetch_remote_updates)
        worker.start()
        entered.wait(5)

        assert self.engine.is_syncing() is True
        assert self.engine.fetch_remote_updates() is None

        release.set()
        worker.join(5)
        assert self.client.get_updates.call_count == 1


class TestDeletions(SyncEngineTestBase):
    """Tests for the pending-deletion log."""

    def test_delete_emotion_logs_pending_deletion(self):
        record = make_record()
        self.records.add_emotion(record)

        assert self.engine.delete_emotion(record.id) is True

        assert self.records.get_emotion(record.id) is None
        assert self.engine.pending_deletions() == [PendingDeletion("emotion", str(record.id).upper())]

    def test_delete_unknown_record(self):
        assert self.engine.delete_emotion(uuid.uuid4()) is False
        assert self.engine.pending_deletions() == []

    def test_append_and_clear(self):
        self.engine.record_pending_deletion("emotion", "A")
        self.engine.append_pending_deletions([PendingDeletion("emotion", "B")])

        assert len(self.engine.pending_deletions()) == 2

        self.engine.clear_pending_deletions()
        assert self.engine.pending_deletions() == []


class TestFullSync(SyncEngineTestBase):
    """Tests for sync()."""

    def test_full_cycle(self):
        self.records.add_emotion(make_record())
        self.client.get_updates.return_value = [make_dto(uuid.uuid4(), "2024-05-01T00:00:00Z")]

        stats = self.engine.sync()

        assert stats.success is True
        assert stats.profile_synced is True
        assert stats.merge.inserted == 1
        # Fetched records are newer than the initial push watermark too.
        assert stats.pushed == 2

    def test_failing_step_does_not_block_the_next(self):
        self.client.get_user.side_effect = ServerError(500, "down")
        self.records.add_emotion(make_record())

        stats = self.engine.sync()

        assert stats.success is False
        assert len(stats.errors) == 1
        assert "Profile sync failed" in stats.errors[0]
        assert stats.merge is not None
        assert stats.pushed == 1

    def test_fetch_failure_still_pushes(self):
        self.client.get_updates.side_effect = NetworkError("reset")
        self.records.add_emotion(make_record())

        stats = self.engine.sync()

        assert stats.merge is None
        assert stats.pushed == 1
        assert any("Fetching updates failed" in e for e in stats.errors)

    def test_no_token_collects_every_step(self):
        self.client.has_token.return_value = False
        self.records.add_emotion(make_record())

        stats = self.engine.sync()

        assert len(stats.errors) == 3
        self.client.get_user.assert_not_called()
        self.client.push_emotions.assert_not_called()

    def test_cancellation_stops_cycle(self):
        def cancel_during_request():
            self.engine.cancel()
            return {"username": "ada", "email": "ada@example.com", "energy": 1}

        self.client.get_user.side_effect = cancel_during_request

        stats = self.engine.sync()

        assert stats.errors == ["Sync cancelled"]
        self.client.get_updates.assert_not_called()
