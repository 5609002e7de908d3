"""Local record store for emotion records and the user profile."""

import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from ..config import Config
from ..sync.models import EmotionRecord, Intensity, UserProfile
from ..sync.timestamps import from_storage, to_storage

__all__ = ["RecordStore"]

logger = logging.getLogger(__name__)

_EMOTION_COLUMNS = (
    "id, emotion_type, intensity, trigger_text, unhealthy_beliefs, "
    "healthy_emotion, coping_strategies, record_date, last_modified"
)


class RecordStore:
    """SQLite-based store for journaled emotions and the user profile.

    Timestamps are stored as fixed-width UTC strings so that string
    comparison in SQL matches chronological order.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the record store.

        Args:
            db_path: Path to SQLite database file. Defaults to data dir.
        """
        if db_path is None:
            db_path = Config.get_data_dir() / "records.db"

        self.db_path = db_path
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "connection"):
            self._local.connection = sqlite3.connect(str(self.db_path))
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for database cursor; one transaction per block."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._cursor() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS emotion_records (
                    id TEXT PRIMARY KEY,
                    emotion_type TEXT NOT NULL,
                    intensity INTEGER NOT NULL,
                    trigger_text TEXT NOT NULL DEFAULT '',
                    unhealthy_beliefs TEXT NOT NULL DEFAULT '',
                    healthy_emotion TEXT NOT NULL DEFAULT '',
                    coping_strategies TEXT NOT NULL DEFAULT '',
                    record_date TEXT NOT NULL,
                    last_modified TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_last_modified
                ON emotion_records(last_modified)
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS user_profile (
                    slot INTEGER PRIMARY KEY CHECK (slot = 0),
                    id TEXT NOT NULL,
                    username TEXT NOT NULL,
                    email TEXT NOT NULL,
                    energy INTEGER NOT NULL
                )
                """
            )

    @staticmethod
    def _row_to_emotion(row: sqlite3.Row) -> EmotionRecord:
        return EmotionRecord(
            id=uuid.UUID(row["id"]),
            emotion_type=row["emotion_type"],
            intensity=Intensity.coerce(row["intensity"]),
            trigger=row["trigger_text"],
            unhealthy_beliefs=row["unhealthy_beliefs"],
            healthy_emotion=row["healthy_emotion"],
            coping_strategies=row["coping_strategies"],
            record_date=from_storage(row["record_date"]),
            last_modified=from_storage(row["last_modified"]),
        )

    @staticmethod
    def _emotion_params(record: EmotionRecord) -> tuple:
        return (
            str(record.id),
            record.emotion_type,
            int(record.intensity),
            record.trigger,
            record.unhealthy_beliefs,
            record.healthy_emotion,
            record.coping_strategies,
            to_storage(record.record_date),
            to_storage(record.last_modified),
        )

    # Emotion records

    def add_emotion(self, record: EmotionRecord) -> None:
        """Insert a new record as-is."""
        with self._cursor() as cursor:
            cursor.execute(
                f"INSERT INTO emotion_records ({_EMOTION_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                self._emotion_params(record),
            )

    def update_emotion(self, record: EmotionRecord, now: Optional[datetime] = None) -> None:
        """Persist a local edit, advancing ``last_modified``."""
        record.touch(now)
        self.upsert_emotions([record])

    def get_emotion(self, record_id: uuid.UUID) -> Optional[EmotionRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT {_EMOTION_COLUMNS} FROM emotion_records WHERE id = ?",
                (str(record_id),),
            )
            row = cursor.fetchone()
            return self._row_to_emotion(row) if row else None

    def list_emotions(self) -> list[EmotionRecord]:
        """All records, oldest entry first."""
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT {_EMOTION_COLUMNS} FROM emotion_records ORDER BY record_date ASC"
            )
            return [self._row_to_emotion(row) for row in cursor.fetchall()]

    def delete_emotion(self, record_id: uuid.UUID) -> bool:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM emotion_records WHERE id = ?", (str(record_id),))
            return cursor.rowcount > 0

    def emotions_modified_since(self, since: datetime) -> list[EmotionRecord]:
        """Records whose ``last_modified`` is strictly after ``since``."""
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT {_EMOTION_COLUMNS} FROM emotion_records
                WHERE last_modified > ?
                ORDER BY last_modified ASC
                """,
                (to_storage(since),),
            )
            return [self._row_to_emotion(row) for row in cursor.fetchall()]

    def upsert_emotions(self, records: list[EmotionRecord]) -> int:
        """Insert or replace records in a single transaction.

        Returns:
            Number of records written
        """
        if not records:
            return 0

        with self._cursor() as cursor:
            cursor.executemany(
                f"""
                INSERT INTO emotion_records ({_EMOTION_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    emotion_type = excluded.emotion_type,
                    intensity = excluded.intensity,
                    trigger_text = excluded.trigger_text,
                    unhealthy_beliefs = excluded.unhealthy_beliefs,
                    healthy_emotion = excluded.healthy_emotion,
                    coping_strategies = excluded.coping_strategies,
                    record_date = excluded.record_date,
                    last_modified = excluded.last_modified
                """,
                [self._emotion_params(r) for r in records],
            )
        return len(records)

    def count_emotions(self) -> int:
        with self._cursor() as cursor:
            cursor.execute("SELECT COUNT(*) FROM emotion_records")
            return cursor.fetchone()[0]

    # User profile

    def get_profile(self) -> Optional[UserProfile]:
        with self._cursor() as cursor:
            cursor.execute("SELECT id, username, email, energy FROM user_profile WHERE slot = 0")
            row = cursor.fetchone()
            if row is None:
                return None
            return UserProfile(
                id=row["id"],
                username=row["username"],
                email=row["email"],
                energy=row["energy"],
            )

    def upsert_profile(self, profile: UserProfile) -> UserProfile:
        """Write the profile, keeping the existing local id if there is one."""
        existing = self.get_profile()
        if existing is not None:
            profile.id = existing.id

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO user_profile (slot, id, username, email, energy)
                VALUES (0, ?, ?, ?, ?)
                ON CONFLICT(slot) DO UPDATE SET
                    id = excluded.id,
                    username = excluded.username,
                    email = excluded.email,
                    energy = excluded.energy
                """,
                (profile.id, profile.username, profile.email, profile.energy),
            )
        return profile

    def set_energy(self, energy: int) -> bool:
        """Update the energy balance of the existing profile, if any."""
        with self._cursor() as cursor:
            cursor.execute("UPDATE user_profile SET energy = ? WHERE slot = 0", (energy,))
            return cursor.rowcount > 0

    def close(self) -> None:
        """Close the database connection."""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection

