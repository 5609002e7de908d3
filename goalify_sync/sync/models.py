"""Records exchanged between the local store and the Goalify server."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import IntEnum
from typing import Optional

from .errors import ParseError
from .timestamps import format_iso8601, parse_server_datetime, utcnow

__all__ = [
    "Intensity",
    "EmotionRecord",
    "UserProfile",
    "PendingDeletion",
    "MergeStats",
    "SyncStats",
]

DEFAULT_ENERGY = 20


class Intensity(IntEnum):
    """Mood intensity, integer-backed on the wire."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3

    @classmethod
    def coerce(cls, value) -> "Intensity":
        """Map a wire value to an Intensity; unknown values become MEDIUM."""
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            return cls.MEDIUM


@dataclass
class EmotionRecord:
    """A journaled mood entry.

    ``last_modified`` is the only conflict-resolution key: every local edit
    must go through :meth:`touch` so it keeps moving forward.
    """

    id: uuid.UUID
    emotion_type: str
    intensity: Intensity
    trigger: str = ""
    unhealthy_beliefs: str = ""
    healthy_emotion: str = ""
    coping_strategies: str = ""
    record_date: datetime = field(default_factory=utcnow)
    last_modified: datetime = field(default_factory=utcnow)

    @classmethod
    def create(
        cls,
        emotion_type: str,
        intensity: Intensity = Intensity.MEDIUM,
        trigger: str = "",
        unhealthy_beliefs: str = "",
        healthy_emotion: str = "",
        coping_strategies: str = "",
        record_date: Optional[datetime] = None,
    ) -> "EmotionRecord":
        """Create a new local record with a fresh id."""
        now = utcnow()
        return cls(
            id=uuid.uuid4(),
            emotion_type=emotion_type,
            intensity=intensity,
            trigger=trigger,
            unhealthy_beliefs=unhealthy_beliefs,
            healthy_emotion=healthy_emotion,
            coping_strategies=coping_strategies,
            record_date=record_date or now,
            last_modified=now,
        )

    def touch(self, now: Optional[datetime] = None) -> None:
        """Mark the record as locally modified."""
        now = now or utcnow()
        if now <= self.last_modified:
            now = self.last_modified + timedelta(microseconds=1)
        self.last_modified = now

    def apply_remote(self, other: "EmotionRecord") -> None:
        """Overwrite content fields with a newer remote version."""
        self.emotion_type = other.emotion_type
        self.intensity = other.intensity
        self.trigger = other.trigger
        self.unhealthy_beliefs = other.unhealthy_beliefs
        self.healthy_emotion = other.healthy_emotion
        self.coping_strategies = other.coping_strategies
        self.record_date = other.record_date
        self.last_modified = other.last_modified

    def to_dict(self) -> dict:
        """Wire representation used by ``POST /sync/emotions``."""
        return {
            "id": str(self.id).upper(),
            "emotionType": self.emotion_type,
            "intensity": int(self.intensity),
            "trigger": self.trigger,
            "unhealthyBeliefs": self.unhealthy_beliefs,
            "healthyEmotion": self.healthy_emotion,
            "copingStrategies": self.coping_strategies,
            "recordDate": format_iso8601(self.record_date),
            "lastModified": format_iso8601(self.last_modified),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EmotionRecord":
        """Parse a server DTO.

        Raises:
            ParseError: On a missing field, a bad id or an unparseable date.
        """
        if not isinstance(data, dict):
            raise ParseError(f"Expected an emotion object, got {type(data).__name__}")
        try:
            record_id = uuid.UUID(str(data["id"]))
            return cls(
                id=record_id,
                emotion_type=str(data["emotionType"]),
                intensity=Intensity.coerce(data.get("intensity")),
                trigger=data.get("trigger") or "",
                unhealthy_beliefs=data.get("unhealthyBeliefs") or "",
                healthy_emotion=data.get("healthyEmotion") or "",
                coping_strategies=data.get("copingStrategies") or "",
                record_date=parse_server_datetime(data["recordDate"]),
                last_modified=parse_server_datetime(data["lastModified"]),
            )
        except KeyError as e:
            raise ParseError(f"Emotion record is missing field {e}") from e
        except ValueError as e:
            raise ParseError(f"Invalid emotion id: {data.get('id')!r}") from e


@dataclass
class UserProfile:
    """The single local user. The server is authoritative for every field."""

    username: str
    email: str
    energy: int = DEFAULT_ENERGY
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_dict(cls, data: dict) -> "UserProfile":
        """Parse the ``user`` object of ``GET /user``."""
        if not isinstance(data, dict):
            raise ParseError("Invalid response format: missing user object")
        username = data.get("username")
        email = data.get("email")
        energy = data.get("energy")
        if not isinstance(username, str) or not isinstance(email, str):
            raise ParseError("Invalid response format: username/email")
        if not isinstance(energy, int) or isinstance(energy, bool):
            raise ParseError("Invalid response format: energy")
        return cls(username=username, email=email, energy=energy)


@dataclass(frozen=True)
class PendingDeletion:
    """A local deletion not yet confirmed by the server."""

    entity_type: str
    id: str

    def to_dict(self) -> dict:
        return {"type": self.entity_type, "id": self.id}

    @classmethod
    def from_dict(cls, data: dict) -> "PendingDeletion":
        return cls(entity_type=data["type"], id=str(data["id"]))


@dataclass
class MergeStats:
    """Outcome of applying one remote batch."""

    inserted: int = 0
    updated: int = 0
    discarded: int = 0

    @property
    def applied(self) -> int:
        return self.inserted + self.updated


@dataclass
class SyncStats:
    """Statistics from a full sync cycle."""

    profile_synced: bool = False
    merge: Optional[MergeStats] = None
    pushed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0
