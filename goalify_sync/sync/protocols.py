"""Protocol types for SyncEngine dependencies.

Defines the interfaces that SyncEngine requires from its collaborators,
enabling easier testing and looser coupling.
"""

import uuid
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from .models import EmotionRecord, UserProfile


@runtime_checkable
class ApiClientProtocol(Protocol):
    """Interface for talking to the Goalify server."""

    def has_token(self) -> bool: ...

    def ping(self) -> bool: ...

    def get_user(self) -> dict: ...

    def get_energy(self) -> int: ...

    def get_updates(self, since: datetime) -> list[dict]: ...

    def push_emotions(self, batch: list[dict]) -> dict: ...


@runtime_checkable
class RecordStoreProtocol(Protocol):
    """Interface for the local record store (CRUD only)."""

    def get_emotion(self, record_id: uuid.UUID) -> Optional[EmotionRecord]: ...

    def delete_emotion(self, record_id: uuid.UUID) -> bool: ...

    def emotions_modified_since(self, since: datetime) -> list[EmotionRecord]: ...

    def upsert_emotions(self, records: list[EmotionRecord]) -> int: ...

    def get_profile(self) -> Optional[UserProfile]: ...

    def upsert_profile(self, profile: UserProfile) -> UserProfile: ...

    def set_energy(self, energy: int) -> bool: ...


@runtime_checkable
class ConnectivityProtocol(Protocol):
    """Interface for observing network connectivity."""

    def is_connected(self) -> bool: ...
