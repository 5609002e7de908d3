"""Sync module - reconciles local records with the Goalify server."""

from .api_client import GoalifyClient
from .errors import (
    AuthError,
    ClientError,
    GoalifyClientError,
    InvalidURLError,
    NetworkError,
    ParseError,
    RequestTimeoutError,
    ServerError,
    SyncCancelledError,
    UnknownError,
)
from .models import EmotionRecord, Intensity, MergeStats, PendingDeletion, SyncStats, UserProfile
from .protocols import ApiClientProtocol, ConnectivityProtocol, RecordStoreProtocol
from .reachability import ConnectivityMonitor
from .sync_engine import SyncEngine
from .sync_state import SyncStateStore

__all__ = [
    "GoalifyClient",
    "SyncEngine",
    "SyncStateStore",
    "ConnectivityMonitor",
    "EmotionRecord",
    "Intensity",
    "UserProfile",
    "PendingDeletion",
    "MergeStats",
    "SyncStats",
    "ApiClientProtocol",
    "ConnectivityProtocol",
    "RecordStoreProtocol",
    "GoalifyClientError",
    "InvalidURLError",
    "ClientError",
    "AuthError",
    "ServerError",
    "UnknownError",
    "ParseError",
    "NetworkError",
    "RequestTimeoutError",
    "SyncCancelledError",
]
