"""Error taxonomy shared by the API client and the sync engine."""

from typing import Optional

__all__ = [
    "GoalifyClientError",
    "InvalidURLError",
    "HTTPStatusError",
    "ClientError",
    "AuthError",
    "ServerError",
    "UnknownError",
    "ParseError",
    "NetworkError",
    "RequestTimeoutError",
    "SyncCancelledError",
]


class GoalifyClientError(Exception):
    """Base class for every error raised by the sync layer."""

    pass


class InvalidURLError(GoalifyClientError):
    """The configured API URL cannot be used to build requests."""

    pass


class HTTPStatusError(GoalifyClientError):
    """The server answered with a non-2xx status."""

    kind = "HTTP error"

    def __init__(self, status: Optional[int], message: str):
        self.status = status
        self.message = message
        if status is None:
            super().__init__(message)
        else:
            super().__init__(f"{self.kind} ({status}): {message}")


class ClientError(HTTPStatusError):
    """HTTP 4xx."""

    kind = "Client error"


class AuthError(ClientError):
    """No stored credential; raised before any request is made."""

    def __init__(self, message: str = "No stored auth token"):
        super().__init__(None, message)


class ServerError(HTTPStatusError):
    """HTTP 5xx."""

    kind = "Server error"


class UnknownError(HTTPStatusError):
    """Any status outside 2xx/4xx/5xx."""

    kind = "Unknown error"


class ParseError(GoalifyClientError):
    """Malformed JSON, missing fields or an unparseable date."""

    pass


class NetworkError(GoalifyClientError):
    """Transport-level failure."""

    pass


class RequestTimeoutError(NetworkError):
    """The request did not complete within its timeout."""

    pass


class SyncCancelledError(GoalifyClientError):
    """The caller cancelled the operation before it committed."""

    pass
