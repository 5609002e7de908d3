"""Base HTTP client for the Goalify API."""

import json
import logging
from typing import Any, Callable, Optional
from urllib.parse import urlparse

import requests

from .. import __version__
from .errors import (
    AuthError,
    ClientError,
    GoalifyClientError,
    InvalidURLError,
    NetworkError,
    ParseError,
    RequestTimeoutError,
    ServerError,
    UnknownError,
)

__all__ = [
    "BaseApiClient",
    "TokenProvider",
    "GoalifyClientError",
    "AuthError",
]

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]


def _error_message(response: requests.Response) -> str:
    """Prefer the ``{"error": ...}`` body, fall back to raw text."""
    try:
        payload = response.json()
        if isinstance(payload, dict) and payload.get("error"):
            return str(payload["error"])
    except ValueError:
        pass
    return response.text or "Unknown error"


def raise_for_status(response: requests.Response) -> None:
    """Classify a non-2xx response into the client error taxonomy."""
    status = response.status_code
    if 200 <= status <= 299:
        return
    message = _error_message(response)
    if 400 <= status <= 499:
        raise ClientError(status, message)
    if 500 <= status <= 599:
        raise ServerError(status, message)
    raise UnknownError(status, message)


class BaseApiClient:
    """Base HTTP client.

    Handles:
    - Session management
    - Authentication headers (opaque token, read before every request)
    - Timeouts
    - Error handling and classification

    There is no automatic retry; the caller re-runs the operation.
    """

    USER_AGENT = f"Goalify-Sync/{__version__}"

    def __init__(
        self,
        api_url: str,
        token_provider: Optional[TokenProvider] = None,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        """Initialize base API client.

        Args:
            api_url: Goalify server base URL
            token_provider: Callable returning the stored auth token, or None
            timeout: Request timeout in seconds
            session: Optional requests session (for dependency injection/testing)

        Raises:
            InvalidURLError: If ``api_url`` is not an absolute http(s) URL
        """
        parsed = urlparse(api_url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidURLError(f"Invalid API URL: {api_url!r}")

        self.api_url = api_url.rstrip("/")
        self.token_provider = token_provider or (lambda: None)
        self.timeout = timeout
        self._session = session or requests.Session()
        self._owns_session = session is None

    def has_token(self) -> bool:
        return bool(self.token_provider())

    def _get_headers(self) -> dict:
        """Get request headers with authentication.

        Raises:
            AuthError: If no token is stored
        """
        token = self.token_provider()
        if not token:
            raise AuthError()
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": self.USER_AGENT,
            "Authorization": token,
        }

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        body: Any = None,
        timeout: Optional[float] = None,
        authenticated: bool = True,
    ) -> Any:
        """Make a request to the Goalify API.

        Args:
            method: HTTP method
            endpoint: API endpoint (relative to api_url)
            params: Query parameters
            body: JSON-serialisable request body (dict or list)
            timeout: Override for the client timeout
            authenticated: Whether the Authorization header is required

        Returns:
            Decoded JSON body, or ``{}`` for an empty body

        Raises:
            AuthError: No stored token (no request is sent)
            ClientError/ServerError/UnknownError: Non-2xx responses
            RequestTimeoutError: The request timed out
            NetworkError: Other transport failures
            ParseError: A 2xx body that is not valid JSON
        """
        if authenticated:
            headers = self._get_headers()
        else:
            headers = {"Accept": "application/json", "User-Agent": self.USER_AGENT}

        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        kwargs: dict = {
            "timeout": timeout if timeout is not None else self.timeout,
            "headers": headers,
        }
        if params:
            kwargs["params"] = params
        if body is not None:
            kwargs["data"] = json.dumps(body).encode("utf-8")

        try:
            response = self._session.request(method, url, **kwargs)
        except requests.exceptions.Timeout as e:
            raise RequestTimeoutError(f"Request timed out: {method} {endpoint}") from e
        except requests.exceptions.ConnectionError as e:
            raise NetworkError("Cannot connect to Goalify API") from e
        except requests.exceptions.InvalidURL as e:
            raise InvalidURLError(str(e)) from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Request failed: {e}") from e

        logger.debug(f"{method} {endpoint} -> {response.status_code}")
        raise_for_status(response)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Invalid JSON in response to {endpoint}") from e

    def close(self) -> None:
        """Close the session if we own it."""
        if self._owns_session and self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> "BaseApiClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
