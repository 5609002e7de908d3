"""Goalify API client - the endpoints used by the sync engine."""

import logging
from datetime import datetime
from typing import Optional

import requests

from ..config import DEFAULT_API_URL, DEFAULT_PROBE_TIMEOUT, DEFAULT_SYNC_TIMEOUT
from .errors import GoalifyClientError, ParseError
from .http_client import BaseApiClient, TokenProvider
from .timestamps import format_iso8601

__all__ = ["GoalifyClient"]

logger = logging.getLogger(__name__)

API_PREFIX = "api/v1"


class GoalifyClient(BaseApiClient):
    """Client for the Goalify sync endpoints."""

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        token_provider: Optional[TokenProvider] = None,
        timeout: float = DEFAULT_SYNC_TIMEOUT,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(
            api_url,
            token_provider=token_provider,
            timeout=timeout,
            session=session,
        )
        self.probe_timeout = probe_timeout

    def ping(self) -> bool:
        """Check if the server is reachable. Never raises."""
        try:
            self._request("GET", "ping", timeout=self.probe_timeout, authenticated=False)
            return True
        except GoalifyClientError as e:
            logger.debug(f"Ping failed: {e}")
            return False

    def get_user(self) -> dict:
        """Fetch the authoritative user profile.

        Returns:
            The ``user`` object: username, email, energy
        """
        response = self._request("GET", f"{API_PREFIX}/user")
        user = response.get("user") if isinstance(response, dict) else None
        if not isinstance(user, dict):
            raise ParseError("Invalid response format: missing user object")
        return user

    def get_energy(self) -> int:
        """Fetch the current energy balance."""
        response = self._request("GET", f"{API_PREFIX}/user/energy")
        energy = response.get("energy") if isinstance(response, dict) else None
        if not isinstance(energy, int) or isinstance(energy, bool):
            raise ParseError("Invalid response format: energy")
        return energy

    def get_updates(self, since: datetime) -> list[dict]:
        """Fetch emotion records modified on the server after ``since``."""
        response = self._request(
            "GET",
            f"{API_PREFIX}/sync/updates",
            params={"lastSyncDate": format_iso8601(since)},
        )
        if not isinstance(response, dict):
            raise ParseError("Invalid response format: expected an object")
        emotions = response.get("emotions") or []
        if not isinstance(emotions, list):
            raise ParseError("Invalid response format: emotions is not a list")
        return emotions

    def push_emotions(self, batch: list[dict]) -> dict:
        """Upload changed emotion records.

        Returns:
            The response body, for logging only
        """
        response = self._request("POST", f"{API_PREFIX}/sync/emotions", body=batch)
        return response if isinstance(response, dict) else {"response": response}
