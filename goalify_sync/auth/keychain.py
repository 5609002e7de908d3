"""Secure credential storage using system keychain."""

import json
import logging
from dataclasses import dataclass
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

__all__ = ["KeychainManager", "StoredCredentials"]

logger = logging.getLogger(__name__)

SERVICE_NAME = "Goalify Sync"
ACCOUNT_NAME = "auth_token"


@dataclass
class StoredCredentials:
    """Credentials stored in keychain."""

    auth_token: str
    user_id: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps({"auth_token": self.auth_token, "user_id": self.user_id})

    @classmethod
    def from_json(cls, data: str) -> "StoredCredentials":
        parsed = json.loads(data)
        return cls(auth_token=parsed["auth_token"], user_id=parsed.get("user_id"))


class KeychainManager:
    """Manages secure credential storage.

    ``token`` is the provider the HTTP client calls before each request, so
    a logout takes effect on the very next call.
    """

    def __init__(self, service_name: str = SERVICE_NAME):
        self.service_name = service_name

    def store(self, credentials: StoredCredentials) -> bool:
        """Store credentials in keychain.

        Returns:
            True if stored successfully
        """
        try:
            keyring.set_password(self.service_name, ACCOUNT_NAME, credentials.to_json())
            logger.info(f"Credentials stored for user {credentials.user_id or 'unknown'}")
            return True
        except KeyringError as e:
            logger.error(f"Failed to store credentials: {e}")
            return False

    def load(self) -> Optional[StoredCredentials]:
        """Load credentials from keychain.

        Returns:
            StoredCredentials if found, None otherwise
        """
        try:
            data = keyring.get_password(self.service_name, ACCOUNT_NAME)
            if data:
                return StoredCredentials.from_json(data)
            return None
        except KeyringError as e:
            logger.error(f"Failed to load credentials: {e}")
            return None
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.error(f"Invalid credential format: {e}")
            return None

    def delete(self) -> bool:
        """Delete stored credentials.

        Returns:
            True if deleted (or didn't exist)
        """
        try:
            keyring.delete_password(self.service_name, ACCOUNT_NAME)
            logger.info("Credentials deleted")
            return True
        except PasswordDeleteError:
            return True
        except KeyringError as e:
            logger.error(f"Failed to delete credentials: {e}")
            return False

    def has_credentials(self) -> bool:
        return self.load() is not None

    def token(self) -> Optional[str]:
        credentials = self.load()
        if credentials is None or not credentials.auth_token:
            return None
        return credentials.auth_token
