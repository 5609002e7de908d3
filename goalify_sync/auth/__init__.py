"""Auth module - secure storage of the server auth token."""

from .keychain import KeychainManager, StoredCredentials

__all__ = ["KeychainManager", "StoredCredentials"]
