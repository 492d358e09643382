"""API key storage.

The key itself never lives in ``SolverConfig``; it is read from a credential
store at login time. Applications plug in their own secure store by
implementing ``CredentialStore``.
"""

from __future__ import annotations

import os
from typing import Protocol, runtime_checkable

from astro_solve.errors import ConfigurationError

API_KEY_STORAGE_KEY = "astrometry_api_key"
API_KEY_ENV_VAR = "ASTROMETRY_API_KEY"


@runtime_checkable
class CredentialStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryCredentialStore:
    """Process-local store, for tests and one-shot CLI runs."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)


class EnvCredentialStore:
    """Read-only store backed by the process environment."""

    def __init__(self, env_var: str = API_KEY_ENV_VAR) -> None:
        self.env_var = env_var

    def get(self, key: str) -> str | None:
        if key != API_KEY_STORAGE_KEY:
            return None
        return os.getenv(self.env_var)

    def set(self, key: str, value: str) -> None:
        raise ConfigurationError(f"Environment credentials are read-only; set {self.env_var}")

    def delete(self, key: str) -> None:
        raise ConfigurationError(f"Environment credentials are read-only; unset {self.env_var}")


def save_api_key(store: CredentialStore, api_key: str) -> None:
    store.set(API_KEY_STORAGE_KEY, api_key.strip())


def get_api_key(store: CredentialStore) -> str | None:
    """Stored API key, or None when missing or blank."""
    value = store.get(API_KEY_STORAGE_KEY)
    if value is None or not value.strip():
        return None
    return value.strip()


def delete_api_key(store: CredentialStore) -> None:
    store.delete(API_KEY_STORAGE_KEY)


__all__ = [
    "API_KEY_ENV_VAR",
    "API_KEY_STORAGE_KEY",
    "CredentialStore",
    "EnvCredentialStore",
    "MemoryCredentialStore",
    "delete_api_key",
    "get_api_key",
    "save_api_key",
]
