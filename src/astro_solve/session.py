"""Process-wide astrometry.net session cache.

One ``SessionManager`` is built during wiring and shared by every job. The
session key is created lazily, reused until invalidated, and concurrent
``ensure`` calls share a single in-flight login.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from astro_solve.config import SolverConfig, get_server_url
from astro_solve.credentials import CredentialStore, get_api_key
from astro_solve.errors import ConfigurationError

if TYPE_CHECKING:
    from astro_solve.platform.nova import NovaClient

logger = logging.getLogger(__name__)


class SessionManager:
    def __init__(self, client: NovaClient, credentials: CredentialStore) -> None:
        self._client = client
        self._credentials = credentials
        self._token: str | None = None
        self._inflight: asyncio.Future[str] | None = None

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def has_session(self) -> bool:
        return self._token is not None

    async def ensure(self, config: SolverConfig) -> str:
        """Return the cached session key, logging in first if there is none.

        Raises:
            ConfigurationError: No API key is stored.
            AuthenticationError: The server rejected the key.
        """
        if self._token is not None:
            return self._token

        inflight = self._inflight
        if inflight is None or inflight.done():
            inflight = asyncio.ensure_future(self._login(config))
            self._inflight = inflight
            inflight.add_done_callback(self._forget_inflight)
        # Shielded so one cancelled waiter does not abort the shared login.
        return await asyncio.shield(inflight)

    def clear(self) -> None:
        """Drop the cached session key. Safe to call at any time."""
        if self._token is not None:
            logger.info("Clearing astrometry.net session")
        self._token = None

    def invalidate(self, token: str | None) -> None:
        """Drop the cached key only if it is still ``token``.

        A job that failed with a stale key must not throw away a fresh key
        another job has already obtained.
        """
        if token is None or self._token == token:
            self.clear()

    async def _login(self, config: SolverConfig) -> str:
        api_key = get_api_key(self._credentials)
        if not api_key:
            raise ConfigurationError("API Key not configured")
        token = await asyncio.to_thread(self._client.login, api_key, get_server_url(config))
        self._token = token
        return token

    def _forget_inflight(self, future: asyncio.Future[str]) -> None:
        if self._inflight is future:
            self._inflight = None
        # Mark the exception retrieved; every waiter re-raises it on its own.
        if not future.cancelled():
            future.exception()


__all__ = ["SessionManager"]
