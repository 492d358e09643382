from __future__ import annotations

import asyncio

import pytest

from astro_solve.config import SolverConfig
from astro_solve.credentials import MemoryCredentialStore, save_api_key
from astro_solve.errors import AuthenticationError, ConfigurationError
from astro_solve.session import SessionManager


class _LoginCounter:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[tuple[str, str]] = []
        self.error = error

    def login(self, api_key: str, server_url: str) -> str:
        self.calls.append((api_key, server_url))
        if self.error is not None:
            raise self.error
        return f"sess-{len(self.calls)}"


def _manager(client: _LoginCounter, key: str | None = "  my-key  ") -> SessionManager:
    store = MemoryCredentialStore()
    if key is not None:
        save_api_key(store, key)
    return SessionManager(client, store)


def test_login_once_then_reuse_then_login_after_clear() -> None:
    client = _LoginCounter()
    manager = _manager(client)
    config = SolverConfig()

    async def _run() -> list[str]:
        first = await manager.ensure(config)
        second = await manager.ensure(config)
        manager.clear()
        third = await manager.ensure(config)
        return [first, second, third]

    tokens = asyncio.run(_run())
    assert tokens == ["sess-1", "sess-1", "sess-2"]
    assert client.calls == [
        ("my-key", "https://nova.astrometry.net"),
        ("my-key", "https://nova.astrometry.net"),
    ]


def test_concurrent_ensure_shares_one_login() -> None:
    client = _LoginCounter()
    manager = _manager(client)
    config = SolverConfig()

    async def _run() -> list[str]:
        return list(await asyncio.gather(*(manager.ensure(config) for _ in range(5))))

    assert asyncio.run(_run()) == ["sess-1"] * 5
    assert len(client.calls) == 1


def test_login_uses_custom_server_only_when_enabled() -> None:
    client = _LoginCounter()
    manager = _manager(client)

    asyncio.run(manager.ensure(SolverConfig(server_url="http://localhost:8080")))
    manager.clear()
    asyncio.run(
        manager.ensure(SolverConfig(server_url="http://localhost:8080", use_custom_server=True))
    )

    assert [url for _, url in client.calls] == [
        "https://nova.astrometry.net",
        "http://localhost:8080",
    ]


def test_missing_api_key_raises_configuration_error() -> None:
    client = _LoginCounter()
    manager = _manager(client, key=None)

    with pytest.raises(ConfigurationError, match="API Key not configured"):
        asyncio.run(manager.ensure(SolverConfig()))
    assert client.calls == []


def test_failed_login_is_not_cached() -> None:
    client = _LoginCounter(error=AuthenticationError("Invalid API key"))
    manager = _manager(client)

    with pytest.raises(AuthenticationError):
        asyncio.run(manager.ensure(SolverConfig()))
    client.error = None
    assert asyncio.run(manager.ensure(SolverConfig())) == "sess-2"


def test_invalidate_only_drops_matching_token() -> None:
    client = _LoginCounter()
    manager = _manager(client)
    asyncio.run(manager.ensure(SolverConfig()))

    manager.invalidate("stale-token")
    assert manager.token == "sess-1"

    manager.invalidate("sess-1")
    assert not manager.has_session


def test_clear_without_session_is_safe() -> None:
    manager = _manager(_LoginCounter())
    manager.clear()
    manager.clear()
    assert manager.token is None
