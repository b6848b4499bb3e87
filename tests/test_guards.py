"""Tests for the ``require_auth`` guard decorator."""

from types import SimpleNamespace

import pytest

from vitalsync_auth.errors import AuthError
from vitalsync_auth.guards import require_auth
from vitalsync_auth.models.auth_models import AuthErrorCode, RegisterData
from vitalsync_auth.services import ServiceContainer

from tests.conftest import FakeClock


class TestRequireAuth:
    """Tests for gating sync and async callables."""

    def test_sync_function_runs_when_authenticated(self) -> None:
        guard = require_auth(SimpleNamespace(is_authenticated=True))

        @guard
        def greet(name: str) -> str:
            return f"hi {name}"

        assert greet("ann") == "hi ann"
        assert greet.__name__ == "greet"

    def test_sync_function_blocked_when_anonymous(self) -> None:
        guard = require_auth(SimpleNamespace(is_authenticated=False))

        @guard
        def greet() -> str:
            return "hi"

        with pytest.raises(AuthError) as exc_info:
            greet()
        assert exc_info.value.code == AuthErrorCode.NOT_AUTHENTICATED

    @pytest.mark.asyncio
    async def test_async_function_blocked_when_anonymous(self) -> None:
        guard = require_auth(SimpleNamespace(is_authenticated=False))

        @guard
        async def fetch() -> int:
            return 1

        with pytest.raises(AuthError):
            await fetch()

    @pytest.mark.asyncio
    async def test_tracks_live_session_state(self, services: ServiceContainer, clock: FakeClock) -> None:
        session = services["session"]

        @require_auth(session)
        async def fetch() -> int:
            return 42

        with pytest.raises(AuthError):
            await fetch()

        await session.register(
            RegisterData(name="Ann", email="ann@example.com", password="password123", confirm_password="password123"),
        )
        assert await fetch() == 42

        clock.advance(86_401)
        with pytest.raises(AuthError):
            await fetch()
