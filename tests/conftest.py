"""Shared fixtures for the VitalSync auth test suite."""

from __future__ import annotations

import io
import logging
import uuid
from collections.abc import AsyncIterator, Iterator
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from pydantic import SecretStr

from vitalsync_auth.config import AuthConfig
from vitalsync_auth.database import DatabaseManager
from vitalsync_auth.logger import StructuredLogger
from vitalsync_auth.models.account import Account
from vitalsync_auth.repositories.account_repository import InMemoryAccountRepository
from vitalsync_auth.schema import initialize_schema
from vitalsync_auth.services import ServiceContainer, create_services
from vitalsync_auth.services.credential_store import CredentialStore
from vitalsync_auth.services.token_service import TokenService

TEST_SECRET = "test-token-secret-0123456789abcdef0123456789"


class FakeClock:
    """Controllable clock: returns a fixed UTC time until advanced."""

    def __init__(self, start: datetime = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_config(**overrides: Any) -> AuthConfig:
    """Fast, deterministic config that ignores any local ``.env``."""
    values: dict[str, Any] = {
        "TOKEN_SECRET": SecretStr(TEST_SECRET),
        "PASSWORD_HASH_ITERATIONS": 1_000,
        "SESSION_KDF_ITERATIONS": 1_000,
        "SESSION_ENCRYPTION_KEY": SecretStr("test-session-key"),
        "CALL_TIMEOUT_S": 5.0,
        "SIMULATED_LATENCY_S": 0.0,
        "LOG_FILE": "",
    }
    values.update(overrides)
    return AuthConfig(_env_file=None, **values)


def make_account(email: str, name: str = "Test User", when: datetime | None = None) -> Account:
    when = when or datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
    return Account(
        id=str(uuid.uuid4()),
        email=email,
        name=name,
        created_at=when,
        last_login=when,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> AuthConfig:
    return make_config()


@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger(name="vitalsync.tests", level=logging.DEBUG, stream=io.StringIO())


@pytest.fixture
def db(logger: StructuredLogger) -> Iterator[DatabaseManager]:
    manager = DatabaseManager(sqlite_path=":memory:", logger=logger)
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def repository() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def credential_store(
    repository: InMemoryAccountRepository,
    logger: StructuredLogger,
    clock: FakeClock,
) -> CredentialStore:
    return CredentialStore(repository, logger, hash_iterations=1_000, clock=clock)


@pytest.fixture
def token_service(logger: StructuredLogger, clock: FakeClock) -> TokenService:
    return TokenService(SecretStr(TEST_SECRET), logger, clock=clock)


@pytest.fixture
async def services(
    config: AuthConfig,
    clock: FakeClock,
    logger: StructuredLogger,
) -> AsyncIterator[ServiceContainer]:
    container = create_services(config, clock=clock, logger=logger)
    yield container
    await container["session"].aclose()


@pytest.fixture
async def sqlite_services(
    config: AuthConfig,
    clock: FakeClock,
    logger: StructuredLogger,
    db: DatabaseManager,
) -> AsyncIterator[ServiceContainer]:
    container = create_services(config, db, clock=clock, logger=logger)
    yield container
    await container["session"].aclose()
