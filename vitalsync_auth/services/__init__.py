"""
Authentication Services Package.

The ``create_services()`` factory wires the account repository, the
credential store, the token service, the session store, and the session
state machine together, returning a typed dict the application layer
(CLI / UI shell) can consume without knowing the dependency graph.
"""

from __future__ import annotations

from typing import Optional, TypedDict

from vitalsync_auth.config import AuthConfig
from vitalsync_auth.database import DatabaseManager
from vitalsync_auth.logger import StructuredLogger, get_logger
from vitalsync_auth.repositories.account_repository import (
    AccountRepository,
    InMemoryAccountRepository,
    SqliteAccountRepository,
)
from vitalsync_auth.services.credential_store import CredentialStore
from vitalsync_auth.services.password_reset import PasswordResetService
from vitalsync_auth.services.session_machine import SessionStateMachine
from vitalsync_auth.services.session_store import (
    InMemorySessionStore,
    SessionStore,
    SqliteSessionStore,
)
from vitalsync_auth.services.token_service import TokenService
from vitalsync_auth.utils.general import Clock, utc_now


class ServiceContainer(TypedDict):
    """Typed container for the authentication services."""

    account_repository: AccountRepository
    credential_store: CredentialStore
    token_service: TokenService
    session_store: SessionStore
    session: SessionStateMachine
    password_reset_service: PasswordResetService


def create_services(
    config: AuthConfig,
    db: Optional[DatabaseManager] = None,
    *,
    clock: Clock = utc_now,
    logger: Optional[StructuredLogger] = None,
) -> ServiceContainer:
    """
    Wire all repositories and services together.

    This is the single composition root for the service layer.  With a
    *db* the account directory and the session triple live in SQLite
    (the schema must already be initialised); without one both are kept
    in memory for the lifetime of the process.

    Args:
        config: Application configuration.
        db: Optional initialised DatabaseManager.
        clock: Time source shared by every service.
        logger: Logger shared by every service.  Defaults to ``services``.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    logger = logger or get_logger("services")

    # ------------------------------------------------------------------
    # 1. Storage
    # ------------------------------------------------------------------
    account_repository: AccountRepository
    session_store: SessionStore
    if db is not None:
        account_repository = SqliteAccountRepository(db=db, logger=logger)
        session_store = SqliteSessionStore(
            db=db,
            logger=logger,
            encryption_key=config.SESSION_ENCRYPTION_KEY,
            kdf_iterations=config.SESSION_KDF_ITERATIONS,
        )
    else:
        account_repository = InMemoryAccountRepository()
        session_store = InMemorySessionStore(
            logger=logger, latency_s=config.SIMULATED_LATENCY_S,
        )

    # ------------------------------------------------------------------
    # 2. Leaf services
    # ------------------------------------------------------------------
    credential_store = CredentialStore(
        account_repository,
        logger,
        hash_iterations=config.PASSWORD_HASH_ITERATIONS,
        min_password_length=config.PASSWORD_MIN_LENGTH,
        latency_s=config.SIMULATED_LATENCY_S,
        clock=clock,
    )
    token_service = TokenService(
        config.TOKEN_SECRET,
        logger,
        algorithm=config.TOKEN_ALGORITHM,
        access_ttl_s=config.ACCESS_TOKEN_TTL_SECONDS,
        refresh_ttl_s=config.REFRESH_TOKEN_TTL_SECONDS,
        clock=clock,
    )

    # ------------------------------------------------------------------
    # 3. Orchestration
    # ------------------------------------------------------------------
    session = SessionStateMachine(
        credential_store,
        token_service,
        session_store,
        logger,
        call_timeout_s=config.CALL_TIMEOUT_S,
        min_password_length=config.PASSWORD_MIN_LENGTH,
        clock=clock,
        db=db,
    )
    password_reset_service = PasswordResetService(
        credential_store,
        logger,
        min_password_length=config.PASSWORD_MIN_LENGTH,
        db=db,
        clock=clock,
    )

    return ServiceContainer(
        account_repository=account_repository,
        credential_store=credential_store,
        token_service=token_service,
        session_store=session_store,
        session=session,
        password_reset_service=password_reset_service,
    )


__all__ = [
    "ServiceContainer",
    "create_services",
    "CredentialStore",
    "PasswordResetService",
    "SessionStateMachine",
    "TokenService",
]
