"""
Session State Machine.

Orchestrates one client's authentication session: login, registration,
logout, profile updates, password changes, token refresh, and restoring
a persisted session at start-up.

Concurrency model
-----------------
The machine is an actor.  Every public operation is queued as a command
and executed by a single worker task, so operations on one session never
interleave and there is no last-write-wins race on the session fields.

``logout()`` is special: it bumps the session *epoch* at call time and
clears the in-memory session immediately.  Any command issued before the
bump discards its result when it next reaches a checkpoint (no state
change, no persistence) and resolves to ``AuthResult(superseded=True)``.
The queued logout then clears the persisted triple, after anything still
in flight has finished, so the keys are always absent once ``logout()``
returns.

Every call into the credential store, token service, or session store
is bounded by ``call_timeout_s``; expiry surfaces as ``TIMEOUT``.

State
-----
``status`` reports ``LOADING`` while a command is in flight and ``ERROR``
while an error is held.  Otherwise it is the stable state:
``UNINITIALIZED``, ``AUTHENTICATED`` or ``ANONYMOUS``.
``is_authenticated`` is true iff an account is held together with an
unexpired access token, and is independent of the error field.
"""

from __future__ import annotations

import asyncio
import functools
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

from vitalsync_auth.database import DatabaseManager
from vitalsync_auth.errors import AuthError
from vitalsync_auth.logger import StructuredLogger
from vitalsync_auth.models.account import Account
from vitalsync_auth.models.auth_models import (
    AuthErrorCode,
    AuthResult,
    LoginCredentials,
    PasswordChange,
    ProfileUpdate,
    RegisterData,
    SessionSnapshot,
)
from vitalsync_auth.models.enums import AuditAction, SessionStatus
from vitalsync_auth.services.credential_store import CredentialStore
from vitalsync_auth.services.session_store import SessionStore
from vitalsync_auth.services.token_service import TokenService
from vitalsync_auth.services.validation import (
    require_valid,
    validate_email,
    validate_name,
    validate_password,
    validate_password_confirmation,
)
from vitalsync_auth.utils.audit import DetailValue, record_audit_event
from vitalsync_auth.utils.general import Clock, utc_now

T = TypeVar("T")

SessionListener = Callable[[SessionSnapshot], None]

_SUPERSEDED_MESSAGE: str = "The operation was superseded by a logout."


class _Superseded(Exception):
    """Raised at a checkpoint when ``logout()`` has bumped the epoch."""


@dataclass
class _Command:
    name: str
    handler: Callable[[], Awaitable[Any]]
    epoch: int
    future: asyncio.Future[Any]


class SessionStateMachine:
    """Actor owning the session fields of one client.

    Parameters
    ----------
    credential_store:
        Shared account directory.
    token_service:
        Issues and verifies bearer tokens.
    session_store:
        Durable mirror of the current session.
    logger:
        Structured logger.
    call_timeout_s:
        Upper bound for every collaborator call.
    min_password_length:
        Password policy for registration and password changes.
    clock:
        Source of ``created_at`` / ``last_login`` timestamps.
    db:
        Optional database for persisting audit events.
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        token_service: TokenService,
        session_store: SessionStore,
        logger: StructuredLogger,
        *,
        call_timeout_s: float = 10.0,
        min_password_length: int = 8,
        clock: Clock = utc_now,
        db: Optional[DatabaseManager] = None,
    ) -> None:
        self._credentials: CredentialStore = credential_store
        self._tokens: TokenService = token_service
        self._sessions: SessionStore = session_store
        self._logger: StructuredLogger = logger
        self._call_timeout_s: float = call_timeout_s
        self._min_password_length: int = min_password_length
        self._clock: Clock = clock
        self._db: Optional[DatabaseManager] = db

        # Session fields
        self._state: SessionStatus = SessionStatus.UNINITIALIZED
        self._account: Optional[Account] = None
        self._token: Optional[str] = None
        self._is_loading: bool = False
        self._error: Optional[AuthErrorCode] = None
        self._error_message: Optional[str] = None

        # Actor plumbing
        self._queue: asyncio.Queue[Optional[_Command]] = asyncio.Queue()
        self._worker: Optional[asyncio.Task[None]] = None
        self._epoch: int = 0
        self._active_epoch: int = 0
        self._closed: bool = False
        self._listeners: list[SessionListener] = []

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def account(self) -> Optional[Account]:
        return self._account

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def error(self) -> Optional[AuthErrorCode]:
        return self._error

    @property
    def error_message(self) -> Optional[str]:
        return self._error_message

    @property
    def is_authenticated(self) -> bool:
        """``True`` when an account is held with an unexpired access token."""
        return self._account is not None and self._tokens.is_valid(self._token)

    @property
    def stable_status(self) -> SessionStatus:
        """The underlying state, ignoring in-flight commands and held errors."""
        return self._state

    @property
    def status(self) -> SessionStatus:
        if self._error is not None:
            return SessionStatus.ERROR
        if self._is_loading:
            return SessionStatus.LOADING
        return self._state

    def snapshot(self) -> SessionSnapshot:
        """Immutable view of the current session fields."""
        return SessionSnapshot(
            status=self.status,
            account=self._account,
            token=self._token,
            is_authenticated=self.is_authenticated,
            is_loading=self._is_loading,
            error=self._error,
            error_message=self._error_message,
        )

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Call *listener* with a fresh snapshot after every state change.

        Returns
        -------
        Callable[[], None]
            Removes the listener.  Safe to call more than once.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def initialize(self) -> AuthResult:
        """Restore the persisted session, or settle on ``ANONYMOUS``.

        Authenticated only when the stored token validates and its
        subject still resolves to an account.  Every failure, including
        timeouts and unreadable storage, resolves to ``ANONYMOUS``
        without touching the persisted keys and without setting an
        error.
        """
        return await self._submit("initialize", self._do_initialize)

    async def login(self, credentials: LoginCredentials) -> AuthResult:
        return await self._submit("login", self._do_login, credentials)

    async def register(self, data: RegisterData) -> AuthResult:
        return await self._submit("register", self._do_register, data)

    async def update_profile(self, update: ProfileUpdate) -> AuthResult:
        return await self._submit("update_profile", self._do_update_profile, update)

    async def change_password(self, change: PasswordChange) -> AuthResult:
        return await self._submit("change_password", self._do_change_password, change)

    async def refresh_token(self) -> AuthResult:
        """Mint a new access token from the persisted refresh token.

        Any failure forces a logout *and* reports the underlying error.
        """
        return await self._submit("refresh_token", self._do_refresh)

    async def logout(self) -> None:
        """End the session.  Never raises.

        In-memory state is cleared immediately and anything issued
        earlier is superseded; the persisted keys are cleared once the
        queued logout runs, or directly when the machine is closed.
        """
        self._epoch += 1
        previous = self._account
        self._reset_session()
        self._publish()

        try:
            if self._closed:
                await self._do_logout(previous)
            else:
                await self._submit("logout", self._do_logout, previous)
        except Exception:
            self._logger.error(
                "Logout could not clear persisted session.", exc_info=True,
                extra={"event": "LOGOUT_FAILED"},
            )

    def clear_error(self) -> None:
        """Drop the held error and return to the stable state.  No I/O."""
        if self._error is None:
            return
        self._error = None
        self._error_message = None
        self._publish()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Drain queued commands and stop the worker task."""
        if self._closed:
            return
        self._closed = True
        if self._worker is not None:
            await self._queue.put(None)
            await self._worker
            self._worker = None

    async def __aenter__(self) -> "SessionStateMachine":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Command handlers (run on the worker task only)
    # ------------------------------------------------------------------

    async def _do_initialize(self) -> AuthResult:
        async with self._loading():
            try:
                persisted = await self._call(self._sessions.load())
                if persisted.token is None or persisted.account is None:
                    raise AuthError(AuthErrorCode.NOT_AUTHENTICATED, "No persisted session.")
                claims = await self._call(self._tokens.validate(persisted.token))
                self._tokens.observe(persisted.token)
                account = await self._call(self._credentials.get_account(claims.subject))
            except AuthError as exc:
                self._ensure_current()
                self._logger.info(
                    "No session restored (%s).", exc.code,
                    extra={"event": "SESSION_NOT_RESTORED"},
                )
                self._settle_anonymous()
                return AuthResult(success=False, error_code=exc.code, error_message=exc.message)
            except Exception:
                self._ensure_current()
                self._logger.warning(
                    "Session restore failed unexpectedly; continuing anonymously.",
                    exc_info=True,
                    extra={"event": "SESSION_NOT_RESTORED"},
                )
                self._settle_anonymous()
                return AuthResult(success=False)

            self._ensure_current()
            self._set_authenticated(account, persisted.token)
            self._logger.info(
                "Session restored for %s.", account.email,
                extra={"event": "SESSION_RESTORED", "account_id": account.id},
            )
            return AuthResult(success=True, account=account)

    async def _do_login(self, credentials: LoginCredentials) -> AuthResult:
        async with self._loading():
            try:
                require_valid(validate_email(credentials.email))
                account = await self._call(
                    self._credentials.verify(credentials.email, credentials.password),
                )
                self._ensure_current()
                account = await self._call(
                    self._credentials.record_login(account.id, self._clock()),
                )
                pair = await self._call(self._tokens.issue(account.id))
                self._ensure_current()
                await self._call(self._sessions.save(pair.token, pair.refresh_token, account))
            except AuthError as exc:
                self._ensure_current()
                await self._audit(
                    AuditAction.LOGIN_FAILED, None,
                    {"email": credentials.email.strip().lower(), "reason": str(exc.code)},
                )
                return self._fail(exc)

            self._ensure_current()
            self._set_authenticated(account, pair.token)
            await self._audit(AuditAction.LOGIN, account.id)
            return AuthResult(success=True, account=account)

    async def _do_register(self, data: RegisterData) -> AuthResult:
        async with self._loading():
            try:
                require_valid(
                    validate_name(data.name),
                    validate_email(data.email),
                    validate_password(data.password, self._min_password_length),
                    validate_password_confirmation(data.password, data.confirm_password),
                )
                now = self._clock()
                account = await self._call(
                    self._credentials.insert(
                        Account(
                            id=str(uuid.uuid4()),
                            email=data.email,
                            name=data.name.strip(),
                            email_verified=False,
                            created_at=now,
                            last_login=now,
                        ),
                        data.password,
                    ),
                )
                pair = await self._call(self._tokens.issue(account.id))
                self._ensure_current()
                await self._call(self._sessions.save(pair.token, pair.refresh_token, account))
            except AuthError as exc:
                self._ensure_current()
                return self._fail(exc)

            self._ensure_current()
            self._set_authenticated(account, pair.token)
            await self._audit(AuditAction.REGISTER, account.id)
            return AuthResult(success=True, account=account)

    async def _do_update_profile(self, update: ProfileUpdate) -> AuthResult:
        async with self._loading():
            try:
                account = self._require_account()
                fields = update.changed_fields()
                if "name" in fields:
                    require_valid(validate_name(fields["name"]))
                if fields:
                    account = await self._call(
                        self._credentials.update_profile(account.id, fields),
                    )
                    self._ensure_current()
                    await self._call(self._sessions.update_account(account))
            except AuthError as exc:
                self._ensure_current()
                return self._fail(exc)

            self._ensure_current()
            self._account = account
            self._publish()
            await self._audit(
                AuditAction.PROFILE_UPDATED, account.id,
                {"fields": ",".join(sorted(update.changed_fields()))},
            )
            return AuthResult(success=True, account=account)

    async def _do_change_password(self, change: PasswordChange) -> AuthResult:
        async with self._loading():
            try:
                account = self._require_account()
                require_valid(
                    validate_password(change.new_password, self._min_password_length),
                    validate_password_confirmation(change.new_password, change.confirm_password),
                )
                await self._call(
                    self._credentials.update_password(
                        account.id, change.current_password, change.new_password,
                    ),
                )
            except AuthError as exc:
                self._ensure_current()
                return self._fail(exc)

            self._ensure_current()
            await self._audit(AuditAction.PASSWORD_CHANGED, account.id)
            return AuthResult(success=True, account=account)

    async def _do_refresh(self) -> AuthResult:
        async with self._loading():
            try:
                persisted = await self._call(self._sessions.load())
                if not persisted.refresh_token:
                    raise AuthError(AuthErrorCode.NO_REFRESH_TOKEN)
                self._tokens.observe(persisted.token)
                pair = await self._call(self._tokens.refresh(persisted.refresh_token))
                account = await self._call(self._credentials.get_account(pair.claims.subject))
                self._ensure_current()
                await self._call(self._sessions.save(pair.token, pair.refresh_token, account))
            except AuthError as exc:
                self._ensure_current()
                await self._force_logout(exc)
                return AuthResult(success=False, error_code=exc.code, error_message=exc.message)

            self._ensure_current()
            self._set_authenticated(account, pair.token)
            await self._audit(AuditAction.TOKEN_REFRESHED, account.id)
            return AuthResult(success=True, account=account)

    async def _do_logout(self, previous: Optional[Account]) -> None:
        try:
            await self._call(self._sessions.clear())
        except Exception:
            self._logger.error(
                "Failed to clear persisted session during logout.", exc_info=True,
                extra={"event": "LOGOUT_STORAGE_FAILED"},
            )
        await self._audit(AuditAction.LOGOUT, previous.id if previous else None)

    async def _force_logout(self, cause: AuthError) -> None:
        previous = self._account
        try:
            await self._call(self._sessions.clear())
        except Exception:
            self._logger.error(
                "Failed to clear persisted session during forced logout.", exc_info=True,
                extra={"event": "LOGOUT_STORAGE_FAILED"},
            )
        self._reset_session()
        self._error = cause.code
        self._error_message = cause.message
        self._publish()
        self._logger.warning(
            "Token refresh failed (%s). Forcing logout.", cause.code,
            extra={"event": "FORCED_LOGOUT"},
        )
        await self._audit(
            AuditAction.FORCED_LOGOUT,
            previous.id if previous else None,
            {"reason": str(cause.code)},
        )

    # ------------------------------------------------------------------
    # Actor plumbing
    # ------------------------------------------------------------------

    async def _submit(self, name: str, handler: Callable[..., Awaitable[T]], *args: Any) -> T:
        if self._closed:
            raise RuntimeError("Session state machine is closed.")
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(
                self._run(), name="session-state-machine",
            )

        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        await self._queue.put(
            _Command(
                name=name,
                handler=functools.partial(handler, *args),
                epoch=self._epoch,
                future=future,
            ),
        )
        return await future

    async def _run(self) -> None:
        while True:
            command = await self._queue.get()
            try:
                if command is None:
                    return
                await self._dispatch(command)
            finally:
                self._queue.task_done()

    async def _dispatch(self, command: _Command) -> None:
        if command.future.cancelled():
            return
        if command.epoch != self._epoch:
            self._logger.debug("Skipping superseded %s.", command.name)
            command.future.set_result(self._superseded())
            return

        self._active_epoch = command.epoch
        try:
            result = await command.handler()
        except _Superseded:
            self._logger.info(
                "Discarded result of %s issued before logout.", command.name,
                extra={"event": "SUPERSEDED"},
            )
            result = self._superseded()
        except Exception as exc:
            if not command.future.done():
                command.future.set_exception(exc)
            return

        if not command.future.done():
            command.future.set_result(result)

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, self._call_timeout_s)
        except TimeoutError as exc:
            self._logger.warning(
                "Call exceeded %.1fs timeout.", self._call_timeout_s,
                extra={"event": "TIMEOUT"},
            )
            raise AuthError(AuthErrorCode.TIMEOUT) from exc

    def _ensure_current(self) -> None:
        if self._active_epoch != self._epoch:
            raise _Superseded()

    @staticmethod
    def _superseded() -> AuthResult:
        return AuthResult(success=False, superseded=True, error_message=_SUPERSEDED_MESSAGE)

    @asynccontextmanager
    async def _loading(self) -> AsyncIterator[None]:
        self._is_loading = True
        self._publish()
        try:
            yield
        finally:
            self._is_loading = False
            self._publish()

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _set_authenticated(self, account: Account, token: str) -> None:
        self._account = account
        self._token = token
        self._state = SessionStatus.AUTHENTICATED
        self._error = None
        self._error_message = None
        self._publish()

    def _settle_anonymous(self) -> None:
        self._account = None
        self._token = None
        self._state = SessionStatus.ANONYMOUS
        self._publish()

    def _reset_session(self) -> None:
        self._account = None
        self._token = None
        self._state = SessionStatus.ANONYMOUS
        self._error = None
        self._error_message = None

    def _fail(self, exc: AuthError) -> AuthResult:
        """Hold *exc* as the session error.  Account and token are kept."""
        self._error = exc.code
        self._error_message = exc.message
        self._publish()
        self._logger.info(
            "Session operation failed: %s", exc.code,
            extra={"event": "AUTH_ERROR", "error_code": str(exc.code)},
        )
        return AuthResult(
            success=False,
            error_code=exc.code,
            error_message=exc.message,
            account=self._account,
        )

    def _require_account(self) -> Account:
        if not self.is_authenticated or self._account is None:
            raise AuthError(AuthErrorCode.NOT_AUTHENTICATED)
        return self._account

    def _publish(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                self._logger.error(
                    "Session listener %r raised.", listener, exc_info=True,
                )

    async def _audit(
        self,
        action: AuditAction,
        account_id: Optional[str],
        details: Optional[dict[str, DetailValue]] = None,
    ) -> None:
        await record_audit_event(
            self._logger, action, account_id, details, db=self._db, clock=self._clock,
        )
