"""
Password Reset Service.

Request/accept contract for password resets.  Message delivery and
reset-token issuance are out of scope: a request is acknowledged and
audited, and an accept performs structural checks only.

Anti-enumeration: every well-formed request receives the same generic
acknowledgement whether or not the email is registered.
"""

from __future__ import annotations

from typing import Optional

from vitalsync_auth.database import DatabaseManager
from vitalsync_auth.errors import AuthError
from vitalsync_auth.logger import StructuredLogger
from vitalsync_auth.models.auth_models import (
    PASSWORD_RESET_ACK,
    AuthErrorCode,
    AuthResult,
    PasswordResetConfirm,
    PasswordResetRequest,
)
from vitalsync_auth.models.enums import AuditAction
from vitalsync_auth.services.credential_store import CredentialStore
from vitalsync_auth.services.validation import (
    require_valid,
    validate_email,
    validate_password,
    validate_password_confirmation,
)
from vitalsync_auth.utils.audit import record_audit_event
from vitalsync_auth.utils.general import Clock, normalize_email, utc_now


class PasswordResetService:
    """Accepts password-reset requests without revealing account existence.

    Parameters
    ----------
    credential_store:
        Directory used to decide whether a request matched an account.
        The outcome is only written to the audit trail.
    logger:
        Structured logger.
    min_password_length:
        Password policy for :meth:`reset_password`.
    db:
        Optional database for persisting audit events.
    clock:
        Source of audit timestamps.
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        logger: StructuredLogger,
        *,
        min_password_length: int = 8,
        db: Optional[DatabaseManager] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._credentials: CredentialStore = credential_store
        self._logger: StructuredLogger = logger
        self._min_password_length: int = min_password_length
        self._db: Optional[DatabaseManager] = db
        self._clock: Clock = clock

    async def request_password_reset(self, request: PasswordResetRequest) -> AuthResult:
        """Acknowledge a reset request.

        Returns
        -------
        AuthResult
            ``INVALID_EMAIL`` for a malformed address.  Otherwise always
            ``success=True`` with the generic acknowledgement message.
        """
        check = validate_email(request.email)
        if not check.is_valid:
            return AuthResult(
                success=False,
                error_code=check.error_code,
                error_message=check.error_message,
            )

        email = normalize_email(request.email)
        account = await self._credentials.find_by_email(email)

        # Unknown emails are audited but nothing deliverable is queued.
        await record_audit_event(
            self._logger,
            AuditAction.PASSWORD_RESET_REQUESTED,
            account.id if account else None,
            {"matched": account is not None},
            db=self._db,
            clock=self._clock,
        )
        self._logger.info(
            "Password reset requested.",
            extra={"event": "PASSWORD_RESET_REQUESTED"},
        )
        return AuthResult(success=True, error_message=PASSWORD_RESET_ACK)

    async def reset_password(self, confirm: PasswordResetConfirm) -> AuthResult:
        """Structurally check a reset submission.

        Checks run in order: non-empty token (``MALFORMED_TOKEN``),
        password policy (``WEAK_PASSWORD``), confirmation
        (``PASSWORD_MISMATCH``).
        """
        try:
            if not confirm.token.strip():
                raise AuthError(AuthErrorCode.MALFORMED_TOKEN, "Reset token is missing.")
            require_valid(
                validate_password(confirm.password, self._min_password_length),
                validate_password_confirmation(confirm.password, confirm.confirm_password),
            )
        except AuthError as exc:
            return AuthResult(success=False, error_code=exc.code, error_message=exc.message)

        self._logger.info(
            "Password reset submission accepted.",
            extra={"event": "PASSWORD_RESET_ACCEPTED"},
        )
        return AuthResult(success=True)
