"""
Authentication Pipeline Models.

Pydantic models and enumerations for the request/response contracts
between the session state machine and the collaborator (UI / app shell).

Every session operation returns a structured, inspectable result rather
than raw strings or exception side-channels.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from vitalsync_auth.models.account import Account
from vitalsync_auth.models.enums import SessionStatus


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class AuthErrorCode(StrEnum):
    """Exhaustive enumeration of authentication error categories."""

    INVALID_EMAIL = "invalid_email"
    WEAK_PASSWORD = "weak_password"
    PASSWORD_MISMATCH = "password_mismatch"
    INVALID_NAME = "invalid_name"
    ACCOUNT_NOT_FOUND = "account_not_found"
    INCORRECT_PASSWORD = "incorrect_password"
    DUPLICATE_ACCOUNT = "duplicate_account"
    NOT_AUTHENTICATED = "not_authenticated"
    MALFORMED_TOKEN = "malformed_token"
    EXPIRED_TOKEN = "expired_token"
    NO_REFRESH_TOKEN = "no_refresh_token"
    TIMEOUT = "timeout"


ERROR_MESSAGES: dict[AuthErrorCode, str] = {
    AuthErrorCode.INVALID_EMAIL: "Please enter a valid email address.",
    AuthErrorCode.WEAK_PASSWORD: "Password must be at least 8 characters long.",
    AuthErrorCode.PASSWORD_MISMATCH: "Passwords do not match.",
    AuthErrorCode.INVALID_NAME: "Name is required.",
    AuthErrorCode.ACCOUNT_NOT_FOUND: "No account found with this email address.",
    AuthErrorCode.INCORRECT_PASSWORD: "Incorrect password.",
    AuthErrorCode.DUPLICATE_ACCOUNT: "An account with this email already exists.",
    AuthErrorCode.NOT_AUTHENTICATED: "Not authenticated. Please sign in.",
    AuthErrorCode.MALFORMED_TOKEN: "The session token is invalid.",
    AuthErrorCode.EXPIRED_TOKEN: "Your session has expired. Please sign in again.",
    AuthErrorCode.NO_REFRESH_TOKEN: "No refresh token available.",
    AuthErrorCode.TIMEOUT: "The request timed out. Please try again.",
}

PASSWORD_RESET_ACK: str = (
    "If this email is registered, you will receive a password reset link."
)


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class ValidationResult(BaseModel):
    """Result of a single field validation check.

    Attributes
    ----------
    is_valid:
        ``True`` when the value passes the validation rule.
    error_code:
        Error category on failure, ``None`` on success.
    error_message:
        Human-readable description of the failure, or ``None`` on success.
    """

    is_valid: bool
    error_code: Optional[AuthErrorCode] = None
    error_message: Optional[str] = None

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Collaborator submissions
# ---------------------------------------------------------------------------

class _Submission(BaseModel):
    """Accepts both snake_case and the front end's camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginCredentials(_Submission):
    email: str
    password: str


class RegisterData(_Submission):
    name: str
    email: str
    password: str
    confirm_password: str


class ProfileUpdate(_Submission):
    """Partial profile update.  ``None`` fields are left unchanged."""

    name: Optional[str] = None
    avatar: Optional[str] = None

    def changed_fields(self) -> dict[str, str]:
        return self.model_dump(exclude_none=True)


class PasswordChange(_Submission):
    current_password: str
    new_password: str
    confirm_password: str


class PasswordResetRequest(_Submission):
    email: str


class PasswordResetConfirm(_Submission):
    token: str
    password: str
    confirm_password: str


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------

class TokenClaims(BaseModel):
    """Decoded, verified claims of an access or refresh token."""

    subject: str
    issued_at: datetime
    expires_at: datetime

    model_config = {"frozen": True}


class TokenPair(BaseModel):
    """An access token and its paired refresh token."""

    token: str
    refresh_token: str
    claims: TokenClaims

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class PersistedSession(BaseModel):
    """The durable mirror of the current session.

    Each field maps to one persisted key (``auth_token``,
    ``refresh_token``, ``auth_user``) and is ``None`` when the key is
    absent or unreadable.
    """

    token: Optional[str] = None
    refresh_token: Optional[str] = None
    account: Optional[Account] = None

    @property
    def is_empty(self) -> bool:
        return self.token is None and self.refresh_token is None and self.account is None


class SessionSnapshot(BaseModel):
    """Immutable view of the session published to collaborators."""

    status: SessionStatus
    account: Optional[Account] = None
    token: Optional[str] = None
    is_authenticated: bool = False
    is_loading: bool = False
    error: Optional[AuthErrorCode] = None
    error_message: Optional[str] = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Unified operation response
# ---------------------------------------------------------------------------

class AuthResult(BaseModel):
    """Unified response for every session and password-reset operation.

    Attributes
    ----------
    success:
        ``True`` when the operation completed without error.
    error_code:
        Structured error category (``None`` on success).
    error_message:
        Human-readable error or acknowledgement message.
    account:
        The account the session holds after the operation, when relevant.
    superseded:
        ``True`` when the result was discarded because a ``logout()``
        started after the operation began.
    """

    success: bool
    error_code: Optional[AuthErrorCode] = None
    error_message: Optional[str] = None
    account: Optional[Account] = None
    superseded: bool = False

    model_config = {"from_attributes": True}
