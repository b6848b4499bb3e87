"""
Field Validation.

Validation rules applied by the session state machine before any store
or token call.  Each validator returns a ``ValidationResult``; use
:func:`require_valid` to turn a failure into an ``AuthError``.

The UI collaborator is expected to run the same checks for instant
feedback, but these functions are the source of truth.
"""

from __future__ import annotations

import re

from vitalsync_auth.errors import AuthError
from vitalsync_auth.models.auth_models import (
    ERROR_MESSAGES,
    AuthErrorCode,
    ValidationResult,
)

__all__ = [
    "validate_email",
    "validate_password",
    "validate_password_confirmation",
    "validate_name",
    "require_valid",
]

_EMAIL_RE: re.Pattern[str] = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# C0 controls (U+0000–U+001F), DEL (U+007F), and C1 controls (U+0080–U+009F).
_CONTROL_CHAR_RE: re.Pattern[str] = re.compile(r"[\x00-\x1f\x7f-\x9f]")

_VALID: ValidationResult = ValidationResult(is_valid=True)


def _invalid(code: AuthErrorCode, message: str | None = None) -> ValidationResult:
    return ValidationResult(
        is_valid=False,
        error_code=code,
        error_message=message or ERROR_MESSAGES[code],
    )


def validate_email(email: str) -> ValidationResult:
    """Check that *email* has a ``local@domain.tld`` shape."""
    if not email or not email.strip():
        return _invalid(AuthErrorCode.INVALID_EMAIL, "Email address is required.")
    if not _EMAIL_RE.match(email.strip()):
        return _invalid(AuthErrorCode.INVALID_EMAIL)
    return _VALID


def validate_password(password: str, min_length: int = 8) -> ValidationResult:
    """Enforce the password policy: at least *min_length* characters."""
    if len(password) < min_length:
        return _invalid(
            AuthErrorCode.WEAK_PASSWORD,
            f"Password must be at least {min_length} characters long.",
        )
    return _VALID


def validate_password_confirmation(password: str, confirm_password: str) -> ValidationResult:
    if password != confirm_password:
        return _invalid(AuthErrorCode.PASSWORD_MISMATCH)
    return _VALID


def validate_name(name: str) -> ValidationResult:
    """Validate a display name.

    Rejects blank names and control characters (including newlines and
    tabs) to prevent log injection and display corruption.
    """
    stripped = name.strip()
    if not stripped:
        return _invalid(AuthErrorCode.INVALID_NAME)
    if _CONTROL_CHAR_RE.search(stripped):
        return _invalid(
            AuthErrorCode.INVALID_NAME,
            "Name contains invalid characters. Only printable characters are allowed.",
        )
    return _VALID


def require_valid(*results: ValidationResult) -> None:
    """Raise ``AuthError`` for the first failed result, in argument order."""
    for result in results:
        if not result.is_valid and result.error_code is not None:
            raise AuthError(result.error_code, result.error_message)
