from __future__ import annotations

"""
Data Models Package.

Re-exports the Pydantic models for short imports:
    from vitalsync_auth.models import Account, AuthResult, SessionSnapshot
    from vitalsync_auth.models import AuthErrorCode, SessionStatus
"""

from vitalsync_auth.models.enums import AuditAction, SessionStatus
from vitalsync_auth.models.account import Account, AccountRecord, StoredCredential
from vitalsync_auth.models.auth_models import (
    AuthErrorCode,
    AuthResult,
    LoginCredentials,
    PasswordChange,
    PasswordResetConfirm,
    PasswordResetRequest,
    PersistedSession,
    ProfileUpdate,
    RegisterData,
    SessionSnapshot,
    TokenClaims,
    TokenPair,
    ValidationResult,
)

__all__ = [
    "AuditAction",
    "SessionStatus",
    "Account",
    "AccountRecord",
    "StoredCredential",
    "AuthErrorCode",
    "AuthResult",
    "LoginCredentials",
    "PasswordChange",
    "PasswordResetConfirm",
    "PasswordResetRequest",
    "PersistedSession",
    "ProfileUpdate",
    "RegisterData",
    "SessionSnapshot",
    "TokenClaims",
    "TokenPair",
    "ValidationResult",
]
