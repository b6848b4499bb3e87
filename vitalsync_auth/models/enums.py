"""
Shared Enumerations for VitalSync Auth Models.

StrEnum values compare equal to their string equivalents, so code like
``if snapshot.status == "AUTHENTICATED"`` keeps working.
"""

from __future__ import annotations
from enum import StrEnum


class SessionStatus(StrEnum):
    """Observable states of a session.

    ``AUTHENTICATED`` and ``ANONYMOUS`` are the stable states.  ``LOADING``
    is reported while a command is in flight and ``ERROR`` while an error
    is held; ``clear_error()`` returns to the stable state underneath.
    """

    UNINITIALIZED = "UNINITIALIZED"
    LOADING = "LOADING"
    AUTHENTICATED = "AUTHENTICATED"
    ANONYMOUS = "ANONYMOUS"
    ERROR = "ERROR"


class AuditAction(StrEnum):
    """Actions written to the audit trail."""

    LOGIN = "LOGIN"
    LOGIN_FAILED = "LOGIN_FAILED"
    REGISTER = "REGISTER"
    LOGOUT = "LOGOUT"
    FORCED_LOGOUT = "FORCED_LOGOUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    PROFILE_UPDATED = "PROFILE_UPDATED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
