"""
Authentication Errors.

``AuthError`` is the single exception type raised by the leaf components
(credential store, token service, session store, validation).  The
session state machine converts it into an ``AuthResult`` so collaborators
never inspect raw exceptions.
"""

from __future__ import annotations

from typing import Optional

from vitalsync_auth.models.auth_models import ERROR_MESSAGES, AuthErrorCode


class AuthError(RuntimeError):
    """Raised when an authentication operation fails for a known reason.

    Attributes
    ----------
    code:
        Stable error category from :class:`AuthErrorCode`.
    message:
        Human-readable description.  Defaults to the canonical message
        for *code*.
    """

    def __init__(self, code: AuthErrorCode, message: Optional[str] = None) -> None:
        self.code: AuthErrorCode = code
        self.message: str = message or ERROR_MESSAGES[code]
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"AuthError(code={self.code.value!r}, message={self.message!r})"
