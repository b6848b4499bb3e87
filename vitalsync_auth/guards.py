"""
Authentication Guard Decorator.

Provides a factory that produces a decorator for gating collaborator
functions behind an authenticated session.

Usage::

    from vitalsync_auth.guards import require_auth

    auth_guard = require_auth(services["session"])

    @auth_guard
    async def load_workouts() -> list[Workout]:
        ...
"""

from __future__ import annotations

import inspect
from functools import wraps
from typing import Any, Callable, Protocol, TypeVar, cast

from vitalsync_auth.errors import AuthError
from vitalsync_auth.models.auth_models import AuthErrorCode

F = TypeVar("F", bound=Callable[..., Any])


class _SessionLike(Protocol):
    @property
    def is_authenticated(self) -> bool: ...  # noqa: E704


def require_auth(session: _SessionLike) -> Callable[[F], F]:
    """Return a decorator that enforces authentication via *session*.

    The returned decorator checks ``session.is_authenticated`` before
    every call to the wrapped function, sync or async.  An expired token
    counts as unauthenticated.

    Args:
        session: The ``SessionStateMachine`` holding the current session.

    Returns:
        A decorator suitable for wrapping collaborator callables.

    Raises:
        AuthError: ``NOT_AUTHENTICATED`` from the wrapped callable when
            no valid session is held.
    """

    def _check() -> None:
        if not session.is_authenticated:
            raise AuthError(
                AuthErrorCode.NOT_AUTHENTICATED,
                "Authentication required. Please sign in before "
                "performing this action.",
            )

    def decorator(func: F) -> F:
        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                _check()
                return await func(*args, **kwargs)

            return cast(F, async_wrapper)

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            _check()
            return func(*args, **kwargs)

        return cast(F, wrapper)

    return decorator
