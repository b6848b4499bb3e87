"""General Utility Functions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

__all__ = ["Clock", "utc_now", "normalize_email"]


Clock = Callable[[], datetime]
"""Zero-argument callable returning the current timezone-aware UTC time.

Injected into the token service and the credential store so tests can
advance time deterministically.
"""


def utc_now() -> datetime:
    """Default :data:`Clock`: the wall clock in UTC."""
    return datetime.now(tz=timezone.utc)


def normalize_email(email: str) -> str:
    """Normalise an email address: strip whitespace and lowercase."""
    return email.strip().lower()
