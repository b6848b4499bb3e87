"""
Account Model.

Public account record owned by the credential store.  The secret
credential lives in :class:`StoredCredential` and is never attached to an
``Account``.

Serialized with camelCase aliases (``emailVerified``, ``createdAt``,
``lastLogin``) so the persisted ``auth_user`` value keeps the layout the
front end already reads.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Account(BaseModel):
    """Represents a user account.

    ``email`` is always stored normalised (stripped, lower-case).
    """

    id: str
    email: str
    name: str
    avatar: Optional[str] = None
    email_verified: bool = False
    created_at: datetime
    last_login: datetime

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_json(self) -> str:
        """Serialize with ISO-8601 timestamps and camelCase keys."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str) -> "Account":
        """Parse a value written by :meth:`to_json`, restoring datetimes."""
        return cls.model_validate_json(raw)


class StoredCredential(BaseModel):
    """Salted password hash for one account.

    Attributes
    ----------
    account_id:
        The owning account's id.
    password_hash:
        Hex-encoded PBKDF2-HMAC-SHA256 digest.
    password_salt:
        Hex-encoded random 32-byte salt.
    iterations:
        PBKDF2 iteration count used to derive *password_hash*.
    """

    account_id: str
    password_hash: str
    password_salt: str
    iterations: int

    model_config = {"from_attributes": True}


class AccountRecord(BaseModel):
    """An account together with its credential, as held by a repository."""

    account: Account
    credential: StoredCredential
