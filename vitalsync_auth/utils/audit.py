"""
Structured Audit Logging Utility.

Every session state change is logged as a structured JSON object.
Provides a Pydantic-validated model and a single function for consistent
audit trail entries, with optional persistence into the ``audit_log``
SQLite table.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
from typing import Optional, Union

from pydantic import BaseModel, Field

from vitalsync_auth.database import DatabaseManager
from vitalsync_auth.logger import StructuredLogger
from vitalsync_auth.models.enums import AuditAction
from vitalsync_auth.utils.general import Clock, utc_now

__all__ = ["AuditEvent", "log_audit_event", "persist_audit_event", "record_audit_event"]

# Flat scalar values only; nested structures do not belong in the audit log.
DetailValue = Union[str, int, float, bool, None]


class AuditEvent(BaseModel):
    """Schema-validated representation of a single audit trail entry."""

    timestamp: str
    action: AuditAction
    account_id: str
    details: dict[str, DetailValue] = Field(default_factory=dict)


def log_audit_event(
    logger: StructuredLogger,
    action: AuditAction,
    account_id: Optional[str],
    details: Optional[dict[str, DetailValue]] = None,
    conn: Optional[sqlite3.Connection] = None,
    clock: Clock = utc_now,
) -> AuditEvent:
    """Log a structured JSON audit event, with optional SQLite persistence.

    Always emits a structured JSON log line via *logger*.  When *conn* is
    provided, also writes the event to the ``audit_log`` table.  Storage
    errors are logged and never propagated: audit persistence must not
    break the calling operation.

    Args:
        logger: The logger instance to write to.
        action: What happened.
        account_id: The account concerned, or ``None`` when no account
            matched (e.g. a reset request for an unknown email).
        details: Optional additional context.
        conn: Optional SQLite connection for persistent storage.
        clock: Source of the event timestamp.

    Returns:
        The validated :class:`AuditEvent`.
    """
    event = AuditEvent(
        timestamp=clock().isoformat(),
        action=action,
        account_id=account_id or "unknown",
        details=details or {},
    )
    logger.info(
        "AUDIT: %s",
        json.dumps(event.model_dump(mode="json"), default=str),
        extra={"event": str(action), "account_id": event.account_id},
    )

    if conn is not None:
        try:
            persist_audit_event(conn, event)
        except sqlite3.Error as db_err:
            logger.warning(
                "Failed to persist audit event to SQLite: %s", db_err
            )
    return event


def persist_audit_event(conn: sqlite3.Connection, event: AuditEvent) -> None:
    """Write an already-validated audit event to the ``audit_log`` table."""
    conn.execute(
        """
        INSERT INTO audit_log (timestamp, action, account_id, details)
        VALUES (?, ?, ?, ?)
        """,
        (
            event.timestamp,
            str(event.action),
            event.account_id,
            json.dumps(event.details, default=str),
        ),
    )
    conn.commit()


async def record_audit_event(
    logger: StructuredLogger,
    action: AuditAction,
    account_id: Optional[str],
    details: Optional[dict[str, DetailValue]] = None,
    db: Optional[DatabaseManager] = None,
    clock: Clock = utc_now,
) -> AuditEvent:
    """Coroutine form of :func:`log_audit_event` for the async services.

    Runs in a worker thread.  When *db* is given the event is persisted
    under its write lock, since the connection is shared across threads.
    """

    def _write() -> AuditEvent:
        if db is None:
            return log_audit_event(logger, action, account_id, details, clock=clock)
        with db.write_lock:
            return log_audit_event(
                logger, action, account_id, details, conn=db.sqlite, clock=clock,
            )

    return await asyncio.to_thread(_write)
