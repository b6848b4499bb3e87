"""
Centralized SQLite Schema Initialization.

Defines the canonical schema for the local authentication database and
provides a single entry-point -- :func:`initialize_schema` -- that creates
all required tables idempotently.  The ``schema_version`` row records the
version the tables were created at; v1 is the only version so far.

Usage::

    from vitalsync_auth.schema import initialize_schema

    initialize_schema(db.sqlite, get_logger("schema"))
"""

from __future__ import annotations

import sqlite3

from vitalsync_auth.logger import StructuredLogger

__all__ = ["CURRENT_SCHEMA_VERSION", "initialize_schema"]

CURRENT_SCHEMA_VERSION: int = 1

_TABLE_DEFINITIONS: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        version INTEGER NOT NULL
    )
    """,
    # -- account directory ---------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL,
        name TEXT NOT NULL,
        avatar TEXT,
        email_verified INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        last_login TEXT NOT NULL
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_accounts_email ON accounts(email)",
    """
    CREATE TABLE IF NOT EXISTS credentials (
        account_id TEXT PRIMARY KEY,
        password_hash TEXT NOT NULL,
        password_salt TEXT NOT NULL,
        iterations INTEGER NOT NULL,
        FOREIGN KEY (account_id) REFERENCES accounts(id) ON DELETE CASCADE
    )
    """,
    # -- current session (encrypted key/value) -------------------------------
    """
    CREATE TABLE IF NOT EXISTS session_store (
        key TEXT PRIMARY KEY,
        encrypted_value BLOB NOT NULL,
        nonce BLOB NOT NULL,
        tag BLOB NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS session_salt (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        salt BLOB NOT NULL
    )
    """,
    # -- audit trail ---------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        action TEXT NOT NULL,
        account_id TEXT NOT NULL,
        details TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_audit_log_account ON audit_log(account_id)",
]


def _get_version(conn: sqlite3.Connection) -> int:
    try:
        row = conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
    except sqlite3.OperationalError:
        return 0
    return int(row[0]) if row else 0


def initialize_schema(conn: sqlite3.Connection, logger: StructuredLogger) -> int:
    """Create the local schema if it is missing.  Idempotent.

    Returns
    -------
    int
        The schema version after initialisation.
    """
    version = _get_version(conn)
    if version >= CURRENT_SCHEMA_VERSION:
        logger.debug("Schema is current (v%d).", version)
        return version

    try:
        for ddl in _TABLE_DEFINITIONS:
            conn.execute(ddl)
        conn.execute(
            """
            INSERT INTO schema_version (id, version) VALUES (1, ?)
            ON CONFLICT(id) DO UPDATE SET version = excluded.version
            """,
            (CURRENT_SCHEMA_VERSION,),
        )
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        logger.error("Schema creation failed; rolled back.", exc_info=True)
        raise
    logger.info("Created schema v%d.", CURRENT_SCHEMA_VERSION)
    return CURRENT_SCHEMA_VERSION
