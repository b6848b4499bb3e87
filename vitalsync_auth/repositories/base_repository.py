"""
Base Repository.

Provides shared infrastructure for SQLite-backed repositories:
- DatabaseManager reference
- Logger reference
- Batch-aware commit helper
"""

from __future__ import annotations

import sqlite3

from vitalsync_auth.database import DatabaseManager
from vitalsync_auth.logger import StructuredLogger


class BaseRepository:
    """Base class for SQLite repositories. Receives dependencies via __init__."""

    TABLE: str = ""

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db = db
        self._logger = logger

    @property
    def sqlite(self) -> sqlite3.Connection:
        """Returns the shared SQLite connection."""
        return self._db.sqlite

    def _commit(self) -> None:
        """Commit the SQLite transaction unless a batch is active.

        When :meth:`DatabaseManager.batch_write` is active, this is a
        no-op and the batch context issues a single commit (or rollback)
        when the ``with`` block exits.
        """
        if not self._db.in_batch:
            self.sqlite.commit()
