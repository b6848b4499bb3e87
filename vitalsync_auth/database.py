"""
Local SQLite database.

One connection backs the account directory, the encrypted session store
and the audit trail.  The async services reach it from worker threads
through ``asyncio.to_thread``, so the connection is opened with
``check_same_thread=False`` and every statement runs under
:attr:`DatabaseManager.write_lock`:

- reads go through :meth:`fetch_one` / :meth:`fetch_all`;
- multi-statement writes (an account plus its credential, the session
  triple) go through :meth:`batch_write`, which commits once or rolls
  back as a unit.

Usage::

    db = DatabaseManager("vitalsync_auth.db", get_logger("database"))
    initialize_schema(db.sqlite, get_logger("schema"))
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence, Union

from vitalsync_auth.logger import StructuredLogger

_PRAGMAS: tuple[str, ...] = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA foreign_keys = ON",
)


class DatabaseManager:
    """Owner of the shared SQLite connection and its lock.

    Parameters
    ----------
    sqlite_path:
        Database file, or ``":memory:"`` for a throwaway database.
    logger:
        Structured logger.
    """

    def __init__(self, sqlite_path: Union[Path, str], logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger
        self._path: str = str(sqlite_path)
        self._write_lock: threading.RLock = threading.RLock()
        self._in_batch: bool = False
        self._closed: bool = False
        self._sqlite_conn: sqlite3.Connection = self._open()

    @property
    def sqlite(self) -> sqlite3.Connection:
        return self._sqlite_conn

    @property
    def write_lock(self) -> threading.RLock:
        """Re-entrant lock serialising all use of :attr:`sqlite`."""
        return self._write_lock

    @property
    def in_batch(self) -> bool:
        """``True`` inside :meth:`batch_write`; repositories skip their own commit."""
        return self._in_batch

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        with self._write_lock:
            return self._sqlite_conn.execute(sql, params).fetchone()

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self._write_lock:
            return self._sqlite_conn.execute(sql, params).fetchall()

    @contextmanager
    def batch_write(self) -> Iterator[None]:
        """Hold the lock and commit everything in the block as one transaction.

        Nested blocks join the outermost one.  Any exception rolls the
        whole transaction back and propagates.
        """
        with self._write_lock:
            if self._in_batch:
                yield
                return

            self._in_batch = True
            try:
                yield
            except Exception:
                self._sqlite_conn.rollback()
                self._logger.warning("Transaction rolled back.", exc_info=True)
                raise
            else:
                self._sqlite_conn.commit()
            finally:
                self._in_batch = False

    def close(self) -> None:
        """Close the connection.  Later calls do nothing."""
        with self._write_lock:
            if self._closed:
                return
            self._closed = True
            self._sqlite_conn.close()
            self._logger.debug("Closed database %s.", self._path)

    def _open(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self._path, check_same_thread=False)
        except sqlite3.OperationalError as exc:
            self._logger.error(
                "Cannot open database %s: %s", self._path, exc,
                extra={"event": "DATABASE_UNAVAILABLE"},
            )
            raise
        conn.row_factory = sqlite3.Row
        for pragma in _PRAGMAS:
            conn.execute(pragma)
        self._logger.info("Opened database %s.", self._path)
        return conn
