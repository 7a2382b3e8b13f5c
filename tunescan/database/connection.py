"""Database connection management."""

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Self

from .schema import create_schema


class CacheStoreError(Exception):
    """Raised when the cache database cannot be read or written."""


class Database:
    """SQLite database connection wrapper with context manager support.

    The connection is shared between the scan worker thread and readers, so
    every statement runs under ``lock``.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        with self.lock:
            if self._conn is None:
                try:
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                    self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
                    self._conn.row_factory = sqlite3.Row
                    self._conn.execute("PRAGMA journal_mode = WAL")
                    self._conn.execute("PRAGMA foreign_keys = ON")
                    create_schema(self._conn)
                except (OSError, sqlite3.Error) as e:
                    self._conn = None
                    raise CacheStoreError(f"Cannot open cache database {self.db_path}: {e}") from e
            return self._conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self.connect()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements as one atomic write."""
        with self.lock:
            conn = self.connect()
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise CacheStoreError(str(e)) from e
            except BaseException:
                conn.rollback()
                raise

    @contextmanager
    def reading(self) -> Iterator[sqlite3.Connection]:
        with self.lock:
            try:
                yield self.connect()
            except sqlite3.Error as e:
                raise CacheStoreError(str(e)) from e

    def close(self) -> None:
        with self.lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> Self:
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
