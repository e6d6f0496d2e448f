"""SQLite connection handling and schema for captures, groups and sequences."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

from persongroup.errors import StorageError
from persongroup.io_utils import ensure_dir

LOGGER = logging.getLogger("persongroup.store.database")

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS captures (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        created_at TEXT NOT NULL,
        captured_at TEXT,
        role TEXT NOT NULL DEFAULT 'single',
        image_ref TEXT,
        description_json TEXT,
        natural_summary TEXT,
        group_id INTEGER REFERENCES person_groups(id),
        grouping_probability INTEGER,
        grouping_explanation TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS person_groups (
        id INTEGER PRIMARY KEY,
        representative_capture_id INTEGER NOT NULL UNIQUE REFERENCES captures(id),
        member_count INTEGER NOT NULL DEFAULT 0 CHECK (member_count >= 0),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sequences (
        name TEXT PRIMARY KEY,
        value INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_captures_group_id ON captures(group_id)",
)


class Database:
    """Opens one SQLite connection per unit of work.

    Connections are never shared between threads. Multi-row writes go through
    :meth:`transaction`, which takes the database write lock up front
    (``BEGIN IMMEDIATE``) and rolls back on any exception.
    """

    def __init__(self, path: Union[str, Path], busy_timeout_s: float = 30.0) -> None:
        if str(path) == ":memory:":
            raise ValueError("In-memory databases cannot be shared between connections; use a file path")
        self.path = Path(path)
        self.busy_timeout_s = busy_timeout_s
        self._schema_lock = threading.Lock()
        self._schema_ready = False

    def connect(self) -> sqlite3.Connection:
        """Create a connection with foreign keys, WAL and a busy timeout."""
        ensure_dir(self.path.parent)
        conn = sqlite3.connect(self.path, timeout=self.busy_timeout_s, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_s * 1000)}")
        return conn

    def ensure_schema(self) -> None:
        with self._schema_lock:
            if self._schema_ready:
                return
            conn = self.connect()
            try:
                conn.execute("PRAGMA journal_mode = WAL")
                with _wrap_errors("create schema"):
                    conn.execute("BEGIN IMMEDIATE")
                    try:
                        for statement in SCHEMA_STATEMENTS:
                            conn.execute(statement)
                        conn.execute("COMMIT")
                    except BaseException:
                        if conn.in_transaction:
                            conn.execute("ROLLBACK")
                        raise
            finally:
                conn.close()
            self._schema_ready = True
            LOGGER.debug("Schema ready at %s", self.path)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Autocommit connection for single-statement reads and writes."""
        self.ensure_schema()
        conn = self.connect()
        try:
            with _wrap_errors("query"):
                yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialized write transaction; commits on success, rolls back otherwise."""
        self.ensure_schema()
        conn = self.connect()
        try:
            with _wrap_errors("run transaction"):
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                    conn.execute("COMMIT")
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
        finally:
            conn.close()


@contextmanager
def _wrap_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise StorageError(f"Failed to {action}: {exc}") from exc
