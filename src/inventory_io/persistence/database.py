"""SQLite connection and transaction handling.

Purpose:
-------
One ``Database`` wraps one SQLite connection shared by the inventory store
and the import ledger. The connection runs in autocommit mode and
transactions are opened explicitly:

- the outermost ``transaction()`` issues ``BEGIN IMMEDIATE`` so the write
  lock is taken up front and a busy database fails within the configured
  timeout instead of deadlocking on lock upgrade;
- nested ``transaction()`` blocks become savepoints, so a failing inner
  unit (one entity delete during rollback) is undone without losing the
  outer one.

Timestamps:
----------
Timestamps are stored as UTC text with a fixed width
(``2024-01-31T12:00:00.000000Z``) so that ordering and range filters can
compare them as strings.

Usage:
-----
```python
db = Database(".inventory/inventory.db", timeout=5.0)
with db.transaction():
    db.execute("INSERT INTO sites ...", params, operation="insert_site")
```
"""

import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType
from typing import Any

import structlog

from ..constants import DEFAULT_STORAGE_TIMEOUT
from ..utils.exceptions import StorageConflictError, StorageError, StorageTimeoutError

logger = structlog.get_logger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

MEMORY_DATABASE = ":memory:"


def format_timestamp(value: datetime) -> str:
    """Render a datetime as stored UTC text. Naive values are taken as UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def utc_timestamp() -> str:
    return format_timestamp(datetime.now(timezone.utc))


@contextmanager
def translate_errors(operation: str) -> Iterator[None]:
    """
    Map sqlite3 exceptions onto the storage error taxonomy.

    Args:
        operation: Short name of the storage call, kept on the raised error
    """
    try:
        yield
    except sqlite3.IntegrityError as e:
        raise StorageConflictError(str(e), operation) from e
    except sqlite3.OperationalError as e:
        message = str(e).lower()
        if "locked" in message or "busy" in message:
            raise StorageTimeoutError(str(e), operation) from e
        raise StorageError(str(e), operation) from e
    except sqlite3.Error as e:
        raise StorageError(str(e), operation) from e


class Database:
    """
    Shared SQLite connection with nested transaction support.

    Features:
    - Busy timeout bounds every storage call
    - Foreign keys enforced (``ON DELETE RESTRICT`` on the hierarchy)
    - WAL journal for file databases so readers are not blocked by a job
    - ``:memory:`` databases for tests
    """

    def __init__(self, path: str | Path, timeout: float = DEFAULT_STORAGE_TIMEOUT) -> None:
        """
        Open the database.

        Args:
            path: SQLite file path, or ":memory:"
            timeout: Seconds to wait on a locked database before failing
        """
        self.path = str(path)
        self.timeout = timeout
        self._depth = 0

        if self.path != MEMORY_DATABASE:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        with translate_errors("connect"):
            self.conn = sqlite3.connect(self.path, timeout=timeout, isolation_level=None)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")
            if self.path != MEMORY_DATABASE:
                self.conn.execute("PRAGMA journal_mode = WAL")

        logger.debug("Database opened", path=self.path, timeout=timeout)

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block atomically.

        The outermost call opens a transaction, inner calls open savepoints.
        Any exception rolls the block back and propagates.
        """
        if self._depth == 0:
            self._control("BEGIN IMMEDIATE", "begin")
            self._depth += 1
            try:
                yield self.conn
            except BaseException:
                self._depth -= 1
                self._rollback()
                raise
            self._depth -= 1
            try:
                self._control("COMMIT", "commit")
            except StorageError:
                self._rollback()
                raise
        else:
            name = f"sp_{self._depth}"
            self._control(f"SAVEPOINT {name}", "savepoint")
            self._depth += 1
            try:
                yield self.conn
            except BaseException:
                self._depth -= 1
                self._control(f"ROLLBACK TO SAVEPOINT {name}", "rollback_savepoint")
                self._control(f"RELEASE SAVEPOINT {name}", "release_savepoint")
                raise
            self._depth -= 1
            self._control(f"RELEASE SAVEPOINT {name}", "release_savepoint")

    def _control(self, statement: str, operation: str) -> None:
        with translate_errors(operation):
            self.conn.execute(statement)

    def _rollback(self) -> None:
        # SQLite may already have rolled back on its own (e.g. SQLITE_FULL)
        if self.conn.in_transaction:
            try:
                self.conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                logger.error("Rollback failed", error=str(e))

    def execute(
        self, sql: str, params: Sequence[Any] = (), operation: str = "execute"
    ) -> sqlite3.Cursor:
        """Execute one statement, translating driver errors."""
        with translate_errors(operation):
            return self.conn.execute(sql, params)

    def query_all(
        self, sql: str, params: Sequence[Any] = (), operation: str = "query"
    ) -> list[sqlite3.Row]:
        with translate_errors(operation):
            return self.conn.execute(sql, params).fetchall()

    def query_one(
        self, sql: str, params: Sequence[Any] = (), operation: str = "query"
    ) -> sqlite3.Row | None:
        with translate_errors(operation):
            return self.conn.execute(sql, params).fetchone()

    def executescript(self, script: str, operation: str = "schema") -> None:
        with translate_errors(operation):
            self.conn.executescript(script)

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
