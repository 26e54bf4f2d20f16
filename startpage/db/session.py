"""Database session management for the on-device store.

``DatabaseSessionManager`` owns the SQLite connection and runs blocking peewee
work in worker threads so the event loop never waits on disk I/O. Writes are
serialised through an ``AsyncRWLock``; a locked/busy database is retried with
exponential backoff.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import peewee
from playhouse.sqlite_ext import SqliteExtDatabase

from startpage.db.models import ALL_MODELS, database_proxy
from startpage.db.rw_lock import AsyncRWLock

if TYPE_CHECKING:
    from collections.abc import Callable

T = TypeVar("T")

DB_OPERATION_TIMEOUT = 15.0
DB_MAX_RETRIES = 3


@dataclass
class DatabaseSessionManager:
    """Peewee-backed session manager.

    Attributes:
        path: Path to the SQLite database file, or ":memory:" for an in-process store
        operation_timeout: Default timeout for a single operation in seconds
        max_retries: Retries for locked/busy errors
    """

    path: str
    operation_timeout: float = field(default=DB_OPERATION_TIMEOUT)
    max_retries: int = field(default=DB_MAX_RETRIES)
    _logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    _database: peewee.SqliteDatabase = field(init=False)
    _rw_lock: AsyncRWLock = field(init=False)

    def __post_init__(self) -> None:
        self._in_memory = self.path == ":memory:"
        if not self._in_memory:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        self._database = SqliteExtDatabase(
            self.path,
            pragmas={"journal_mode": "wal", "synchronous": "normal", "busy_timeout": 5000},
            check_same_thread=False,
            # An in-memory database only exists on its one connection.
            thread_safe=not self._in_memory,
        )
        database_proxy.initialize(self._database)
        self._rw_lock = AsyncRWLock()

    @property
    def database(self) -> peewee.SqliteDatabase:
        return self._database

    def migrate(self) -> None:
        """Create tables if they do not exist yet."""
        with self._connection():
            self._database.create_tables(ALL_MODELS, safe=True)
        self._logger.info("db_migrated", extra={"path": self._mask_path(self.path)})

    def close(self) -> None:
        if not self._database.is_closed():
            self._database.close()

    def _connection(self) -> Any:
        if self._in_memory:
            self._database.connect(reuse_if_open=True)
            return contextlib.nullcontext()
        return self._database.connection_context()

    async def run(
        self,
        operation: Callable[..., T],
        *args: Any,
        read_only: bool = False,
        atomic: bool = False,
        timeout: float | None = None,
        operation_name: str = "database_operation",
        **kwargs: Any,
    ) -> T:
        """Execute a blocking peewee callable off the event loop.

        Raises:
            TimeoutError: If the operation exceeds its timeout
            peewee.OperationalError: If the database stays locked after retries
            peewee.IntegrityError: On constraint violations
        """
        timeout = self.operation_timeout if timeout is None else timeout

        def _op_wrapper() -> T:
            with self._connection():
                if atomic:
                    with self._database.atomic():
                        return operation(*args, **kwargs)
                return operation(*args, **kwargs)

        async def _locked() -> T:
            if read_only and not self._in_memory:
                async with self._rw_lock.read_lock():
                    return await asyncio.to_thread(_op_wrapper)
            async with self._rw_lock.write_lock():
                return await asyncio.to_thread(_op_wrapper)

        retries = 0
        while True:
            try:
                return await asyncio.wait_for(_locked(), timeout=timeout)
            except TimeoutError:
                self._logger.error(
                    "db_operation_timeout",
                    extra={"operation": operation_name, "timeout": timeout},
                )
                raise
            except peewee.OperationalError as exc:
                message = str(exc).lower()
                if ("locked" in message or "busy" in message) and retries < self.max_retries:
                    retries += 1
                    wait_time = 0.05 * (2**retries)
                    self._logger.warning(
                        "db_locked_retrying",
                        extra={
                            "operation": operation_name,
                            "retry": retries,
                            "wait_time": wait_time,
                        },
                    )
                    await asyncio.sleep(wait_time)
                    continue
                self._logger.exception(
                    "db_operational_error",
                    extra={"operation": operation_name, "error": str(exc)},
                )
                raise
            except peewee.IntegrityError as exc:
                self._logger.exception(
                    "db_integrity_error",
                    extra={"operation": operation_name, "error": str(exc)},
                )
                raise

    @staticmethod
    def _mask_path(path: str) -> str:
        if path == ":memory:":
            return path
        return f".../{Path(path).name}"

