"""Async read-write lock guarding the local SQLite store."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class AsyncRWLock:
    """Many concurrent readers or one writer; a waiting writer blocks new readers."""

    def __init__(self) -> None:
        self._readers = 0
        self._reader_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._no_readers = asyncio.Condition(self._reader_lock)
        self._write_available = asyncio.Event()
        self._write_available.set()

    @property
    def readers(self) -> int:
        return self._readers

    async def acquire_read(self) -> None:
        await self._write_available.wait()
        async with self._reader_lock:
            self._readers += 1

    async def release_read(self) -> None:
        async with self._no_readers:
            self._readers -= 1
            if self._readers == 0:
                self._no_readers.notify_all()

    async def acquire_write(self) -> None:
        await self._write_lock.acquire()
        self._write_available.clear()
        try:
            async with self._no_readers:
                while self._readers > 0:
                    await self._no_readers.wait()
        except BaseException:
            self.release_write()
            raise

    def release_write(self) -> None:
        self._write_available.set()
        self._write_lock.release()

    @asynccontextmanager
    async def read_lock(self) -> AsyncIterator[None]:
        await self.acquire_read()
        try:
            yield
        finally:
            await self.release_read()

    @asynccontextmanager
    async def write_lock(self) -> AsyncIterator[None]:
        await self.acquire_write()
        try:
            yield
        finally:
            self.release_write()
