"""
Reader/writer lock for asyncio code.

Any number of readers may hold the lock together; a writer holds it alone.
A waiting writer blocks new readers, so a steady stream of acquisitions
cannot starve refresh or release.

Usage:
    lock = AsyncReadWriteLock()

    async with lock.read():
        ...  # shared access

    async with lock.write():
        ...  # exclusive access
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class AsyncReadWriteLock:
    """Writer-preferring reader/writer lock built on asyncio.Condition."""

    def __init__(self) -> None:
        self._condition = asyncio.Condition()
        self._readers = 0
        self._writer_active = False
        self._writers_waiting = 0

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def writer_active(self) -> bool:
        return self._writer_active

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._condition:
            await self._condition.wait_for(
                lambda: not self._writer_active and not self._writers_waiting
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._condition:
                self._readers -= 1
                if self._readers == 0:
                    self._condition.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._condition:
            self._writers_waiting += 1
            try:
                await self._condition.wait_for(
                    lambda: not self._writer_active and self._readers == 0
                )
            except BaseException:
                # Cancelled while queued: let blocked readers re-check.
                self._writers_waiting -= 1
                self._condition.notify_all()
                raise
            self._writers_waiting -= 1
            self._writer_active = True
        try:
            yield
        finally:
            async with self._condition:
                self._writer_active = False
                self._condition.notify_all()
