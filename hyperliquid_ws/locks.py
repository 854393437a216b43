"""
Reader/writer lock for asyncio tasks.

Readers may hold the lock concurrently; a writer holds it exclusively.
Waiting writers block new readers so that a stream of dispatch reads cannot
starve a subscribe or a socket swap. The lock is not reentrant.

Release is synchronous so that a task cancelled inside a locked section
(e.g. a read loop stopped by ``disconnect()``) always gives the lock back.
"""

import asyncio
from collections import deque
from contextlib import asynccontextmanager


class ReadWriteLock:
    """Shared/exclusive lock guarding connection state and the registry."""

    def __init__(self):
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0
        self._waiters = deque()

    @property
    def locked(self) -> bool:
        return self._writer or self._readers > 0

    @property
    def readers(self) -> int:
        return self._readers

    def _wake_all(self) -> None:
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_result(None)

    async def _wait(self) -> None:
        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        await fut

    async def acquire_read(self) -> None:
        while self._writer or self._waiting_writers:
            await self._wait()
        self._readers += 1

    def release_read(self) -> None:
        self._readers -= 1
        if self._readers == 0:
            self._wake_all()

    async def acquire_write(self) -> None:
        self._waiting_writers += 1
        try:
            while self._writer or self._readers:
                await self._wait()
        finally:
            self._waiting_writers -= 1
            # Readers held back by this writer re-check on wake
            self._wake_all()
        self._writer = True

    def release_write(self) -> None:
        self._writer = False
        self._wake_all()

    @asynccontextmanager
    async def read(self):
        await self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @asynccontextmanager
    async def write(self):
        await self.acquire_write()
        try:
            yield
        finally:
            self.release_write()
