"""
Async reader/writer lock.

Any number of readers may hold the lock together; a writer holds it alone.
Waiting writers block new readers so a steady read load cannot starve them.
Acquisition is bounded: on timeout a :class:`ThreadStoreError` is raised
instead of waiting forever.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from agentctx.types import ErrorCode, ThreadStoreError


class ReadWriteLock:
    """
    Writer-preferring reader/writer lock for coroutines.

    Parameters
    ----------
    timeout:
        Seconds to wait for either side of the lock before raising
        :class:`ThreadStoreError` with code ``lock_timeout``.  ``None`` waits
        forever.
    """

    def __init__(self, timeout: float | None = 5.0) -> None:
        self.timeout = timeout
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    async def _wait_for(self, predicate, what: str) -> None:
        try:
            await asyncio.wait_for(self._cond.wait_for(predicate), self.timeout)
        except asyncio.TimeoutError:
            raise ThreadStoreError(
                f"Timed out after {self.timeout}s waiting for {what} lock",
                code=ErrorCode.LOCK_TIMEOUT,
            ) from None

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        """Hold the lock shared with other readers."""
        async with self._cond:
            await self._wait_for(
                lambda: not self._writer and self._waiting_writers == 0, "read"
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        """Hold the lock exclusively."""
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._wait_for(
                    lambda: not self._writer and self._readers == 0, "write"
                )
            finally:
                self._waiting_writers -= 1
                # Readers held back by this writer may proceed if it gave up.
                self._cond.notify_all()
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()
