"""Reader/writer lock for state shared between concurrent asyncio handlers."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class AsyncRWLock:
    """Many concurrent readers or one exclusive writer.

    Waiting writers block new readers so that a steady stream of reads
    cannot starve the rare writes (session discovery, identity caching).
    The lock is not reentrant: a task holding the read side must not
    request the write side.
    """

    def __init__(self) -> None:
        """Initialise an unlocked lock."""
        self._condition = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        """Hold the shared side for the duration of the ``async with`` block."""
        async with self._condition:
            await self._condition.wait_for(
                lambda: not self._writer and self._waiting_writers == 0
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
        """Hold the exclusive side for the duration of the ``async with`` block."""
        async with self._condition:
            self._waiting_writers += 1
            try:
                await self._condition.wait_for(
                    lambda: not self._writer and self._readers == 0
                )
            finally:
                self._waiting_writers -= 1
                # A cancelled writer may have been the only thing holding readers back.
                self._condition.notify_all()
            self._writer = True
        try:
            yield
        finally:
            async with self._condition:
                self._writer = False
                self._condition.notify_all()

    @property
    def readers(self) -> int:
        """Number of tasks currently holding the shared side."""
        return self._readers

    @property
    def writer_active(self) -> bool:
        """Whether a task currently holds the exclusive side."""
        return self._writer


__all__ = ["AsyncRWLock"]
