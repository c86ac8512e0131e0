"""
Bounded worker pool shared by every fetch orchestration.

Sized independently of the provider list, so adding providers never
raises the number of concurrent upstream calls.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class WorkerPool:
    """Counting slot pool backed by an asyncio.Semaphore."""

    def __init__(self, size: int) -> None:
        if size < 1:
            raise ValueError(f"Worker pool size must be at least 1, got {size}")
        self.size = size
        self._semaphore = asyncio.Semaphore(size)
        self._in_flight = 0
        self.peak_in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one worker slot for the duration of the block."""
        async with self._semaphore:
            self._in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
            try:
                yield
            finally:
                self._in_flight -= 1
