"""Result cache and in-flight deduplication for composed contexts."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger("canonguard.cache")


class ContextCache(ABC):
    """Cache collaborator: get, set with TTL, delete by key prefix."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``; return how many."""
        ...


class MemoryCache(ContextCache):
    """Process-local TTL cache."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, tuple[float, Any]] = {}
        self._clock = clock

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._entries[key] = (self._clock() + ttl_seconds, value)

    async def delete_prefix(self, prefix: str) -> int:
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def __len__(self) -> int:
        return len(self._entries)


def _consume_exception(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


class InflightMap:
    """Collapses concurrent computations that share a key.

    The first caller starts the computation; later callers await the same
    task and receive the identical result or error. Waiters are shielded, so
    a cancelled caller never cancels the shared work.
    """

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Task] = {}
        self.started = 0

    async def run(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(key, factory))
            task.add_done_callback(_consume_exception)
            self._inflight[key] = task
            self.started += 1
        else:
            logger.debug("joining in-flight computation %s", key)
        return await asyncio.shield(task)

    async def _run(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await factory()
        finally:
            self._inflight.pop(key, None)
