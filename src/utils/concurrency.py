"""Shared concurrency primitives for ingestion and repair.

Two patterns are exposed:

1. **throttled_gather** -- A drop-in replacement for ``asyncio.gather`` that
   wraps each awaitable in a semaphore acquire/release.  Used to embed and
   index the chunks of one document with bounded parallelism.

2. **KeyedLock** -- A registry of per-key ``asyncio.Lock`` objects.  The
   ingestion pipeline holds the lock for a document id for the whole of an
   ingest or repair, so two operations on the same document never
   interleave while operations on different documents run freely.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, TypeVar

_T = TypeVar("_T")

# Default bound when the caller does not supply its own semaphore.
_DEFAULT_SEMAPHORE_SIZE = 4


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with optional semaphore throttling.

    Each coroutine is wrapped so it acquires the semaphore before executing
    and releases it afterward, ensuring at most ``semaphore._value``
    coroutines run simultaneously.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Optional semaphore for concurrency control.  A fresh semaphore of
        size 4 is used when omitted.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """
    if semaphore is None:
        semaphore = asyncio.Semaphore(_DEFAULT_SEMAPHORE_SIZE)

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


class KeyedLock:
    """Per-key mutual exclusion with reference-counted cleanup.

    Locks are created on first use and discarded once no task holds or
    waits on them, so the registry does not grow with the corpus.

    Usage::

        locks = KeyedLock()
        async with locks.hold(document_id):
            ...
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._refcounts: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._refcounts[key] = self._refcounts.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refcounts[key] -= 1
            if self._refcounts[key] == 0:
                del self._refcounts[key]
                del self._locks[key]

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
