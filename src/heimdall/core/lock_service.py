"""
Keyed Lock Service - Named mutual exclusion by string key.

The crawler uses two instances of this service: one keyed by canonical URI
(guards the response cache slot and the single in-flight fetch per URI) and
one keyed by host (politeness). Distinct keys never block each other.

Design Pattern: Reference-counted lock table
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Dict, TypeVar


T = TypeVar("T")


@dataclass
class _KeyedLock:
    """A lock plus the number of tasks holding or waiting for it"""
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class KeyedLockService:
    """
    Maps a string key to a lock that is created on demand.

    Each entry counts the tasks that hold or wait for it; the entry is dropped
    once that count reaches zero, so the table only ever contains keys that
    are in use.

    Example:
        >>> locks = KeyedLockService(name="politeness")
        >>> async with locks.hold("example.com"):
        ...     response = await fetch()
        >>> await locks.run_exclusive("example.com", fetch)
    """

    def __init__(self, name: str = "locks"):
        """
        Initialize the lock service.

        Args:
            name: Name shown in the repr
        """
        self.name = name
        self._locks: Dict[str, _KeyedLock] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """
        Hold the lock for ``key`` for the duration of the block.

        The lock is released on every exit path, including cancellation.
        """
        entry = self._locks.get(key)
        if entry is None:
            entry = _KeyedLock()
            self._locks[key] = entry
        entry.holders += 1

        try:
            await entry.lock.acquire()
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.holders -= 1
            if entry.holders == 0 and self._locks.get(key) is entry:
                del self._locks[key]

    async def run_exclusive(self, key: str, task: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``task`` while holding the lock for ``key``.

        Args:
            key: Lock key
            task: Zero-argument coroutine function

        Returns:
            Whatever ``task`` returns
        """
        async with self.hold(key):
            return await task()

    def is_locked(self, key: str) -> bool:
        """Check whether some task currently holds ``key``"""
        entry = self._locks.get(key)
        return entry is not None and entry.lock.locked()

    def holders(self, key: str) -> int:
        """Number of tasks holding or waiting for ``key``"""
        entry = self._locks.get(key)
        return entry.holders if entry else 0

    def __len__(self) -> int:
        """Number of keys currently in use"""
        return len(self._locks)

    def __repr__(self) -> str:
        return f"KeyedLockService(name={self.name!r}, keys={len(self._locks)})"
