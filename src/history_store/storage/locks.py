"""Per-dialog mutual exclusion for mutating operations."""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TypeVar

T = TypeVar("T")


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    pending: int = 0


class DialogLocks:
    """Registry of FIFO locks keyed by dialog.

    An entry exists only while at least one operation for its key is queued
    or running. Operations on one key run one at a time in the order they
    were submitted; different keys never wait on each other. There is no
    timeout: an operation that never finishes blocks its key.

    The registry is only touched from the event loop thread.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for `key` for the duration of the block."""
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _LockEntry()
        entry.pending += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.pending -= 1
            if entry.pending == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    async def run_exclusive(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run `operation()` while holding the lock for `key`.

        Exceptions raised by the operation propagate to this caller only;
        the lock is released for the next queued operation either way.
        """
        async with self.hold(key):
            return await operation()

    def pending(self, key: str) -> int:
        """Number of queued or running operations for `key`."""
        entry = self._entries.get(key)
        return entry.pending if entry else 0

    def active_keys(self) -> list[str]:
        return sorted(self._entries)
