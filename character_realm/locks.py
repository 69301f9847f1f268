"""Per-session write serialization."""

import asyncio
import weakref


class SessionLocks:
    """One asyncio.Lock per session or group id.

    A controller holds the lock for the whole load -> generate -> persist
    cycle, so two posts to the same conversation never interleave their
    replace-on-write saves. Posts to different conversations run freely.

    Entries are weak: a lock lives only while some coroutine holds or
    waits on it, so the registry does not grow with every id ever seen.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)
