"""Per-server mutual exclusion for lifecycle operations."""

from __future__ import annotations

import asyncio
from typing import Dict, List

import structlog

logger = structlog.get_logger()


class ServerLocks:
    """
    One asyncio.Lock per server, created on first use.

    Keys are case-folded so 'Foo' and 'foo' share a lock.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, name: str) -> asyncio.Lock:
        key = name.casefold()
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
            logger.debug("server_lock_created", server=name)
        return lock

    def is_locked(self, name: str) -> bool:
        lock = self._locks.get(name.casefold())
        return lock is not None and lock.locked()

    def busy_servers(self) -> List[str]:
        return [key for key, lock in self._locks.items() if lock.locked()]
