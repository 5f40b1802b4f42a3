"""Per-order locks serializing callback reconciliation within a process."""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class OrderLockRegistry:
    """
    Hands out one asyncio.Lock per order id.

    Entries are dropped once no coroutine holds or waits on them, so the
    registry does not grow with order volume.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, order_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(order_id, asyncio.Lock())
        self._users[order_id] = self._users.get(order_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[order_id] -= 1
            if self._users[order_id] == 0:
                del self._users[order_id]
                del self._locks[order_id]

    def __len__(self) -> int:
        return len(self._locks)
