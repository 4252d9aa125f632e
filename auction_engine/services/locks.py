import asyncio
from contextlib import asynccontextmanager


class AuctionLocks:
    """One asyncio.Lock per auction id, dropped once nobody holds or waits on it.

    Bids, resolution, cancellation and payment confirmation for the same
    auction queue behind each other in arrival order; different auctions
    never share a lock.
    """

    def __init__(self):
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, auction_id: int):
        lock = self._locks.get(auction_id)
        if lock is None:
            lock = self._locks[auction_id] = asyncio.Lock()
        self._users[auction_id] = self._users.get(auction_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[auction_id] -= 1
            if self._users[auction_id] == 0:
                del self._users[auction_id]
                del self._locks[auction_id]

    def __len__(self) -> int:
        return len(self._locks)
