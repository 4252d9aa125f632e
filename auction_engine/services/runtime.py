import asyncio
import logging

from sqlalchemy.ext.asyncio import async_sessionmaker

from auction_engine.config import settings
from auction_engine.services.auctions import AuctionService
from auction_engine.services.bidding import BidAdmissionService
from auction_engine.services.clock import Clock, utcnow
from auction_engine.services.dispatcher import NotificationDispatcher
from auction_engine.services.locks import AuctionLocks
from auction_engine.services.notifier import AppNotifier, BaseNotifier
from auction_engine.services.registry import ConnectionRegistry
from auction_engine.services.resolver import AuctionResolver
from auction_engine.services.sweeper import ExpirySweeper

logger = logging.getLogger(__name__)


class AuctionRuntime:
    """Everything the process owns: locks, live connections, dispatcher and services.

    Built once per app and handed to routes through ``app.state``, so tests
    can assemble one around their own database and notifier.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        notifier: BaseNotifier | None = None,
        clock: Clock = utcnow,
        sweep_interval: int = settings.SWEEP_INTERVAL_SECONDS,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.locks = AuctionLocks()
        self.connections = ConnectionRegistry()
        self.notifier = notifier or AppNotifier(session_factory, self.connections)
        self.dispatcher = NotificationDispatcher(self.notifier)

        self.auctions = AuctionService(session_factory, self.locks, clock)
        self.bidding = BidAdmissionService(session_factory, self.locks, self.dispatcher, clock)
        self.resolver = AuctionResolver(session_factory, self.locks, self.dispatcher, clock)
        self.sweeper = ExpirySweeper(
            session_factory, self.auctions, self.resolver, clock, interval=sweep_interval
        )
        self._sweeper_task: asyncio.Task | None = None

    def start(self):
        if self._sweeper_task is None:
            self._sweeper_task = asyncio.create_task(self.sweeper.run())
            logger.info(f"[Runtime] Expiry sweeper started, every {self.sweeper.interval}s")

    async def shutdown(self):
        if self._sweeper_task is not None:
            self._sweeper_task.cancel()
            try:
                await self._sweeper_task
            except asyncio.CancelledError:
                pass
            self._sweeper_task = None
        await self.dispatcher.drain()
        await self.connections.close_all()
