import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import async_sessionmaker

from auction_engine.config import settings
from auction_engine.db import crud
from auction_engine.services.auctions import AuctionService
from auction_engine.services.clock import Clock, utcnow
from auction_engine.services.resolver import AuctionResolver

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    activated: int = 0
    expired: int = 0
    resolved: int = 0
    failed: int = 0


class ExpirySweeper:
    """Periodic discovery of auctions whose start or end time has passed.

    The sweep holds no business logic of its own: due SCHEDULED auctions go
    to ``AuctionService.activate`` and expired ACTIVE ones to
    ``AuctionResolver.resolve``, both of which tolerate being handed the same
    auction twice.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        auctions: AuctionService,
        resolver: AuctionResolver,
        clock: Clock = utcnow,
        interval: int = settings.SWEEP_INTERVAL_SECONDS,
        startup_delay: int = settings.SWEEP_STARTUP_DELAY_SECONDS,
    ):
        self.session_factory = session_factory
        self.auctions = auctions
        self.resolver = resolver
        self.clock = clock
        self.interval = interval
        self.startup_delay = startup_delay

    async def tick(self) -> SweepReport:
        report = SweepReport()
        now = self.clock()

        async with self.session_factory() as db:
            due_ids = await crud.get_due_scheduled_auction_ids(db, now)
            expired_ids = await crud.get_expired_auction_ids(db, now)

        for auction_id in due_ids:
            try:
                if await self.auctions.activate(auction_id):
                    report.activated += 1
            except Exception as e:
                report.failed += 1
                logger.error(f"[Sweeper] Activating auction {auction_id} failed: {e}")

        report.expired = len(expired_ids)
        if expired_ids:
            logger.info(f"[Sweeper] Found {len(expired_ids)} expired auctions")

        for auction_id in expired_ids:
            try:
                result = await self.resolver.resolve(auction_id)
                if result.resolved:
                    report.resolved += 1
            except Exception as e:
                report.failed += 1
                logger.error(f"[Sweeper] Resolving auction {auction_id} failed: {e}")

        return report

    async def run(self):
        """Background loop started from the app lifespan."""
        await asyncio.sleep(self.startup_delay)

        while True:
            try:
                report = await self.tick()
                if report.activated or report.expired or report.failed:
                    logger.info(
                        f"[Sweeper] activated={report.activated} resolved={report.resolved}/"
                        f"{report.expired} failed={report.failed}"
                    )
            except Exception as e:
                logger.error(f"[Sweeper] Fatal error: {e}")

            await asyncio.sleep(self.interval)
