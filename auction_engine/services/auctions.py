import logging

from sqlalchemy.ext.asyncio import async_sessionmaker

from auction_engine.db import crud
from auction_engine.db.models import Auction
from auction_engine.errors import NotFound, Forbidden, InvalidAuction, InvalidTransition
from auction_engine.schemas.auction import AuctionCreateRequest
from auction_engine.services.clock import Clock, utcnow, ensure_utc
from auction_engine.services.locks import AuctionLocks
from auction_engine.services.money import to_cents
from auction_engine.services.state_machine import (
    AuctionStatus, apply_transition, publish_status, activate_if_due,
)

logger = logging.getLogger(__name__)


class AuctionService:
    """Seller-side lifecycle: create, publish, cancel, and start-time activation."""

    def __init__(self, session_factory: async_sessionmaker, locks: AuctionLocks, clock: Clock = utcnow):
        self.session_factory = session_factory
        self.locks = locks
        self.clock = clock

    async def create(self, seller_id: int, request: AuctionCreateRequest) -> Auction:
        now = self.clock()
        start = ensure_utc(request.start_time) or now
        end = ensure_utc(request.end_time)
        if end <= now:
            raise InvalidAuction("End time must be in the future")
        if start >= end:
            raise InvalidAuction("Start time must be before end time")

        status = publish_status(start, now) if request.publish else AuctionStatus.DRAFT
        auction = Auction(
            title=request.title.strip(),
            description=request.description,
            seller_id=seller_id,
            base_price=to_cents(request.base_price),
            bid_increment=to_cents(request.bid_increment),
            reserve_price=request.reserve_price,
            buy_now_price=request.buy_now_price,
            current_bid=0.0,
            bid_count=0,
            start_time=start,
            end_time=end,
            status=status.value,
        )
        async with self.session_factory() as db:
            auction = await crud.add_auction(db, auction)
        logger.info(f"[Auctions] User {seller_id} created auction {auction.id} as {auction.status}")
        return auction

    async def get(self, auction_id: int) -> Auction:
        async with self.session_factory() as db:
            auction = await crud.get_auction(db, auction_id)
        if not auction:
            raise NotFound(f"Auction {auction_id} not found")
        return auction

    async def publish(self, auction_id: int, seller_id: int) -> Auction:
        async with self.locks.hold(auction_id):
            async with self.session_factory() as db:
                auction = await self._owned(db, auction_id, seller_id)
                now = self.clock()
                if auction.status != AuctionStatus.DRAFT.value:
                    raise InvalidTransition(auction.status, AuctionStatus.SCHEDULED.value, "only drafts can be published")
                if now >= ensure_utc(auction.end_time):
                    raise InvalidTransition(auction.status, AuctionStatus.SCHEDULED.value, "end time already passed")
                apply_transition(auction, publish_status(auction.start_time, now), now)
                auction.updated_at = now
                await db.commit()
        logger.info(f"[Auctions] Auction {auction_id} published as {auction.status}")
        return auction

    async def cancel(self, auction_id: int, seller_id: int) -> Auction:
        async with self.locks.hold(auction_id):
            async with self.session_factory() as db:
                auction = await self._owned(db, auction_id, seller_id)
                now = self.clock()
                apply_transition(auction, AuctionStatus.CANCELLED, now)
                auction.updated_at = now
                await db.commit()
        logger.info(f"[Auctions] Auction {auction_id} cancelled by seller {seller_id}")
        return auction

    async def activate(self, auction_id: int) -> bool:
        """SCHEDULED -> ACTIVE once the start time passed; False when nothing changed."""
        async with self.locks.hold(auction_id):
            async with self.session_factory() as db:
                auction = await crud.get_auction(db, auction_id, for_update=True)
                if not auction:
                    return False
                now = self.clock()
                if not activate_if_due(auction, now):
                    return False
                auction.updated_at = now
                await db.commit()
        logger.info(f"[Auctions] Auction {auction_id} is now ACTIVE")
        return True

    async def _owned(self, db, auction_id: int, seller_id: int) -> Auction:
        auction = await crud.get_auction(db, auction_id, for_update=True)
        if not auction:
            raise NotFound(f"Auction {auction_id} not found")
        if auction.seller_id != seller_id:
            raise Forbidden("Not authorized to modify this auction")
        return auction
