import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import async_sessionmaker

from auction_engine.db import crud
from auction_engine.db.models import Auction, Bid
from auction_engine.errors import NotFound, SelfBid, AuctionClosed
from auction_engine.services import events
from auction_engine.services.clock import Clock, utcnow, ensure_utc
from auction_engine.services.dispatcher import NotificationDispatcher
from auction_engine.services.ledger import Admission, BidLedger, minimum_next_bid
from auction_engine.services.locks import AuctionLocks
from auction_engine.services.state_machine import AuctionStatus, status_of, activate_if_due, accepts_bids

logger = logging.getLogger(__name__)


@dataclass
class BidResult:
    bid: Bid
    is_update: bool
    previous_amount: float | None
    current_bid: float
    bid_count: int
    minimum_next: float


@dataclass
class BidStatus:
    auction_id: int
    user_bid: Bid | None
    is_winning: bool
    minimum_next: float
    can_bid: bool
    auction_status: str
    current_highest: float


class BidAdmissionService:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        locks: AuctionLocks,
        dispatcher: NotificationDispatcher,
        clock: Clock = utcnow,
    ):
        self.session_factory = session_factory
        self.locks = locks
        self.dispatcher = dispatcher
        self.clock = clock

    async def place_bid(self, auction_id: int, bidder_id: int, amount: float) -> BidResult:
        """Admit ``amount`` from ``bidder_id``; raises NotFound, SelfBid, AuctionClosed or BidTooLow."""
        async with self.locks.hold(auction_id):
            async with self.session_factory() as db:
                auction = await crud.get_auction(db, auction_id, for_update=True)
                if not auction:
                    raise NotFound(f"Auction {auction_id} not found")
                if auction.seller_id == bidder_id:
                    raise SelfBid()

                now = self.clock()
                if activate_if_due(auction, now):
                    logger.info(f"[Bids] Auction {auction_id} activated on first bid attempt")
                    await db.commit()
                    auction = await crud.get_auction(db, auction_id, for_update=True)

                if status_of(auction) != AuctionStatus.ACTIVE:
                    raise AuctionClosed("Auction is not active")
                if now >= ensure_utc(auction.end_time):
                    raise AuctionClosed("Auction has ended")

                admission = await BidLedger(db).admit(auction, bidder_id, amount, now)
                amount = admission.bid.amount
                auction.current_bid = admission.highest.amount
                if not admission.is_update:
                    auction.bid_count = (auction.bid_count or 0) + 1
                auction.updated_at = now
                await db.commit()

                if admission.is_update:
                    logger.info(
                        f"[Bids] User {bidder_id} raised bid on auction {auction_id} "
                        f"from {admission.previous_amount} to {amount}"
                    )
                else:
                    logger.info(f"[Bids] User {bidder_id} placed bid of {amount} on auction {auction_id}")

                result = BidResult(
                    bid=admission.bid,
                    is_update=admission.is_update,
                    previous_amount=admission.previous_amount,
                    current_bid=auction.current_bid,
                    bid_count=auction.bid_count,
                    minimum_next=minimum_next_bid(auction),
                )
                outgoing = self._events_for(auction, bidder_id, amount, admission)

        # Committed; delivery runs in the background from here on
        self.dispatcher.dispatch_all(outgoing)
        return result

    def _events_for(self, auction: Auction, bidder_id: int, amount: float, admission: Admission) -> list:
        outgoing = [
            events.bid_placed(auction, bidder_id, amount, admission.is_update),
            events.bid_received(auction, amount),
        ]
        previous = admission.previous_highest
        if previous is not None and previous.bidder_id != bidder_id:
            logger.info(
                f"[Bids] Outbid on auction {auction.id}: user {previous.bidder_id} "
                f"({previous.amount}) -> user {bidder_id} ({amount})"
            )
            outgoing.append(events.bid_outbid(auction, previous.bidder_id, previous.amount, amount))
        return outgoing

    async def list_bids(self, auction_id: int) -> list[Bid]:
        async with self.session_factory() as db:
            if not await crud.get_auction(db, auction_id):
                raise NotFound(f"Auction {auction_id} not found")
            return await BidLedger(db).bids(auction_id)

    async def bid_status(self, auction_id: int, user_id: int) -> BidStatus:
        async with self.session_factory() as db:
            auction = await crud.get_auction(db, auction_id)
            if not auction:
                raise NotFound(f"Auction {auction_id} not found")
            user_bid = await crud.get_bid(db, auction_id, user_id)
            return BidStatus(
                auction_id=auction_id,
                user_bid=user_bid,
                is_winning=bool(user_bid and user_bid.is_winning),
                minimum_next=minimum_next_bid(auction),
                can_bid=accepts_bids(auction, self.clock()) and auction.seller_id != user_id,
                auction_status=auction.status,
                current_highest=auction.current_bid or auction.base_price,
            )
