"""Auction resolution: picking the winner at the deadline and closing the sale.

ACTIVE -> ENDED and ENDED -> SOLD are written as conditional updates
under the auction's lock. Whoever loses a race sees the conditional write
miss and backs off, so every auction is resolved and sold at most once no
matter how many sweeps overlap.
"""
import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.ext.asyncio import async_sessionmaker

from auction_engine.db import crud
from auction_engine.errors import NotFound, InvalidTransition, PaymentMismatch
from auction_engine.schemas.payment import PaymentConfirmation
from auction_engine.services import events
from auction_engine.services.clock import Clock, utcnow
from auction_engine.services.dispatcher import NotificationDispatcher
from auction_engine.services.ledger import BidLedger, pick_winner, losing_standings
from auction_engine.services.locks import AuctionLocks
from auction_engine.services.money import to_cents
from auction_engine.services.state_machine import AuctionStatus, status_of, check_transition

logger = logging.getLogger(__name__)


class ResolutionOutcome(str, Enum):
    WON = "won"
    NO_WINNER = "no_winner"
    ALREADY_RESOLVED = "already_resolved"
    NOT_DUE = "not_due"


@dataclass
class ResolutionResult:
    auction_id: int
    outcome: ResolutionOutcome
    winner_id: int | None = None
    amount: float | None = None
    losers: int = 0

    @property
    def resolved(self) -> bool:
        return self.outcome in (ResolutionOutcome.WON, ResolutionOutcome.NO_WINNER)


@dataclass
class PaymentResult:
    auction_id: int
    status: str
    already_confirmed: bool = False


class AuctionResolver:
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

    async def resolve(self, auction_id: int) -> ResolutionResult:
        async with self.locks.hold(auction_id):
            async with self.session_factory() as db:
                auction = await crud.get_auction(db, auction_id, for_update=True)
                if not auction:
                    raise NotFound(f"Auction {auction_id} not found")

                now = self.clock()
                try:
                    check_transition(auction, AuctionStatus.ENDED, now)
                except InvalidTransition as e:
                    if status_of(auction) == AuctionStatus.ACTIVE:
                        return ResolutionResult(auction_id, ResolutionOutcome.NOT_DUE)
                    logger.debug(f"[Resolver] Auction {auction_id} skipped: {e.message}")
                    return ResolutionResult(auction_id, ResolutionOutcome.ALREADY_RESOLVED)

                bids = await BidLedger(db).bids(auction_id)
                winner = pick_winner(bids)
                winner_id = winner.bidder_id if winner else None

                if not await crud.end_auction(db, auction_id, winner_id, now):
                    await db.rollback()
                    logger.info(f"[Resolver] Auction {auction_id} was resolved by another worker")
                    return ResolutionResult(auction_id, ResolutionOutcome.ALREADY_RESOLVED)
                for bid in bids:
                    bid.is_winning = bid is winner
                await db.commit()

                if winner is None:
                    logger.info(f"[Resolver] Auction {auction_id} ended without bids")
                    outgoing = [events.auction_no_winner(auction)]
                    result = ResolutionResult(auction_id, ResolutionOutcome.NO_WINNER)
                else:
                    user = await crud.get_user(db, winner.bidder_id)
                    winner_name = user.display_name if user else f"bidder #{winner.bidder_id}"
                    losers = losing_standings(bids, winner)
                    logger.info(
                        f"[Resolver] Auction {auction_id} won by user {winner.bidder_id} "
                        f"with {winner.amount}, {len(losers)} losing bidders"
                    )
                    outgoing = [
                        events.auction_won(auction, winner.bidder_id, winner.amount),
                        events.auction_sold(auction, winner_name, winner.amount),
                    ]
                    outgoing += [events.auction_lost(auction, s.bidder_id, s.amount) for s in losers]
                    result = ResolutionResult(
                        auction_id,
                        ResolutionOutcome.WON,
                        winner_id=winner.bidder_id,
                        amount=winner.amount,
                        losers=len(losers),
                    )

        self.dispatcher.dispatch_all(outgoing)
        return result

    async def confirm_payment(self, confirmation: PaymentConfirmation) -> PaymentResult:
        """Gateway callback: move the auction to SOLD for its recorded winner."""
        auction_id = confirmation.auction_id
        async with self.locks.hold(auction_id):
            async with self.session_factory() as db:
                auction = await crud.get_auction(db, auction_id, for_update=True)
                if not auction:
                    raise NotFound(f"Auction {auction_id} not found")

                if status_of(auction) == AuctionStatus.SOLD and auction.winner_id == confirmation.winner_id:
                    logger.info(f"[Payments] Auction {auction_id} already sold, ignoring repeat confirmation")
                    return PaymentResult(auction_id, auction.status, already_confirmed=True)

                now = self.clock()
                check_transition(auction, AuctionStatus.SOLD, now, payer_id=confirmation.winner_id)
                # Only the winning amount settles the sale
                if to_cents(confirmation.amount) != to_cents(auction.current_bid):
                    raise PaymentMismatch(auction.current_bid, confirmation.amount)
                if not await crud.sell_auction(db, auction_id, confirmation.winner_id, now):
                    await db.rollback()
                    raise InvalidTransition(auction.status, AuctionStatus.SOLD.value, "auction changed concurrently")

                shipping = confirmation.shipping_info
                await crud.add_payment(
                    db,
                    auction_id=auction_id,
                    user_id=confirmation.winner_id,
                    amount=confirmation.amount,
                    reference=confirmation.reference,
                    shipping_info=shipping.model_dump() if shipping else None,
                )
                await db.commit()
                logger.info(f"[Payments] Auction {auction_id} sold to user {confirmation.winner_id} for {confirmation.amount}")

                outgoing = [
                    events.payment_confirmed(auction, confirmation.winner_id, confirmation.amount),
                    events.payment_received(auction, confirmation.amount, shipping),
                ]

        self.dispatcher.dispatch_all(outgoing)
        return PaymentResult(auction_id, AuctionStatus.SOLD.value)
