"""Per-auction bid records and the derived winning-bid pointer.

The ledger works inside a session whose auction row the caller already
holds exclusively (per-auction lock plus ``SELECT ... FOR UPDATE``), so
reading the bid set, writing the admitted bid and re-marking the winner
happen as one unit.
"""
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from auction_engine.db import crud
from auction_engine.db.models import Auction, Bid
from auction_engine.errors import BelowMinimum, StaleBid
from auction_engine.services.clock import ensure_utc
from auction_engine.services.money import to_cents


@dataclass(frozen=True)
class StandingBid:
    bidder_id: int
    amount: float


@dataclass
class Admission:
    bid: Bid
    highest: StandingBid
    previous_highest: StandingBid | None
    is_update: bool
    previous_amount: float | None = None


def minimum_next_bid(auction: Auction) -> float:
    current = auction.current_bid or 0
    if current > 0:
        return to_cents(current + auction.bid_increment)
    return to_cents(auction.base_price)


def pick_winner(bids: list[Bid]) -> Bid | None:
    """Highest amount wins; on equal amounts the earlier timestamp does."""
    if not bids:
        return None
    return min(bids, key=lambda b: (-b.amount, ensure_utc(b.created_at), b.id or 0))


def losing_standings(bids: list[Bid], winner: Bid | None) -> list[StandingBid]:
    """Each non-winning bidder once, with their own highest amount."""
    best: dict[int, float] = {}
    for bid in bids:
        if winner is not None and bid.bidder_id == winner.bidder_id:
            continue
        if bid.amount > best.get(bid.bidder_id, float("-inf")):
            best[bid.bidder_id] = bid.amount
    return [StandingBid(bidder_id, amount) for bidder_id, amount in best.items()]


class BidLedger:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def bids(self, auction_id: int) -> list[Bid]:
        return await crud.get_bids_for_auction(self.db, auction_id)

    async def winning_bid(self, auction_id: int) -> Bid | None:
        return pick_winner(await self.bids(auction_id))

    async def admit(self, auction: Auction, bidder_id: int, amount: float, now: datetime) -> Admission:
        """Record ``amount`` for ``bidder_id`` and re-mark the winning bid.

        Amounts are compared and stored in whole cents. The own-bid check
        is a guard: any amount that clears the minimum is already above
        the bidder's standing bid.
        """
        amount = to_cents(amount)
        minimum = minimum_next_bid(auction)
        if amount < minimum:
            raise BelowMinimum(minimum)

        bids = await self.bids(auction.id)
        leader = pick_winner(bids)
        previous_highest = StandingBid(leader.bidder_id, leader.amount) if leader else None

        own = next((b for b in bids if b.bidder_id == bidder_id), None)
        if own is not None:
            if amount <= to_cents(own.amount):
                raise StaleBid(minimum, own.amount)
            previous_amount = own.amount
            own.amount = amount
            own.created_at = now
            bid, is_update = own, True
        else:
            bid = Bid(auction_id=auction.id, bidder_id=bidder_id, amount=amount, created_at=now, is_winning=False)
            self.db.add(bid)
            bids.append(bid)
            previous_amount, is_update = None, False

        winner = pick_winner(bids)
        for b in bids:
            b.is_winning = b is winner
        await self.db.flush()

        return Admission(
            bid=bid,
            highest=StandingBid(winner.bidder_id, winner.amount),
            previous_highest=previous_highest,
            is_update=is_update,
            previous_amount=previous_amount,
        )
