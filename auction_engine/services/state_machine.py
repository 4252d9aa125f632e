"""Auction status transitions.

DRAFT -> SCHEDULED -> ACTIVE -> ENDED -> SOLD, with CANCELLED reachable
from DRAFT, SCHEDULED and ACTIVE while no bids exist. Every guard is
checked before anything is written, so a rejected transition leaves the
auction untouched.
"""
from datetime import datetime
from enum import Enum

from auction_engine.errors import InvalidTransition
from auction_engine.services.clock import ensure_utc


class AuctionStatus(str, Enum):
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    ACTIVE = "ACTIVE"
    ENDED = "ENDED"
    SOLD = "SOLD"
    CANCELLED = "CANCELLED"


ALLOWED_TRANSITIONS = {
    AuctionStatus.DRAFT: {AuctionStatus.SCHEDULED, AuctionStatus.ACTIVE, AuctionStatus.CANCELLED},
    AuctionStatus.SCHEDULED: {AuctionStatus.ACTIVE, AuctionStatus.CANCELLED},
    AuctionStatus.ACTIVE: {AuctionStatus.ENDED, AuctionStatus.CANCELLED},
    AuctionStatus.ENDED: {AuctionStatus.SOLD},
    AuctionStatus.SOLD: set(),
    AuctionStatus.CANCELLED: set(),
}


def status_of(auction) -> AuctionStatus:
    return AuctionStatus(auction.status)


def check_transition(auction, target: AuctionStatus, now: datetime, payer_id: int | None = None):
    """Raise InvalidTransition unless ``auction`` may move to ``target`` at ``now``."""
    current = status_of(auction)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(current.value, target.value, "transition not allowed")

    if target == AuctionStatus.SCHEDULED:
        if now >= ensure_utc(auction.start_time):
            raise InvalidTransition(current.value, target.value, "start time already passed")
    elif target == AuctionStatus.ACTIVE:
        if now < ensure_utc(auction.start_time):
            raise InvalidTransition(current.value, target.value, "start time not reached")
    elif target == AuctionStatus.ENDED:
        if now < ensure_utc(auction.end_time):
            raise InvalidTransition(current.value, target.value, "end time not reached")
    elif target == AuctionStatus.SOLD:
        if auction.winner_id is None or payer_id != auction.winner_id:
            raise InvalidTransition(current.value, target.value, "payment is not from the recorded winner")
    elif target == AuctionStatus.CANCELLED:
        if (auction.bid_count or 0) > 0:
            raise InvalidTransition(current.value, target.value, "bids already exist")


def apply_transition(auction, target: AuctionStatus, now: datetime, payer_id: int | None = None):
    check_transition(auction, target, now, payer_id=payer_id)
    auction.status = target.value


def publish_status(start_time: datetime, now: datetime) -> AuctionStatus:
    """Status a freshly published auction lands in."""
    if ensure_utc(start_time) > now:
        return AuctionStatus.SCHEDULED
    return AuctionStatus.ACTIVE


def activate_if_due(auction, now: datetime) -> bool:
    """Flip a SCHEDULED auction to ACTIVE once its start time has elapsed."""
    if status_of(auction) != AuctionStatus.SCHEDULED:
        return False
    if now < ensure_utc(auction.start_time):
        return False
    apply_transition(auction, AuctionStatus.ACTIVE, now)
    return True


def accepts_bids(auction, now: datetime) -> bool:
    return status_of(auction) == AuctionStatus.ACTIVE and now < ensure_utc(auction.end_time)
