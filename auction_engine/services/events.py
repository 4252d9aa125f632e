"""Domain events handed to the notification dispatcher.

Events are built by the bidding and resolution services after their
state change has committed. They carry everything a channel needs to
render a message, so delivery never reads auction state again.
"""
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from auction_engine.schemas.payment import ShippingInfo
from auction_engine.services.clock import utcnow
from auction_engine.services.money import format_money


class NotificationKind(str, Enum):
    BID_PLACED = "BID_PLACED"
    BID_OUTBID = "BID_OUTBID"
    AUCTION_WON = "AUCTION_WON"
    AUCTION_ENDED = "AUCTION_ENDED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"


class EndedVariant(str, Enum):
    SOLD = "sold"  # to the seller, with winner and amount
    NO_WINNER = "no_winner"  # to the seller
    LOST = "lost"  # to a bidder who did not win


# Kinds that also go out by email/WhatsApp
HIGH_VALUE_KINDS = {NotificationKind.AUCTION_WON, NotificationKind.PAYMENT_CONFIRMED}


class NotificationEvent(BaseModel):
    kind: NotificationKind
    user_id: int
    auction_id: int
    auction_title: str
    title: str
    message: str
    amount: float | None = None
    previous_amount: float | None = None
    variant: EndedVariant | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_high_value(self) -> bool:
        return self.kind in HIGH_VALUE_KINDS


def bid_placed(auction, bidder_id: int, amount: float, is_update: bool) -> NotificationEvent:
    verb = "raised your bid to" if is_update else "placed a bid of"
    return NotificationEvent(
        kind=NotificationKind.BID_PLACED,
        user_id=bidder_id,
        auction_id=auction.id,
        auction_title=auction.title,
        title="Bid Placed",
        message=f'You {verb} {format_money(amount)} on "{auction.title}".',
        amount=amount,
    )


def bid_received(auction, amount: float) -> NotificationEvent:
    return NotificationEvent(
        kind=NotificationKind.BID_PLACED,
        user_id=auction.seller_id,
        auction_id=auction.id,
        auction_title=auction.title,
        title="New Bid Placed!",
        message=f'Someone placed a bid of {format_money(amount)} on your auction "{auction.title}".',
        amount=amount,
    )


def bid_outbid(auction, user_id: int, old_amount: float, new_amount: float) -> NotificationEvent:
    return NotificationEvent(
        kind=NotificationKind.BID_OUTBID,
        user_id=user_id,
        auction_id=auction.id,
        auction_title=auction.title,
        title="You've Been Outbid!",
        message=(
            f'Someone placed a higher bid of {format_money(new_amount)} on "{auction.title}". '
            f"Your bid was {format_money(old_amount)}."
        ),
        amount=new_amount,
        previous_amount=old_amount,
    )


def auction_won(auction, winner_id: int, amount: float) -> NotificationEvent:
    return NotificationEvent(
        kind=NotificationKind.AUCTION_WON,
        user_id=winner_id,
        auction_id=auction.id,
        auction_title=auction.title,
        title="Congratulations! You Won!",
        message=(
            f'You won the auction "{auction.title}" with a bid of {format_money(amount)}. '
            "Please complete payment within 48 hours."
        ),
        amount=amount,
    )


def auction_sold(auction, winner_name: str, amount: float) -> NotificationEvent:
    return NotificationEvent(
        kind=NotificationKind.AUCTION_ENDED,
        variant=EndedVariant.SOLD,
        user_id=auction.seller_id,
        auction_id=auction.id,
        auction_title=auction.title,
        title="Your Auction Has Ended",
        message=(
            f'Your auction "{auction.title}" ended successfully. '
            f"Winner: {winner_name} with a bid of {format_money(amount)}."
        ),
        amount=amount,
    )


def auction_no_winner(auction) -> NotificationEvent:
    return NotificationEvent(
        kind=NotificationKind.AUCTION_ENDED,
        variant=EndedVariant.NO_WINNER,
        user_id=auction.seller_id,
        auction_id=auction.id,
        auction_title=auction.title,
        title="Your Auction Ended",
        message=(
            f'Your auction "{auction.title}" has ended without any bids. '
            "You can create a new auction or adjust your starting price."
        ),
    )


def auction_lost(auction, user_id: int, own_amount: float) -> NotificationEvent:
    return NotificationEvent(
        kind=NotificationKind.AUCTION_ENDED,
        variant=EndedVariant.LOST,
        user_id=user_id,
        auction_id=auction.id,
        auction_title=auction.title,
        title="Auction Ended - You Didn't Win",
        message=(
            f'The auction "{auction.title}" has ended. Unfortunately, your bid of '
            f"{format_money(own_amount)} was not the highest. Better luck next time!"
        ),
        amount=own_amount,
    )


def payment_confirmed(auction, winner_id: int, amount: float) -> NotificationEvent:
    return NotificationEvent(
        kind=NotificationKind.PAYMENT_CONFIRMED,
        user_id=winner_id,
        auction_id=auction.id,
        auction_title=auction.title,
        title="Winning Payment Confirmed",
        message=(
            f'Your payment of {format_money(amount)} for winning "{auction.title}" has been confirmed. '
            "The seller will ship your item soon."
        ),
        amount=amount,
    )


def payment_received(auction, amount: float, shipping: ShippingInfo | None) -> NotificationEvent:
    return NotificationEvent(
        kind=NotificationKind.PAYMENT_CONFIRMED,
        user_id=auction.seller_id,
        auction_id=auction.id,
        auction_title=auction.title,
        title="Payment Received - Ship Item",
        message=(
            f'Payment of {format_money(amount)} has been received for "{auction.title}". '
            f"Please prepare and ship the item within 3 business days.{format_shipping(shipping)}"
        ),
        amount=amount,
    )


def format_shipping(shipping: ShippingInfo | None) -> str:
    if shipping is None:
        return ""
    addr = shipping.address
    street = addr.line1 + (f", {addr.line2}" if addr.line2 else "")
    region = " ".join(part for part in (addr.state, addr.postal_code) if part)
    lines = [
        "",
        "",
        "Shipping Details:",
        f"{shipping.first_name} {shipping.last_name}",
        street,
        f"{addr.city}, {region}",
        addr.country,
    ]
    if shipping.phone:
        lines.append(f"Phone: {shipping.phone}")
    if shipping.email:
        lines.append(f"Email: {shipping.email}")
    if shipping.delivery_instructions:
        lines.append(f"Delivery Instructions: {shipping.delivery_instructions}")
    return "\n".join(lines)
