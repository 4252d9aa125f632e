import json
from datetime import datetime
from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from auction_engine.db.models import User, Auction, Bid, Notification, DeviceToken, Payment
from auction_engine.services.state_machine import AuctionStatus


# --- Users ---

async def create_user(
    db: AsyncSession,
    username: str,
    email: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
) -> User:
    user = User(username=username, email=email, first_name=first_name, last_name=last_name, phone=phone)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def get_user(db: AsyncSession, user_id: int) -> User | None:
    return await db.get(User, user_id)


async def get_user_auction_summary(db: AsyncSession, user_id: int) -> dict:
    """Selling, bidding, won and lost auction counts for one user."""
    closed = (AuctionStatus.ENDED.value, AuctionStatus.SOLD.value)

    active_selling = await db.execute(
        select(func.count(Auction.id))
        .where(Auction.seller_id == user_id, Auction.status == AuctionStatus.ACTIVE.value)
    )
    active_bidding = await db.execute(
        select(func.count(func.distinct(Bid.auction_id)))
        .join(Auction, Auction.id == Bid.auction_id)
        .where(Bid.bidder_id == user_id, Auction.status == AuctionStatus.ACTIVE.value)
    )
    won = await db.execute(
        select(func.count(Auction.id))
        .where(Auction.winner_id == user_id, Auction.status.in_(closed))
    )
    lost = await db.execute(
        select(func.count(func.distinct(Bid.auction_id)))
        .join(Auction, Auction.id == Bid.auction_id)
        .where(
            Bid.bidder_id == user_id,
            Auction.status.in_(closed),
            (Auction.winner_id != user_id) | Auction.winner_id.is_(None),
        )
    )
    return {
        "active_selling": active_selling.scalar_one(),
        "active_bidding": active_bidding.scalar_one(),
        "won": won.scalar_one(),
        "lost": lost.scalar_one(),
    }


# --- Auctions ---

async def add_auction(db: AsyncSession, auction: Auction) -> Auction:
    db.add(auction)
    await db.commit()
    await db.refresh(auction)
    return auction


async def get_auction(db: AsyncSession, auction_id: int, for_update: bool = False) -> Auction | None:
    query = select(Auction).where(Auction.id == auction_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_expired_auction_ids(db: AsyncSession, now: datetime) -> list[int]:
    result = await db.execute(
        select(Auction.id)
        .where(Auction.status == AuctionStatus.ACTIVE.value, Auction.end_time <= now)
        .order_by(Auction.end_time)
    )
    return list(result.scalars().all())


async def get_due_scheduled_auction_ids(db: AsyncSession, now: datetime) -> list[int]:
    result = await db.execute(
        select(Auction.id)
        .where(Auction.status == AuctionStatus.SCHEDULED.value, Auction.start_time <= now)
        .order_by(Auction.start_time)
    )
    return list(result.scalars().all())


async def end_auction(db: AsyncSession, auction_id: int, winner_id: int | None, now: datetime) -> bool:
    """Conditional ACTIVE -> ENDED write. False when another writer got there first."""
    result = await db.execute(
        update(Auction)
        .where(Auction.id == auction_id, Auction.status == AuctionStatus.ACTIVE.value)
        .values(status=AuctionStatus.ENDED.value, winner_id=winner_id, updated_at=now)
    )
    return result.rowcount == 1


async def sell_auction(db: AsyncSession, auction_id: int, winner_id: int, now: datetime) -> bool:
    """Conditional ENDED -> SOLD write for the recorded winner."""
    result = await db.execute(
        update(Auction)
        .where(
            Auction.id == auction_id,
            Auction.status == AuctionStatus.ENDED.value,
            Auction.winner_id == winner_id,
        )
        .values(status=AuctionStatus.SOLD.value, updated_at=now)
    )
    return result.rowcount == 1


# --- Bids ---

async def get_bids_for_auction(db: AsyncSession, auction_id: int) -> list[Bid]:
    result = await db.execute(
        select(Bid)
        .where(Bid.auction_id == auction_id)
        .order_by(Bid.amount.desc(), Bid.created_at.asc(), Bid.id.asc())
    )
    return list(result.scalars().all())


async def get_bid(db: AsyncSession, auction_id: int, bidder_id: int) -> Bid | None:
    result = await db.execute(
        select(Bid).where(Bid.auction_id == auction_id, Bid.bidder_id == bidder_id)
    )
    return result.scalar_one_or_none()


# --- Payments ---

async def add_payment(
    db: AsyncSession,
    auction_id: int,
    user_id: int,
    amount: float,
    reference: str | None = None,
    shipping_info: dict | None = None,
) -> Payment:
    payment = Payment(
        auction_id=auction_id,
        user_id=user_id,
        amount=amount,
        reference=reference,
        shipping_info=json.dumps(shipping_info) if shipping_info else None,
    )
    db.add(payment)
    return payment


async def get_payment(db: AsyncSession, auction_id: int, user_id: int) -> Payment | None:
    result = await db.execute(
        select(Payment)
        .where(Payment.auction_id == auction_id, Payment.user_id == user_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


# --- Notifications ---

async def add_notification(
    db: AsyncSession,
    user_id: int,
    kind: str,
    title: str,
    message: str,
    auction_id: int | None = None,
) -> Notification:
    notification = Notification(
        user_id=user_id, auction_id=auction_id, kind=kind, title=title, message=message
    )
    db.add(notification)
    await db.commit()
    await db.refresh(notification)
    return notification


async def get_notifications(db: AsyncSession, user_id: int, unread_only: bool = False) -> list[Notification]:
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read == False)
    result = await db.execute(query.order_by(Notification.created_at.desc(), Notification.id.desc()))
    return list(result.scalars().all())


async def count_unread(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(
        select(func.count(Notification.id))
        .where(Notification.user_id == user_id, Notification.is_read == False)
    )
    return result.scalar_one()


async def mark_notification_read(db: AsyncSession, user_id: int, notification_id: int) -> Notification | None:
    notification = await db.get(Notification, notification_id)
    if not notification or notification.user_id != user_id:
        return None
    notification.is_read = True
    await db.commit()
    return notification


async def mark_all_notifications_read(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read == False)
        .values(is_read=True)
    )
    await db.commit()
    return result.rowcount


async def delete_notification(db: AsyncSession, user_id: int, notification_id: int) -> bool:
    result = await db.execute(
        delete(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
    )
    await db.commit()
    return result.rowcount == 1


# --- Device tokens ---

async def add_device_token(db: AsyncSession, user_id: int, token: str) -> DeviceToken:
    result = await db.execute(select(DeviceToken).where(DeviceToken.token == token))
    existing = result.scalar_one_or_none()
    if existing:
        # A device that changed hands follows its latest owner
        existing.user_id = user_id
        await db.commit()
        return existing
    device = DeviceToken(user_id=user_id, token=token)
    db.add(device)
    await db.commit()
    await db.refresh(device)
    return device


async def get_device_tokens(db: AsyncSession, user_id: int) -> list[str]:
    result = await db.execute(select(DeviceToken.token).where(DeviceToken.user_id == user_id))
    return list(result.scalars().all())


async def remove_device_tokens(db: AsyncSession, tokens: list[str]):
    if not tokens:
        return
    await db.execute(delete(DeviceToken).where(DeviceToken.token.in_(tokens)))
    await db.commit()
