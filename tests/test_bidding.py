"""Bid admission: minimum rule, raises, outbid events and concurrency."""

import asyncio
from datetime import timedelta

import pytest

from auction_engine.db import crud
from auction_engine.errors import NotFound, SelfBid, AuctionClosed, BidTooLow, BelowMinimum, StaleBid
from auction_engine.services.events import NotificationKind
from auction_engine.services.ledger import BidLedger


async def _bids(session_factory, auction_id):
    async with session_factory() as db:
        return await crud.get_bids_for_auction(db, auction_id)


async def _auction(session_factory, auction_id):
    async with session_factory() as db:
        return await crud.get_auction(db, auction_id)


async def test_minimum_bid_sequence(runtime, users, make_auction):
    auction = await make_auction(base_price=100, bid_increment=10)

    with pytest.raises(BidTooLow) as exc:
        await runtime.bidding.place_bid(auction.id, users.alice, 90)
    assert exc.value.minimum == 100
    assert "100" in exc.value.message

    result = await runtime.bidding.place_bid(auction.id, users.alice, 100)
    assert result.current_bid == 100
    assert result.minimum_next == 110

    with pytest.raises(BidTooLow) as exc:
        await runtime.bidding.place_bid(auction.id, users.bob, 105)
    assert exc.value.minimum == 110

    result = await runtime.bidding.place_bid(auction.id, users.bob, 110)
    assert result.current_bid == 110
    assert result.is_update is False


async def test_rejection_order(runtime, users, make_auction, clock):
    with pytest.raises(NotFound):
        await runtime.bidding.place_bid(999, users.alice, 500)

    auction = await make_auction()
    with pytest.raises(SelfBid):
        await runtime.bidding.place_bid(auction.id, users.seller, 500)

    clock.advance(hours=2)
    # Too low and closed at once: closed wins
    with pytest.raises(AuctionClosed):
        await runtime.bidding.place_bid(auction.id, users.alice, 1)


async def test_bids_on_scheduled_auction(runtime, users, make_auction, clock):
    auction = await make_auction(start_time=clock.now + timedelta(minutes=30), end_time=clock.now + timedelta(hours=2))
    assert auction.status == "SCHEDULED"

    with pytest.raises(AuctionClosed):
        await runtime.bidding.place_bid(auction.id, users.alice, 100)

    clock.advance(minutes=30)
    result = await runtime.bidding.place_bid(auction.id, users.alice, 100)
    assert result.current_bid == 100
    assert (await _auction(runtime.session_factory, auction.id)).status == "ACTIVE"


async def test_outbid_notifications(runtime, users, make_auction, notifier):
    auction = await make_auction()

    await runtime.bidding.place_bid(auction.id, users.alice, 150)
    await runtime.bidding.place_bid(auction.id, users.bob, 200)
    await runtime.dispatcher.drain()

    outbid = notifier.events(kind=NotificationKind.BID_OUTBID)
    assert len(outbid) == 1
    assert outbid[0].user_id == users.alice
    assert outbid[0].previous_amount == 150
    assert outbid[0].amount == 200
    assert notifier.events(users.bob, NotificationKind.BID_OUTBID) == []

    result = await runtime.bidding.place_bid(auction.id, users.alice, 250)
    await runtime.dispatcher.drain()
    assert result.is_update is True
    assert result.previous_amount == 150

    outbid = notifier.events(kind=NotificationKind.BID_OUTBID)
    assert len(outbid) == 2
    assert outbid[1].user_id == users.bob
    assert (outbid[1].previous_amount, outbid[1].amount) == (200, 250)

    bids = await _bids(runtime.session_factory, auction.id)
    winning = [b for b in bids if b.is_winning]
    assert len(winning) == 1
    assert winning[0].bidder_id == users.alice


async def test_raise_updates_in_place(runtime, users, make_auction, notifier):
    auction = await make_auction()

    await runtime.bidding.place_bid(auction.id, users.alice, 100)
    first = (await _bids(runtime.session_factory, auction.id))[0]
    raised = await runtime.bidding.place_bid(auction.id, users.alice, 130)
    await runtime.dispatcher.drain()

    bids = await _bids(runtime.session_factory, auction.id)
    assert len(bids) == 1
    assert bids[0].id == first.id
    assert bids[0].amount == 130
    assert bids[0].created_at >= first.created_at
    assert raised.is_update is True
    assert raised.bid_count == 1
    # No self-outbid on a raise
    assert notifier.events(kind=NotificationKind.BID_OUTBID) == []


async def test_bid_placed_goes_to_bidder_and_seller(runtime, users, make_auction, notifier):
    auction = await make_auction()
    await runtime.bidding.place_bid(auction.id, users.alice, 100)
    await runtime.dispatcher.drain()

    placed = notifier.events(kind=NotificationKind.BID_PLACED)
    assert {e.user_id for e in placed} == {users.alice, users.seller}


async def test_current_bid_tracks_running_max(runtime, users, make_auction):
    auction = await make_auction(base_price=50, bid_increment=5)
    seen = []
    for bidder, amount in [
        (users.alice, 50), (users.bob, 55), (users.carol, 80), (users.alice, 85), (users.bob, 200),
    ]:
        result = await runtime.bidding.place_bid(auction.id, bidder, amount)
        seen.append(result.current_bid)

    assert seen == [50, 55, 80, 85, 200]
    stored = await _auction(runtime.session_factory, auction.id)
    assert stored.current_bid == 200
    assert stored.bid_count == 3


async def test_winning_flag_unique(runtime, users, make_auction):
    auction = await make_auction()
    assert await _bids(runtime.session_factory, auction.id) == []

    for bidder, amount in [(users.alice, 100), (users.bob, 120), (users.carol, 140)]:
        await runtime.bidding.place_bid(auction.id, bidder, amount)
        bids = await _bids(runtime.session_factory, auction.id)
        assert sum(b.is_winning for b in bids) == 1
        assert max(bids, key=lambda b: b.amount).is_winning


async def test_concurrent_bids_on_one_auction(runtime, users, make_auction):
    auction = await make_auction(base_price=100, bid_increment=10)
    attempts = [
        (users.alice, 100), (users.bob, 150), (users.carol, 120), (users.alice, 300), (users.bob, 290),
    ]

    outcomes = await asyncio.gather(
        *(runtime.bidding.place_bid(auction.id, bidder, amount) for bidder, amount in attempts),
        return_exceptions=True,
    )

    admitted = [amount for (_, amount), out in zip(attempts, outcomes) if not isinstance(out, Exception)]
    rejected = [out for out in outcomes if isinstance(out, Exception)]
    assert all(isinstance(e, BelowMinimum) for e in rejected)

    stored = await _auction(runtime.session_factory, auction.id)
    assert stored.current_bid == max(admitted)

    bids = await _bids(runtime.session_factory, auction.id)
    assert len({b.bidder_id for b in bids}) == len(bids)
    assert stored.bid_count == len(bids)
    assert [b for b in bids if b.is_winning][0].amount == max(admitted)

    # Each admission saw a strictly higher current bid than the one before it
    currents = [out.current_bid for out in outcomes if not isinstance(out, Exception)]
    assert currents == sorted(currents)


async def test_bid_status(runtime, users, make_auction):
    auction = await make_auction()
    await runtime.bidding.place_bid(auction.id, users.alice, 100)
    await runtime.bidding.place_bid(auction.id, users.bob, 110)

    alice = await runtime.bidding.bid_status(auction.id, users.alice)
    assert alice.user_bid.amount == 100
    assert alice.is_winning is False
    assert alice.minimum_next == 120
    assert alice.can_bid is True
    assert alice.current_highest == 110

    carol = await runtime.bidding.bid_status(auction.id, users.carol)
    assert carol.user_bid is None

    seller = await runtime.bidding.bid_status(auction.id, users.seller)
    assert seller.can_bid is False


async def test_bid_response_survives_dispatch_failure(runtime, users, make_auction, notifier):
    notifier.failing = {"persist", "live", "mobile", "external"}
    auction = await make_auction()

    result = await runtime.bidding.place_bid(auction.id, users.alice, 100)
    await runtime.dispatcher.drain()

    assert result.current_bid == 100
    assert len(runtime.dispatcher.failures) > 0


async def test_fractional_increment_admits_exact_minimum(runtime, users, make_auction):
    auction = await make_auction(base_price=0.1, bid_increment=0.2)

    await runtime.bidding.place_bid(auction.id, users.alice, 0.1)
    with pytest.raises(BelowMinimum) as exc:
        await runtime.bidding.place_bid(auction.id, users.bob, 0.29)
    assert exc.value.minimum == 0.3

    result = await runtime.bidding.place_bid(auction.id, users.bob, 0.3)
    assert result.current_bid == 0.3
    assert result.minimum_next == 0.5

    result = await runtime.bidding.place_bid(auction.id, users.alice, 0.5)
    assert result.current_bid == 0.5


async def test_rejection_states_full_minimum(runtime, users, make_auction):
    auction = await make_auction(base_price=1234567)
    with pytest.raises(BidTooLow) as exc:
        await runtime.bidding.place_bid(auction.id, users.alice, 1000)
    assert exc.value.message == "Bid must be at least $1,234,567"
    assert exc.value.to_dict()["minimum"] == 1234567

    auction = await make_auction(base_price=10000.25)
    with pytest.raises(BidTooLow) as exc:
        await runtime.bidding.place_bid(auction.id, users.alice, 10000)
    assert exc.value.message == "Bid must be at least $10,000.25"


async def test_ledger_guards_against_lowering_own_bid(runtime, users, make_auction, clock):
    auction = await make_auction(base_price=50, bid_increment=10)
    await runtime.bidding.place_bid(auction.id, users.alice, 100)

    async with runtime.session_factory() as db:
        stored = await crud.get_auction(db, auction.id)
        # A stale in-memory view lets 90 clear the minimum
        stored.current_bid = None
        with pytest.raises(StaleBid) as exc:
            await BidLedger(db).admit(stored, users.alice, 90, clock.now)
        assert "$100" in exc.value.message
        await db.rollback()

    bids = await _bids(runtime.session_factory, auction.id)
    assert [b.amount for b in bids] == [100]
