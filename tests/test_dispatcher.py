import asyncio

from auction_engine.errors import DispatchFailure
from auction_engine.services.dispatcher import NotificationDispatcher
from auction_engine.services.events import NotificationEvent, NotificationKind
from auction_engine.services.runtime import AuctionRuntime

from tests.conftest import RecordingNotifier


def _event(kind=NotificationKind.BID_PLACED, user_id=1):
    return NotificationEvent(
        kind=kind, user_id=user_id, auction_id=10, auction_title="Lamp", title="t", message="m", amount=50,
    )


async def test_failed_persist_does_not_stop_other_channels():
    notifier = RecordingNotifier()
    notifier.failing = {"persist"}
    dispatcher = NotificationDispatcher(notifier)

    dispatcher.dispatch(_event())
    await dispatcher.drain()

    assert notifier.persisted == []
    assert len(notifier.live) == 1 and len(notifier.mobile) == 1
    # No stored record, so no id rides along
    assert notifier.live[0][1] is None

    assert len(dispatcher.failures) == 1
    failure = dispatcher.failures[0]
    assert isinstance(failure, DispatchFailure)
    assert (failure.channel, failure.user_id, failure.kind) == ("persist", 1, "BID_PLACED")


async def test_live_failure_isolated():
    notifier = RecordingNotifier()
    notifier.failing = {"live"}
    dispatcher = NotificationDispatcher(notifier)

    dispatcher.dispatch_all([_event(user_id=1), _event(user_id=2)])
    await dispatcher.drain()

    assert [e.user_id for e in notifier.persisted] == [1, 2]
    assert notifier.mobile[0][1] == 1
    assert [f.channel for f in dispatcher.failures] == ["live", "live"]


async def test_external_only_for_high_value_kinds():
    notifier = RecordingNotifier()
    dispatcher = NotificationDispatcher(notifier)

    dispatcher.dispatch_all([
        _event(NotificationKind.BID_PLACED),
        _event(NotificationKind.BID_OUTBID),
        _event(NotificationKind.AUCTION_ENDED),
        _event(NotificationKind.AUCTION_WON),
        _event(NotificationKind.PAYMENT_CONFIRMED),
    ])
    await dispatcher.drain()

    assert len(notifier.persisted) == 5
    assert {e.kind for e in notifier.external} == {NotificationKind.AUCTION_WON, NotificationKind.PAYMENT_CONFIRMED}


async def test_failure_history_is_bounded():
    notifier = RecordingNotifier()
    notifier.failing = {"persist", "live", "mobile"}
    dispatcher = NotificationDispatcher(notifier, failure_history=4)

    dispatcher.dispatch_all([_event() for _ in range(5)])
    await dispatcher.drain()

    assert len(dispatcher.failures) == 4


class GatedNotifier(RecordingNotifier):
    """Holds every persist until ``gate`` opens."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def persist(self, event):
        await self.gate.wait()
        return await super().persist(event)


async def test_bid_returns_before_delivery(session_factory, clock, users):
    from datetime import timedelta
    from auction_engine.schemas.auction import AuctionCreateRequest

    notifier = GatedNotifier()
    runtime = AuctionRuntime(session_factory, notifier=notifier, clock=clock)
    auction = await runtime.auctions.create(
        users.seller, AuctionCreateRequest(title="Gated Lot", base_price=10, end_time=clock.now + timedelta(hours=1)),
    )

    result = await asyncio.wait_for(runtime.bidding.place_bid(auction.id, users.alice, 10), timeout=2)
    assert result.current_bid == 10
    assert notifier.persisted == []
    assert runtime.dispatcher.pending == 2

    notifier.gate.set()
    await runtime.shutdown()
    assert runtime.dispatcher.pending == 0
    assert {e.user_id for e in notifier.persisted} == {users.alice, users.seller}
