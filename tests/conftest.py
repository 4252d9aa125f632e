from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from auction_engine.db import crud
from auction_engine.db.database import init_db
from auction_engine.schemas.auction import AuctionCreateRequest
from auction_engine.services.events import NotificationKind
from auction_engine.services.notifier import BaseNotifier
from auction_engine.services.runtime import AuctionRuntime

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingNotifier(BaseNotifier):
    """Keeps every delivery in memory; channels listed in ``failing`` raise."""

    def __init__(self):
        self.persisted = []
        self.live = []
        self.mobile = []
        self.external = []
        self.failing: set[str] = set()

    def _maybe_fail(self, channel: str):
        if channel in self.failing:
            raise RuntimeError(f"{channel} is down")

    async def persist(self, event):
        self._maybe_fail("persist")
        self.persisted.append(event)
        return len(self.persisted)

    async def push_live(self, event, notification_id=None):
        self._maybe_fail("live")
        self.live.append((event, notification_id))
        return 1

    async def push_mobile(self, event, notification_id=None):
        self._maybe_fail("mobile")
        self.mobile.append((event, notification_id))
        return 1

    async def send_external_message(self, event):
        self._maybe_fail("external")
        self.external.append(event)
        return True

    def events(self, user_id: int | None = None, kind: NotificationKind | None = None) -> list:
        return [
            e for e in self.persisted
            if (user_id is None or e.user_id == user_id) and (kind is None or e.kind == kind)
        ]


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'auctions.db'}")
    await init_db(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
async def runtime(session_factory, notifier, clock):
    rt = AuctionRuntime(session_factory, notifier=notifier, clock=clock)
    yield rt
    await rt.shutdown()


@pytest.fixture
async def users(session_factory):
    async with session_factory() as db:
        seller = await crud.create_user(db, "seller", email="seller@example.com", first_name="Sam", last_name="Seller")
        alice = await crud.create_user(db, "alice", email="alice@example.com", first_name="Alice", last_name="Archer")
        bob = await crud.create_user(db, "bob", email="bob@example.com", first_name="Bob", last_name="Baker")
        carol = await crud.create_user(db, "carol", phone="+15550100", first_name="Carol")
    return SimpleNamespace(seller=seller.id, alice=alice.id, bob=bob.id, carol=carol.id)


@pytest.fixture
def make_auction(runtime, users, clock):
    async def _make(**overrides):
        fields = {
            "title": "Vintage Camera",
            "base_price": 100,
            "bid_increment": 10,
            "end_time": clock.now + timedelta(hours=1),
        }
        fields.update(overrides)
        return await runtime.auctions.create(users.seller, AuctionCreateRequest(**fields))
    return _make
