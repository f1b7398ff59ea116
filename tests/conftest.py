# tests/conftest.py
import os

# config.py refuses to import without these
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("MONGODB_URL", "mongodb://localhost:27017/lending_test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "False")

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from lending.core.engine import LendingEngine
from lending.core.notifications import NotificationRequest
from lending.db.memory import InMemoryStore
from lending.models.enum import ItemCondition, ItemStatus
from lending.models.item import Item
from lending.models.user import User, UserRole

START = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSink:
    def __init__(self):
        self.requests: List[NotificationRequest] = []

    async def dispatch(self, request: NotificationRequest) -> None:
        self.requests.append(request)


class FailingSink:
    async def dispatch(self, request: NotificationRequest) -> None:
        raise RuntimeError("mail server down")


async def add_user(store: InMemoryStore, username: str, role: UserRole = UserRole.USER) -> User:
    user = User(username=username, role=role)
    async with store.transaction() as uow:
        await uow.save_user(user)
    return user


async def add_item(
    store: InMemoryStore,
    name: str = "Projector",
    status: ItemStatus = ItemStatus.AVAILABLE,
    condition: ItemCondition = ItemCondition.GOOD,
) -> Item:
    item = Item(name=name, status=status, condition=condition)
    async with store.transaction() as uow:
        await uow.save_item(item)
    return item


async def load_item(store: InMemoryStore, item_id: str) -> Item:
    async with store.transaction() as uow:
        return await uow.get_item(item_id)


async def load_user(store: InMemoryStore, user_id: str) -> User:
    async with store.transaction() as uow:
        return await uow.get_user(user_id)


async def load_reservation(store: InMemoryStore, reservation_id: str):
    async with store.transaction() as uow:
        return await uow.get_reservation(reservation_id)


async def ledger_entries(store: InMemoryStore, user_id: str):
    async with store.transaction() as uow:
        return await uow.find_reputation_entries(user_id)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def engine(store, sink, clock):
    return LendingEngine(store, notifier=sink, clock=clock)


@pytest.fixture
async def admin(store):
    return await add_user(store, "admin", UserRole.SUPER_ADMIN)


@pytest.fixture
async def manager(store):
    return await add_user(store, "manager", UserRole.MANAGER)


@pytest.fixture
async def staff(store):
    return await add_user(store, "staff", UserRole.STAFF)


@pytest.fixture
async def borrower(store):
    return await add_user(store, "borrower")


@pytest.fixture
async def other_user(store):
    return await add_user(store, "other")


@pytest.fixture
async def item(store):
    return await add_item(store)


@pytest.fixture
def make_loan(engine, clock):
    """Request, approve and pick up a reservation; returns the ACTIVE reservation."""

    async def _make_loan(borrower, staff, item, start_in=timedelta(hours=1), length=timedelta(days=5)):
        start = clock() + start_in
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + length)
        await engine.reservations.approve(reservation.id, staff)
        return await engine.reservations.confirm_pickup(reservation.id, borrower)

    return _make_loan
