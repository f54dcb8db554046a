"""Pytest fixtures: an in-memory store with repositories that mirror the PostgreSQL ones."""
from __future__ import annotations

import copy
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from launderlink.auth import AuthSession, SessionManager
from launderlink.config import parse_config
from launderlink.context import Repositories, build_context
from launderlink.db import DbError, date_bounds
from launderlink.domain import (
    Customer,
    Discount,
    DiscountType,
    Expense,
    Location,
    Order,
    OrderStatus,
    PaymentMethod,
    Profile,
    Service,
    UserRole,
)
from launderlink.messaging import OutboxNotifier

BASE_TIME = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


class Store:
    TABLES = ("locations", "services", "customers", "profiles", "discounts", "orders", "order_items", "expenses")

    def __init__(self) -> None:
        for t in self.TABLES:
            setattr(self, t, {})
        self.ticks = 0

    def new_id(self) -> str:
        return str(uuid.uuid4())

    def now(self) -> datetime:
        self.ticks += 1
        return BASE_TIME + timedelta(minutes=self.ticks)

    def snapshot(self) -> dict:
        return copy.deepcopy({t: getattr(self, t) for t in self.TABLES})

    def restore(self, snap: dict) -> None:
        for t, v in snap.items():
            setattr(self, t, v)


class FakeDb:
    """Db stand-in: transactions roll the store back on error; writes can be made to fail."""

    def __init__(self, store: Store) -> None:
        self.store = store
        self.fail_transactions = 0
        self.transactions = 0

    @contextmanager
    def session(self):
        yield object()

    @contextmanager
    def transaction(self):
        if self.fail_transactions > 0:
            self.fail_transactions -= 1
            raise DbError("connection lost")
        snap = self.store.snapshot()
        try:
            yield object()
        except Exception:
            self.store.restore(snap)
            raise
        self.transactions += 1


class FakeLocationRepo:
    def __init__(self, store: Store) -> None:
        self.s = store

    def create(self, conn, *, name, address, phone):
        lid = self.s.new_id()
        self.s.locations[lid] = Location(id=lid, name=name, address=address, phone=phone)
        return lid

    def update(self, conn, *, location_id, name, address, phone):
        if location_id in self.s.locations:
            self.s.locations[location_id] = Location(id=location_id, name=name, address=address, phone=phone)

    def delete(self, conn, location_id):
        self.s.locations.pop(location_id, None)

    def get(self, conn, location_id):
        return self.s.locations.get(location_id)

    def list(self, conn):
        return sorted(self.s.locations.values(), key=lambda l: l.name)


class FakeServiceRepo:
    def __init__(self, store: Store) -> None:
        self.s = store

    def create(self, conn, **fields):
        sid = self.s.new_id()
        self.s.services[sid] = Service(id=sid, **fields)
        return sid

    def update(self, conn, *, service_id, **fields):
        if service_id in self.s.services:
            self.s.services[service_id] = Service(id=service_id, **fields)

    def delete(self, conn, service_id):
        self.s.services.pop(service_id, None)

    def get(self, conn, service_id):
        return self.s.services.get(service_id)

    def list(self, conn):
        return sorted(self.s.services.values(), key=lambda x: x.name)

    def catalog(self, conn):
        return dict(self.s.services)


class FakeCustomerRepo:
    def __init__(self, store: Store) -> None:
        self.s = store

    def create(self, conn, **fields):
        c = Customer(id=self.s.new_id(), **fields)
        self.s.customers[c.id] = c
        return c

    def update(self, conn, *, customer_id, **fields):
        if customer_id not in self.s.customers:
            return None
        c = Customer(id=customer_id, **fields)
        self.s.customers[customer_id] = c
        return c

    def get(self, conn, customer_id):
        return self.s.customers.get(customer_id)

    def list(self, conn, limit=500, offset=0):
        return list(self.s.customers.values())[offset:offset + limit]

    def list_by_ids(self, conn, customer_ids):
        hits = [self.s.customers[cid] for cid in customer_ids if cid in self.s.customers]
        return sorted(hits, key=lambda c: c.name)

    def search(self, conn, term, limit=50):
        t = term.lower()
        hits = [c for c in self.s.customers.values() if t in c.name.lower() or t in c.phone.lower()]
        return sorted(hits, key=lambda c: c.name)[:limit]


class FakeProfileRepo:
    def __init__(self, store: Store) -> None:
        self.s = store

    def get_by_auth_id(self, conn, auth_id):
        return self.s.profiles.get(auth_id)

    def get(self, conn, profile_id):
        return self.s.profiles.get(profile_id)

    def list_staff(self, conn):
        staff = [p for p in self.s.profiles.values() if p.role == UserRole.STAFF]
        return sorted(staff, key=lambda p: (p.is_approved, p.name))

    def approve(self, conn, profile_id):
        self.s.profiles[profile_id] = replace(self.s.profiles[profile_id], is_approved=True)

    def set_location(self, conn, *, profile_id, location_id):
        self.s.profiles[profile_id] = replace(self.s.profiles[profile_id], location_id=location_id)

    def delete(self, conn, profile_id):
        self.s.profiles.pop(profile_id, None)


class FakeDiscountRepo:
    def __init__(self, store: Store) -> None:
        self.s = store

    def create(self, conn, *, code, type, value, quota, is_active):
        did = self.s.new_id()
        self.s.discounts[did] = Discount(
            id=did, code=code, type=DiscountType(type), value=value, quota=quota, is_active=is_active
        )
        return did

    def update(self, conn, *, discount_id, code, type, value, quota, is_active):
        old = self.s.discounts[discount_id]
        self.s.discounts[discount_id] = replace(
            old, code=code, type=DiscountType(type), value=value, quota=quota, is_active=is_active
        )

    def delete(self, conn, discount_id):
        self.s.discounts.pop(discount_id, None)

    def get_by_code(self, conn, code):
        code = code.strip().upper()
        return next((d for d in self.s.discounts.values() if d.code == code), None)

    def list(self, conn):
        return list(self.s.discounts.values())

    def redeem(self, conn, code):
        d = self.get_by_code(conn, code)
        if d is None or not d.is_active or (d.quota > 0 and d.used_count >= d.quota):
            return False
        self.s.discounts[d.id] = replace(d, used_count=d.used_count + 1)
        return True


class FakeOrderRepo:
    def __init__(self, store: Store) -> None:
        self.s = store

    def create(self, conn, *, payment_method, **fields):
        oid = self.s.new_id()
        now = self.s.now()
        self.s.orders[oid] = Order(
            id=oid,
            items=(),
            status=OrderStatus.PENDING,
            created_at=now,
            updated_at=now,
            payment_method=PaymentMethod(payment_method) if payment_method else None,
            **fields,
        )
        return oid

    def get(self, conn, order_id):
        return self.s.orders.get(order_id)

    def list(self, conn, *, limit=None, start=None, end=None, is_paid=None):
        lo, hi = date_bounds(start, end)
        rows = sorted(self.s.orders.values(), key=lambda o: o.created_at, reverse=True)
        if lo is not None:
            rows = [o for o in rows if o.created_at.replace(tzinfo=None) >= lo.replace(tzinfo=None)]
        if hi is not None:
            rows = [o for o in rows if o.created_at.replace(tzinfo=None) < hi.replace(tzinfo=None)]
        if is_paid is not None:
            rows = [o for o in rows if o.is_paid == is_paid]
        return rows[:limit] if limit is not None else rows

    def list_by_discount_code(self, conn, code):
        return [o for o in self.list(conn) if o.discount_code == code.strip().upper()]

    def count_unpaid(self, conn):
        return sum(1 for o in self.s.orders.values() if not o.is_paid)

    def _update(self, order_id, **changes):
        if order_id not in self.s.orders:
            return False
        self.s.orders[order_id] = replace(self.s.orders[order_id], updated_at=self.s.now(), **changes)
        return True

    def update_status(self, conn, *, order_id, status, completed_by):
        changes = {"status": OrderStatus(status)}
        if completed_by is not None:
            changes["completed_by"] = completed_by
        return self._update(order_id, **changes)

    def confirm_payment(self, conn, *, order_id, payment_method):
        return self._update(order_id, is_paid=True, payment_method=PaymentMethod(payment_method))

    def set_feedback(self, conn, *, order_id, rating, review):
        o = self.s.orders.get(order_id)
        if o is None or o.status != OrderStatus.COMPLETED:
            return False
        return self._update(order_id, rating=rating, review=review)

    def delete(self, conn, order_id):
        if self.s.order_items.get(order_id):
            raise DbError("order_items still reference this order")
        return self.s.orders.pop(order_id, None) is not None


class FakeOrderItemRepo:
    def __init__(self, store: Store) -> None:
        self.s = store

    def add_items(self, conn, *, order_id, items):
        self.s.order_items.setdefault(order_id, []).extend(items)

    def list_for_order(self, conn, order_id):
        return list(self.s.order_items.get(order_id, []))

    def list_for_orders(self, conn, order_ids):
        return {oid: list(self.s.order_items[oid]) for oid in order_ids if oid in self.s.order_items}

    def delete_for_order(self, conn, order_id):
        self.s.order_items.pop(order_id, None)


class FakeExpenseRepo:
    def __init__(self, store: Store) -> None:
        self.s = store

    def create(self, conn, **fields):
        eid = self.s.new_id()
        self.s.expenses[eid] = Expense(id=eid, **fields)
        return eid

    def list(self, conn, *, start=None, end=None):
        lo, hi = date_bounds(start, end)
        rows = sorted(self.s.expenses.values(), key=lambda e: e.date, reverse=True)
        if lo is not None:
            rows = [e for e in rows if e.date >= lo]
        if hi is not None:
            rows = [e for e in rows if e.date < hi]
        return rows

    def delete(self, conn, expense_id):
        return self.s.expenses.pop(expense_id, None) is not None


CONFIG = {
    "app": {"name": "LaunderLink", "log_level": "DEBUG"},
    "db": {"host": "localhost", "name": "launderlink", "user": "test", "password": "test"},
    "business": {"shop_name": "Bersih Jaya", "tracking_base_url": "https://track.example/t"},
    "auth": {"url": "https://auth.example", "anon_key": "anon"},
    "sync": {"policy": "surface"},
}


@pytest.fixture
def store() -> Store:
    return Store()


@pytest.fixture
def db(store) -> FakeDb:
    return FakeDb(store)


@pytest.fixture
def repos(store) -> Repositories:
    return Repositories(
        customers=FakeCustomerRepo(store),
        services=FakeServiceRepo(store),
        discounts=FakeDiscountRepo(store),
        orders=FakeOrderRepo(store),
        order_items=FakeOrderItemRepo(store),
        locations=FakeLocationRepo(store),
        profiles=FakeProfileRepo(store),
        expenses=FakeExpenseRepo(store),
    )


@pytest.fixture
def cfg():
    return parse_config(copy.deepcopy(CONFIG))


@pytest.fixture
def outbox() -> OutboxNotifier:
    return OutboxNotifier()


@pytest.fixture
def ctx(cfg, db, outbox, repos):
    return build_context(cfg, db, outbox, repos)


@pytest.fixture
def seed(store, repos):
    """A shop with one branch, three services, one customer, two staff and a few vouchers."""
    loc = repos.locations.create(None, name="Cabang Utama", address="Jl. Melati 1", phone="021555")
    wash = repos.services.create(
        None, name="Cuci Kering", price=Decimal("7000"), unit="kg", description="", duration_hours=48
    )
    iron = repos.services.create(
        None, name="Setrika", price=Decimal("5000"), unit="kg", description="", duration_hours=24
    )
    bedcover = repos.services.create(
        None, name="Bed Cover", price=Decimal("25000"), unit="pcs", description="", duration_hours=72
    )
    budi = repos.customers.create(None, name="Budi", phone="0812-3456-789", email=None, address=None, notes=None)

    owner = Profile(id="owner-1", name="Ibu Sari", email="sari@example.com", role=UserRole.OWNER,
                    location_id=loc, is_approved=True)
    staff = Profile(id="staff-1", name="Andi", email="andi@example.com", role=UserRole.STAFF,
                    location_id=loc, is_approved=True)
    pending = Profile(id="staff-2", name="Rina", email="rina@example.com", role=UserRole.STAFF,
                      location_id=None, is_approved=False)
    for p in (owner, staff, pending):
        store.profiles[p.id] = p

    def voucher(code, type, value, quota=0, used=0, active=True):
        did = repos.discounts.create(None, code=code, type=type, value=Decimal(value), quota=quota, is_active=active)
        store.discounts[did] = replace(store.discounts[did], used_count=used)
        return did

    voucher("HEMAT10", "PERCENTAGE", "10", quota=5, used=4)
    voucher("POTONG5K", "FIXED", "5000")
    voucher("LAMA", "FIXED", "3000", active=False)
    voucher("HABIS", "PERCENTAGE", "50", quota=2, used=2)

    return SimpleNamespace(
        location=loc,
        wash=wash,
        iron=iron,
        bedcover=bedcover,
        customer=budi,
        owner=owner,
        staff=staff,
        pending=pending,
    )


@pytest.fixture
def owner_session(seed) -> AuthSession:
    return AuthSession(access_token="tok-owner", refresh_token="r1", user_id="owner-1",
                       email=seed.owner.email, profile=seed.owner)


@pytest.fixture
def staff_session(seed) -> AuthSession:
    return AuthSession(access_token="tok-staff", refresh_token="r2", user_id="staff-1",
                       email=seed.staff.email, profile=seed.staff)


@pytest.fixture
def auth_client():
    client = MagicMock()
    users = {
        "tok-owner": {"id": "owner-1", "email": "sari@example.com"},
        "tok-staff": {"id": "staff-1", "email": "andi@example.com"},
        "tok-pending": {"id": "staff-2", "email": "rina@example.com"},
    }
    client.get_user.side_effect = lambda token: users.get(token)
    return client


@pytest.fixture
def sessions(auth_client, db, repos) -> SessionManager:
    return SessionManager(client=auth_client, db=db, profile_repo=repos.profiles)
