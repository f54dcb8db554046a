from dataclasses import replace
from decimal import Decimal

import pytest

from launderlink.domain import OrderStatus, PaymentMethod
from launderlink.errors import AuthError, NotFound, PermissionDenied, ValidationError
from launderlink.lifecycle import InvalidTransition
from launderlink.pricing import Cart, VoucherError, VoucherFailure, apply_voucher


def _cart(seed, wash="3", iron=None) -> Cart:
    cart = Cart()
    cart.add(seed.wash, wash)
    if iron:
        cart.add(seed.iron, iron)
    return cart


def _create(ctx, db, seed, cart=None, **kw):
    kw.setdefault("customer_id", seed.customer.id)
    kw.setdefault("location_id", seed.location)
    kw.setdefault("received_by", "Andi")
    with db.transaction() as conn:
        return ctx.orders.create_order(conn, cart=cart if cart is not None else _cart(seed), **kw)


def _voucher(store, code):
    return next(d for d in store.discounts.values() if d.code == code)


def test_create_order_snapshots_catalog(ctx, db, store, seed):
    order = _create(ctx, db, seed, _cart(seed, wash="2.5", iron="1"))

    assert order.status == OrderStatus.PENDING
    assert order.customer_name == "Budi"
    assert order.received_by == "Andi"
    assert order.perfume == "Standard"
    assert order.total_amount == Decimal("22500")
    assert [(i.service_name, i.price, i.quantity) for i in order.items] == [
        ("Cuci Kering", Decimal("7000"), Decimal("2.5")),
        ("Setrika", Decimal("5000"), Decimal("1")),
    ]

    store.services[seed.wash] = replace(store.services[seed.wash], price=Decimal("9000"), name="Cuci Premium")
    with db.session() as conn:
        again = ctx.orders.get_order(conn, order.id)
    assert again.items[0].price == Decimal("7000")
    assert again.items[0].service_name == "Cuci Kering"


def test_create_order_with_voucher_redeems_exactly_once(ctx, db, store, seed):
    order = _create(ctx, db, seed, voucher_code="hemat10")
    assert order.discount_code == "HEMAT10"
    assert order.discount_amount == Decimal("2100")
    assert order.total_amount == Decimal("18900")
    assert _voucher(store, "HEMAT10").used_count == 5


def test_voucher_applied_on_cart_is_used_when_no_code_given(ctx, db, store, seed):
    cart = _cart(seed)
    with db.session() as conn:
        apply_voucher(cart, "POTONG5K", ctx.repos.services.catalog(conn), ctx.repos.discounts.list(conn))
    order = _create(ctx, db, seed, cart)
    assert order.discount_amount == Decimal("5000")
    assert _voucher(store, "POTONG5K").used_count == 1


def test_last_voucher_unit_cannot_be_used_twice(ctx, db, store, seed):
    _create(ctx, db, seed, voucher_code="HEMAT10")
    with pytest.raises(VoucherError) as exc:
        _create(ctx, db, seed, voucher_code="HEMAT10")
    assert exc.value.reason == VoucherFailure.QUOTA_EXCEEDED
    assert _voucher(store, "HEMAT10").used_count == 5
    assert len(store.orders) == 1


def test_failed_redemption_rolls_back_the_order(ctx, db, store, seed, monkeypatch):
    # another till took the last unit between validation and redemption
    monkeypatch.setattr(ctx.repos.discounts, "redeem", lambda conn, code: False)
    with pytest.raises(VoucherError):
        _create(ctx, db, seed, voucher_code="HEMAT10")
    assert store.orders == {}
    assert store.order_items == {}


@pytest.mark.parametrize("code,reason", [("LAMA", VoucherFailure.INACTIVE), ("NOPE", VoucherFailure.NOT_FOUND)])
def test_invalid_voucher_blocks_order(ctx, db, store, seed, code, reason):
    with pytest.raises(VoucherError) as exc:
        _create(ctx, db, seed, voucher_code=code)
    assert exc.value.reason == reason
    assert store.orders == {}


def test_create_order_input_checks(ctx, db, seed):
    with pytest.raises(ValidationError):
        _create(ctx, db, seed, Cart())
    with pytest.raises(NotFound):
        _create(ctx, db, seed, customer_id="missing")
    with pytest.raises(ValidationError):
        _create(ctx, db, seed, location_id="")
    with pytest.raises(ValidationError):
        _create(ctx, db, seed, is_paid=True, payment_method="KREDIT")

    cart = Cart()
    cart.add("deleted-service", 1)
    with pytest.raises(ValidationError):
        _create(ctx, db, seed, cart)


def test_paid_at_intake(ctx, db, seed):
    order = _create(ctx, db, seed, is_paid=True, payment_method="CASH", perfume="Lavender")
    assert order.is_paid
    assert order.payment_method == PaymentMethod.CASH
    assert order.perfume == "Lavender"


def test_list_orders_filters_and_counts_unpaid(ctx, db, seed):
    paid = _create(ctx, db, seed, is_paid=True, payment_method="QRIS")
    unpaid = _create(ctx, db, seed)
    with db.session() as conn:
        assert [o.id for o in ctx.orders.list_orders(conn)] == [unpaid.id, paid.id]
        assert [o.id for o in ctx.orders.list_orders(conn, limit=1)] == [unpaid.id]
        assert [o.id for o in ctx.orders.list_orders(conn, is_paid=True)] == [paid.id]
        assert ctx.orders.list_orders(conn, start="2024-05-02") == []
        assert len(ctx.orders.list_orders(conn, start="2024-05-01", end="2024-05-01")) == 2
        assert all(o.items for o in ctx.orders.list_orders(conn))
        assert ctx.orders.unpaid_count(conn) == 1


def test_update_status_follows_the_pipeline(ctx, db, seed):
    order = _create(ctx, db, seed)
    with db.transaction() as conn:
        with pytest.raises(InvalidTransition):
            ctx.orders.update_status(conn, order_id=order.id, target="READY", completed_by="Andi")
        ctx.orders.update_status(conn, order_id=order.id, target="PROCESSING")
        ctx.orders.update_status(conn, order_id=order.id, target=OrderStatus.READY, completed_by="Andi")
        done = ctx.orders.update_status(conn, order_id=order.id, target="COMPLETED")
    assert done.status == OrderStatus.COMPLETED
    assert done.completed_by == "Andi"
    with pytest.raises(ValidationError):
        with db.transaction() as conn:
            ctx.orders.update_status(conn, order_id=order.id, target="LOST")


def test_feedback_on_completed_order_overwrites(ctx, db, store, seed):
    order = _create(ctx, db, seed)
    with db.transaction() as conn:
        with pytest.raises(ValidationError):
            ctx.orders.submit_feedback(conn, order_id=order.id, rating=5, review="cepat")
        for target in ("PROCESSING", "READY", "COMPLETED"):
            ctx.orders.update_status(conn, order_id=order.id, target=target, completed_by="Andi")
        ctx.orders.submit_feedback(conn, order_id=order.id, rating=5, review="cepat")
        ctx.orders.submit_feedback(conn, order_id=order.id, rating=3, review="lumayan")
    assert (store.orders[order.id].rating, store.orders[order.id].review) == (3, "lumayan")


def test_delete_is_owner_only_and_removes_items_first(ctx, db, store, seed, owner_session, staff_session):
    order = _create(ctx, db, seed)
    with pytest.raises(PermissionDenied):
        with db.transaction() as conn:
            ctx.orders.delete_order(conn, session=staff_session, order_id=order.id)
    with pytest.raises(AuthError):
        with db.transaction() as conn:
            ctx.orders.delete_order(conn, session=None, order_id=order.id)
    assert order.id in store.orders

    with db.transaction() as conn:
        ctx.orders.delete_order(conn, session=owner_session, order_id=order.id)
    assert store.orders == {}
    assert store.order_items == {}

    with pytest.raises(NotFound):
        with db.transaction() as conn:
            ctx.orders.delete_order(conn, session=owner_session, order_id=order.id)


def test_orders_by_discount_code(ctx, db, seed):
    with_code = _create(ctx, db, seed, voucher_code="POTONG5K")
    _create(ctx, db, seed)
    with db.session() as conn:
        assert [o.id for o in ctx.orders.orders_by_discount_code(conn, "potong5k")] == [with_code.id]
