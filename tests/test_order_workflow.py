from decimal import Decimal

import pytest

from launderlink.db import DbError
from launderlink.domain import OrderStatus, PaymentMethod
from launderlink.errors import PermissionDenied
from launderlink.pricing import Cart
from launderlink.sync import ReconcilePolicy, WriteState


def _place(ctx, seed, qty="3"):
    cart = Cart()
    cart.add(seed.wash, qty)
    return ctx.workflow.place_order(
        cart=cart, customer_id=seed.customer.id, location_id=seed.location, received_by="Andi"
    )


def test_pickup_ready_scenario_sends_exactly_one_message(ctx, seed, outbox, store):
    wf = ctx.workflow
    order = _place(ctx, seed)
    assert wf.board.get(order.id).status == OrderStatus.PENDING

    assert wf.start_washing(order.id).ok
    outcome = wf.finish_washing(order.id, "Staff A", notify=True)

    assert outcome.ok
    assert outcome.order.status == OrderStatus.READY
    assert outcome.order.completed_by == "Staff A"
    assert store.orders[order.id].status == OrderStatus.READY
    assert store.orders[order.id].completed_by == "Staff A"

    assert len(outbox.sent) == 1
    msg = outbox.sent[0]
    assert msg.phone == "628123456789"
    assert "Halo Budi" in msg.body
    assert f"#{order.short_id}" in msg.body
    assert "Rp 21.000" in msg.body
    assert "Cabang Utama" in msg.body


def test_finish_without_notify_sends_nothing(ctx, seed, outbox):
    order = _place(ctx, seed)
    ctx.workflow.start_washing(order.id)
    ctx.workflow.finish_washing(order.id, "Andi", notify=False)
    assert outbox.sent == []


def test_notifier_failure_does_not_undo_ready(ctx, seed, store, caplog):
    class Broken:
        def send(self, message):
            raise OSError("browser missing")

    ctx.workflow.notifier = Broken()
    order = _place(ctx, seed)
    ctx.workflow.start_washing(order.id)
    outcome = ctx.workflow.finish_washing(order.id, "Andi")

    assert outcome.ok
    assert store.orders[order.id].status == OrderStatus.READY
    assert "Could not hand off" in caplog.text


def test_failed_write_is_surfaced_and_customer_still_told(ctx, db, seed, outbox, store):
    order = _place(ctx, seed)
    ctx.workflow.start_washing(order.id)

    db.fail_transactions = 1
    outcome = ctx.workflow.finish_washing(order.id, "Andi")

    assert outcome.state == WriteState.FAILED
    assert ctx.workflow.board.get(order.id).status == OrderStatus.READY
    assert store.orders[order.id].status == OrderStatus.PROCESSING
    assert len(outbox.sent) == 1


def test_reverted_write_sends_nothing(ctx, db, seed, outbox, store):
    ctx.workflow.board.policy = ReconcilePolicy.REVERT
    order = _place(ctx, seed)
    ctx.workflow.start_washing(order.id)

    db.fail_transactions = 1
    outcome = ctx.workflow.finish_washing(order.id, "Andi")

    assert outcome.state == WriteState.FAILED
    assert ctx.workflow.board.get(order.id).status == OrderStatus.PROCESSING
    assert store.orders[order.id].status == OrderStatus.PROCESSING
    assert outbox.sent == []


def test_retry_policy_recovers_from_a_blip(ctx, db, seed, store):
    ctx.workflow.board.policy = ReconcilePolicy.RETRY
    order = _place(ctx, seed)
    db.fail_transactions = 1
    outcome = ctx.workflow.start_washing(order.id)
    assert outcome.ok
    assert outcome.attempts == 2
    assert store.orders[order.id].status == OrderStatus.PROCESSING


def test_pickup_and_payment(ctx, seed, store):
    wf = ctx.workflow
    order = _place(ctx, seed)
    wf.start_washing(order.id)
    wf.finish_washing(order.id, "Andi", notify=False)
    assert wf.mark_picked_up(order.id).ok
    assert wf.confirm_payment(order.id, PaymentMethod.TRANSFER).ok

    stored = store.orders[order.id]
    assert stored.status == OrderStatus.COMPLETED
    assert stored.is_paid
    assert stored.payment_method == PaymentMethod.TRANSFER


def test_refresh_loads_board_from_storage(ctx, seed):
    first = _place(ctx, seed)
    second = _place(ctx, seed, qty="1")
    ctx.workflow.board.replace_all([])
    orders = ctx.workflow.refresh(limit=10)
    assert [o.id for o in orders] == [second.id, first.id]
    assert orders[0].items[0].quantity == Decimal("1")


def test_delete_order(ctx, db, seed, store, owner_session, staff_session):
    order = _place(ctx, seed)
    with pytest.raises(PermissionDenied):
        ctx.workflow.delete_order(staff_session, order.id)

    outcome = ctx.workflow.delete_order(owner_session, order.id)
    assert outcome.ok
    assert ctx.workflow.board.get(order.id) is None
    assert order.id not in store.orders


def test_failed_delete_refetches(ctx, db, seed, store, owner_session):
    order = _place(ctx, seed)
    db.fail_transactions = 1
    outcome = ctx.workflow.delete_order(owner_session, order.id)
    assert outcome.state == WriteState.FAILED
    assert ctx.workflow.board.get(order.id) is not None
    assert order.id in store.orders


def test_receipts(ctx, seed):
    order = _place(ctx, seed)
    msg = ctx.workflow.receipt(order.id)
    assert msg.phone == "628123456789"
    assert f"https://track.example/t/{order.id}" in msg.body
    assert "Cabang Utama" in msg.body

    text = ctx.workflow.printed_receipt(order.id)
    assert "TOTAL    : Rp 21.000" in text


def test_failed_delete_keeps_order_when_reload_fails_too(ctx, db, seed, store, owner_session, monkeypatch):
    order = _place(ctx, seed)

    def unreachable():
        raise DbError("connection refused")

    monkeypatch.setattr(ctx.workflow, "_fetch", unreachable)
    db.fail_transactions = 1
    outcome = ctx.workflow.delete_order(owner_session, order.id)

    assert outcome.state == WriteState.FAILED
    assert outcome.order.id == order.id
    assert ctx.workflow.board.get(order.id) is not None
    assert ctx.workflow.board.state_of(order.id) == WriteState.FAILED
    assert order.id in store.orders
