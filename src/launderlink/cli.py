from __future__ import annotations

import getpass
from datetime import datetime

from .auth import AuthSession, SessionManager, require_owner
from .context import AppContext
from .domain import Order
from .errors import AuthError, NotFound, PermissionDenied, ValidationError
from .lifecycle import STATUS_STEP, TRANSITION_LABELS, next_statuses
from .messaging import dispatch, format_amount
from .pricing import Cart, VoucherError, apply_voucher, price_cart, quantize_amount
from .reports import build_dashboard
from .services.expense_service import total_of
from .sync import WriteOutcome, WriteState


def _prompt(msg: str) -> str:
    return input(msg).strip()


def _yes(msg: str) -> bool:
    return _prompt(msg).lower() in {"y", "yes", "ya", "1", "true"}


def _show_order(o: Order, state: WriteState | None = None) -> None:
    nxt = ", ".join(TRANSITION_LABELS[s] for s in next_statuses(o.status)) or "-"
    paid = f"PAID/{o.payment_method.value}" if o.is_paid and o.payment_method else ("PAID" if o.is_paid else "UNPAID")
    flag = f" [{state.value}]" if state and state != WriteState.COMMITTED else ""
    print(
        f"#{o.short_id} {o.customer_name} step={STATUS_STEP.get(o.status, '-')} {o.status.value} "
        f"{paid} total=Rp {format_amount(o.total_amount)} next={nxt}{flag}"
    )


def _report(outcome: WriteOutcome) -> None:
    if outcome.state == WriteState.COMMITTED:
        print("Saved.")
    else:
        print(f"[SYNC] Order #{outcome.order_id[:8]} not saved: {outcome.error}")


def _pick_order(ctx: AppContext, raw: str) -> str:
    raw = raw.strip().lstrip("#")
    matches = [o.id for o in ctx.workflow.board.orders if o.id.startswith(raw)]
    if len(matches) != 1:
        raise NotFound(f"No single order matches {raw!r} (refresh the board first).")
    return matches[0]


def _login(sessions: SessionManager) -> AuthSession:
    while True:
        print("\n=== Login ===")
        role = _prompt("role (OWNER/STAFF): ").upper() or "STAFF"
        email = _prompt("email: ")
        password = getpass.getpass("password: ")
        try:
            return sessions.login(email, password, role)
        except (AuthError, ValidationError) as e:
            print(f"[AUTH] {e}")


def _new_order(ctx: AppContext, session: AuthSession) -> None:
    phone_or_name = _prompt("customer (name/phone search): ")
    with ctx.db.session() as conn:
        found = ctx.customers.search(conn, phone_or_name, limit=10)
        catalog = ctx.repos.services.catalog(conn)
        discounts = ctx.repos.discounts.list(conn)
    if found:
        for i, c in enumerate(found, 1):
            print(f"  {i}) {c.name} {c.phone}")
    pick = _prompt("number, or N for new customer: ").upper()
    if pick == "N" or not found:
        with ctx.db.transaction() as conn:
            customer = ctx.customers.save(conn, name=_prompt("  name: "), phone=_prompt("  phone: "))
    else:
        customer = found[int(pick) - 1]

    services = list(catalog.values())
    cart = Cart()
    while True:
        for i, s in enumerate(services, 1):
            print(f"  {i}) {s.name} Rp {format_amount(s.price)}/{s.unit} qty={cart.quantity_of(s.id)}")
        pick = _prompt("service number (empty = done): ")
        if not pick:
            break
        svc = services[int(pick) - 1]
        cart.set_quantity(svc.id, _prompt(f"  quantity ({svc.unit}): "))

    code = _prompt("voucher code (optional): ")
    if code:
        try:
            applied = apply_voucher(cart, code, catalog, discounts, ctx.cfg.business.currency_exponent)
            print(f"Voucher {applied.code}: - Rp {format_amount(applied.amount)}")
        except VoucherError as e:
            print(f"[VOUCHER] {e}")

    priced = price_cart(cart, catalog)
    print(f"Subtotal Rp {format_amount(priced.subtotal)}  total Rp {format_amount(priced.total)}")
    perfume = _prompt("perfume (default Standard): ") or "Standard"
    is_paid = _yes("paid now? (y/n): ")
    method = _prompt("  method (CASH/QRIS/TRANSFER): ").upper() if is_paid else None

    order = ctx.workflow.place_order(
        cart=cart,
        customer_id=customer.id,
        location_id=session.profile.location_id or _prompt("location id: "),
        received_by=session.profile.name,
        perfume=perfume,
        is_paid=is_paid,
        payment_method=method,
    )
    print(f"Created order #{order.short_id} total=Rp {format_amount(order.total_amount)}")
    if _yes("send receipt via WhatsApp? (y/n): "):
        dispatch(ctx.workflow.notifier, ctx.workflow.receipt(order.id))


def _broadcast(ctx: AppContext, session: AuthSession) -> None:
    require_owner(session)
    template = _prompt("message (use {name} for the customer's name): ")
    with ctx.db.session() as conn:
        queue = ctx.customers.broadcast(conn, template)
    while queue.pending():
        pending = queue.pending()
        for i, item in enumerate(pending, 1):
            print(f"  {i}) {item.customer.name} {item.customer.phone}")
        pick = _prompt("number to send, A for all (empty = done): ").upper()
        if not pick:
            break
        if pick == "A":
            queue.send_all(ctx.workflow.notifier)
        else:
            queue.send(pending[int(pick) - 1].customer.id, ctx.workflow.notifier)
    print(f"Broadcast sent to {queue.sent_count()} of {len(queue.items)} customers.")


def run_cli(ctx: AppContext, sessions: SessionManager) -> None:
    session = _login(sessions)
    wf = ctx.workflow
    wf.refresh(limit=200)

    while True:
        print(f"\n=== {ctx.cfg.business.shop_name} ({session.profile.name}, {session.role.value}) ===")
        print("1) Order board")
        print("2) New order")
        print("3) Start washing")
        print("4) Finish washing (+WhatsApp)")
        print("5) Picked up")
        print("6) Confirm payment")
        print("7) Print receipt")
        print("8) Delete order (owner)")
        print("9) Record expense")
        print("10) Dashboard")
        print("11) Vouchers (owner)")
        print("12) Customer broadcast (owner)")
        print("0) Logout")

        choice = _prompt("> ")
        try:
            if choice == "0":
                sessions.logout()
                return

            elif choice == "1":
                wf.refresh(limit=200)
                for o in wf.board.orders:
                    _show_order(o, wf.board.state_of(o.id))
                with ctx.db.session() as conn:
                    print(f"Unpaid orders: {ctx.orders.unpaid_count(conn)}")

            elif choice == "2":
                _new_order(ctx, session)

            elif choice == "3":
                _report(wf.start_washing(_pick_order(ctx, _prompt("order #: "))))

            elif choice == "4":
                oid = _pick_order(ctx, _prompt("order #: "))
                staff = _prompt(f"finished by (default {session.profile.name}): ") or session.profile.name
                _report(wf.finish_washing(oid, staff, notify=True))

            elif choice == "5":
                _report(wf.mark_picked_up(_pick_order(ctx, _prompt("order #: "))))

            elif choice == "6":
                oid = _pick_order(ctx, _prompt("order #: "))
                _report(wf.confirm_payment(oid, _prompt("method (CASH/QRIS/TRANSFER): ").upper()))

            elif choice == "7":
                print(wf.printed_receipt(_pick_order(ctx, _prompt("order #: "))))

            elif choice == "8":
                oid = _pick_order(ctx, _prompt("order #: "))
                if _yes(f"Delete order #{oid[:8]} permanently? (y/n): "):
                    _report(wf.delete_order(session, oid))

            elif choice == "9":
                with ctx.db.transaction() as conn:
                    ctx.expenses.record(
                        conn,
                        session,
                        description=_prompt("description: "),
                        amount=_prompt("amount: "),
                        category=_prompt("category (Operational/Supplies/Maintenance/Other): ") or "Other",
                        location_id=session.profile.location_id,
                    )
                print("Expense recorded.")

            elif choice == "10":
                tz = ctx.cfg.business.tz
                today = datetime.now(tz).date()
                month = today.strftime("%Y-%m")
                with ctx.db.session() as conn:
                    orders = ctx.orders.list_orders(conn, start=today.replace(day=1))
                    expenses = ctx.expenses.list_for_month(conn, month)
                dash = build_dashboard(orders, expenses, today=today, tz=tz)
                print(f"Revenue {month}: Rp {format_amount(dash.total_revenue)} ({dash.order_count} orders)")
                print(f"Average order: Rp {format_amount(quantize_amount(dash.avg_order, ctx.cfg.business.currency_exponent))}")
                print(f"Average rating: {dash.avg_rating or 'N/A'}")
                print(f"Expenses: Rp {format_amount(total_of(expenses))}  net: Rp {format_amount(dash.net_profit)}")
                for d in dash.daily_revenue:
                    print(f"  {d.day.isoformat()}  Rp {format_amount(d.amount)}")
                for s in dash.staff:
                    print(f"  {s.name}: {s.completed} done, Rp {format_amount(s.revenue)}, rating {s.avg_rating or '-'}")

            elif choice == "11":
                with ctx.db.session() as conn:
                    for d in ctx.admin.list_discounts(conn, session):
                        left = "unlimited" if d.remaining is None else d.remaining
                        print(f"  {d.code} {d.type.value} {d.value} used={d.used_count} left={left} active={d.is_active}")
                if _yes("create a voucher? (y/n): "):
                    with ctx.db.transaction() as conn:
                        ctx.admin.save_discount(
                            conn,
                            session,
                            code=_prompt("  code: "),
                            type=_prompt("  type (FIXED/PERCENTAGE): ").upper(),
                            value=_prompt("  value: "),
                            quota=_prompt("  quota (0 = unlimited): "),
                        )
                    print("Voucher saved.")

            elif choice == "12":
                _broadcast(ctx, session)

            else:
                print("Unknown choice.")

        except VoucherError as e:
            print(f"[VOUCHER] {e}")
        except ValidationError as e:
            print(f"[INPUT ERROR] {e}")
        except PermissionDenied as e:
            print(f"[DENIED] {e}")
        except NotFound as e:
            print(f"[NOT FOUND] {e}")
        except (ValueError, IndexError) as e:
            print(f"[VALUE ERROR] {e}")
        except Exception as e:
            print(f"[ERROR] {type(e).__name__}: {e}")
