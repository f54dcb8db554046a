from __future__ import annotations

import dataclasses
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional

from flask import Flask, g, jsonify, request

from .auth import AuthSession, SessionManager, require_owner
from .context import AppContext
from .db import DbError
from .domain import Order
from .errors import AuthError, NotFound, PermissionDenied, ValidationError
from .lifecycle import STATUS_STEP
from .messaging import OutboxNotifier, estimated_ready_at
from .pricing import Cart, VoucherError, apply_voucher, price_cart
from .reports import build_dashboard
from .services.expense_service import month_bounds
from .services.order_workflow import OrderWorkflow
from .sync import WriteState

logger = logging.getLogger(__name__)


def to_json(obj):
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_json(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {(k.value if isinstance(k, Enum) else k): to_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_json(v) for v in obj]
    return obj


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _cart_from(items) -> Cart:
    if items is None:
        items = []
    if not isinstance(items, list):
        raise ValidationError("items must be a list.")
    cart = Cart()
    for it in items:
        if not isinstance(it, dict) or not it.get("service_id"):
            raise ValidationError("Each item needs a service_id.")
        cart.add(str(it["service_id"]), it.get("quantity", 1))
    return cart


def _day(value) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value))
    except ValueError as e:
        raise ValidationError(f"date must be YYYY-MM-DD, got {value!r}.") from e


def create_app(ctx: AppContext, sessions: SessionManager) -> Flask:
    """Each request gets its own order board and outbox; nothing order-related
    outlives the request."""
    app = Flask(__name__)
    business = ctx.cfg.business

    def current_session() -> Optional[AuthSession]:
        if "session" not in g:
            header = request.headers.get("Authorization", "")
            token = header[7:].strip() if header.startswith("Bearer ") else ""
            g.session = sessions.restore(token) if token else None
        return g.session

    def login_required() -> AuthSession:
        session = current_session()
        if session is None:
            raise AuthError("Login required.")
        return session

    def workflow() -> OrderWorkflow:
        if "workflow" not in g:
            g.outbox = OutboxNotifier()
            g.workflow = ctx.fresh_workflow(g.outbox)
        return g.workflow

    def outbox() -> OutboxNotifier:
        workflow()
        return g.outbox

    def this_month() -> str:
        return datetime.now(business.tz).strftime("%Y-%m")

    def handed_off() -> list[str]:
        return [m.link for m in g.outbox.sent] if "outbox" in g else []

    def on_board(order_id: str) -> OrderWorkflow:
        wf = workflow()
        with ctx.db.session() as conn:
            wf.board.put(ctx.orders.get_order(conn, order_id))
        return wf

    def outcome_response(outcome):
        body = {
            "order": to_json(outcome.order),
            "sync": outcome.state.value,
            "attempts": outcome.attempts,
            "links": handed_off(),
        }
        if outcome.state == WriteState.FAILED:
            body["error"] = str(outcome.error)
            return jsonify(body), 503
        return jsonify(body)

    @app.errorhandler(ValidationError)
    def _validation(e):
        body = {"error": str(e)}
        if isinstance(e, VoucherError):
            body["reason"] = e.reason.value
        return jsonify(body), 400

    @app.errorhandler(AuthError)
    def _auth(e):
        return jsonify({"error": str(e)}), 401

    @app.errorhandler(PermissionDenied)
    def _denied(e):
        return jsonify({"error": str(e)}), 403

    @app.errorhandler(NotFound)
    def _not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(DbError)
    def _db(e):
        logger.error("Database unavailable: %s", e)
        return jsonify({"error": "Database unavailable, try again."}), 503

    # Auth

    @app.post("/auth/login")
    def login():
        data = _body()
        s = sessions.login(data.get("email", ""), data.get("password", ""), data.get("role", "STAFF"))
        return jsonify(
            {
                "access_token": s.access_token,
                "refresh_token": s.refresh_token,
                "profile": to_json(s.profile),
            }
        )

    @app.post("/auth/register")
    def register():
        data = _body()
        user_id = sessions.register(
            name=data.get("name", ""),
            email=data.get("email", ""),
            password=data.get("password", ""),
            role=data.get("role", "STAFF"),
        )
        return jsonify({"user_id": user_id}), 201

    @app.post("/auth/logout")
    def logout():
        session = current_session()
        if session is not None:
            sessions.client.sign_out(session.access_token)
        return jsonify({"ok": True})

    # Orders

    @app.get("/orders")
    def orders_list():
        login_required()
        paid = request.args.get("paid")
        with ctx.db.session() as conn:
            orders = ctx.orders.list_orders(
                conn,
                limit=request.args.get("limit", type=int),
                start=request.args.get("start") or None,
                end=request.args.get("end") or None,
                is_paid=None if paid is None else paid.lower() in {"1", "true", "yes"},
            )
            unpaid = ctx.orders.unpaid_count(conn)
        return jsonify({"orders": to_json(orders), "unpaid_count": unpaid})

    @app.post("/orders")
    def orders_create():
        session = login_required()
        data = _body()
        order = workflow().place_order(
            cart=_cart_from(data.get("items")),
            customer_id=data.get("customer_id", ""),
            location_id=data.get("location_id") or session.profile.location_id,
            received_by=session.profile.name,
            perfume=data.get("perfume", "Standard"),
            is_paid=bool(data.get("is_paid", False)),
            payment_method=data.get("payment_method"),
            voucher_code=data.get("voucher_code") or None,
        )
        return jsonify({"order": to_json(order)}), 201

    @app.get("/orders/<order_id>")
    def orders_get(order_id):
        login_required()
        with ctx.db.session() as conn:
            return jsonify({"order": to_json(ctx.orders.get_order(conn, order_id))})

    @app.post("/orders/<order_id>/status")
    def orders_status(order_id):
        session = login_required()
        data = _body()
        target = str(data.get("status", "")).upper()
        wf = on_board(order_id)
        if target == "PROCESSING":
            outcome = wf.start_washing(order_id)
        elif target == "READY":
            outcome = wf.finish_washing(
                order_id,
                data.get("completed_by") or session.profile.name,
                notify=bool(data.get("notify", True)),
            )
        elif target == "COMPLETED":
            outcome = wf.mark_picked_up(order_id)
        else:
            raise ValidationError(f"Unknown status: {target}")
        return outcome_response(outcome)

    @app.post("/orders/<order_id>/payment")
    def orders_payment(order_id):
        login_required()
        wf = on_board(order_id)
        return outcome_response(wf.confirm_payment(order_id, str(_body().get("method", "")).upper()))

    @app.delete("/orders/<order_id>")
    def orders_delete(order_id):
        session = login_required()
        require_owner(session)
        wf = on_board(order_id)
        return outcome_response(wf.delete_order(session, order_id))

    @app.get("/orders/<order_id>/receipt")
    def orders_receipt(order_id):
        login_required()
        wf = workflow()
        msg = wf.receipt(order_id)
        return jsonify({"text": wf.printed_receipt(order_id), "message": msg.body, "link": msg.link})

    @app.post("/vouchers/check")
    def vouchers_check():
        login_required()
        data = _body()
        cart = _cart_from(data.get("items"))
        with ctx.db.session() as conn:
            catalog = ctx.repos.services.catalog(conn)
            found = ctx.repos.discounts.get_by_code(conn, data.get("code", ""))
        applied = apply_voucher(cart, data.get("code", ""), catalog, [found] if found else [], business.currency_exponent)
        return jsonify({"code": applied.code, **to_json(price_cart(cart, catalog))})

    # Public tracking

    @app.get("/track/<order_id>")
    def track(order_id):
        with ctx.db.session() as conn:
            order: Order = ctx.orders.get_order(conn, order_id)
            catalog = ctx.repos.services.catalog(conn)
        return jsonify(
            {
                "short_id": order.short_id,
                "customer_name": order.customer_name,
                "status": order.status.value,
                "step": STATUS_STEP.get(order.status),
                "items": to_json(order.items),
                "discount_amount": str(order.discount_amount),
                "total_amount": str(order.total_amount),
                "is_paid": order.is_paid,
                "perfume": order.perfume,
                "created_at": order.created_at.isoformat(),
                "estimated_ready_at": estimated_ready_at(order, catalog, business.default_duration_hours).isoformat(),
                "rating": order.rating,
                "review": order.review,
            }
        )

    @app.post("/track/<order_id>/feedback")
    def track_feedback(order_id):
        data = _body()
        rating = data.get("rating")
        with ctx.db.transaction() as conn:
            order = ctx.orders.submit_feedback(conn, order_id=order_id, rating=rating, review=data.get("review"))
        return jsonify({"rating": order.rating, "review": order.review})

    # Dashboard and expenses

    @app.get("/dashboard")
    def dashboard():
        require_owner(current_session())
        month = request.args.get("month") or this_month()
        start, end = month_bounds(month)
        with ctx.db.session() as conn:
            orders = ctx.orders.list_orders(conn, start=start, end=end)
            expenses = ctx.expenses.list_for_month(conn, month)
        today = min(datetime.now(business.tz).date(), end.date() - timedelta(days=1))
        return jsonify(to_json(build_dashboard(orders, expenses, today=today, tz=business.tz)))

    @app.get("/expenses")
    def expenses_list():
        login_required()
        month = request.args.get("month") or this_month()
        with ctx.db.session() as conn:
            rows = ctx.expenses.list_for_month(conn, month)
        total = sum((e.amount for e in rows), Decimal("0"))
        return jsonify({"expenses": to_json(rows), "total": str(total)})

    @app.post("/expenses")
    def expenses_create():
        session = login_required()
        data = _body()
        with ctx.db.transaction() as conn:
            expense_id = ctx.expenses.record(
                conn,
                session,
                description=data.get("description", ""),
                amount=data.get("amount", "0"),
                category=data.get("category", ""),
                location_id=data.get("location_id"),
                on=_day(data.get("date")),
            )
        return jsonify({"id": expense_id}), 201

    @app.delete("/expenses/<expense_id>")
    def expenses_delete(expense_id):
        with ctx.db.transaction() as conn:
            ctx.expenses.delete(conn, current_session(), expense_id)
        return jsonify({"ok": True})

    # Customers

    @app.get("/customers")
    def customers_list():
        login_required()
        with ctx.db.session() as conn:
            rows = ctx.customers.search(conn, request.args.get("q", ""))
        return jsonify({"customers": to_json(rows)})

    @app.post("/customers")
    def customers_create():
        login_required()
        data = _body()
        with ctx.db.transaction() as conn:
            c = ctx.customers.save(
                conn,
                name=data.get("name", ""),
                phone=data.get("phone", ""),
                email=data.get("email"),
                address=data.get("address"),
                notes=data.get("notes"),
            )
        return jsonify({"customer": to_json(c)}), 201

    @app.get("/customers/<customer_id>")
    def customers_get(customer_id):
        login_required()
        with ctx.db.session() as conn:
            return jsonify({"customer": to_json(ctx.customers.get(conn, customer_id))})

    @app.put("/customers/<customer_id>")
    def customers_update(customer_id):
        login_required()
        data = _body()
        with ctx.db.transaction() as conn:
            c = ctx.customers.save(
                conn,
                customer_id=customer_id,
                name=data.get("name", ""),
                phone=data.get("phone", ""),
                email=data.get("email"),
                address=data.get("address"),
                notes=data.get("notes"),
            )
        return jsonify({"customer": to_json(c)})

    @app.post("/customers/broadcast")
    def customers_broadcast():
        require_owner(current_session())
        data = _body()
        customer_ids = data.get("customer_ids")
        if customer_ids is not None and not isinstance(customer_ids, list):
            raise ValidationError("customer_ids must be a list.")
        with ctx.db.session() as conn:
            queue = ctx.customers.broadcast(conn, data.get("template", ""), customer_ids)
        queue.send_all(outbox())
        return jsonify(
            {
                "sent": queue.sent_count(),
                "messages": [
                    {"customer_id": i.customer.id, "name": i.customer.name, "link": i.message.link, "state": i.state.value}
                    for i in queue.items
                ],
            }
        )

    # Admin

    @app.get("/admin/locations")
    def locations_list():
        login_required()
        with ctx.db.session() as conn:
            return jsonify({"locations": to_json(ctx.admin.list_locations(conn))})

    @app.post("/admin/locations")
    @app.put("/admin/locations/<location_id>")
    def locations_save(location_id=None):
        data = _body()
        with ctx.db.transaction() as conn:
            saved = ctx.admin.save_location(
                conn,
                current_session(),
                name=data.get("name", ""),
                address=data.get("address", ""),
                phone=data.get("phone", ""),
                location_id=location_id,
            )
        return jsonify({"id": saved}), 200 if location_id else 201

    @app.delete("/admin/locations/<location_id>")
    def locations_delete(location_id):
        with ctx.db.transaction() as conn:
            ctx.admin.delete_location(conn, current_session(), location_id)
        return jsonify({"ok": True})

    @app.get("/admin/services")
    def services_list():
        login_required()
        with ctx.db.session() as conn:
            return jsonify({"services": to_json(ctx.admin.list_services(conn))})

    @app.post("/admin/services")
    @app.put("/admin/services/<service_id>")
    def services_save(service_id=None):
        data = _body()
        with ctx.db.transaction() as conn:
            saved = ctx.admin.save_service(
                conn,
                current_session(),
                name=data.get("name", ""),
                price=data.get("price", ""),
                unit=data.get("unit", ""),
                description=data.get("description", ""),
                duration_hours=data.get("duration_hours"),
                service_id=service_id,
            )
        return jsonify({"id": saved}), 200 if service_id else 201

    @app.delete("/admin/services/<service_id>")
    def services_delete(service_id):
        with ctx.db.transaction() as conn:
            ctx.admin.delete_service(conn, current_session(), service_id)
        return jsonify({"ok": True})

    @app.get("/admin/discounts")
    def discounts_list():
        with ctx.db.session() as conn:
            discounts = ctx.admin.list_discounts(conn, current_session())
        return jsonify({"discounts": [{**to_json(d), "remaining": d.remaining} for d in discounts]})

    @app.post("/admin/discounts")
    @app.put("/admin/discounts/<discount_id>")
    def discounts_save(discount_id=None):
        data = _body()
        with ctx.db.transaction() as conn:
            saved = ctx.admin.save_discount(
                conn,
                current_session(),
                code=data.get("code", ""),
                type=data.get("type", ""),
                value=data.get("value", ""),
                quota=data.get("quota", 0),
                is_active=bool(data.get("is_active", True)),
                discount_id=discount_id,
            )
        return jsonify({"id": saved}), 200 if discount_id else 201

    @app.delete("/admin/discounts/<discount_id>")
    def discounts_delete(discount_id):
        with ctx.db.transaction() as conn:
            ctx.admin.delete_discount(conn, current_session(), discount_id)
        return jsonify({"ok": True})

    @app.get("/admin/discounts/<code>/usage")
    def discounts_usage(code):
        with ctx.db.session() as conn:
            orders = ctx.admin.discount_usage(conn, current_session(), code)
        return jsonify({"code": code.upper(), "orders": to_json(orders)})

    @app.get("/admin/staff")
    def staff_list():
        with ctx.db.session() as conn:
            return jsonify({"staff": to_json(ctx.admin.list_staff(conn, current_session()))})

    @app.post("/admin/staff/<profile_id>/approve")
    def staff_approve(profile_id):
        with ctx.db.transaction() as conn:
            ctx.admin.approve_staff(conn, current_session(), profile_id)
        return jsonify({"ok": True})

    @app.delete("/admin/staff/<profile_id>")
    def staff_reject(profile_id):
        with ctx.db.transaction() as conn:
            ctx.admin.reject_staff(conn, current_session(), profile_id)
        return jsonify({"ok": True})

    @app.post("/admin/staff/<profile_id>/location")
    def staff_location(profile_id):
        with ctx.db.transaction() as conn:
            ctx.admin.assign_location(
                conn, current_session(), profile_id=profile_id, location_id=_body().get("location_id")
            )
        return jsonify({"ok": True})

    return app
