"""Customer-facing messages and the WhatsApp deep-link hand-off."""
from __future__ import annotations

import logging
import re
import webbrowser
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Mapping, Optional, Protocol
from urllib.parse import quote

from .domain import DEFAULT_DURATION_HOURS, Customer, Location, Order, Service

logger = logging.getLogger(__name__)

RECEIPT_RULE = "======================="
PRINT_RULE = "--------------------------------"


@dataclass(frozen=True)
class OutboundMessage:
    phone: str
    body: str

    @property
    def link(self) -> str:
        return f"https://wa.me/{self.phone}?text={quote(self.body, safe='')}"


class Notifier(Protocol):
    def send(self, message: OutboundMessage) -> None: ...


class DeepLinkNotifier:
    """Opens the wa.me link; delivery is up to the chat app."""

    def __init__(self, opener: Callable[[str], object] = webbrowser.open) -> None:
        self.opener = opener

    def send(self, message: OutboundMessage) -> None:
        self.opener(message.link)


class OutboxNotifier:
    """Collects messages so a caller (the web app) can hand the links back."""

    def __init__(self) -> None:
        self.sent: list[OutboundMessage] = []

    def send(self, message: OutboundMessage) -> None:
        self.sent.append(message)


def dispatch(notifier: Notifier, message: OutboundMessage) -> bool:
    """Fire-and-forget: a failing channel is logged and reported, never raised."""
    try:
        notifier.send(message)
    except Exception:
        logger.exception("Could not hand off message to %s", message.phone)
        return False
    return True


def normalize_phone(raw: str, country_code: str = "62") -> str:
    digits = re.sub(r"\D", "", raw or "")
    if digits.startswith("0"):
        digits = country_code + digits[1:]
    if not digits.startswith(country_code):
        digits = country_code + digits
    return digits


def format_amount(amount: Decimal) -> str:
    """Indonesian grouping: 15000 -> '15.000', 1500.5 -> '1.500,5'."""
    sign = "-" if amount < 0 else ""
    amount = abs(amount)
    whole = int(amount)
    text = f"{whole:,}".replace(",", ".")
    frac = amount - whole
    if frac:
        text += "," + format(frac.normalize(), "f").split(".")[1]
    return sign + text


def format_quantity(qty: Decimal) -> str:
    return format(qty.normalize(), "f")


def _stamp(value: datetime) -> str:
    return value.strftime("%d/%m/%Y %H:%M")


def estimated_ready_at(
    order: Order,
    catalog: Mapping[str, Service],
    default_hours: int = DEFAULT_DURATION_HOURS,
) -> datetime:
    hours = 0
    for item in order.items:
        svc = catalog.get(item.service_id)
        duration = svc.duration_hours if svc and svc.duration_hours else default_hours
        hours = max(hours, duration)
    return order.created_at + timedelta(hours=hours or default_hours)


def ready_message(order: Order, customer: Customer, laundry_name: str, country_code: str = "62") -> OutboundMessage:
    body = (
        f"Halo {customer.name}, Cucian Anda di *{laundry_name}* (Order #{order.short_id}) sudah SELESAI! \n"
        f"Total: Rp {format_amount(order.total_amount)}"
    )
    return OutboundMessage(phone=normalize_phone(customer.phone, country_code), body=body)


def receipt_message(
    order: Order,
    customer: Customer,
    location: Optional[Location],
    catalog: Mapping[str, Service],
    *,
    tracking_url: str,
    shop_name: str = "LaunderLink Pro",
    default_hours: int = DEFAULT_DURATION_HOURS,
    country_code: str = "62",
) -> OutboundMessage:
    name = location.name if location else shop_name
    lines = [
        "NOTA ELEKTRONIK",
        "",
        name,
        location.address if location else "",
        f"HP : {location.phone if location else ''}",
        "",
        RECEIPT_RULE,
        f"No Nota : TRX/{order.short_id}",
        f"Pelanggan : {customer.name}",
        f"Masuk    : {_stamp(order.created_at)}",
        f"Estimasi : {_stamp(estimated_ready_at(order, catalog, default_hours))}",
        "",
        RECEIPT_RULE,
    ]
    for item in order.items:
        svc = catalog.get(item.service_id)
        unit = svc.unit if svc else "item/kg"
        lines.append(f"- {item.service_name}")
        lines.append(
            f"{format_quantity(item.quantity)} {unit} x {format_amount(item.price)} = Rp {format_amount(item.line_total)}"
        )
        lines.append("")
    lines.append(RECEIPT_RULE)
    if order.discount_amount > 0:
        lines.append(f"Diskon ({order.discount_code or 'Promo'}) : - Rp {format_amount(order.discount_amount)}")
    lines += [
        f"Total        =  Rp {format_amount(order.total_amount)}",
        f"Parfum  : {order.perfume or 'Standard'}",
        f"Status  : {'LUNAS' if order.is_paid else 'BELUM BAYAR'}",
        RECEIPT_RULE,
        "",
        f"{tracking_url.rstrip('/')}/{order.id}",
        "",
        "Terima Kasih",
    ]
    return OutboundMessage(phone=normalize_phone(customer.phone, country_code), body="\n".join(lines))


def printed_receipt(
    order: Order,
    location: Optional[Location],
    catalog: Mapping[str, Service],
    shop_name: str = "LaunderLink Pro",
) -> str:
    out = [location.name if location else shop_name]
    if location and location.address:
        out.append(location.address)
    if location and location.phone:
        out.append(location.phone)
    out += [
        PRINT_RULE,
        f"No Order : #{order.short_id}",
        f"Tanggal  : {_stamp(order.created_at)}",
        f"Pelanggan: {order.customer_name}",
        f"Kasir    : {order.received_by or '-'}",
        PRINT_RULE,
    ]
    for item in order.items:
        svc = catalog.get(item.service_id)
        unit = svc.unit if svc else ""
        out.append(item.service_name)
        out.append(
            f"{format_quantity(item.quantity)} {unit} x Rp {format_amount(item.price)} = Rp {format_amount(item.line_total)}"
        )
    out.append(PRINT_RULE)
    if order.discount_amount > 0:
        out.append(f"DISKON ({order.discount_code}) : - Rp {format_amount(order.discount_amount)}")
    out += [
        f"TOTAL    : Rp {format_amount(order.total_amount)}",
        f"STATUS   : {'LUNAS' if order.is_paid else 'BELUM BAYAR'}",
        PRINT_RULE,
        "Terima Kasih",
    ]
    return "\n".join(out) + "\n"


def broadcast_message(template: str, customer: Customer, country_code: str = "62") -> OutboundMessage:
    body = template.replace("{name}", customer.name).replace("{phone}", customer.phone)
    return OutboundMessage(phone=normalize_phone(customer.phone, country_code), body=body)
