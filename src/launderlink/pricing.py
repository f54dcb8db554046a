"""Cart pricing and voucher rules.

Everything here is pure: no database access, no clock. Callers fetch the
catalog and discounts through the repositories and pass them in.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Iterable, Mapping, Optional

from .domain import Discount, DiscountType, Service
from .errors import ValidationError

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class VoucherFailure(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    INACTIVE = "INACTIVE"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    EMPTY_CART = "EMPTY_CART"


_FAILURE_TEXT = {
    VoucherFailure.NOT_FOUND: "Voucher code not found.",
    VoucherFailure.INACTIVE: "Voucher is no longer active.",
    VoucherFailure.QUOTA_EXCEEDED: "Voucher quota has been used up.",
    VoucherFailure.EMPTY_CART: "Cart is empty.",
}


class VoucherError(ValidationError):
    def __init__(self, reason: VoucherFailure, code: str = "") -> None:
        self.reason = reason
        self.code = code
        super().__init__(_FAILURE_TEXT[reason])


@dataclass(frozen=True)
class CartLine:
    service_id: str
    quantity: Decimal


@dataclass(frozen=True)
class AppliedDiscount:
    code: str
    amount: Decimal


@dataclass(frozen=True)
class PricedCart:
    subtotal: Decimal
    discount_code: Optional[str]
    discount_amount: Decimal
    total: Decimal


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def parse_quantity(value) -> Decimal:
    try:
        qty = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValidationError(f"Quantity must be a number, got {value!r}.") from e
    if not qty.is_finite():
        raise ValidationError(f"Quantity must be a number, got {value!r}.")
    return qty


def quantize_amount(amount: Decimal, exponent: int = 0) -> Decimal:
    """Round half-up to the currency's minor unit (exponent 0 = whole units)."""
    return amount.quantize(Decimal(1).scaleb(-exponent), rounding=ROUND_HALF_UP)


class Cart:
    """Per-session selection of services.

    Any mutation drops a previously applied voucher; callers re-apply it
    against the new subtotal.
    """

    def __init__(self) -> None:
        self._lines: dict[str, Decimal] = {}
        self.applied: Optional[AppliedDiscount] = None

    @property
    def lines(self) -> list[CartLine]:
        return [CartLine(service_id=sid, quantity=qty) for sid, qty in self._lines.items()]

    def is_empty(self) -> bool:
        return not self._lines

    def __len__(self) -> int:
        return len(self._lines)

    def quantity_of(self, service_id: str) -> Decimal:
        return self._lines.get(service_id, ZERO)

    def add(self, service_id: str, quantity: Decimal | int | str = 1) -> None:
        qty = parse_quantity(quantity)
        if qty <= 0:
            raise ValidationError("Quantity to add must be > 0.")
        self._lines[service_id] = self._lines.get(service_id, ZERO) + qty
        self.applied = None

    def set_quantity(self, service_id: str, quantity: Decimal | int | str) -> None:
        qty = parse_quantity(quantity)
        if qty < 0:
            raise ValidationError("Quantity cannot be negative.")
        if qty == 0:
            self._lines.pop(service_id, None)
        else:
            self._lines[service_id] = qty
        self.applied = None

    def remove(self, service_id: str) -> None:
        self.set_quantity(service_id, 0)

    def clear(self) -> None:
        self._lines.clear()
        self.applied = None


def compute_subtotal(lines: Iterable[CartLine], catalog: Mapping[str, Service]) -> Decimal:
    subtotal = ZERO
    for line in lines:
        svc = catalog.get(line.service_id)
        if svc is None:
            logger.warning("Cart references unknown service_id=%s, counted as 0", line.service_id)
            continue
        subtotal += svc.price * line.quantity
    return subtotal


def validate_voucher(code: str, discounts: Iterable[Discount]) -> Discount:
    wanted = normalize_code(code)
    match = next((d for d in discounts if normalize_code(d.code) == wanted), None)
    if match is None:
        raise VoucherError(VoucherFailure.NOT_FOUND, wanted)
    if not match.is_active:
        raise VoucherError(VoucherFailure.INACTIVE, wanted)
    if match.quota > 0 and match.used_count >= match.quota:
        raise VoucherError(VoucherFailure.QUOTA_EXCEEDED, wanted)
    return match


def apply_discount(subtotal: Decimal, discount: Discount, exponent: int = 0) -> Decimal:
    if discount.type == DiscountType.PERCENTAGE:
        amount = quantize_amount(subtotal * discount.value / HUNDRED, exponent)
    else:
        amount = discount.value
    # never below zero total
    return min(amount, subtotal)


def final_total(subtotal: Decimal, discount_amount: Decimal) -> Decimal:
    return subtotal - discount_amount


def apply_voucher(
    cart: Cart,
    code: str,
    catalog: Mapping[str, Service],
    discounts: Iterable[Discount],
    exponent: int = 0,
) -> AppliedDiscount:
    cart.applied = None
    subtotal = compute_subtotal(cart.lines, catalog)
    if subtotal <= 0:
        raise VoucherError(VoucherFailure.EMPTY_CART, normalize_code(code))

    discount = validate_voucher(code, discounts)
    applied = AppliedDiscount(code=discount.code, amount=apply_discount(subtotal, discount, exponent))
    cart.applied = applied
    return applied


def price_cart(cart: Cart, catalog: Mapping[str, Service]) -> PricedCart:
    subtotal = compute_subtotal(cart.lines, catalog)
    applied = cart.applied
    discount_amount = applied.amount if applied else ZERO
    return PricedCart(
        subtotal=subtotal,
        discount_code=applied.code if applied else None,
        discount_amount=discount_amount,
        total=final_total(subtotal, discount_amount),
    )


def new_discount(
    *,
    id: str,
    code: str,
    type: DiscountType | str,
    value: Decimal | int | str,
    quota: int = 0,
    used_count: int = 0,
    is_active: bool = True,
) -> Discount:
    """Build a Discount, rejecting values the pricing rules cannot honour."""
    clean_code = normalize_code(code)
    if not clean_code:
        raise ValidationError("Voucher code cannot be empty.")
    try:
        dtype = DiscountType(type)
    except ValueError as e:
        raise ValidationError(f"Unknown discount type: {type}") from e

    amount = Decimal(str(value))
    if dtype == DiscountType.PERCENTAGE and not (ZERO < amount <= HUNDRED):
        raise ValidationError("Percentage discount must be between 0 and 100.")
    if dtype == DiscountType.FIXED and amount <= 0:
        raise ValidationError("Fixed discount must be > 0.")
    if quota < 0:
        raise ValidationError("Quota cannot be negative (0 means unlimited).")
    if used_count < 0:
        raise ValidationError("Used count cannot be negative.")

    return Discount(
        id=id,
        code=clean_code,
        type=dtype,
        value=amount,
        quota=int(quota),
        used_count=int(used_count),
        is_active=bool(is_active),
    )
