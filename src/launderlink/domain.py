from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

DEFAULT_DURATION_HOURS = 48

EXPENSE_CATEGORIES = ("Operational", "Supplies", "Maintenance", "Other")


class UserRole(str, Enum):
    OWNER = "OWNER"
    STAFF = "STAFF"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    QRIS = "QRIS"
    TRANSFER = "TRANSFER"


class DiscountType(str, Enum):
    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"


def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass(frozen=True)
class Location:
    id: str
    name: str
    address: str
    phone: str

    @classmethod
    def from_row(cls, row: dict) -> Location:
        return cls(id=str(row["id"]), name=row["name"], address=row["address"], phone=row["phone"])


@dataclass(frozen=True)
class Service:
    id: str
    name: str
    price: Decimal
    unit: str
    description: str = ""
    duration_hours: int = DEFAULT_DURATION_HOURS

    @classmethod
    def from_row(cls, row: dict) -> Service:
        return cls(
            id=str(row["id"]),
            name=row["name"],
            price=_dec(row["price"]),
            unit=row["unit"],
            description=row.get("description") or "",
            duration_hours=int(row.get("duration_hours") or DEFAULT_DURATION_HOURS),
        )


@dataclass(frozen=True)
class Customer:
    id: str
    name: str
    phone: str
    email: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> Customer:
        return cls(
            id=str(row["id"]),
            name=row["name"],
            phone=row["phone"],
            email=row.get("email"),
            address=row.get("address"),
            notes=row.get("notes"),
        )


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    email: str
    role: UserRole
    location_id: Optional[str] = None
    is_approved: bool = False

    @classmethod
    def from_row(cls, row: dict) -> Profile:
        return cls(
            id=str(row["id"]),
            name=row["name"],
            email=row["email"],
            role=UserRole(row["role"]),
            location_id=str(row["location_id"]) if row.get("location_id") else None,
            is_approved=bool(row.get("is_approved")),
        )


@dataclass(frozen=True)
class Discount:
    id: str
    code: str
    type: DiscountType
    value: Decimal
    quota: int = 0
    used_count: int = 0
    is_active: bool = True

    @property
    def has_quota(self) -> bool:
        return self.quota > 0

    @property
    def remaining(self) -> Optional[int]:
        if not self.has_quota:
            return None
        return max(self.quota - self.used_count, 0)

    @classmethod
    def from_row(cls, row: dict) -> Discount:
        return cls(
            id=str(row["id"]),
            code=row["code"],
            type=DiscountType(row["type"]),
            value=_dec(row["value"]),
            quota=int(row.get("quota") or 0),
            used_count=int(row.get("used_count") or 0),
            is_active=bool(row.get("is_active", True)),
        )


@dataclass(frozen=True)
class OrderItem:
    """Price and name are copied from the catalog when the order is placed."""

    service_id: str
    service_name: str
    price: Decimal
    quantity: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity

    @classmethod
    def from_row(cls, row: dict) -> OrderItem:
        return cls(
            service_id=str(row["service_id"]),
            service_name=row["service_name"],
            price=_dec(row["price"]),
            quantity=_dec(row["quantity"]),
        )


@dataclass(frozen=True)
class Order:
    id: str
    customer_id: str
    customer_name: str
    location_id: str
    items: tuple[OrderItem, ...]
    total_amount: Decimal
    status: OrderStatus
    created_at: datetime
    updated_at: datetime
    is_paid: bool = False
    payment_method: Optional[PaymentMethod] = None
    discount_code: Optional[str] = None
    discount_amount: Decimal = Decimal("0")
    perfume: str = "Standard"
    received_by: Optional[str] = None
    completed_by: Optional[str] = None
    rating: Optional[int] = None
    review: Optional[str] = None

    @property
    def short_id(self) -> str:
        return self.id[:8]

    @property
    def subtotal(self) -> Decimal:
        return sum((i.line_total for i in self.items), Decimal("0"))

    @classmethod
    def from_row(cls, row: dict, items: list[OrderItem] | tuple[OrderItem, ...] = ()) -> Order:
        method = row.get("payment_method")
        return cls(
            id=str(row["id"]),
            customer_id=str(row["customer_id"]),
            customer_name=row["customer_name"],
            location_id=str(row["location_id"]),
            items=tuple(items),
            total_amount=_dec(row["total_amount"]),
            status=OrderStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            is_paid=bool(row.get("is_paid")),
            payment_method=PaymentMethod(method) if method else None,
            discount_code=row.get("discount_code"),
            discount_amount=_dec(row.get("discount_amount") or 0),
            perfume=row.get("perfume") or "Standard",
            received_by=row.get("received_by"),
            completed_by=row.get("completed_by"),
            rating=row.get("rating"),
            review=row.get("review"),
        )


@dataclass(frozen=True)
class Expense:
    id: str
    description: str
    amount: Decimal
    category: str
    date: datetime
    recorded_by: Optional[str] = None
    location_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> Expense:
        return cls(
            id=str(row["id"]),
            description=row["description"],
            amount=_dec(row["amount"]),
            category=row["category"],
            date=row["date"],
            recorded_by=row.get("recorded_by"),
            location_id=str(row["location_id"]) if row.get("location_id") else None,
        )
