from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from .domain import Expense, Order, OrderStatus

ZERO = Decimal("0")


@dataclass(frozen=True)
class DailyRevenue:
    day: date
    amount: Decimal


@dataclass(frozen=True)
class StaffPerformance:
    name: str
    completed: int
    revenue: Decimal
    avg_rating: Optional[Decimal]


@dataclass(frozen=True)
class Dashboard:
    total_revenue: Decimal
    order_count: int
    avg_order: Decimal
    avg_rating: Optional[Decimal]
    unpaid_count: int
    daily_revenue: list[DailyRevenue]
    status_counts: dict[OrderStatus, int]
    staff: list[StaffPerformance]
    expense_total: Decimal = ZERO
    net_profit: Decimal = ZERO
    expenses_by_category: dict[str, Decimal] = field(default_factory=dict)


def _one_decimal(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


def average_rating(orders: Iterable[Order]) -> Optional[Decimal]:
    ratings = [o.rating for o in orders if o.rating]
    if not ratings:
        return None
    return _one_decimal(Decimal(sum(ratings)) / len(ratings))


def _local_day(at, tz: Optional[tzinfo]) -> date:
    if tz is not None and at.tzinfo is not None:
        return at.astimezone(tz).date()
    return at.date()


def daily_revenue(
    orders: Iterable[Order], today: date, days: int = 7, tz: Optional[tzinfo] = None
) -> list[DailyRevenue]:
    """Revenue per calendar day for the ``days`` days ending today, oldest first.

    With ``tz`` set, orders are bucketed by their local day in that zone.
    """
    per_day: dict[date, Decimal] = defaultdict(lambda: ZERO)
    for o in orders:
        per_day[_local_day(o.created_at, tz)] += o.total_amount
    window = [today - timedelta(days=i) for i in range(days - 1, -1, -1)]
    return [DailyRevenue(day=d, amount=per_day.get(d, ZERO)) for d in window]


def status_counts(orders: Iterable[Order]) -> dict[OrderStatus, int]:
    counts = {s: 0 for s in OrderStatus}
    for o in orders:
        counts[o.status] += 1
    return counts


def staff_performance(orders: Iterable[Order]) -> list[StaffPerformance]:
    """Credit each order to whoever finished washing it; most orders first."""
    stats: dict[str, dict] = {}
    for o in orders:
        if not o.completed_by:
            continue
        s = stats.setdefault(o.completed_by, {"count": 0, "revenue": ZERO, "ratings": []})
        s["count"] += 1
        s["revenue"] += o.total_amount
        if o.rating:
            s["ratings"].append(o.rating)

    out = [
        StaffPerformance(
            name=name,
            completed=s["count"],
            revenue=s["revenue"],
            avg_rating=_one_decimal(Decimal(sum(s["ratings"])) / len(s["ratings"])) if s["ratings"] else None,
        )
        for name, s in stats.items()
    ]
    out.sort(key=lambda p: p.completed, reverse=True)
    return out


def build_dashboard(
    orders: Iterable[Order], expenses: Iterable[Expense] = (), *, today: date, tz: Optional[tzinfo] = None
) -> Dashboard:
    orders = list(orders)
    expenses = list(expenses)

    total = sum((o.total_amount for o in orders), ZERO)
    count = len(orders)
    by_category: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for e in expenses:
        by_category[e.category] += e.amount
    spent = sum(by_category.values(), ZERO)

    return Dashboard(
        total_revenue=total,
        order_count=count,
        avg_order=(total / count) if count else ZERO,
        avg_rating=average_rating(orders),
        unpaid_count=sum(1 for o in orders if not o.is_paid),
        daily_revenue=daily_revenue(orders, today, tz=tz),
        status_counts=status_counts(orders),
        staff=staff_performance(orders),
        expense_total=spent,
        net_profit=total - spent,
        expenses_by_category=dict(by_category),
    )
