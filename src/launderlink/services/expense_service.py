from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from psycopg import Connection

from ..auth import AuthSession, require_owner
from ..domain import EXPENSE_CATEGORIES, Expense
from ..errors import AuthError, NotFound, ValidationError
from ..repositories.expense_repo import ExpenseRepository

logger = logging.getLogger(__name__)


def month_bounds(month: str) -> tuple[datetime, datetime]:
    """'YYYY-MM' -> [first day 00:00, first day of next month 00:00)."""
    try:
        year, mon = (int(p) for p in month.split("-"))
        start = datetime(year, mon, 1)
    except (ValueError, AttributeError) as e:
        raise ValidationError(f"Month must look like YYYY-MM, got {month!r}") from e
    end = datetime(year + 1, 1, 1) if mon == 12 else datetime(year, mon + 1, 1)
    return start, end


def total_of(expenses: Iterable[Expense]) -> Decimal:
    return sum((e.amount for e in expenses), Decimal("0"))


class ExpenseService:
    def __init__(self, *, expense_repo: ExpenseRepository) -> None:
        self.expense_repo = expense_repo

    def record(
        self,
        conn: Connection,
        session: Optional[AuthSession],
        *,
        description: str,
        amount,
        category: str,
        location_id: str | None,
        on: date | datetime | None = None,
    ) -> str:
        if session is None:
            raise AuthError("Login required.")
        if not (description or "").strip():
            raise ValidationError("Description cannot be empty.")
        try:
            value = Decimal(str(amount))
        except InvalidOperation as e:
            raise ValidationError("Amount must be a number.") from e
        if value <= 0:
            raise ValidationError("Amount must be > 0.")
        if category not in EXPENSE_CATEGORIES:
            raise ValidationError(f"Category must be one of {', '.join(EXPENSE_CATEGORIES)}.")
        location = location_id or session.profile.location_id
        if not location:
            raise ValidationError("Location is required.")

        when = on or datetime.now()
        if not isinstance(when, datetime):
            when = datetime.combine(when, datetime.min.time())

        expense_id = self.expense_repo.create(
            conn,
            description=description.strip(),
            amount=value,
            category=category,
            date=when,
            recorded_by=session.profile.name,
            location_id=location,
        )
        logger.info("Expense %s recorded: %s %s", expense_id, category, value)
        return expense_id

    def delete(self, conn: Connection, session: Optional[AuthSession], expense_id: str) -> None:
        require_owner(session)
        if not self.expense_repo.delete(conn, expense_id):
            raise NotFound(f"Expense not found: {expense_id}")

    def list_for_month(self, conn: Connection, month: str) -> list[Expense]:
        start, end = month_bounds(month)
        return self.expense_repo.list(conn, start=start, end=end)

    def monthly_total(self, conn: Connection, month: str) -> Decimal:
        return total_of(self.list_for_month(conn, month))
