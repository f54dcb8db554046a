from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from psycopg import Connection

from ..domain import Customer
from ..errors import NotFound, ValidationError
from ..messaging import Notifier, OutboundMessage, broadcast_message, dispatch
from ..repositories.customer_repo import CustomerRepository

logger = logging.getLogger(__name__)


class BroadcastState(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"


@dataclass
class BroadcastItem:
    customer: Customer
    message: OutboundMessage
    state: BroadcastState = BroadcastState.PENDING


@dataclass
class BroadcastQueue:
    """One promo message per customer, sent one at a time by the operator."""

    items: list[BroadcastItem] = field(default_factory=list)

    def pending(self) -> list[BroadcastItem]:
        return [i for i in self.items if i.state == BroadcastState.PENDING]

    def sent_count(self) -> int:
        return sum(1 for i in self.items if i.state == BroadcastState.SENT)

    def send(self, customer_id: str, notifier: Notifier) -> BroadcastItem:
        item = next((i for i in self.items if i.customer.id == customer_id), None)
        if item is None:
            raise NotFound(f"Customer is not in this broadcast: {customer_id}")
        if item.state == BroadcastState.PENDING and dispatch(notifier, item.message):
            item.state = BroadcastState.SENT
        return item

    def send_all(self, notifier: Notifier) -> int:
        for item in self.pending():
            self.send(item.customer.id, notifier)
        return self.sent_count()


BROADCAST_PAGE_SIZE = 500


class CustomerService:
    def __init__(self, *, customer_repo: CustomerRepository, country_code: str = "62") -> None:
        self.customer_repo = customer_repo
        self.country_code = country_code

    def save(
        self,
        conn: Connection,
        *,
        name: str,
        phone: str,
        email: str | None = None,
        address: str | None = None,
        notes: str | None = None,
        customer_id: str | None = None,
    ) -> Customer:
        if not (name or "").strip():
            raise ValidationError("Customer name cannot be empty.")
        if not (phone or "").strip():
            raise ValidationError("Customer phone cannot be empty.")

        fields = {
            "name": name.strip(),
            "phone": phone.strip(),
            "email": (email or "").strip() or None,
            "address": (address or "").strip() or None,
            "notes": (notes or "").strip() or None,
        }
        if customer_id is None:
            return self.customer_repo.create(conn, **fields)
        saved = self.customer_repo.update(conn, customer_id=customer_id, **fields)
        if saved is None:
            raise NotFound(f"Customer not found: {customer_id}")
        return saved

    def get(self, conn: Connection, customer_id: str) -> Customer:
        c = self.customer_repo.get(conn, customer_id)
        if c is None:
            raise NotFound(f"Customer not found: {customer_id}")
        return c

    def list(self, conn: Connection, limit: int = 500) -> list[Customer]:
        return self.customer_repo.list(conn, limit=limit)

    def search(self, conn: Connection, term: str, limit: int = 50) -> list[Customer]:
        term = (term or "").strip()
        if not term:
            return self.customer_repo.list(conn, limit=limit)
        return self.customer_repo.search(conn, term, limit=limit)

    def _everyone(self, conn: Connection) -> list[Customer]:
        customers: list[Customer] = []
        while True:
            page = self.customer_repo.list(conn, limit=BROADCAST_PAGE_SIZE, offset=len(customers))
            customers.extend(page)
            if len(page) < BROADCAST_PAGE_SIZE:
                return customers

    def broadcast(
        self,
        conn: Connection,
        template: str,
        customer_ids: Optional[Iterable[str]] = None,
    ) -> BroadcastQueue:
        if not (template or "").strip():
            raise ValidationError("Broadcast message cannot be empty.")
        if customer_ids is None:
            customers = self._everyone(conn)
        else:
            wanted = list(dict.fromkeys(customer_ids))
            customers = self.customer_repo.list_by_ids(conn, wanted)
            missing = set(wanted) - {c.id for c in customers}
            if missing:
                raise NotFound(f"Customers not found: {', '.join(sorted(missing))}")
        queue = BroadcastQueue(
            [BroadcastItem(customer=c, message=broadcast_message(template, c, self.country_code)) for c in customers]
        )
        logger.info("Broadcast prepared for %s customers", len(queue.items))
        return queue
