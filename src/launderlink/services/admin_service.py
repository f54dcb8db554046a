"""Owner-only management of locations, the service catalog, staff and vouchers."""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from psycopg import Connection

from ..auth import AuthSession, require_owner
from ..domain import DEFAULT_DURATION_HOURS, Discount, DiscountType, Location, Order, Profile, Service
from ..errors import NotFound, ValidationError
from ..pricing import new_discount
from ..repositories.discount_repo import DiscountRepository
from ..repositories.location_repo import LocationRepository
from ..repositories.order_repo import OrderRepository
from ..repositories.profile_repo import ProfileRepository
from ..repositories.service_repo import ServiceRepository

logger = logging.getLogger(__name__)


def _money(value, field: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValidationError(f"{field} must be a number.") from e


def _whole(value, field: str) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a whole number.")
    number = _money(value, field)
    if not number.is_finite() or number != number.to_integral_value():
        raise ValidationError(f"{field} must be a whole number.")
    return int(number)


def _duration(value) -> int:
    if value is None or value == "":
        return DEFAULT_DURATION_HOURS
    if isinstance(value, bool):
        raise ValidationError("Duration must be a positive whole number of hours.")
    hours = _money(value, "Duration")
    if not hours.is_finite() or hours <= 0 or hours != hours.to_integral_value():
        raise ValidationError("Duration must be a positive whole number of hours.")
    return int(hours)


class AdminService:
    def __init__(
        self,
        *,
        location_repo: LocationRepository,
        service_repo: ServiceRepository,
        profile_repo: ProfileRepository,
        discount_repo: DiscountRepository,
        order_repo: OrderRepository,
    ) -> None:
        self.location_repo = location_repo
        self.service_repo = service_repo
        self.profile_repo = profile_repo
        self.discount_repo = discount_repo
        self.order_repo = order_repo

    # Locations

    def list_locations(self, conn: Connection) -> list[Location]:
        return self.location_repo.list(conn)

    def save_location(
        self,
        conn: Connection,
        session: Optional[AuthSession],
        *,
        name: str,
        address: str = "",
        phone: str = "",
        location_id: str | None = None,
    ) -> str:
        require_owner(session)
        if not name.strip():
            raise ValidationError("Location name cannot be empty.")
        fields = {"name": name.strip(), "address": address.strip(), "phone": phone.strip()}
        if location_id is None:
            return self.location_repo.create(conn, **fields)
        self.location_repo.update(conn, location_id=location_id, **fields)
        return location_id

    def delete_location(self, conn: Connection, session: Optional[AuthSession], location_id: str) -> None:
        require_owner(session)
        self.location_repo.delete(conn, location_id)

    # Service catalog

    def list_services(self, conn: Connection) -> list[Service]:
        return self.service_repo.list(conn)

    def save_service(
        self,
        conn: Connection,
        session: Optional[AuthSession],
        *,
        name: str,
        price,
        unit: str,
        description: str = "",
        duration_hours: int | None = None,
        service_id: str | None = None,
    ) -> str:
        require_owner(session)
        if not name.strip():
            raise ValidationError("Service name cannot be empty.")
        if not unit.strip():
            raise ValidationError("Unit cannot be empty.")
        amount = _money(price, "Price")
        if amount < 0:
            raise ValidationError("Price cannot be negative.")
        hours = _duration(duration_hours)

        fields = {
            "name": name.strip(),
            "price": amount,
            "unit": unit.strip(),
            "description": (description or "").strip(),
            "duration_hours": hours,
        }
        if service_id is None:
            return self.service_repo.create(conn, **fields)
        self.service_repo.update(conn, service_id=service_id, **fields)
        return service_id

    def delete_service(self, conn: Connection, session: Optional[AuthSession], service_id: str) -> None:
        require_owner(session)
        self.service_repo.delete(conn, service_id)

    # Staff

    def list_staff(self, conn: Connection, session: Optional[AuthSession]) -> list[Profile]:
        require_owner(session)
        return self.profile_repo.list_staff(conn)

    def approve_staff(self, conn: Connection, session: Optional[AuthSession], profile_id: str) -> None:
        require_owner(session)
        if self.profile_repo.get(conn, profile_id) is None:
            raise NotFound(f"Staff not found: {profile_id}")
        self.profile_repo.approve(conn, profile_id)
        logger.info("Staff %s approved", profile_id)

    def reject_staff(self, conn: Connection, session: Optional[AuthSession], profile_id: str) -> None:
        require_owner(session)
        self.profile_repo.delete(conn, profile_id)
        logger.info("Staff %s rejected", profile_id)

    def assign_location(
        self,
        conn: Connection,
        session: Optional[AuthSession],
        *,
        profile_id: str,
        location_id: str | None,
    ) -> None:
        require_owner(session)
        if location_id and self.location_repo.get(conn, location_id) is None:
            raise NotFound(f"Location not found: {location_id}")
        self.profile_repo.set_location(conn, profile_id=profile_id, location_id=location_id or None)

    # Vouchers

    def list_discounts(self, conn: Connection, session: Optional[AuthSession]) -> list[Discount]:
        require_owner(session)
        return self.discount_repo.list(conn)

    def save_discount(
        self,
        conn: Connection,
        session: Optional[AuthSession],
        *,
        code: str,
        type: DiscountType | str,
        value,
        quota: int = 0,
        is_active: bool = True,
        discount_id: str | None = None,
    ) -> str:
        require_owner(session)
        d = new_discount(
            id=discount_id or "",
            code=code,
            type=type,
            value=_money(value, "Value"),
            quota=_whole(quota, "Quota"),
            is_active=is_active,
        )
        existing = self.discount_repo.get_by_code(conn, d.code)
        if existing is not None and existing.id != discount_id:
            raise ValidationError(f"Voucher code already exists: {d.code}")

        fields = {"code": d.code, "type": d.type.value, "value": d.value, "quota": d.quota, "is_active": d.is_active}
        if discount_id is None:
            return self.discount_repo.create(conn, **fields)
        self.discount_repo.update(conn, discount_id=discount_id, **fields)
        return discount_id

    def delete_discount(self, conn: Connection, session: Optional[AuthSession], discount_id: str) -> None:
        require_owner(session)
        self.discount_repo.delete(conn, discount_id)

    def discount_usage(self, conn: Connection, session: Optional[AuthSession], code: str) -> list[Order]:
        require_owner(session)
        return self.order_repo.list_by_discount_code(conn, code)
