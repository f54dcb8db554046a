from __future__ import annotations

from dataclasses import dataclass

from .config import AppConfig
from .db import Db
from .messaging import Notifier
from .repositories.customer_repo import CustomerRepository
from .repositories.discount_repo import DiscountRepository
from .repositories.expense_repo import ExpenseRepository
from .repositories.location_repo import LocationRepository
from .repositories.order_item_repo import OrderItemRepository
from .repositories.order_repo import OrderRepository
from .repositories.profile_repo import ProfileRepository
from .repositories.service_repo import ServiceRepository
from .services.admin_service import AdminService
from .services.customer_service import CustomerService
from .services.expense_service import ExpenseService
from .services.order_service import OrderService
from .services.order_workflow import OrderWorkflow
from .sync import OrderBoard


@dataclass
class Repositories:
    customers: CustomerRepository
    services: ServiceRepository
    discounts: DiscountRepository
    orders: OrderRepository
    order_items: OrderItemRepository
    locations: LocationRepository
    profiles: ProfileRepository
    expenses: ExpenseRepository

    @classmethod
    def postgres(cls) -> Repositories:
        return cls(
            customers=CustomerRepository(),
            services=ServiceRepository(),
            discounts=DiscountRepository(),
            orders=OrderRepository(),
            order_items=OrderItemRepository(),
            locations=LocationRepository(),
            profiles=ProfileRepository(),
            expenses=ExpenseRepository(),
        )


@dataclass
class AppContext:
    """Everything an operator surface (CLI or web) needs, wired once."""

    cfg: AppConfig
    db: Db
    repos: Repositories
    orders: OrderService
    workflow: OrderWorkflow
    admin: AdminService
    customers: CustomerService
    expenses: ExpenseService

    def fresh_workflow(self, notifier: Notifier) -> OrderWorkflow:
        """A workflow with its own empty board, for one web request."""
        return _workflow(self.cfg, self.db, self.orders, self.repos, notifier)


def _workflow(cfg: AppConfig, db: Db, orders: OrderService, repos: Repositories, notifier: Notifier) -> OrderWorkflow:
    return OrderWorkflow(
        db=db,
        orders=orders,
        customer_repo=repos.customers,
        location_repo=repos.locations,
        notifier=notifier,
        business=cfg.business,
        board=OrderBoard(policy=cfg.sync.policy, max_retries=cfg.sync.max_retries),
    )


def build_context(cfg: AppConfig, db: Db, notifier: Notifier, repos: Repositories | None = None) -> AppContext:
    repos = repos or Repositories.postgres()
    orders = OrderService(
        customer_repo=repos.customers,
        service_repo=repos.services,
        discount_repo=repos.discounts,
        order_repo=repos.orders,
        order_item_repo=repos.order_items,
    )
    return AppContext(
        cfg=cfg,
        db=db,
        repos=repos,
        orders=orders,
        workflow=_workflow(cfg, db, orders, repos, notifier),
        admin=AdminService(
            location_repo=repos.locations,
            service_repo=repos.services,
            profile_repo=repos.profiles,
            discount_repo=repos.discounts,
            order_repo=repos.orders,
        ),
        customers=CustomerService(customer_repo=repos.customers, country_code=cfg.business.country_code),
        expenses=ExpenseService(expense_repo=repos.expenses),
    )
