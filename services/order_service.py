"""
services/order_service.py -- Menu management and order placement.

create_order() commits the order before calling the factory. If the factory
then fails the order stays recorded, the failure is counted in
pizza_creation_failures and FactoryError (with the factory's report URL, when
it sent one) propagates to the route layer.
"""

from __future__ import annotations

import logging
import time

from auth.entitlements import Operation, authorize
from auth.models import User
from core.errors import FactoryError
from core.factory import FactoryClient, FactoryReport
from database.models import DinerOrders, MenuItem, Order
from database.store import PizzaStore

logger = logging.getLogger("pizza.order")


def order_to_dict(order: Order) -> dict:
    """Wire form of an order, as sent to the factory and returned to the diner."""
    return {
        "id": order.id,
        "dinerId": order.diner_id,
        "franchiseId": order.franchise_id,
        "storeId": order.store_id,
        "date": order.date,
        "items": [
            {"id": i.id, "menuId": i.menu_id, "description": i.description, "price": i.price} for i in order.items
        ],
    }


class OrderService:
    def __init__(self, store: PizzaStore, factory: FactoryClient, telemetry) -> None:
        self.store = store
        self.factory = factory
        self.telemetry = telemetry

    def menu(self) -> list[MenuItem]:
        return self.store.get_menu()

    def add_menu_item(self, caller: User, item: MenuItem) -> list[MenuItem]:
        """Add an item and return the whole menu."""
        authorize(caller, Operation.MANAGE_MENU, "unable to add menu item")
        self.store.add_menu_item(item)
        return self.store.get_menu()

    def orders(self, caller: User, page: int = 1) -> DinerOrders:
        return self.store.get_orders(caller, page)

    def create_order(self, caller: User, order: Order) -> tuple[Order, FactoryReport]:
        started = time.monotonic()
        placed = self.store.add_diner_order(caller, order)
        diner = {"id": caller.id, "name": caller.name, "email": caller.email}
        try:
            report = self.factory.order(diner, order_to_dict(placed))
        except FactoryError:
            self.telemetry.pizza_purchase(False, (time.monotonic() - started) * 1000)
            logger.warning("Factory failed order id=%s", placed.id)
            raise
        revenue = sum(item.price for item in placed.items)
        self.telemetry.pizza_purchase(True, (time.monotonic() - started) * 1000, len(placed.items), revenue)
        return placed, report
