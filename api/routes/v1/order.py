"""
api/routes/v1/order.py -- Menu and order endpoints.

Routes:
  GET  /api/order/menu     -- the menu (public)
  PUT  /api/order/menu     -- add a menu item (admin); returns the full menu
  GET  /api/order?page=1   -- the caller's orders
  POST /api/order          -- place an order and have the factory make it

A factory failure after the order is stored returns 500 with the factory's
report link in followLinkToEndChaos (see the FactoryError handler in api/main.py).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from api.dependencies import get_current_user
from api.models import DinerOrdersResponse, MenuItemIn, MenuItemOut, OrderCreatedResponse, OrderOut, OrderRequest
from auth.models import User
from services.order_service import OrderService

router = APIRouter()


@router.get("/order/menu", response_model=list[MenuItemOut])
def get_menu(request: Request) -> list[MenuItemOut]:
    service: OrderService = request.app.state.order_service
    return [MenuItemOut.from_domain(item) for item in service.menu()]


@router.put("/order/menu", response_model=list[MenuItemOut])
def add_menu_item(
    request: Request,
    body: MenuItemIn,
    current_user: User = Depends(get_current_user),
) -> list[MenuItemOut]:
    service: OrderService = request.app.state.order_service
    menu = service.add_menu_item(current_user, body.to_domain())
    return [MenuItemOut.from_domain(item) for item in menu]


@router.get("/order", response_model=DinerOrdersResponse, response_model_exclude_none=True)
def get_orders(
    request: Request,
    page: int = Query(default=1, ge=1),
    current_user: User = Depends(get_current_user),
) -> DinerOrdersResponse:
    service: OrderService = request.app.state.order_service
    return DinerOrdersResponse.from_domain(service.orders(current_user, page))


@router.post("/order", response_model=OrderCreatedResponse, response_model_exclude_none=True)
def create_order(
    request: Request,
    body: OrderRequest,
    current_user: User = Depends(get_current_user),
) -> OrderCreatedResponse:
    service: OrderService = request.app.state.order_service
    order, report = service.create_order(current_user, body.to_domain())
    return OrderCreatedResponse(
        order=OrderOut.from_domain(order),
        follow_link_to_end_chaos=report.report_url,
        jwt=report.jwt,
    )
