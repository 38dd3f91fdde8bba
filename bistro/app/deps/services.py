"""Accessors for the services ``create_app`` attaches to ``app.state``."""

from fastapi import Request

from ..services.identity_service import IdentityService
from ..services.inventory_service import InventoryService
from ..services.kitchen_service import KitchenService
from ..services.order_service import OrderService


def get_identity(request: Request) -> IdentityService:
    return request.app.state.identity


def get_inventory(request: Request) -> InventoryService:
    return request.app.state.inventory


def get_kitchen(request: Request) -> KitchenService:
    return request.app.state.kitchen


def get_orders(request: Request) -> OrderService:
    return request.app.state.orders
