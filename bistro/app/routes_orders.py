"""Order routes; kitchen tickets follow orders through the event bus."""

from __future__ import annotations

from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from .deps.auth import require_permission
from .deps.services import get_orders
from .domain.order_status import OrderStatus
from .domain.orders import Order, OrderType
from .services.identity_service import Principal
from .services.order_service import OrderService
from .utils.responses import ok

router = APIRouter()


class OrderLineIn(BaseModel):
    menu_item_id: str
    name: str
    quantity: int
    unit_price: float
    modifications: List[str] = []
    notes: str = ""
    prep_time_secs: float = 0.0

    def as_kwargs(self) -> dict:
        data = self.model_dump()
        data["prep_time"] = timedelta(seconds=data.pop("prep_time_secs"))
        return data


class OrderCreateIn(BaseModel):
    customer_id: str
    order_type: OrderType = OrderType.DINE_IN
    table_id: str = ""
    delivery_address: str = ""
    notes: str = ""
    items: List[OrderLineIn] = []


class CancelIn(BaseModel):
    reason: str = ""


def _order_view(order: Order) -> dict:
    return {
        "id": order.id,
        "customer_id": order.customer_id,
        "order_type": order.order_type,
        "status": order.status,
        "table_id": order.table_id,
        "delivery_address": order.delivery_address,
        "notes": order.notes,
        "items": order.items,
        "subtotal": order.subtotal,
        "tax_amount": order.tax_amount,
        "total_amount": order.total_amount,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }


@router.post("/api/orders", status_code=201)
async def create_order(
    payload: OrderCreateIn,
    _: Principal = Depends(require_permission("order", "create")),
    orders: OrderService = Depends(get_orders),
) -> dict:
    order = await orders.create_order(
        payload.customer_id,
        payload.order_type,
        payload.table_id,
        payload.delivery_address,
        payload.notes,
        items=[line.as_kwargs() for line in payload.items],
    )
    return ok(_order_view(order))


@router.get("/api/orders")
async def list_orders(
    status: Optional[OrderStatus] = None,
    customer_id: Optional[str] = None,
    offset: int = 0,
    limit: int = 50,
    _: Principal = Depends(require_permission("order", "read")),
    orders: OrderService = Depends(get_orders),
) -> dict:
    items, total = await orders.list_orders(status, customer_id, offset, limit)
    return ok({"items": [_order_view(o) for o in items], "total": total})


@router.get("/api/orders/{order_id}")
async def get_order(
    order_id: str,
    _: Principal = Depends(require_permission("order", "read")),
    orders: OrderService = Depends(get_orders),
) -> dict:
    return ok(_order_view(await orders.get_order(order_id)))


@router.post("/api/orders/{order_id}/items", status_code=201)
async def add_item(
    order_id: str,
    payload: OrderLineIn,
    _: Principal = Depends(require_permission("order", "update")),
    orders: OrderService = Depends(get_orders),
) -> dict:
    return ok(await orders.add_item(order_id, **payload.as_kwargs()))


@router.delete("/api/orders/{order_id}/items/{item_id}")
async def remove_item(
    order_id: str,
    item_id: str,
    _: Principal = Depends(require_permission("order", "update")),
    orders: OrderService = Depends(get_orders),
) -> dict:
    return ok(_order_view(await orders.remove_item(order_id, item_id)))


@router.post("/api/orders/{order_id}/pay")
async def pay(
    order_id: str,
    _: Principal = Depends(require_permission("order", "update")),
    orders: OrderService = Depends(get_orders),
) -> dict:
    return ok(_order_view(await orders.mark_paid(order_id)))


@router.post("/api/orders/{order_id}/complete")
async def complete(
    order_id: str,
    _: Principal = Depends(require_permission("order", "update")),
    orders: OrderService = Depends(get_orders),
) -> dict:
    return ok(_order_view(await orders.complete_order(order_id)))


@router.post("/api/orders/{order_id}/cancel")
async def cancel(
    order_id: str,
    payload: Optional[CancelIn] = None,
    _: Principal = Depends(require_permission("order", "update")),
    orders: OrderService = Depends(get_orders),
) -> dict:
    reason = payload.reason if payload else ""
    return ok(_order_view(await orders.cancel_order(order_id, reason)))
