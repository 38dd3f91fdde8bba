"""Order lifecycle and the bus handlers that drive kitchen tickets from it."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Iterable, List, Mapping, Optional

from ..domain.kitchen import TicketStatus, is_terminal
from ..domain.order_status import OrderStatus
from ..domain.orders import Order, OrderItem, OrderType
from ..errors import NotFoundError, ValidationError
from ..events import (
    DomainEvent,
    EventBus,
    EventType,
    OrderCreatedData,
    OrderLineData,
    OrderStatusChangedData,
)
from ..repos.orders_repo import OrdersRepo
from .kitchen_service import KitchenService

logger = logging.getLogger(__name__)

SERVICE_NAME = "order-service"

STATUS_EVENTS = {
    OrderStatus.PAID: EventType.ORDER_PAID,
    OrderStatus.COMPLETED: EventType.ORDER_COMPLETED,
    OrderStatus.CANCELLED: EventType.ORDER_CANCELLED,
}


def _lines(order: Order) -> List[OrderLineData]:
    return [
        OrderLineData(
            menu_item_id=i.menu_item_id,
            name=i.name,
            quantity=i.quantity,
            unit_price=i.unit_price,
            modifications=list(i.modifications),
            notes=i.notes,
            prep_time_secs=i.prep_time.total_seconds(),
        )
        for i in order.items
    ]


class OrderService:
    """Create orders, move them through their lifecycle and announce it."""

    def __init__(self, repo: OrdersRepo, bus: EventBus) -> None:
        self.repo = repo
        self.bus = bus

    async def _load(self, order_id: str, op: str) -> Order:
        order = await self.repo.get(order_id)
        if order is None:
            raise NotFoundError("order", order_id, op=op)
        return order

    async def create_order(
        self,
        customer_id: str,
        order_type: OrderType | str = OrderType.DINE_IN,
        table_id: str = "",
        delivery_address: str = "",
        notes: str = "",
        items: Iterable[Mapping[str, Any]] = (),
    ) -> Order:
        """Create an order, optionally with its first lines, and publish ``OrderCreated``.

        Each entry of ``items`` takes the keyword arguments of :meth:`Order.add_item`.
        """

        order = Order.new(customer_id, order_type, table_id, delivery_address, notes)
        for line in items:
            order.add_item(**line)
        await self.repo.save(order)
        logger.info(
            "order %s created with %d line(s)",
            order.id,
            len(order.items),
            extra={"order_reference": order.id},
        )
        await self.bus.publish(
            DomainEvent.create(
                EventType.ORDER_CREATED,
                order.id,
                OrderCreatedData(
                    order_id=order.id,
                    customer_id=order.customer_id,
                    table_id=order.table_id,
                    order_type=order.order_type.value,
                    total_amount=order.total_amount,
                    items=_lines(order),
                ),
                service=SERVICE_NAME,
            )
        )
        return order

    async def get_order(self, order_id: str) -> Order:
        return await self._load(order_id, "OrderService.get_order")

    async def add_item(
        self,
        order_id: str,
        menu_item_id: str,
        name: str,
        quantity: int,
        unit_price: float,
        modifications: Optional[List[str]] = None,
        notes: str = "",
        prep_time: timedelta = timedelta(0),
    ) -> OrderItem:
        order = await self._load(order_id, "OrderService.add_item")
        item = order.add_item(
            menu_item_id, name, quantity, unit_price, modifications, notes, prep_time
        )
        await self.repo.update(order)
        return item

    async def remove_item(self, order_id: str, item_id: str) -> Order:
        order = await self._load(order_id, "OrderService.remove_item")
        order.remove_item(item_id)
        await self.repo.update(order)
        return order

    async def _transition(self, order_id: str, status: OrderStatus, reason: str = "") -> Order:
        order = await self._load(order_id, f"OrderService.{status.value.lower()}")
        previous = order.transition(status)
        await self.repo.update(order)
        logger.info("order %s: %s -> %s", order.id, previous.value, order.status.value)
        await self.bus.publish(
            DomainEvent.create(
                STATUS_EVENTS[status],
                order.id,
                OrderStatusChangedData(
                    order_id=order.id,
                    table_id=order.table_id,
                    previous_status=previous.value,
                    new_status=order.status.value,
                    reason=reason,
                    items=_lines(order),
                ),
                service=SERVICE_NAME,
            )
        )
        return order

    async def mark_paid(self, order_id: str) -> Order:
        return await self._transition(order_id, OrderStatus.PAID)

    async def complete_order(self, order_id: str) -> Order:
        return await self._transition(order_id, OrderStatus.COMPLETED)

    async def cancel_order(self, order_id: str, reason: str = "") -> Order:
        return await self._transition(order_id, OrderStatus.CANCELLED, reason)

    async def list_orders(
        self,
        status: OrderStatus | str | None = None,
        customer_id: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[List[Order], int]:
        if status is not None:
            try:
                status = OrderStatus(status)
            except ValueError as exc:
                raise ValidationError("status", f"unknown order status {status!r}") from exc
        if offset < 0:
            raise ValidationError("offset", "offset cannot be negative")
        if limit <= 0 or limit > 500:
            raise ValidationError("limit", "limit must be between 1 and 500")
        return await self.repo.list(status, customer_id, offset, limit)


def _order_id(event: DomainEvent) -> str:
    return event.data.get("order_id") or event.aggregate_id


def register_order_handlers(bus: EventBus, kitchen: KitchenService) -> None:
    """Subscribe the kitchen-side reactions to order lifecycle events.

    Every handler tolerates re-delivery: a ticket that already reflects the
    event is left alone. Anything else that goes wrong is logged and raised
    so the bus records the failure.
    """

    async def on_order_created(event: DomainEvent) -> None:
        order_id = _order_id(event)
        if await kitchen.find_by_order(order_id) is not None:
            logger.info("kitchen ticket for order %s already exists", order_id)
            return
        try:
            await kitchen.create_ticket(
                order_id,
                event.data.get("table_id", ""),
                lines=event.data.get("items", ()),
            )
        except Exception:
            logger.error("failed to create kitchen ticket for order %s", order_id)
            raise

    async def on_order_paid(event: DomainEvent) -> None:
        order_id = _order_id(event)
        try:
            ticket = await kitchen.get_ticket_by_order(order_id)
            if ticket.status != TicketStatus.NEW:
                logger.info(
                    "kitchen ticket for paid order %s already %s", order_id, ticket.status.value
                )
                return
            await kitchen.start_preparation(ticket.id, event.data.get("items", ()))
        except Exception:
            logger.error("failed to start kitchen ticket for paid order %s", order_id)
            raise

    async def on_order_cancelled(event: DomainEvent) -> None:
        order_id = _order_id(event)
        try:
            ticket = await kitchen.get_ticket_by_order(order_id)
            if is_terminal(ticket.status):
                logger.info(
                    "kitchen ticket for cancelled order %s already %s",
                    order_id,
                    ticket.status.value,
                )
                return
            await kitchen.cancel(ticket.id)
        except Exception:
            logger.error("failed to cancel kitchen ticket for order %s", order_id)
            raise

    bus.subscribe(EventType.ORDER_CREATED, on_order_created)
    bus.subscribe(EventType.ORDER_PAID, on_order_paid)
    bus.subscribe(EventType.ORDER_CANCELLED, on_order_cancelled)
