# events.py

"""In-process domain event bus and the event vocabulary.

Handlers are registered per :class:`EventType` and awaited sequentially in
registration order within the publisher's task. Delivery is best effort: a
handler that raises is logged and reported back to the publisher, the
remaining handlers still run, and the producer's own state change is never
rolled back.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List

from .ids import new_id, utcnow

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Kinds of events published by the core services."""

    INVENTORY_ITEM_CREATED = "inventory.item.created"
    INVENTORY_ITEM_UPDATED = "inventory.item.updated"
    STOCK_RECEIVED = "inventory.stock.received"
    STOCK_USED = "inventory.stock.used"
    STOCK_RESERVED = "inventory.stock.reserved"
    STOCK_WASTED = "inventory.stock.wasted"
    STOCK_ADJUSTED = "inventory.stock.adjusted"
    STOCK_RETURNED = "inventory.stock.returned"
    LOW_STOCK_ALERT = "inventory.alert.low_stock"
    OUT_OF_STOCK_ALERT = "inventory.alert.out_of_stock"
    SUPPLIER_CREATED = "inventory.supplier.created"
    SUPPLIER_UPDATED = "inventory.supplier.updated"
    SUPPLIER_DELETED = "inventory.supplier.deleted"

    KITCHEN_ORDER_CREATED = "kitchen.order.created"
    KITCHEN_ORDER_STATUS_CHANGED = "kitchen.order.status.changed"
    KITCHEN_ORDER_ASSIGNED = "kitchen.order.assigned"
    KITCHEN_ORDER_PRIORITY_CHANGED = "kitchen.order.priority.changed"
    KITCHEN_ITEM_STATUS_CHANGED = "kitchen.item.status.changed"

    ORDER_CREATED = "order.created"
    ORDER_PAID = "order.paid"
    ORDER_COMPLETED = "order.completed"
    ORDER_CANCELLED = "order.cancelled"


# Payloads -----------------------------------------------------------------


@dataclass
class InventoryItemCreatedData:
    item_id: str
    sku: str
    name: str
    category: str
    unit: str
    current_stock: float
    supplier_id: str | None = None


@dataclass
class InventoryItemUpdatedData:
    item_id: str
    sku: str
    changes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StockMovementData:
    item_id: str
    sku: str
    item_name: str
    movement_id: str
    movement_type: str
    quantity: float
    previous_stock: float
    new_stock: float
    reference: str = ""
    notes: str = ""
    performed_by: str = ""


@dataclass
class StockAlertData:
    item_id: str
    sku: str
    item_name: str
    current_stock: float
    min_threshold: float
    reorder_point: float
    unit: str
    alert_type: str


@dataclass
class SupplierEventData:
    supplier_id: str
    code: str
    name: str
    is_active: bool


@dataclass
class KitchenOrderCreatedData:
    kitchen_order_id: str
    order_id: str
    table_id: str
    priority: str
    item_count: int


@dataclass
class KitchenOrderStatusChangedData:
    kitchen_order_id: str
    order_id: str
    previous_status: str
    new_status: str
    assigned_station: str = ""


@dataclass
class KitchenOrderAssignedData:
    kitchen_order_id: str
    order_id: str
    station: str


@dataclass
class KitchenOrderPriorityChangedData:
    kitchen_order_id: str
    order_id: str
    previous_priority: str
    new_priority: str


@dataclass
class KitchenItemStatusChangedData:
    kitchen_order_id: str
    order_id: str
    item_id: str
    item_name: str
    previous_status: str
    new_status: str


@dataclass
class OrderLineData:
    menu_item_id: str
    name: str
    quantity: int
    unit_price: float
    modifications: List[str] = field(default_factory=list)
    notes: str = ""
    prep_time_secs: float = 0.0


@dataclass
class OrderCreatedData:
    order_id: str
    customer_id: str
    table_id: str
    order_type: str
    total_amount: float
    items: List[OrderLineData] = field(default_factory=list)


@dataclass
class OrderStatusChangedData:
    order_id: str
    table_id: str
    previous_status: str
    new_status: str
    reason: str = ""
    items: List[OrderLineData] = field(default_factory=list)


# Envelope -----------------------------------------------------------------


@dataclass
class DomainEvent:
    """Envelope around a typed payload rendered as a plain dict."""

    type: EventType
    aggregate_id: str
    data: Dict[str, Any]
    metadata: Dict[str, Any] = field(default_factory=dict)
    version: int = 1
    id: str = field(default_factory=lambda: new_id("evt"))
    occurred_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create(
        cls, type: EventType, aggregate_id: str, payload: Any, **metadata: Any
    ) -> "DomainEvent":
        data = asdict(payload) if not isinstance(payload, dict) else dict(payload)
        return cls(type=type, aggregate_id=aggregate_id, data=data, metadata=metadata)

    def with_metadata(self, key: str, value: Any) -> "DomainEvent":
        self.metadata[key] = value
        return self


Handler = Callable[[DomainEvent], Awaitable[None]]


@dataclass
class HandlerFailure:
    """A handler that raised while processing ``event``."""

    event: DomainEvent
    handler: str
    error: BaseException


class EventBus:
    """Dispatch events to handlers registered per event type."""

    def __init__(self) -> None:
        self._handlers: Dict[EventType, List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        """Register ``handler`` for ``event_type`` events."""

        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: EventType, handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def handlers(self, event_type: EventType) -> List[Handler]:
        return list(self._handlers.get(event_type, []))

    async def publish(self, event: DomainEvent) -> List[HandlerFailure]:
        """Deliver ``event`` to every registered handler.

        Returns the failures so the caller can inspect them; exceptions never
        propagate out of this method.
        """

        failures: List[HandlerFailure] = []
        for handler in self.handlers(event.type):
            name = getattr(handler, "__qualname__", repr(handler))
            try:
                await handler(event)
            except Exception as exc:
                logger.exception(
                    "event handler %s failed for %s (event %s, aggregate %s)",
                    name,
                    event.type.value,
                    event.id,
                    event.aggregate_id,
                )
                failures.append(HandlerFailure(event=event, handler=name, error=exc))
        return failures

    async def publish_all(self, events: Iterable[DomainEvent]) -> List[HandlerFailure]:
        failures: List[HandlerFailure] = []
        for event in events:
            failures.extend(await self.publish(event))
        return failures
