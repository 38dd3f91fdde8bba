"""Order aggregate owned by the order coordinator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from ..errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from ..ids import new_id, utcnow
from .order_status import OrderStatus, can_transition

TAX_RATE = 0.10


class OrderType(str, Enum):
    DINE_IN = "DINE_IN"
    TAKEOUT = "TAKEOUT"
    DELIVERY = "DELIVERY"


@dataclass
class OrderItem:
    menu_item_id: str
    name: str
    quantity: int
    unit_price: float
    modifications: List[str] = field(default_factory=list)
    notes: str = ""
    prep_time: timedelta = timedelta(0)
    id: str = field(default_factory=lambda: new_id("odi"))

    @property
    def subtotal(self) -> float:
        return round(self.quantity * self.unit_price, 2)


@dataclass
class Order:
    customer_id: str
    order_type: OrderType = OrderType.DINE_IN
    table_id: str = ""
    delivery_address: str = ""
    status: OrderStatus = OrderStatus.CREATED
    notes: str = ""
    items: List[OrderItem] = field(default_factory=list)
    id: str = field(default_factory=lambda: new_id("ord"))
    version: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(
        cls,
        customer_id: str,
        order_type: OrderType | str = OrderType.DINE_IN,
        table_id: str = "",
        delivery_address: str = "",
        notes: str = "",
    ) -> "Order":
        op = "Order.new"
        if not customer_id:
            raise ValidationError("customer_id", "customer ID is required", op=op)
        try:
            order_type = OrderType(order_type)
        except ValueError as exc:
            raise ValidationError("order_type", f"unknown order type {order_type!r}", op=op) from exc
        if order_type == OrderType.DINE_IN and not table_id:
            raise ValidationError("table_id", "table ID is required for dine-in orders", op=op)
        if order_type == OrderType.DELIVERY and not delivery_address:
            raise ValidationError(
                "delivery_address", "delivery address is required for delivery orders", op=op
            )
        return cls(
            customer_id=customer_id,
            order_type=order_type,
            table_id=table_id,
            delivery_address=delivery_address,
            notes=notes,
        )

    @property
    def subtotal(self) -> float:
        return round(sum(i.subtotal for i in self.items), 2)

    @property
    def tax_amount(self) -> float:
        return round(self.subtotal * TAX_RATE, 2)

    @property
    def total_amount(self) -> float:
        return round(self.subtotal + self.tax_amount, 2)

    def add_item(
        self,
        menu_item_id: str,
        name: str,
        quantity: int,
        unit_price: float,
        modifications: Optional[List[str]] = None,
        notes: str = "",
        prep_time: timedelta = timedelta(0),
    ) -> OrderItem:
        op = "Order.add_item"
        if self.status != OrderStatus.CREATED:
            raise ConflictError("order", "items can only be added to a CREATED order", op=op)
        if not menu_item_id:
            raise ValidationError("menu_item_id", "menu item ID is required", op=op)
        if quantity is None or quantity <= 0:
            raise ValidationError("quantity", "quantity must be positive", op=op)
        if unit_price is None or unit_price < 0:
            raise ValidationError("unit_price", "unit price cannot be negative", op=op)
        item = OrderItem(
            menu_item_id=menu_item_id,
            name=name or menu_item_id,
            quantity=int(quantity),
            unit_price=float(unit_price),
            modifications=list(modifications or []),
            notes=notes,
            prep_time=prep_time,
        )
        self.items.append(item)
        self.updated_at = utcnow()
        return item

    def remove_item(self, item_id: str) -> None:
        if self.status != OrderStatus.CREATED:
            raise ConflictError("order", "items can only be removed from a CREATED order")
        for item in self.items:
            if item.id == item_id:
                self.items.remove(item)
                self.updated_at = utcnow()
                return
        raise NotFoundError("order_item", item_id, op="Order.remove_item")

    def transition(self, status: OrderStatus | str) -> OrderStatus:
        """Move to ``status`` and return the previous status."""

        try:
            status = OrderStatus(status)
        except ValueError as exc:
            raise ValidationError("status", f"unknown order status {status!r}") from exc
        if not can_transition(self.status, status):
            raise InvalidTransitionError("order", self.status, status, op="Order.transition")
        if status == OrderStatus.PAID and not self.items:
            raise ConflictError("order", "cannot pay for an empty order", op="Order.transition")
        previous = self.status
        self.status = status
        self.updated_at = utcnow()
        return previous
