"""Kitchen ticket aggregate with ticket-level and item-level state machines."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from ..errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    TicketNotReadyError,
    ValidationError,
)
from ..ids import new_id, utcnow


class TicketStatus(str, Enum):
    """Lifecycle of a kitchen ticket."""

    NEW = "NEW"
    PREPARING = "PREPARING"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ItemStatus(str, Enum):
    """Lifecycle of a single ticket line."""

    NEW = "NEW"
    PREPARING = "PREPARING"
    READY = "READY"
    CANCELLED = "CANCELLED"


class Priority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


TICKET_TRANSITIONS: dict[TicketStatus, list[TicketStatus]] = {
    TicketStatus.NEW: [TicketStatus.PREPARING, TicketStatus.CANCELLED],
    TicketStatus.PREPARING: [TicketStatus.READY, TicketStatus.CANCELLED],
    TicketStatus.READY: [TicketStatus.COMPLETED, TicketStatus.CANCELLED],
    TicketStatus.COMPLETED: [],
    TicketStatus.CANCELLED: [],
}

ITEM_TRANSITIONS: dict[ItemStatus, list[ItemStatus]] = {
    ItemStatus.NEW: [ItemStatus.PREPARING, ItemStatus.CANCELLED],
    ItemStatus.PREPARING: [ItemStatus.READY, ItemStatus.CANCELLED],
    ItemStatus.READY: [],
    ItemStatus.CANCELLED: [],
}

ACTIVE_STATUSES = (TicketStatus.NEW, TicketStatus.PREPARING, TicketStatus.READY)


def can_transition_ticket(src: TicketStatus, dst: TicketStatus) -> bool:
    """Return ``True`` if a ticket can move from ``src`` to ``dst``."""

    return dst in TICKET_TRANSITIONS.get(src, [])


def can_transition_item(src: ItemStatus, dst: ItemStatus) -> bool:
    """Return ``True`` if an item can move from ``src`` to ``dst``."""

    return dst in ITEM_TRANSITIONS.get(src, [])


def is_terminal(status: TicketStatus) -> bool:
    return not TICKET_TRANSITIONS[status]


def parse_status(enum_cls, value, field_name: str = "status"):
    """Coerce ``value`` into ``enum_cls`` or raise a validation error."""

    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ValidationError(field_name, f"unknown value {value!r}") from exc


@dataclass
class KitchenTicketItem:
    menu_item_id: str
    name: str
    quantity: int = 1
    prep_time: timedelta = timedelta(0)
    status: ItemStatus = ItemStatus.NEW
    modifications: List[str] = field(default_factory=list)
    notes: str = ""
    assigned_station: str = ""
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    position: int = 0
    id: str = field(default_factory=lambda: new_id("kti"))


@dataclass
class KitchenTicket:
    """A kitchen's view of one order.

    All mutators validate first and mutate second, so any raised error leaves
    the ticket unchanged.
    """

    order_id: str
    table_id: str = ""
    status: TicketStatus = TicketStatus.NEW
    priority: Priority = Priority.NORMAL
    assigned_station: str = ""
    estimated_override: Optional[timedelta] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: str = ""
    items: List[KitchenTicketItem] = field(default_factory=list)
    version: int = 0
    id: str = field(default_factory=lambda: new_id("kit"))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(cls, order_id: str, table_id: str = "") -> "KitchenTicket":
        if not order_id or not order_id.strip():
            raise ValidationError("order_id", "order ID is required", op="KitchenTicket.new")
        return cls(order_id=order_id.strip(), table_id=table_id or "")

    # -- items -----------------------------------------------------------

    def find_item(self, item_id: str) -> KitchenTicketItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise NotFoundError("kitchen_item", item_id, op="KitchenTicket.find_item")

    def add_item(
        self,
        menu_item_id: str,
        name: str,
        quantity: int = 1,
        prep_time: timedelta = timedelta(0),
        modifications: Optional[List[str]] = None,
        notes: str = "",
    ) -> KitchenTicketItem:
        op = "KitchenTicket.add_item"
        if self.status != TicketStatus.NEW:
            raise ConflictError(
                "kitchen_order", "items can only be added while the ticket is NEW", op=op
            ).with_context(status=self.status.value)
        if not menu_item_id:
            raise ValidationError("menu_item_id", "menu item ID is required", op=op)
        if quantity is None or quantity <= 0:
            raise ValidationError("quantity", "quantity must be positive", op=op)
        if prep_time < timedelta(0):
            raise ValidationError("prep_time", "prep time cannot be negative", op=op)
        item = KitchenTicketItem(
            menu_item_id=menu_item_id,
            name=name or menu_item_id,
            quantity=int(quantity),
            prep_time=prep_time,
            modifications=list(modifications or []),
            notes=notes,
            position=len(self.items),
        )
        self.items.append(item)
        self.updated_at = utcnow()
        return item

    def remove_item(self, item_id: str) -> KitchenTicketItem:
        if self.status != TicketStatus.NEW:
            raise ConflictError(
                "kitchen_order",
                "items can only be removed while the ticket is NEW",
                op="KitchenTicket.remove_item",
            ).with_context(status=self.status.value)
        item = self.find_item(item_id)
        self.items.remove(item)
        for pos, remaining in enumerate(self.items):
            remaining.position = pos
        self.updated_at = utcnow()
        return item

    def update_item_status(self, item_id: str, status: ItemStatus | str) -> ItemStatus:
        """Move one item along its state machine and return its previous status."""

        op = "KitchenTicket.update_item_status"
        status = parse_status(ItemStatus, status)
        item = self.find_item(item_id)
        if is_terminal(self.status):
            raise InvalidTransitionError("kitchen_item", item.status, status, op=op).with_context(
                ticket_status=self.status.value
            )
        if not can_transition_item(item.status, status):
            raise InvalidTransitionError("kitchen_item", item.status, status, op=op)
        previous = item.status
        now = utcnow()
        item.status = status
        if status == ItemStatus.PREPARING:
            item.started_at = now
        elif status == ItemStatus.READY:
            item.completed_at = now
        self.updated_at = now
        return previous

    def assign_item_station(self, item_id: str, station: str) -> None:
        if not station or not station.strip():
            raise ValidationError("station", "station ID is required", op="KitchenTicket.assign_item_station")
        item = self.find_item(item_id)
        item.assigned_station = station.strip()
        self.updated_at = utcnow()

    # -- ticket ----------------------------------------------------------

    def pending_items(self) -> List[KitchenTicketItem]:
        return [
            i for i in self.items
            if i.status not in (ItemStatus.READY, ItemStatus.CANCELLED)
        ]

    def update_status(self, status: TicketStatus | str) -> TicketStatus:
        """Move the ticket along its state machine and return the previous status."""

        op = "KitchenTicket.update_status"
        status = parse_status(TicketStatus, status)
        if not can_transition_ticket(self.status, status):
            raise InvalidTransitionError("kitchen_order", self.status, status, op=op)
        if status == TicketStatus.READY:
            pending = self.pending_items()
            if pending:
                raise TicketNotReadyError(len(pending), op=op)
        if status == TicketStatus.CANCELLED:
            return self.cancel()
        previous = self.status
        now = utcnow()
        self.status = status
        if status == TicketStatus.PREPARING:
            self.started_at = now
        elif status == TicketStatus.COMPLETED:
            self.completed_at = now
        self.updated_at = now
        return previous

    def cancel(self) -> TicketStatus:
        """Cancel the ticket and every item that is not already READY."""

        if not can_transition_ticket(self.status, TicketStatus.CANCELLED):
            raise InvalidTransitionError(
                "kitchen_order", self.status, TicketStatus.CANCELLED, op="KitchenTicket.cancel"
            )
        previous = self.status
        for item in self.items:
            if item.status in (ItemStatus.NEW, ItemStatus.PREPARING):
                item.status = ItemStatus.CANCELLED
        self.status = TicketStatus.CANCELLED
        self.updated_at = utcnow()
        return previous

    def assign_station(self, station: str) -> None:
        if not station or not station.strip():
            raise ValidationError("station", "station ID is required", op="KitchenTicket.assign_station")
        self.assigned_station = station.strip()
        self.updated_at = utcnow()

    def set_priority(self, priority: Priority | str) -> Priority:
        priority = parse_status(Priority, priority, "priority")
        previous = self.priority
        self.priority = priority
        self.updated_at = utcnow()
        return previous

    def set_estimated_time(self, duration: Optional[timedelta]) -> None:
        """Override the computed estimate; ``None`` restores the computed value."""

        if duration is not None and duration < timedelta(0):
            raise ValidationError("estimated_time", "estimated time cannot be negative")
        self.estimated_override = duration
        self.updated_at = utcnow()

    def set_notes(self, notes: str) -> None:
        self.notes = notes
        self.updated_at = utcnow()

    # -- readouts --------------------------------------------------------

    @property
    def estimated_time(self) -> timedelta:
        if self.estimated_override is not None:
            return self.estimated_override
        return sum(
            (i.prep_time for i in self.items if i.status != ItemStatus.CANCELLED),
            timedelta(0),
        )

    def time_elapsed(self, now: datetime | None = None) -> timedelta:
        if self.started_at is None:
            return timedelta(0)
        end = self.completed_at or now or utcnow()
        return end - self.started_at

    def time_remaining(self, now: datetime | None = None) -> timedelta:
        if self.status in (TicketStatus.READY, TicketStatus.COMPLETED, TicketStatus.CANCELLED):
            return timedelta(0)
        remaining = self.estimated_time - self.time_elapsed(now)
        return max(remaining, timedelta(0))

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES
