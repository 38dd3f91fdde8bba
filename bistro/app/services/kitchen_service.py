"""Kitchen ticket use cases.

Tickets are loaded, mutated through :class:`~bistro.app.domain.kitchen.KitchenTicket`
and saved back under their version guard. Events go out only after the save.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Iterable, List, Mapping, Optional

from ..domain.kitchen import (
    ItemStatus,
    KitchenTicket,
    KitchenTicketItem,
    Priority,
    TicketStatus,
    parse_status,
)
from ..errors import AlreadyExistsError, NotFoundError, ValidationError
from ..events import (
    DomainEvent,
    EventBus,
    EventType,
    KitchenItemStatusChangedData,
    KitchenOrderAssignedData,
    KitchenOrderCreatedData,
    KitchenOrderPriorityChangedData,
    KitchenOrderStatusChangedData,
)
from ..repos.kitchen_repo import KitchenRepo, TicketFilters

logger = logging.getLogger(__name__)

SERVICE_NAME = "kitchen-service"


def _add_lines(ticket: KitchenTicket, lines: Iterable[Mapping[str, Any]]) -> None:
    """Copy order lines (as rendered in order event payloads) onto ``ticket``."""

    for line in lines:
        ticket.add_item(
            line["menu_item_id"],
            line.get("name", ""),
            line.get("quantity", 1),
            timedelta(seconds=line.get("prep_time_secs", 0.0)),
            line.get("modifications"),
            line.get("notes", ""),
        )


def _line_key(menu_item_id, name, quantity, modifications, notes) -> tuple:
    return (menu_item_id, name or "", int(quantity), tuple(modifications or ()), notes or "")


def _sync_lines(ticket: KitchenTicket, lines: Iterable[Mapping[str, Any]]) -> None:
    """Make a NEW ticket carry exactly ``lines``, keeping items that already match."""

    unmatched = list(ticket.items)
    missing = []
    for line in lines:
        key = _line_key(
            line["menu_item_id"],
            line.get("name", ""),
            line.get("quantity", 1),
            line.get("modifications"),
            line.get("notes", ""),
        )
        match = next(
            (
                i
                for i in unmatched
                if _line_key(i.menu_item_id, i.name, i.quantity, i.modifications, i.notes) == key
            ),
            None,
        )
        if match is None:
            missing.append(line)
        else:
            unmatched.remove(match)
    for stale in unmatched:
        ticket.remove_item(stale.id)
    _add_lines(ticket, missing)


def _event(event_type: EventType, ticket: KitchenTicket, payload) -> DomainEvent:
    return DomainEvent.create(
        event_type, ticket.id, payload, service=SERVICE_NAME, order_reference=ticket.order_id
    )


def _status_changed(ticket: KitchenTicket, previous: TicketStatus) -> DomainEvent:
    return _event(
        EventType.KITCHEN_ORDER_STATUS_CHANGED,
        ticket,
        KitchenOrderStatusChangedData(
            kitchen_order_id=ticket.id,
            order_id=ticket.order_id,
            previous_status=previous.value,
            new_status=ticket.status.value,
            assigned_station=ticket.assigned_station,
        ),
    )


class KitchenService:
    def __init__(self, repo: KitchenRepo, bus: EventBus) -> None:
        self.repo = repo
        self.bus = bus

    async def _load(self, ticket_id: str, op: str) -> KitchenTicket:
        ticket = await self.repo.get(ticket_id)
        if ticket is None:
            raise NotFoundError("kitchen_order", ticket_id, op=op)
        return ticket

    async def _save(self, ticket: KitchenTicket, *events: DomainEvent) -> KitchenTicket:
        await self.repo.update(ticket)
        await self.bus.publish_all(events)
        return ticket

    async def create_ticket(
        self,
        order_id: str,
        table_id: str = "",
        priority: Priority | str = Priority.NORMAL,
        notes: str = "",
        lines: Iterable[Mapping[str, Any]] = (),
    ) -> KitchenTicket:
        op = "KitchenService.create_ticket"
        ticket = KitchenTicket.new(order_id, table_id)
        _add_lines(ticket, lines)
        if await self.repo.get_by_order(ticket.order_id) is not None:
            raise AlreadyExistsError(
                "kitchen_order", f"kitchen order for order {order_id!r} already exists", op=op
            ).with_context(order_id=order_id)
        ticket.set_priority(priority)
        if notes:
            ticket.set_notes(notes)
        await self.repo.save(ticket)
        logger.info("kitchen ticket %s created for order %s", ticket.id, ticket.order_id)
        await self.bus.publish(
            _event(
                EventType.KITCHEN_ORDER_CREATED,
                ticket,
                KitchenOrderCreatedData(
                    kitchen_order_id=ticket.id,
                    order_id=ticket.order_id,
                    table_id=ticket.table_id,
                    priority=ticket.priority.value,
                    item_count=len(ticket.items),
                ),
            )
        )
        return ticket

    async def get_ticket(self, ticket_id: str) -> KitchenTicket:
        return await self._load(ticket_id, "KitchenService.get_ticket")

    async def get_ticket_by_order(self, order_id: str) -> KitchenTicket:
        ticket = await self.repo.get_by_order(order_id)
        if ticket is None:
            raise NotFoundError(
                "kitchen_order", order_id, op="KitchenService.get_ticket_by_order"
            ).with_context(order_id=order_id)
        return ticket

    async def find_by_order(self, order_id: str) -> Optional[KitchenTicket]:
        return await self.repo.get_by_order(order_id)

    async def add_item(
        self,
        ticket_id: str,
        menu_item_id: str,
        name: str,
        quantity: int = 1,
        prep_time: timedelta = timedelta(0),
        modifications: Optional[List[str]] = None,
        notes: str = "",
    ) -> KitchenTicketItem:
        ticket = await self._load(ticket_id, "KitchenService.add_item")
        item = ticket.add_item(menu_item_id, name, quantity, prep_time, modifications, notes)
        await self.repo.update(ticket)
        return item

    async def remove_item(self, ticket_id: str, item_id: str) -> KitchenTicket:
        ticket = await self._load(ticket_id, "KitchenService.remove_item")
        ticket.remove_item(item_id)
        await self.repo.update(ticket)
        return ticket

    async def update_item_status(
        self, ticket_id: str, item_id: str, status: ItemStatus | str
    ) -> KitchenTicket:
        ticket = await self._load(ticket_id, "KitchenService.update_item_status")
        previous = ticket.update_item_status(item_id, status)
        item = ticket.find_item(item_id)
        return await self._save(
            ticket,
            _event(
                EventType.KITCHEN_ITEM_STATUS_CHANGED,
                ticket,
                KitchenItemStatusChangedData(
                    kitchen_order_id=ticket.id,
                    order_id=ticket.order_id,
                    item_id=item.id,
                    item_name=item.name,
                    previous_status=previous.value,
                    new_status=item.status.value,
                ),
            ),
        )

    async def assign_item_station(self, ticket_id: str, item_id: str, station: str) -> KitchenTicket:
        ticket = await self._load(ticket_id, "KitchenService.assign_item_station")
        ticket.assign_item_station(item_id, station)
        await self.repo.update(ticket)
        return ticket

    async def update_status(self, ticket_id: str, status: TicketStatus | str) -> KitchenTicket:
        ticket = await self._load(ticket_id, "KitchenService.update_status")
        previous = ticket.update_status(status)
        logger.info(
            "kitchen ticket %s: %s -> %s", ticket.id, previous.value, ticket.status.value
        )
        return await self._save(ticket, _status_changed(ticket, previous))

    async def start_preparation(
        self, ticket_id: str, lines: Iterable[Mapping[str, Any]] = ()
    ) -> KitchenTicket:
        """Move a NEW ticket to PREPARING.

        When ``lines`` is given, the ticket is first brought in line with it:
        lines missing from the ticket are added and items no longer ordered
        are dropped.
        """

        ticket = await self._load(ticket_id, "KitchenService.start_preparation")
        lines = list(lines)
        if lines and ticket.status == TicketStatus.NEW:
            _sync_lines(ticket, lines)
        previous = ticket.update_status(TicketStatus.PREPARING)
        logger.info("kitchen ticket %s started for order %s", ticket.id, ticket.order_id)
        return await self._save(ticket, _status_changed(ticket, previous))

    async def mark_ready(self, ticket_id: str) -> KitchenTicket:
        return await self.update_status(ticket_id, TicketStatus.READY)

    async def complete(self, ticket_id: str) -> KitchenTicket:
        return await self.update_status(ticket_id, TicketStatus.COMPLETED)

    async def cancel(self, ticket_id: str) -> KitchenTicket:
        ticket = await self._load(ticket_id, "KitchenService.cancel")
        previous = ticket.cancel()
        logger.info("kitchen ticket %s cancelled (was %s)", ticket.id, previous.value)
        return await self._save(ticket, _status_changed(ticket, previous))

    async def assign_station(self, ticket_id: str, station: str) -> KitchenTicket:
        ticket = await self._load(ticket_id, "KitchenService.assign_station")
        ticket.assign_station(station)
        return await self._save(
            ticket,
            _event(
                EventType.KITCHEN_ORDER_ASSIGNED,
                ticket,
                KitchenOrderAssignedData(
                    kitchen_order_id=ticket.id,
                    order_id=ticket.order_id,
                    station=ticket.assigned_station,
                ),
            ),
        )

    async def set_priority(self, ticket_id: str, priority: Priority | str) -> KitchenTicket:
        ticket = await self._load(ticket_id, "KitchenService.set_priority")
        previous = ticket.set_priority(priority)
        if previous == ticket.priority:
            await self.repo.update(ticket)
            return ticket
        return await self._save(
            ticket,
            _event(
                EventType.KITCHEN_ORDER_PRIORITY_CHANGED,
                ticket,
                KitchenOrderPriorityChangedData(
                    kitchen_order_id=ticket.id,
                    order_id=ticket.order_id,
                    previous_priority=previous.value,
                    new_priority=ticket.priority.value,
                ),
            ),
        )

    async def set_estimated_time(
        self, ticket_id: str, duration: Optional[timedelta]
    ) -> KitchenTicket:
        ticket = await self._load(ticket_id, "KitchenService.set_estimated_time")
        ticket.set_estimated_time(duration)
        await self.repo.update(ticket)
        return ticket

    async def set_notes(self, ticket_id: str, notes: str) -> KitchenTicket:
        ticket = await self._load(ticket_id, "KitchenService.set_notes")
        ticket.set_notes(notes)
        await self.repo.update(ticket)
        return ticket

    async def list_active(self) -> List[KitchenTicket]:
        """Open tickets, most urgent first then oldest first."""

        return await self.repo.list_active()

    async def list_tickets(
        self, filters: TicketFilters | None = None, offset: int = 0, limit: int = 50
    ) -> tuple[List[KitchenTicket], int]:
        if offset < 0:
            raise ValidationError("offset", "offset cannot be negative")
        if limit <= 0 or limit > 500:
            raise ValidationError("limit", "limit must be between 1 and 500")
        return await self.repo.list(filters, offset, limit)

    async def list_by_status(self, status: TicketStatus | str) -> List[KitchenTicket]:
        tickets, _ = await self.list_tickets(
            TicketFilters(status=parse_status(TicketStatus, status)), 0, 500
        )
        return tickets

    async def list_by_station(self, station: str) -> List[KitchenTicket]:
        if not station:
            raise ValidationError("station", "station ID is required")
        tickets, _ = await self.list_tickets(TicketFilters(station=station), 0, 500)
        return tickets
