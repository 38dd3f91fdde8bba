"""Kitchen display routes over kitchen tickets."""

from __future__ import annotations

from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from .deps.auth import require_permission
from .deps.services import get_kitchen
from .domain.kitchen import ItemStatus, KitchenTicket, Priority, TicketStatus
from .repos.kitchen_repo import TicketFilters
from .services.identity_service import Principal
from .services.kitchen_service import KitchenService
from .utils.responses import ok

router = APIRouter()

_read = require_permission("kitchen", "read")
_update = require_permission("kitchen", "update")


class TicketCreateIn(BaseModel):
    order_id: str
    table_id: str = ""
    priority: Priority = Priority.NORMAL
    notes: str = ""


class TicketItemIn(BaseModel):
    menu_item_id: str
    name: str
    quantity: int = 1
    prep_time_secs: float = 0.0
    modifications: List[str] = []
    notes: str = ""


class StatusIn(BaseModel):
    status: TicketStatus


class ItemStatusIn(BaseModel):
    status: ItemStatus


class StationIn(BaseModel):
    station: str


class PriorityIn(BaseModel):
    priority: Priority


class EstimateIn(BaseModel):
    # ``None`` goes back to the sum of item prep times
    estimated_secs: Optional[float] = None


class NotesIn(BaseModel):
    notes: str


def _ticket_view(ticket: KitchenTicket) -> dict:
    return {
        "id": ticket.id,
        "order_id": ticket.order_id,
        "table_id": ticket.table_id,
        "status": ticket.status,
        "priority": ticket.priority,
        "assigned_station": ticket.assigned_station,
        "estimated_time": ticket.estimated_time,
        "time_elapsed": ticket.time_elapsed(),
        "time_remaining": ticket.time_remaining(),
        "started_at": ticket.started_at,
        "completed_at": ticket.completed_at,
        "notes": ticket.notes,
        "items": ticket.items,
        "created_at": ticket.created_at,
        "updated_at": ticket.updated_at,
    }


@router.post("/api/kitchen/tickets", status_code=201)
async def create_ticket(
    payload: TicketCreateIn,
    _: Principal = Depends(_update),
    kitchen: KitchenService = Depends(get_kitchen),
) -> dict:
    ticket = await kitchen.create_ticket(
        payload.order_id, payload.table_id, payload.priority, payload.notes
    )
    return ok(_ticket_view(ticket))


@router.get("/api/kitchen/tickets")
async def list_tickets(
    status: Optional[TicketStatus] = None,
    station: Optional[str] = None,
    priority: Optional[Priority] = None,
    table_id: Optional[str] = None,
    offset: int = 0,
    limit: int = 50,
    _: Principal = Depends(_read),
    kitchen: KitchenService = Depends(get_kitchen),
) -> dict:
    filters = TicketFilters(status=status, station=station, priority=priority, table_id=table_id)
    tickets, total = await kitchen.list_tickets(filters, offset, limit)
    return ok({"items": [_ticket_view(t) for t in tickets], "total": total})


@router.get("/api/kitchen/queue")
async def queue(
    _: Principal = Depends(_read), kitchen: KitchenService = Depends(get_kitchen)
) -> dict:
    """Open tickets, most urgent first."""

    return ok([_ticket_view(t) for t in await kitchen.list_active()])


@router.get("/api/kitchen/orders/{order_id}")
async def ticket_for_order(
    order_id: str,
    _: Principal = Depends(_read),
    kitchen: KitchenService = Depends(get_kitchen),
) -> dict:
    return ok(_ticket_view(await kitchen.get_ticket_by_order(order_id)))


@router.get("/api/kitchen/tickets/{ticket_id}")
async def get_ticket(
    ticket_id: str,
    _: Principal = Depends(_read),
    kitchen: KitchenService = Depends(get_kitchen),
) -> dict:
    return ok(_ticket_view(await kitchen.get_ticket(ticket_id)))


@router.post("/api/kitchen/tickets/{ticket_id}/items", status_code=201)
async def add_item(
    ticket_id: str,
    payload: TicketItemIn,
    _: Principal = Depends(_update),
    kitchen: KitchenService = Depends(get_kitchen),
) -> dict:
    item = await kitchen.add_item(
        ticket_id,
        payload.menu_item_id,
        payload.name,
        payload.quantity,
        timedelta(seconds=payload.prep_time_secs),
        payload.modifications,
        payload.notes,
    )
    return ok(item)


@router.delete("/api/kitchen/tickets/{ticket_id}/items/{item_id}")
async def remove_item(
    ticket_id: str,
    item_id: str,
    _: Principal = Depends(_update),
    kitchen: KitchenService = Depends(get_kitchen),
) -> dict:
    return ok(_ticket_view(await kitchen.remove_item(ticket_id, item_id)))


@router.put("/api/kitchen/tickets/{ticket_id}/items/{item_id}/status")
async def update_item_status(
    ticket_id: str,
    item_id: str,
    payload: ItemStatusIn,
    _: Principal = Depends(_update),
    kitchen: KitchenService = Depends(get_kitchen),
) -> dict:
    return ok(_ticket_view(await kitchen.update_item_status(ticket_id, item_id, payload.status)))


@router.put("/api/kitchen/tickets/{ticket_id}/items/{item_id}/station")
async def assign_item_station(
    ticket_id: str,
    item_id: str,
    payload: StationIn,
    _: Principal = Depends(_update),
    kitchen: KitchenService = Depends(get_kitchen),
) -> dict:
    return ok(_ticket_view(await kitchen.assign_item_station(ticket_id, item_id, payload.station)))


@router.put("/api/kitchen/tickets/{ticket_id}/status")
async def update_status(
    ticket_id: str,
    payload: StatusIn,
    _: Principal = Depends(_update),
    kitchen: KitchenService = Depends(get_kitchen),
) -> dict:
    return ok(_ticket_view(await kitchen.update_status(ticket_id, payload.status)))


@router.post("/api/kitchen/tickets/{ticket_id}/cancel")
async def cancel(
    ticket_id: str,
    _: Principal = Depends(_update),
    kitchen: KitchenService = Depends(get_kitchen),
) -> dict:
    return ok(_ticket_view(await kitchen.cancel(ticket_id)))


@router.put("/api/kitchen/tickets/{ticket_id}/station")
async def assign_station(
    ticket_id: str,
    payload: StationIn,
    _: Principal = Depends(_update),
    kitchen: KitchenService = Depends(get_kitchen),
) -> dict:
    return ok(_ticket_view(await kitchen.assign_station(ticket_id, payload.station)))


@router.put("/api/kitchen/tickets/{ticket_id}/priority")
async def set_priority(
    ticket_id: str,
    payload: PriorityIn,
    _: Principal = Depends(_update),
    kitchen: KitchenService = Depends(get_kitchen),
) -> dict:
    return ok(_ticket_view(await kitchen.set_priority(ticket_id, payload.priority)))


@router.put("/api/kitchen/tickets/{ticket_id}/estimate")
async def set_estimated_time(
    ticket_id: str,
    payload: EstimateIn,
    _: Principal = Depends(_update),
    kitchen: KitchenService = Depends(get_kitchen),
) -> dict:
    duration = (
        timedelta(seconds=payload.estimated_secs) if payload.estimated_secs is not None else None
    )
    return ok(_ticket_view(await kitchen.set_estimated_time(ticket_id, duration)))


@router.put("/api/kitchen/tickets/{ticket_id}/notes")
async def set_notes(
    ticket_id: str,
    payload: NotesIn,
    _: Principal = Depends(_update),
    kitchen: KitchenService = Depends(get_kitchen),
) -> dict:
    return ok(_ticket_view(await kitchen.set_notes(ticket_id, payload.notes)))


@router.get("/api/kitchen/stations/{station}")
async def by_station(
    station: str,
    _: Principal = Depends(_read),
    kitchen: KitchenService = Depends(get_kitchen),
) -> dict:
    return ok([_ticket_view(t) for t in await kitchen.list_by_station(station)])
