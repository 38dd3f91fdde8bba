import pathlib
import sys
from datetime import timedelta

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from bistro.app.domain.kitchen import (  # noqa: E402
    ITEM_TRANSITIONS,
    TICKET_TRANSITIONS,
    ItemStatus,
    KitchenTicket,
    Priority,
    TicketStatus,
    can_transition_item,
    can_transition_ticket,
)
from bistro.app.errors import (  # noqa: E402
    AlreadyExistsError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    TicketNotReadyError,
    ValidationError,
)
from bistro.app.events import EventType  # noqa: E402
from bistro.app.repos.kitchen_repo import TicketFilters  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.mark.anyio
async def test_kitchen_lifecycle(kitchen, recorder):
    ticket = await kitchen.create_ticket("order-123", "table-5")
    assert ticket.status == TicketStatus.NEW
    assert ticket.priority == Priority.NORMAL
    assert ticket.items == []

    burger = await kitchen.add_item(ticket.id, "menu_burger", "Burger", 1, timedelta(minutes=15))
    ticket = await kitchen.update_status(ticket.id, TicketStatus.PREPARING)
    assert ticket.started_at is not None
    assert ticket.estimated_time == timedelta(minutes=15)

    await kitchen.update_item_status(ticket.id, burger.id, ItemStatus.PREPARING)
    await kitchen.update_item_status(ticket.id, burger.id, ItemStatus.READY)
    await kitchen.update_status(ticket.id, TicketStatus.READY)
    ticket = await kitchen.update_status(ticket.id, TicketStatus.COMPLETED)
    assert ticket.completed_at is not None
    assert ticket.time_remaining() == timedelta(0)

    with pytest.raises(InvalidTransitionError) as exc:
        await kitchen.update_status(ticket.id, TicketStatus.PREPARING)
    assert exc.value.status_code == 409

    stored = await kitchen.get_ticket(ticket.id)
    assert stored.status == TicketStatus.COMPLETED
    assert stored.items[0].status == ItemStatus.READY

    changes = recorder.of(EventType.KITCHEN_ORDER_STATUS_CHANGED)
    assert [(e.data["previous_status"], e.data["new_status"]) for e in changes] == [
        ("NEW", "PREPARING"),
        ("PREPARING", "READY"),
        ("READY", "COMPLETED"),
    ]
    assert len(recorder.of(EventType.KITCHEN_ITEM_STATUS_CHANGED)) == 2
    assert recorder.of(EventType.KITCHEN_ORDER_CREATED)[0].metadata["order_reference"] == "order-123"


@pytest.mark.anyio
async def test_ready_requires_every_item_ready(kitchen):
    ticket = await kitchen.create_ticket("order-9")
    fries = await kitchen.add_item(ticket.id, "menu_fries", "Fries", 2)
    salad = await kitchen.add_item(ticket.id, "menu_salad", "Salad")
    await kitchen.start_preparation(ticket.id)
    await kitchen.update_item_status(ticket.id, fries.id, ItemStatus.PREPARING)
    await kitchen.update_item_status(ticket.id, fries.id, ItemStatus.READY)

    with pytest.raises(TicketNotReadyError) as exc:
        await kitchen.mark_ready(ticket.id)
    assert exc.value.context["pending_items"] == 1

    # a cancelled item no longer blocks the ticket
    await kitchen.update_item_status(ticket.id, salad.id, ItemStatus.CANCELLED)
    ticket = await kitchen.mark_ready(ticket.id)
    assert ticket.status == TicketStatus.READY
    ticket = await kitchen.complete(ticket.id)
    assert ticket.status == TicketStatus.COMPLETED


@pytest.mark.anyio
async def test_items_only_change_while_new(kitchen):
    ticket = await kitchen.create_ticket("order-10")
    item = await kitchen.add_item(ticket.id, "menu_soup", "Soup")
    await kitchen.start_preparation(ticket.id)

    with pytest.raises(ConflictError):
        await kitchen.add_item(ticket.id, "menu_bread", "Bread")
    with pytest.raises(ConflictError):
        await kitchen.remove_item(ticket.id, item.id)
    with pytest.raises(NotFoundError):
        await kitchen.update_item_status(ticket.id, "kti_missing", ItemStatus.READY)
    with pytest.raises(InvalidTransitionError):
        await kitchen.update_item_status(ticket.id, item.id, ItemStatus.READY)


@pytest.mark.anyio
async def test_cancel_keeps_ready_items(kitchen):
    ticket = await kitchen.create_ticket("order-11")
    done = await kitchen.add_item(ticket.id, "menu_a", "A")
    await kitchen.add_item(ticket.id, "menu_b", "B")
    await kitchen.start_preparation(ticket.id)
    await kitchen.update_item_status(ticket.id, done.id, ItemStatus.PREPARING)
    await kitchen.update_item_status(ticket.id, done.id, ItemStatus.READY)

    ticket = await kitchen.cancel(ticket.id)
    assert ticket.status == TicketStatus.CANCELLED
    assert [i.status for i in ticket.items] == [ItemStatus.READY, ItemStatus.CANCELLED]

    with pytest.raises(InvalidTransitionError):
        await kitchen.cancel(ticket.id)
    with pytest.raises(InvalidTransitionError):
        await kitchen.update_item_status(ticket.id, ticket.items[1].id, ItemStatus.PREPARING)


@pytest.mark.anyio
async def test_one_ticket_per_order(kitchen):
    await kitchen.create_ticket("order-12")
    with pytest.raises(AlreadyExistsError):
        await kitchen.create_ticket("order-12")
    with pytest.raises(ValidationError):
        await kitchen.create_ticket("  ")
    with pytest.raises(NotFoundError):
        await kitchen.get_ticket_by_order("order-404")
    assert await kitchen.find_by_order("order-404") is None


@pytest.mark.anyio
async def test_station_priority_and_estimate(kitchen, recorder):
    ticket = await kitchen.create_ticket("order-13", "table-2")
    await kitchen.add_item(ticket.id, "menu_steak", "Steak", 1, timedelta(minutes=20))
    await kitchen.add_item(ticket.id, "menu_mash", "Mash", 1, timedelta(minutes=5))

    ticket = await kitchen.assign_station(ticket.id, " grill ")
    assert ticket.assigned_station == "grill"
    with pytest.raises(ValidationError):
        await kitchen.assign_station(ticket.id, "")

    await kitchen.set_priority(ticket.id, Priority.URGENT)
    await kitchen.set_priority(ticket.id, "URGENT")
    assert len(recorder.of(EventType.KITCHEN_ORDER_PRIORITY_CHANGED)) == 1
    with pytest.raises(ValidationError):
        await kitchen.set_priority(ticket.id, "WHENEVER")

    assert (await kitchen.get_ticket(ticket.id)).estimated_time == timedelta(minutes=25)
    ticket = await kitchen.set_estimated_time(ticket.id, timedelta(minutes=40))
    assert ticket.estimated_time == timedelta(minutes=40)
    ticket = await kitchen.set_estimated_time(ticket.id, None)
    assert ticket.estimated_time == timedelta(minutes=25)
    with pytest.raises(ValidationError):
        await kitchen.set_estimated_time(ticket.id, timedelta(minutes=-1))

    assert [t.id for t in await kitchen.list_by_station("grill")] == [ticket.id]
    assert recorder.of(EventType.KITCHEN_ORDER_ASSIGNED)[0].data["station"] == "grill"


@pytest.mark.anyio
async def test_active_queue_is_most_urgent_first(kitchen):
    low = await kitchen.create_ticket("order-20", priority=Priority.LOW)
    urgent = await kitchen.create_ticket("order-21", priority=Priority.URGENT)
    normal = await kitchen.create_ticket("order-22")
    done = await kitchen.create_ticket("order-23", priority=Priority.URGENT)
    await kitchen.cancel(done.id)

    queue = await kitchen.list_active()
    assert [t.id for t in queue] == [urgent.id, normal.id, low.id]

    tickets, total = await kitchen.list_tickets(TicketFilters(status=TicketStatus.CANCELLED))
    assert total == 1 and tickets[0].id == done.id
    assert len(await kitchen.list_by_status("NEW")) == 3
    with pytest.raises(ValidationError):
        await kitchen.list_by_status("LOST")


def test_transition_tables_are_closed():
    for src, targets in TICKET_TRANSITIONS.items():
        for dst in TicketStatus:
            assert can_transition_ticket(src, dst) == (dst in targets)
    for src, targets in ITEM_TRANSITIONS.items():
        for dst in ItemStatus:
            assert can_transition_item(src, dst) == (dst in targets)
    assert TICKET_TRANSITIONS[TicketStatus.COMPLETED] == []
    assert TICKET_TRANSITIONS[TicketStatus.CANCELLED] == []


def test_illegal_edge_leaves_ticket_untouched():
    ticket = KitchenTicket.new("order-30")
    before = (ticket.status, ticket.started_at, ticket.updated_at)
    with pytest.raises(InvalidTransitionError):
        ticket.update_status(TicketStatus.COMPLETED)
    assert (ticket.status, ticket.started_at, ticket.updated_at) == before


def test_time_remaining_counts_down():
    ticket = KitchenTicket.new("order-31")
    ticket.add_item("menu_pie", "Pie", prep_time=timedelta(minutes=10))
    ticket.update_status(TicketStatus.PREPARING)
    later = ticket.started_at + timedelta(minutes=4)
    assert ticket.time_elapsed(later) == timedelta(minutes=4)
    assert ticket.time_remaining(later) == timedelta(minutes=6)
    assert ticket.time_remaining(ticket.started_at + timedelta(hours=1)) == timedelta(0)
