import pathlib
import sys
from datetime import timedelta

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from bistro.app.domain.kitchen import TicketStatus  # noqa: E402
from bistro.app.domain.order_status import OrderStatus  # noqa: E402
from bistro.app.errors import (  # noqa: E402
    ConcurrentUpdateError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from bistro.app.events import (  # noqa: E402
    DomainEvent,
    EventType,
    OrderCreatedData,
    OrderStatusChangedData,
)

pytestmark = pytest.mark.anyio


def _order_event(event_type, order_id="ord-1", table_id="t-1"):
    if event_type == EventType.ORDER_CREATED:
        payload = OrderCreatedData(
            order_id=order_id,
            customer_id="cus-1",
            table_id=table_id,
            order_type="DINE_IN",
            total_amount=0.0,
        )
    else:
        payload = OrderStatusChangedData(
            order_id=order_id, table_id=table_id, previous_status="", new_status=""
        )
    return DomainEvent.create(event_type, order_id, payload)


async def test_cross_aggregate_workflow(orders, kitchen, bus):
    failures = await bus.publish(_order_event(EventType.ORDER_CREATED))
    assert failures == []
    ticket = await kitchen.get_ticket_by_order("ord-1")
    assert ticket.status == TicketStatus.NEW
    assert ticket.table_id == "t-1"

    await bus.publish(_order_event(EventType.ORDER_PAID))
    assert (await kitchen.get_ticket_by_order("ord-1")).status == TicketStatus.PREPARING

    await bus.publish(_order_event(EventType.ORDER_CANCELLED))
    assert (await kitchen.get_ticket_by_order("ord-1")).status == TicketStatus.CANCELLED


async def test_handlers_tolerate_redelivery(orders, kitchen, bus):
    created = _order_event(EventType.ORDER_CREATED)
    assert await bus.publish(created) == []
    assert await bus.publish(created) == []

    paid = _order_event(EventType.ORDER_PAID)
    assert await bus.publish(paid) == []
    assert await bus.publish(paid) == []

    cancelled = _order_event(EventType.ORDER_CANCELLED)
    assert await bus.publish(cancelled) == []
    assert await bus.publish(cancelled) == []

    tickets, total = await kitchen.list_tickets()
    assert total == 1
    assert tickets[0].status == TicketStatus.CANCELLED


async def test_missing_ticket_is_reported_to_the_bus(orders, bus):
    failures = await bus.publish(_order_event(EventType.ORDER_PAID, order_id="ord-404"))
    assert len(failures) == 1
    assert isinstance(failures[0].error, NotFoundError)
    assert "on_order_paid" in failures[0].handler


async def test_order_service_drives_the_ticket(orders, kitchen, recorder):
    order = await orders.create_order(
        "cus-7",
        "DINE_IN",
        "table-3",
        items=[
            dict(menu_item_id="menu_pasta", name="Pasta", quantity=2, unit_price=12.5,
                 prep_time=timedelta(minutes=12)),
            dict(menu_item_id="menu_wine", name="Wine", quantity=1, unit_price=8.0),
        ],
    )
    assert order.subtotal == 33.0
    assert order.tax_amount == 3.3
    assert order.total_amount == 36.3

    ticket = await kitchen.get_ticket_by_order(order.id)
    assert [i.name for i in ticket.items] == ["Pasta", "Wine"]
    assert ticket.estimated_time == timedelta(minutes=12)

    paid = await orders.mark_paid(order.id)
    assert paid.status == OrderStatus.PAID
    assert (await kitchen.get_ticket_by_order(order.id)).status == TicketStatus.PREPARING

    created = recorder.of(EventType.ORDER_CREATED)[0]
    assert created.data["items"][0]["prep_time_secs"] == 720.0
    assert recorder.of(EventType.ORDER_PAID)[0].data["new_status"] == "PAID"


async def test_lines_added_after_creation_reach_the_kitchen_on_payment(orders, kitchen):
    order = await orders.create_order("cus-8", "TAKEOUT")
    await orders.add_item(order.id, "menu_wrap", "Wrap", 1, 7.0, prep_time=timedelta(minutes=6))

    assert (await kitchen.get_ticket_by_order(order.id)).items == []
    await orders.mark_paid(order.id)
    ticket = await kitchen.get_ticket_by_order(order.id)
    assert ticket.status == TicketStatus.PREPARING
    assert [i.menu_item_id for i in ticket.items] == ["menu_wrap"]


async def test_order_lifecycle_rules(orders):
    order = await orders.create_order("cus-9", "DINE_IN", "table-1")
    with pytest.raises(ConflictError):
        await orders.mark_paid(order.id)

    item = await orders.add_item(order.id, "menu_tea", "Tea", 1, 2.5)
    order = await orders.remove_item(order.id, item.id)
    assert order.items == []
    await orders.add_item(order.id, "menu_tea", "Tea", 1, 2.5)

    await orders.mark_paid(order.id)
    with pytest.raises(ConflictError):
        await orders.add_item(order.id, "menu_cake", "Cake", 1, 4.0)
    completed = await orders.complete_order(order.id)
    assert completed.status == OrderStatus.COMPLETED
    with pytest.raises(InvalidTransitionError):
        await orders.cancel_order(order.id, "too late")


async def test_order_validation(orders):
    with pytest.raises(ValidationError):
        await orders.create_order("", "DINE_IN", "table-1")
    with pytest.raises(ValidationError):
        await orders.create_order("cus-1", "DINE_IN")
    with pytest.raises(ValidationError):
        await orders.create_order("cus-1", "DELIVERY")
    with pytest.raises(ValidationError):
        await orders.create_order("cus-1", "DRIVE_THRU")
    with pytest.raises(NotFoundError):
        await orders.get_order("ord_missing")


async def test_cancel_order_cancels_ticket(orders, kitchen, recorder):
    order = await orders.create_order(
        "cus-10", "DELIVERY", delivery_address="1 Main St",
        items=[dict(menu_item_id="menu_pizza", name="Pizza", quantity=1, unit_price=15.0)],
    )
    await orders.cancel_order(order.id, "customer called")
    assert (await kitchen.get_ticket_by_order(order.id)).status == TicketStatus.CANCELLED
    assert recorder.of(EventType.ORDER_CANCELLED)[0].data["reason"] == "customer called"

    listed, total = await orders.list_orders(status=OrderStatus.CANCELLED)
    assert total == 1 and listed[0].id == order.id
    with pytest.raises(ValidationError):
        await orders.list_orders(status="LOST")


async def test_stale_order_write_is_rejected(orders):
    order = await orders.create_order("cus-11", "TAKEOUT")
    first = await orders.repo.get(order.id)
    second = await orders.repo.get(order.id)

    first.add_item(menu_item_id="menu_soup", name="Soup", quantity=1, unit_price=6.0)
    await orders.repo.update(first)
    second.add_item(menu_item_id="menu_bread", name="Bread", quantity=2, unit_price=1.5)
    with pytest.raises(ConcurrentUpdateError):
        await orders.repo.update(second)

    stored = await orders.get_order(order.id)
    assert [line.name for line in stored.items] == ["Soup"]
    assert stored.version == 1


async def test_ticket_matches_order_lines_edited_before_payment(orders, kitchen):
    order = await orders.create_order(
        "cus-12",
        "DINE_IN",
        "table-7",
        items=[
            dict(menu_item_id="m_burger", name="Burger", quantity=1, unit_price=9.0),
            dict(menu_item_id="m_soda", name="Soda", quantity=1, unit_price=2.0),
        ],
    )
    created = await kitchen.get_ticket_by_order(order.id)
    burger_id = created.items[0].id

    await orders.add_item(order.id, "m_fries", "Fries", 2, 3.0)
    soda = next(line for line in order.items if line.menu_item_id == "m_soda")
    await orders.remove_item(order.id, soda.id)
    await orders.mark_paid(order.id)

    ticket = await kitchen.get_ticket_by_order(order.id)
    assert ticket.status == TicketStatus.PREPARING
    assert [(i.menu_item_id, i.quantity) for i in ticket.items] == [("m_burger", 1), ("m_fries", 2)]
    # lines that did not change keep their kitchen item
    assert ticket.items[0].id == burger_id


async def test_late_redelivery_leaves_an_advanced_ticket_alone(orders, kitchen, bus, recorder):
    order = await orders.create_order(
        "cus-13",
        "TAKEOUT",
        items=[dict(menu_item_id="m_salad", name="Salad", quantity=1, unit_price=8.0)],
    )
    await orders.mark_paid(order.id)
    paid = recorder.of(EventType.ORDER_PAID)[0]

    ticket = await kitchen.get_ticket_by_order(order.id)
    item_id = ticket.items[0].id
    await kitchen.update_item_status(ticket.id, item_id, "PREPARING")
    await kitchen.update_item_status(ticket.id, item_id, "READY")
    await kitchen.mark_ready(ticket.id)
    assert await bus.publish(paid) == []

    await kitchen.complete(ticket.id)
    assert await bus.publish(paid) == []
    cancelled = _order_event(EventType.ORDER_CANCELLED, order_id=order.id, table_id="")
    assert await bus.publish(cancelled) == []
    assert (await kitchen.get_ticket(ticket.id)).status == TicketStatus.COMPLETED
