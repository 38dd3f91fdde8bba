import pathlib
import sys

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from bistro.app.events import (  # noqa: E402
    DomainEvent,
    EventBus,
    EventType,
    SupplierEventData,
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _event(event_type=EventType.SUPPLIER_CREATED):
    return DomainEvent.create(
        event_type,
        "sup_1",
        SupplierEventData(supplier_id="sup_1", code="FRESH", name="Fresh", is_active=True),
        service="inventory-service",
    )


@pytest.mark.anyio
async def test_handlers_run_in_registration_order():
    bus = EventBus()
    seen = []

    async def first(event):
        seen.append(("first", event.id))

    async def second(event):
        seen.append(("second", event.id))

    bus.subscribe(EventType.SUPPLIER_CREATED, first)
    bus.subscribe(EventType.SUPPLIER_CREATED, second)
    event = _event()
    assert await bus.publish(event) == []
    assert seen == [("first", event.id), ("second", event.id)]


@pytest.mark.anyio
async def test_failing_handler_does_not_stop_the_others(caplog):
    bus = EventBus()
    seen = []

    async def broken(event):
        raise RuntimeError("boom")

    async def healthy(event):
        seen.append(event.type)

    bus.subscribe(EventType.SUPPLIER_CREATED, broken)
    bus.subscribe(EventType.SUPPLIER_CREATED, healthy)

    failures = await bus.publish(_event())
    assert seen == [EventType.SUPPLIER_CREATED]
    assert len(failures) == 1
    assert isinstance(failures[0].error, RuntimeError)
    assert "broken" in failures[0].handler
    assert any("failed" in r.getMessage() for r in caplog.records)


@pytest.mark.anyio
async def test_only_matching_subscribers_receive():
    bus = EventBus()
    seen = []

    async def handler(event):
        seen.append(event.type)

    bus.subscribe(EventType.SUPPLIER_DELETED, handler)
    await bus.publish(_event(EventType.SUPPLIER_CREATED))
    assert seen == []
    # no subscribers at all is fine too
    assert await EventBus().publish(_event()) == []

    bus.unsubscribe(EventType.SUPPLIER_DELETED, handler)
    await bus.publish(_event(EventType.SUPPLIER_DELETED))
    assert seen == []


@pytest.mark.anyio
async def test_publish_all_keeps_order():
    bus = EventBus()
    seen = []

    async def handler(event):
        seen.append(event.type)

    for event_type in (EventType.SUPPLIER_CREATED, EventType.SUPPLIER_UPDATED):
        bus.subscribe(event_type, handler)
    await bus.publish_all([_event(EventType.SUPPLIER_UPDATED), _event(EventType.SUPPLIER_CREATED)])
    assert seen == [EventType.SUPPLIER_UPDATED, EventType.SUPPLIER_CREATED]


def test_envelope_renders_payload_as_dict():
    event = _event().with_metadata("order_reference", "ord_1")
    assert event.data == {
        "supplier_id": "sup_1",
        "code": "FRESH",
        "name": "Fresh",
        "is_active": True,
    }
    assert event.metadata == {"service": "inventory-service", "order_reference": "ord_1"}
    assert event.id.startswith("evt_")
    assert event.occurred_at.tzinfo is not None
    assert event.version == 1
