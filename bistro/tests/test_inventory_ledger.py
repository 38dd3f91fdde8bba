import pathlib
import sys
from datetime import timedelta

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from bistro.app.domain.inventory import (  # noqa: E402
    AlertType,
    InventoryItem,
    MovementType,
    detect_alert,
    replay,
)
from bistro.app.errors import (  # noqa: E402
    AlreadyExistsError,
    ConcurrentUpdateError,
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from bistro.app.events import EventType  # noqa: E402
from bistro.app.ids import utcnow  # noqa: E402
from bistro.app.repos.inventory_repo import ItemFilters  # noqa: E402

pytestmark = pytest.mark.anyio


async def _tomato(inventory, **kwargs):
    params = dict(min_threshold=5, reorder_point=10, max_threshold=50)
    params.update(kwargs)
    return await inventory.create_item("TOMATO001", "Tomatoes", "KG", **params)


async def test_ledger_round_trip(inventory, recorder):
    item = await _tomato(inventory)
    recorder.clear()

    for kind, qty in [
        (MovementType.RECEIVED, 30),
        (MovementType.USED, 15),
        (MovementType.USED, 8),
        (MovementType.WASTED, 2),
        (MovementType.RECEIVED, 20),
        (MovementType.ADJUSTED, 23),
    ]:
        await inventory.record_movement(item.id, kind, qty)

    stored = await inventory.get_item(item.id, with_movements=True)
    assert stored.current_stock == 23
    assert len(stored.movements) == 6
    assert [m.seq for m in stored.movements] == [1, 2, 3, 4, 5, 6]
    assert replay(stored.movements) == 23
    assert await inventory.verify_ledger(item.id) is True

    alerts = recorder.of(EventType.LOW_STOCK_ALERT)
    assert len(alerts) == 1
    assert alerts[0].data["current_stock"] == 7
    assert alerts[0].metadata["alert_level"] == "WARNING"
    assert recorder.of(EventType.OUT_OF_STOCK_ALERT) == []
    assert len(recorder.of(EventType.STOCK_USED)) == 2
    assert len(recorder.of(EventType.STOCK_RECEIVED)) == 2


async def test_each_movement_records_before_and_after(inventory):
    item = await _tomato(inventory, initial_stock=12)
    mov = await inventory.use_stock(item.id, 5, notes="lunch prep", performed_by="usr_1")
    assert (mov.previous_stock, mov.new_stock, mov.delta) == (12, 7, -5)
    assert mov.performed_by == "usr_1"
    assert mov.seq == 2


async def test_over_consumption_rejected(inventory, recorder):
    item = await _tomato(inventory, initial_stock=10)
    recorder.clear()

    with pytest.raises(InsufficientStockError) as exc:
        await inventory.use_stock(item.id, 15)
    assert exc.value.status_code == 409
    assert exc.value.context["available"] == 10

    stored = await inventory.get_item(item.id, with_movements=True)
    assert stored.current_stock == 10
    assert len(stored.movements) == 1
    assert recorder.events == []


async def test_out_of_stock_edge(inventory, recorder):
    item = await _tomato(inventory, initial_stock=40)
    recorder.clear()

    await inventory.use_stock(item.id, 40)

    stored = await inventory.get_item(item.id)
    assert stored.current_stock == 0
    assert stored.is_out_of_stock
    assert len(recorder.of(EventType.STOCK_USED)) == 1
    assert len(recorder.of(EventType.OUT_OF_STOCK_ALERT)) == 1
    # out of stock wins over the low stock edge crossed in the same step
    assert recorder.of(EventType.LOW_STOCK_ALERT) == []
    assert [e.type for e in recorder.events] == [
        EventType.STOCK_USED,
        EventType.OUT_OF_STOCK_ALERT,
    ]


async def test_no_alert_when_already_below_threshold(inventory, recorder):
    item = await _tomato(inventory, initial_stock=8)
    recorder.clear()
    await inventory.use_stock(item.id, 2)
    await inventory.waste_stock(item.id, 1)
    assert recorder.of(EventType.LOW_STOCK_ALERT) == []


def test_detect_alert_edges():
    assert detect_alert(15, 7, 10) == AlertType.LOW_STOCK
    assert detect_alert(10, 7, 10) is None
    assert detect_alert(5, 0, 10) == AlertType.OUT_OF_STOCK
    assert detect_alert(0, 0, 10) is None
    assert detect_alert(3, 30, 10) is None


async def test_invalid_movements(inventory):
    item = await _tomato(inventory, initial_stock=5)
    with pytest.raises(ValidationError):
        await inventory.receive_stock(item.id, 0)
    with pytest.raises(ValidationError):
        await inventory.receive_stock(item.id, -3)
    with pytest.raises(ValidationError):
        await inventory.adjust_stock(item.id, -1)
    with pytest.raises(ValidationError):
        await inventory.record_movement(item.id, "TELEPORTED", 1)
    # adjusting to zero is a valid physical count
    mov = await inventory.adjust_stock(item.id, 0)
    assert mov.new_stock == 0
    with pytest.raises(NotFoundError):
        await inventory.use_stock("inv_missing", 1)


def test_failed_movement_leaves_aggregate_untouched():
    item = InventoryItem.new("FLOUR", "Flour", "KG", initial_stock=3)
    before = (item.current_stock, item.movement_count, len(item.movements))
    with pytest.raises(InsufficientStockError):
        item.apply_movement(MovementType.RETURNED, 4)
    assert (item.current_stock, item.movement_count, len(item.movements)) == before


async def test_create_item_validation_and_duplicates(inventory, recorder):
    item = await inventory.create_item("OIL01", "Olive oil", "L", initial_stock=4, cost=9.5)
    assert item.current_stock == 4
    created = recorder.of(EventType.INVENTORY_ITEM_CREATED)
    assert len(created) == 1 and created[0].metadata["sku"] == "OIL01"
    assert recorder.of(EventType.STOCK_RECEIVED)[0].data["notes"] == "initial stock"

    with pytest.raises(AlreadyExistsError):
        await inventory.create_item("OIL01", "Another oil", "L")
    with pytest.raises(ValidationError):
        await inventory.create_item("", "Nameless", "KG")
    with pytest.raises(ValidationError):
        await inventory.create_item("SALT", "Salt", "KG", initial_stock=-1)
    with pytest.raises(ValidationError):
        await inventory.create_item("SALT", "Salt", "BUSHEL")


async def test_thresholds(inventory):
    item = await _tomato(inventory)
    updated = await inventory.update_thresholds(item.id, 2, 20, 6)
    assert (updated.min_threshold, updated.max_threshold, updated.reorder_point) == (2, 20, 6)

    with pytest.raises(ValidationError):
        await inventory.update_thresholds(item.id, -1, 20, 6)
    with pytest.raises(ConflictError):
        await inventory.update_thresholds(item.id, 10, 5, 7)
    with pytest.raises(ConflictError):
        await inventory.update_thresholds(item.id, 5, 20, 25)

    stored = await inventory.get_item(item.id)
    assert stored.reorder_point == 6


async def test_reserve_and_release(inventory, recorder):
    await _tomato(inventory, initial_stock=20)
    recorder.clear()

    reserved = await inventory.reserve_stock("TOMATO001", 6, "ord_1")
    assert reserved.type == MovementType.USED
    assert reserved.reference == "ord_1"
    events = recorder.of(EventType.STOCK_RESERVED)
    assert len(events) == 1 and events[0].metadata["order_reference"] == "ord_1"
    assert await inventory.check_availability("TOMATO001", 14) is True
    assert await inventory.check_availability("TOMATO001", 15) is False

    released = await inventory.release_reservation("TOMATO001", 6, "ord_1")
    assert released.type == MovementType.RECEIVED
    assert released.notes == "Reservation released"
    assert released.reference == "ord_1"
    level = await inventory.get_stock_level("TOMATO001")
    assert level.current_stock == 20
    assert level.is_low_stock is False

    with pytest.raises(InsufficientStockError):
        await inventory.reserve_stock("TOMATO001", 21, "ord_2")
    with pytest.raises(ValidationError):
        await inventory.reserve_stock("TOMATO001", 1, "")
    with pytest.raises(NotFoundError):
        await inventory.reserve_stock("NOPE", 1, "ord_3")


async def test_listings_are_ordered(inventory):
    a = await inventory.create_item("A1", "Apples", "KG", initial_stock=8, reorder_point=10)
    b = await inventory.create_item("B1", "Basil", "G", initial_stock=3, reorder_point=10)
    c = await inventory.create_item("C1", "Cream", "L", initial_stock=30, reorder_point=10)
    await inventory.create_item("D1", "Dill", "G", initial_stock=0, reorder_point=1)

    low = await inventory.list_low_stock()
    assert [i.sku for i in low] == ["D1", "B1", "A1"]
    assert c.id not in {i.id for i in low}

    await inventory.use_stock(a.id, 8)
    await inventory.use_stock(b.id, 3)
    out = await inventory.list_out_of_stock()
    assert [i.sku for i in out][:2] == ["B1", "A1"]

    history = await inventory.movement_history(a.id)
    assert [m.type for m in history] == [MovementType.USED, MovementType.RECEIVED]


async def test_list_items_filters(inventory):
    await inventory.create_item("MILK", "Whole milk", "L", category="dairy")
    await inventory.create_item("BUTTER", "Butter", "KG", category="dairy")
    await inventory.create_item("RICE", "Rice", "KG", category="dry")

    items, total = await inventory.list_items(ItemFilters(category="dairy"), 0, 1)
    assert total == 2 and len(items) == 1
    assert [i.sku for i in await inventory.search_items("milk")] == ["MILK"]
    assert len(await inventory.list_by_category("dry")) == 1
    with pytest.raises(ValidationError):
        await inventory.list_items(None, 0, 0)


async def test_movements_between(inventory):
    item = await _tomato(inventory, initial_stock=10)
    await inventory.use_stock(item.id, 1)
    now = utcnow()
    window = await inventory.movements_between(now - timedelta(minutes=1), now + timedelta(minutes=1))
    assert len(window) == 2
    with pytest.raises(ValidationError):
        await inventory.movements_between(now, now - timedelta(seconds=1))


async def test_stale_write_is_rejected(inventory):
    item = await _tomato(inventory, initial_stock=10)
    first = await inventory.get_item(item.id)
    second = await inventory.get_item(item.id)

    first.apply_movement(MovementType.USED, 2)
    await inventory.repo.update_item(first)

    second.apply_movement(MovementType.USED, 3)
    with pytest.raises(ConcurrentUpdateError):
        await inventory.repo.update_item(second)

    stored = await inventory.get_item(item.id, with_movements=True)
    assert stored.current_stock == 8
    assert len(stored.movements) == 2
    assert stored.ledger_is_consistent()


async def test_update_and_delete_item(inventory, recorder):
    item = await _tomato(inventory)
    updated = await inventory.update_item(item.id, name="Roma tomatoes", cost=2.5, category="veg")
    assert updated.name == "Roma tomatoes"
    assert recorder.of(EventType.INVENTORY_ITEM_UPDATED)[0].data["changes"]["cost"] == 2.5

    ordered = await inventory.mark_ordered(item.id)
    assert ordered.last_ordered is not None

    await inventory.delete_item(item.id)
    with pytest.raises(NotFoundError):
        await inventory.get_item(item.id)


async def test_supplier_lifecycle(inventory, recorder):
    supplier = await inventory.create_supplier("FRESH", "Fresh Farms", email="orders@fresh.example")
    assert supplier.is_active
    assert len(recorder.of(EventType.SUPPLIER_CREATED)) == 1

    with pytest.raises(AlreadyExistsError):
        await inventory.create_supplier("FRESH", "Copy", phone="555-0100")
    with pytest.raises(ValidationError):
        await inventory.create_supplier("NOCONTACT", "Nobody")
    with pytest.raises(ValidationError):
        await inventory.update_supplier(supplier.id, rating=7)
    assert (await inventory.get_supplier(supplier.id)).rating == 0

    item = await _tomato(inventory, supplier_id=supplier.id)
    assert [i.id for i in await inventory.items_by_supplier(supplier.id)] == [item.id]

    with pytest.raises(ConflictError):
        await inventory.delete_supplier(supplier.id)

    await inventory.deactivate_supplier(supplier.id)
    assert await inventory.list_active_suppliers() == []

    await inventory.assign_supplier(item.id, None)
    await inventory.delete_supplier(supplier.id)
    assert len(recorder.of(EventType.SUPPLIER_DELETED)) == 1
    with pytest.raises(NotFoundError):
        await inventory.get_supplier(supplier.id)


async def test_unknown_supplier_is_rejected(inventory):
    with pytest.raises(NotFoundError):
        await inventory.create_item("X1", "Thing", "UNITS", supplier_id="sup_missing")


async def test_fractional_draws_empty_the_item_exactly(inventory, recorder):
    item = await inventory.create_item("SAFFRON01", "Saffron", "KG", reorder_point=0.05)
    await inventory.receive_stock(item.id, 0.3)
    recorder.clear()

    for _ in range(3):
        await inventory.use_stock(item.id, 0.1)

    stored = await inventory.get_item(item.id, with_movements=True)
    assert stored.current_stock == 0
    assert stored.is_out_of_stock
    assert stored.ledger_is_consistent()
    assert len(recorder.of(EventType.OUT_OF_STOCK_ALERT)) == 1
    with pytest.raises(InsufficientStockError):
        await inventory.use_stock(item.id, 0.1)


async def test_updating_a_deleted_supplier_is_reported(inventory):
    supplier = await inventory.create_supplier("GONE", "Gone Grocers", phone="555-0199")
    await inventory.delete_supplier(supplier.id)
    supplier.name = "Back Again"
    with pytest.raises(NotFoundError):
        await inventory.repo.update_supplier(supplier)
