"""Inventory application service.

Each mutating operation follows the same shape: load the aggregate, apply the
domain operation, persist it (version-checked), then publish the resulting
events. A refused operation raises before anything is persisted or published.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List

from ..domain.inventory import (
    AlertType,
    InventoryItem,
    MovementType,
    StockMovement,
    Supplier,
    Unit,
    detect_alert,
)
from ..errors import AlreadyExistsError, ConflictError, NotFoundError, ValidationError
from ..events import (
    DomainEvent,
    EventBus,
    EventType,
    InventoryItemCreatedData,
    InventoryItemUpdatedData,
    StockAlertData,
    StockMovementData,
    SupplierEventData,
)
from ..repos.inventory_repo import InventoryRepo, ItemFilters

logger = logging.getLogger(__name__)

SERVICE_NAME = "inventory-service"

MOVEMENT_EVENTS = {
    MovementType.RECEIVED: EventType.STOCK_RECEIVED,
    MovementType.USED: EventType.STOCK_USED,
    MovementType.WASTED: EventType.STOCK_WASTED,
    MovementType.ADJUSTED: EventType.STOCK_ADJUSTED,
    MovementType.RETURNED: EventType.STOCK_RETURNED,
}


@dataclass
class StockLevel:
    item_id: str
    sku: str
    current_stock: float
    unit: Unit
    reorder_point: float
    is_low_stock: bool
    is_out_of_stock: bool


def movement_event(
    item: InventoryItem, movement: StockMovement, event_type: EventType | None = None
) -> DomainEvent:
    event = DomainEvent.create(
        event_type or MOVEMENT_EVENTS[movement.type],
        item.id,
        StockMovementData(
            item_id=item.id,
            sku=item.sku,
            item_name=item.name,
            movement_id=movement.id,
            movement_type=movement.type.value,
            quantity=movement.quantity,
            previous_stock=movement.previous_stock,
            new_stock=movement.new_stock,
            reference=movement.reference,
            notes=movement.notes,
            performed_by=movement.performed_by,
        ),
        service=SERVICE_NAME,
        sku=item.sku,
    )
    if movement.reference:
        event.with_metadata("order_reference", movement.reference)
    return event


def alert_event(item: InventoryItem, alert: AlertType) -> DomainEvent:
    out = alert == AlertType.OUT_OF_STOCK
    return DomainEvent.create(
        EventType.OUT_OF_STOCK_ALERT if out else EventType.LOW_STOCK_ALERT,
        item.id,
        StockAlertData(
            item_id=item.id,
            sku=item.sku,
            item_name=item.name,
            current_stock=item.current_stock,
            min_threshold=item.min_threshold,
            reorder_point=item.reorder_point,
            unit=item.unit.value,
            alert_type=alert.value,
        ),
        service=SERVICE_NAME,
        sku=item.sku,
        alert_level="CRITICAL" if out else "WARNING",
    )


def _supplier_event(event_type: EventType, supplier: Supplier) -> DomainEvent:
    return DomainEvent.create(
        event_type,
        supplier.id,
        SupplierEventData(
            supplier_id=supplier.id,
            code=supplier.code,
            name=supplier.name,
            is_active=supplier.is_active,
        ),
        service=SERVICE_NAME,
    )


class InventoryService:
    """Use cases over inventory items, the stock ledger and suppliers."""

    def __init__(self, repo: InventoryRepo, bus: EventBus) -> None:
        self.repo = repo
        self.bus = bus

    async def _publish(self, events: List[DomainEvent]) -> None:
        # handler failures are logged by the bus and never undo the write
        await self.bus.publish_all(events)

    async def _load(self, item_id: str, op: str, with_movements: bool = False) -> InventoryItem:
        item = await self.repo.get_item(item_id, with_movements=with_movements)
        if item is None:
            raise NotFoundError("inventory_item", item_id, op=op)
        return item

    async def _load_by_sku(self, sku: str, op: str) -> InventoryItem:
        item = await self.repo.get_item_by_sku(sku)
        if item is None:
            raise NotFoundError("inventory_item", sku, op=op).with_context(sku=sku)
        return item

    async def _require_supplier(self, supplier_id: str, op: str) -> Supplier:
        supplier = await self.repo.get_supplier(supplier_id)
        if supplier is None:
            raise NotFoundError("supplier", supplier_id, op=op)
        return supplier

    # items -----------------------------------------------------------------

    async def create_item(
        self,
        sku: str,
        name: str,
        unit: Unit | str = Unit.UNITS,
        *,
        initial_stock: float = 0.0,
        cost: float = 0.0,
        min_threshold: float | None = None,
        max_threshold: float | None = None,
        reorder_point: float | None = None,
        description: str = "",
        category: str = "",
        location: str = "",
        supplier_id: str | None = None,
        expiry_date: datetime | None = None,
        performed_by: str = "",
    ) -> InventoryItem:
        op = "InventoryService.create_item"
        if sku and await self.repo.get_item_by_sku(sku.strip()) is not None:
            raise AlreadyExistsError(
                "inventory_item", f"item with SKU {sku!r} already exists", op=op
            ).with_context(sku=sku)
        if supplier_id:
            await self._require_supplier(supplier_id, op)

        item = InventoryItem.new(
            sku,
            name,
            unit,
            initial_stock=initial_stock,
            cost=cost,
            performed_by=performed_by,
            description=description,
            category=category,
            location=location,
            supplier_id=supplier_id,
            expiry_date=expiry_date,
        )
        if any(v is not None for v in (min_threshold, max_threshold, reorder_point)):
            minimum = min_threshold or 0.0
            reorder = reorder_point if reorder_point is not None else minimum
            maximum = max_threshold if max_threshold is not None else max(minimum, reorder)
            item.update_thresholds(minimum, maximum, reorder)

        initial = list(item.pending_movements)
        await self.repo.create_item(item)
        logger.info("inventory item %s created", item.id, extra={"sku": item.sku})

        events = [
            DomainEvent.create(
                EventType.INVENTORY_ITEM_CREATED,
                item.id,
                InventoryItemCreatedData(
                    item_id=item.id,
                    sku=item.sku,
                    name=item.name,
                    category=item.category,
                    unit=item.unit.value,
                    current_stock=item.current_stock,
                    supplier_id=item.supplier_id,
                ),
                service=SERVICE_NAME,
                sku=item.sku,
            )
        ]
        events.extend(movement_event(item, m) for m in initial)
        await self._publish(events)
        return item

    async def get_item(self, item_id: str, with_movements: bool = False) -> InventoryItem:
        return await self._load(item_id, "InventoryService.get_item", with_movements)

    async def get_item_by_sku(self, sku: str) -> InventoryItem:
        return await self._load_by_sku(sku, "InventoryService.get_item_by_sku")

    async def update_item(
        self,
        item_id: str,
        *,
        name: str,
        description: str = "",
        category: str = "",
        location: str = "",
        cost: float = 0.0,
        expiry_date: datetime | None = None,
    ) -> InventoryItem:
        item = await self._load(item_id, "InventoryService.update_item")
        item.update_details(name, description, category, location, cost, expiry_date)
        await self.repo.update_item(item)
        await self._publish(
            [
                DomainEvent.create(
                    EventType.INVENTORY_ITEM_UPDATED,
                    item.id,
                    InventoryItemUpdatedData(
                        item_id=item.id,
                        sku=item.sku,
                        changes={
                            "name": item.name,
                            "description": item.description,
                            "category": item.category,
                            "location": item.location,
                            "cost": item.cost,
                        },
                    ),
                    service=SERVICE_NAME,
                    sku=item.sku,
                )
            ]
        )
        return item

    async def update_thresholds(
        self, item_id: str, min_threshold: float, max_threshold: float, reorder_point: float
    ) -> InventoryItem:
        item = await self._load(item_id, "InventoryService.update_thresholds")
        item.update_thresholds(min_threshold, max_threshold, reorder_point)
        await self.repo.update_item(item)
        return item

    async def assign_supplier(self, item_id: str, supplier_id: str | None) -> InventoryItem:
        op = "InventoryService.assign_supplier"
        item = await self._load(item_id, op)
        if supplier_id:
            await self._require_supplier(supplier_id, op)
        item.set_supplier(supplier_id)
        await self.repo.update_item(item)
        return item

    async def mark_ordered(self, item_id: str) -> InventoryItem:
        item = await self._load(item_id, "InventoryService.mark_ordered")
        item.mark_ordered()
        await self.repo.update_item(item)
        return item

    async def delete_item(self, item_id: str) -> None:
        await self._load(item_id, "InventoryService.delete_item")
        await self.repo.delete_item(item_id)
        logger.info("inventory item %s deleted", item_id)

    # ledger ----------------------------------------------------------------

    async def _commit(
        self,
        item: InventoryItem,
        previous: float,
        movement: StockMovement,
        event_type: EventType | None = None,
    ) -> StockMovement:
        await self.repo.update_item(item)

        events = [movement_event(item, movement, event_type)]
        alert = detect_alert(previous, item.current_stock, item.reorder_point)
        if alert is not None:
            logger.warning(
                "stock alert %s for %s: %.3f -> %.3f (reorder at %.3f)",
                alert.value,
                item.sku,
                previous,
                item.current_stock,
                item.reorder_point,
                extra={"sku": item.sku, "alert_level": alert.value},
            )
            events.append(alert_event(item, alert))
        await self._publish(events)
        return movement

    async def record_movement(
        self,
        item_id: str,
        movement_type: MovementType | str,
        quantity: float,
        *,
        notes: str = "",
        reference: str = "",
        performed_by: str = "",
    ) -> StockMovement:
        """Apply one movement of any kind to ``item_id``."""

        item = await self._load(item_id, "InventoryService.record_movement")
        previous = item.current_stock
        movement = item.apply_movement(
            movement_type,
            quantity,
            notes=notes,
            reference=reference,
            performed_by=performed_by,
        )
        return await self._commit(item, previous, movement)

    async def receive_stock(self, item_id: str, quantity: float, **kwargs) -> StockMovement:
        return await self.record_movement(item_id, MovementType.RECEIVED, quantity, **kwargs)

    async def use_stock(self, item_id: str, quantity: float, **kwargs) -> StockMovement:
        return await self.record_movement(item_id, MovementType.USED, quantity, **kwargs)

    async def waste_stock(self, item_id: str, quantity: float, **kwargs) -> StockMovement:
        return await self.record_movement(item_id, MovementType.WASTED, quantity, **kwargs)

    async def return_stock(self, item_id: str, quantity: float, **kwargs) -> StockMovement:
        return await self.record_movement(item_id, MovementType.RETURNED, quantity, **kwargs)

    async def adjust_stock(self, item_id: str, new_level: float, **kwargs) -> StockMovement:
        """Set the stock to ``new_level`` after a physical count."""

        return await self.record_movement(item_id, MovementType.ADJUSTED, new_level, **kwargs)

    async def reserve_stock(
        self, sku: str, quantity: float, order_id: str, performed_by: str = ""
    ) -> StockMovement:
        op = "InventoryService.reserve_stock"
        if not order_id:
            raise ValidationError("order_id", "order reference is required", op=op)
        item = await self._load_by_sku(sku, op)
        previous = item.current_stock
        movement = item.reserve(quantity, order_id, performed_by)
        return await self._commit(item, previous, movement, EventType.STOCK_RESERVED)

    async def release_reservation(
        self, sku: str, quantity: float, order_id: str, performed_by: str = ""
    ) -> StockMovement:
        op = "InventoryService.release_reservation"
        if not order_id:
            raise ValidationError("order_id", "order reference is required", op=op)
        item = await self._load_by_sku(sku, op)
        previous = item.current_stock
        movement = item.release(quantity, order_id, performed_by)
        return await self._commit(item, previous, movement)

    async def check_availability(self, sku: str, quantity: float) -> bool:
        item = await self._load_by_sku(sku, "InventoryService.check_availability")
        return item.can_fulfill(quantity)

    async def get_stock_level(self, sku: str) -> StockLevel:
        item = await self._load_by_sku(sku, "InventoryService.get_stock_level")
        return StockLevel(
            item_id=item.id,
            sku=item.sku,
            current_stock=item.current_stock,
            unit=item.unit,
            reorder_point=item.reorder_point,
            is_low_stock=item.is_low_stock,
            is_out_of_stock=item.is_out_of_stock,
        )

    async def movement_history(self, item_id: str, limit: int = 50) -> List[StockMovement]:
        await self._load(item_id, "InventoryService.movement_history")
        return await self.repo.list_movements(item_id, limit=limit)

    async def movements_between(
        self, start: datetime, end: datetime, item_id: str | None = None
    ) -> List[StockMovement]:
        if end < start:
            raise ValidationError("end", "end must not be before start")
        return await self.repo.movements_between(start, end, item_id)

    async def verify_ledger(self, item_id: str) -> bool:
        """Replay the full ledger and compare it with the cached stock level."""

        item = await self._load(item_id, "InventoryService.verify_ledger", with_movements=True)
        consistent = item.ledger_is_consistent()
        if not consistent:
            logger.error("ledger mismatch for %s (sku=%s)", item.id, item.sku)
        return consistent

    # listings --------------------------------------------------------------

    async def list_low_stock(self) -> List[InventoryItem]:
        return await self.repo.list_low_stock()

    async def list_out_of_stock(self) -> List[InventoryItem]:
        return await self.repo.list_out_of_stock()

    async def list_items(
        self, filters: ItemFilters | None = None, offset: int = 0, limit: int = 50
    ) -> tuple[List[InventoryItem], int]:
        if offset < 0:
            raise ValidationError("offset", "offset cannot be negative")
        if limit <= 0 or limit > 500:
            raise ValidationError("limit", "limit must be between 1 and 500")
        return await self.repo.list_items(filters, offset, limit)

    async def search_items(self, query: str, limit: int = 50) -> List[InventoryItem]:
        items, _ = await self.list_items(ItemFilters(search=query.strip()), 0, limit)
        return items

    async def list_by_category(self, category: str) -> List[InventoryItem]:
        items, _ = await self.list_items(ItemFilters(category=category), 0, 500)
        return items

    # suppliers -------------------------------------------------------------

    async def create_supplier(self, code: str, name: str, **details) -> Supplier:
        op = "InventoryService.create_supplier"
        supplier = Supplier.new(code, name, **details)
        if await self.repo.get_supplier_by_code(supplier.code) is not None:
            raise AlreadyExistsError(
                "supplier", f"supplier with code {supplier.code!r} already exists", op=op
            )
        await self.repo.create_supplier(supplier)
        await self._publish([_supplier_event(EventType.SUPPLIER_CREATED, supplier)])
        return supplier

    async def get_supplier(self, supplier_id: str) -> Supplier:
        return await self._require_supplier(supplier_id, "InventoryService.get_supplier")

    async def update_supplier(self, supplier_id: str, **changes) -> Supplier:
        supplier = await self._require_supplier(supplier_id, "InventoryService.update_supplier")
        supplier.update_details(**changes)
        await self.repo.update_supplier(supplier)
        await self._publish([_supplier_event(EventType.SUPPLIER_UPDATED, supplier)])
        return supplier

    async def _set_active(self, supplier_id: str, active: bool, op: str) -> Supplier:
        supplier = await self._require_supplier(supplier_id, op)
        if active:
            supplier.activate()
        else:
            supplier.deactivate()
        await self.repo.update_supplier(supplier)
        await self._publish([_supplier_event(EventType.SUPPLIER_UPDATED, supplier)])
        return supplier

    async def activate_supplier(self, supplier_id: str) -> Supplier:
        return await self._set_active(supplier_id, True, "InventoryService.activate_supplier")

    async def deactivate_supplier(self, supplier_id: str) -> Supplier:
        return await self._set_active(supplier_id, False, "InventoryService.deactivate_supplier")

    async def delete_supplier(self, supplier_id: str) -> None:
        op = "InventoryService.delete_supplier"
        supplier = await self._require_supplier(supplier_id, op)
        in_use = await self.repo.count_items_for_supplier(supplier_id)
        if in_use:
            raise ConflictError(
                "supplier", "supplier is referenced by inventory items", op=op
            ).with_context(items=in_use)
        await self.repo.delete_supplier(supplier_id)
        await self._publish([_supplier_event(EventType.SUPPLIER_DELETED, supplier)])

    async def list_suppliers(self, active_only: bool = False) -> List[Supplier]:
        return await self.repo.list_suppliers(active_only=active_only)

    async def list_active_suppliers(self) -> List[Supplier]:
        return await self.repo.list_suppliers(active_only=True)

    async def items_by_supplier(self, supplier_id: str) -> List[InventoryItem]:
        await self._require_supplier(supplier_id, "InventoryService.items_by_supplier")
        items, _ = await self.repo.list_items(ItemFilters(supplier_id=supplier_id), 0, 500)
        return items
