"""Inventory items, stock ledger and supplier routes."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from .deps.auth import require_permission
from .deps.services import get_inventory
from .domain.inventory import InventoryItem, MovementType, Unit
from .repos.inventory_repo import ItemFilters
from .services.identity_service import Principal
from .services.inventory_service import InventoryService
from .utils.responses import ok

router = APIRouter()

_read = require_permission("inventory", "read")
_update = require_permission("inventory", "update")
_manage = require_permission("inventory", "manage")


class ItemCreateIn(BaseModel):
    sku: str
    name: str
    unit: Unit = Unit.UNITS
    description: str = ""
    category: str = ""
    location: str = ""
    initial_stock: float = 0.0
    cost: float = 0.0
    min_threshold: Optional[float] = None
    max_threshold: Optional[float] = None
    reorder_point: Optional[float] = None
    supplier_id: Optional[str] = None
    expiry_date: Optional[datetime] = None


class ItemUpdateIn(BaseModel):
    name: str
    description: str = ""
    category: str = ""
    location: str = ""
    cost: float = 0.0
    expiry_date: Optional[datetime] = None


class ThresholdsIn(BaseModel):
    min_threshold: float
    max_threshold: float
    reorder_point: float


class SupplierAssignIn(BaseModel):
    supplier_id: Optional[str] = None


class MovementIn(BaseModel):
    type: MovementType
    quantity: float
    notes: str = ""
    reference: str = ""


class ReserveIn(BaseModel):
    sku: str
    quantity: float = Field(gt=0)
    order_id: str


class SupplierIn(BaseModel):
    code: str
    name: str
    contact_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    website: str = ""
    rating: float = 0.0
    notes: str = ""


class SupplierUpdateIn(BaseModel):
    name: Optional[str] = None
    contact_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    website: Optional[str] = None
    rating: Optional[float] = None
    notes: Optional[str] = None


def _item_view(item: InventoryItem) -> dict:
    return {
        "id": item.id,
        "sku": item.sku,
        "name": item.name,
        "description": item.description,
        "unit": item.unit,
        "current_stock": item.current_stock,
        "min_threshold": item.min_threshold,
        "max_threshold": item.max_threshold,
        "reorder_point": item.reorder_point,
        "cost": item.cost,
        "category": item.category,
        "location": item.location,
        "supplier_id": item.supplier_id,
        "last_ordered": item.last_ordered,
        "expiry_date": item.expiry_date,
        "is_low_stock": item.is_low_stock,
        "is_out_of_stock": item.is_out_of_stock,
        "version": item.version,
        "created_at": item.created_at,
        "updated_at": item.updated_at,
    }


# items -----------------------------------------------------------------------


@router.post("/api/inventory/items", status_code=201)
async def create_item(
    payload: ItemCreateIn,
    principal: Principal = Depends(_manage),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    item = await inventory.create_item(
        **payload.model_dump(), performed_by=principal.user.id
    )
    return ok(_item_view(item))


@router.get("/api/inventory/items")
async def list_items(
    category: Optional[str] = None,
    supplier_id: Optional[str] = None,
    low_stock: bool = False,
    out_of_stock: bool = False,
    search: Optional[str] = None,
    offset: int = 0,
    limit: int = 50,
    _: Principal = Depends(_read),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    filters = ItemFilters(
        category=category,
        supplier_id=supplier_id,
        low_stock=low_stock,
        out_of_stock=out_of_stock,
        search=search,
    )
    items, total = await inventory.list_items(filters, offset, limit)
    return ok({"items": [_item_view(i) for i in items], "total": total})


@router.get("/api/inventory/items/low-stock")
async def low_stock(
    _: Principal = Depends(_read), inventory: InventoryService = Depends(get_inventory)
) -> dict:
    return ok([_item_view(i) for i in await inventory.list_low_stock()])


@router.get("/api/inventory/items/out-of-stock")
async def out_of_stock(
    _: Principal = Depends(_read), inventory: InventoryService = Depends(get_inventory)
) -> dict:
    return ok([_item_view(i) for i in await inventory.list_out_of_stock()])


@router.get("/api/inventory/items/sku/{sku}")
async def get_item_by_sku(
    sku: str, _: Principal = Depends(_read), inventory: InventoryService = Depends(get_inventory)
) -> dict:
    return ok(_item_view(await inventory.get_item_by_sku(sku)))


@router.get("/api/inventory/items/{item_id}")
async def get_item(
    item_id: str,
    _: Principal = Depends(_read),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    return ok(_item_view(await inventory.get_item(item_id)))


@router.put("/api/inventory/items/{item_id}")
async def update_item(
    item_id: str,
    payload: ItemUpdateIn,
    _: Principal = Depends(_manage),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    return ok(_item_view(await inventory.update_item(item_id, **payload.model_dump())))


@router.put("/api/inventory/items/{item_id}/thresholds")
async def update_thresholds(
    item_id: str,
    payload: ThresholdsIn,
    _: Principal = Depends(_manage),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    item = await inventory.update_thresholds(
        item_id, payload.min_threshold, payload.max_threshold, payload.reorder_point
    )
    return ok(_item_view(item))


@router.put("/api/inventory/items/{item_id}/supplier")
async def assign_supplier(
    item_id: str,
    payload: SupplierAssignIn,
    _: Principal = Depends(_manage),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    return ok(_item_view(await inventory.assign_supplier(item_id, payload.supplier_id)))


@router.delete("/api/inventory/items/{item_id}")
async def delete_item(
    item_id: str,
    _: Principal = Depends(_manage),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    await inventory.delete_item(item_id)
    return ok({"deleted": item_id})


# ledger ----------------------------------------------------------------------


@router.post("/api/inventory/items/{item_id}/movements", status_code=201)
async def record_movement(
    item_id: str,
    payload: MovementIn,
    principal: Principal = Depends(_update),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    movement = await inventory.record_movement(
        item_id,
        payload.type,
        payload.quantity,
        notes=payload.notes,
        reference=payload.reference,
        performed_by=principal.user.id,
    )
    return ok(movement)


@router.get("/api/inventory/items/{item_id}/movements")
async def movement_history(
    item_id: str,
    limit: int = 50,
    _: Principal = Depends(_read),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    return ok(await inventory.movement_history(item_id, limit))


@router.get("/api/inventory/items/{item_id}/ledger")
async def verify_ledger(
    item_id: str,
    _: Principal = Depends(_read),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    return ok({"item_id": item_id, "consistent": await inventory.verify_ledger(item_id)})


@router.get("/api/inventory/movements")
async def movements_between(
    start: datetime,
    end: datetime,
    item_id: Optional[str] = None,
    _: Principal = Depends(_read),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    return ok(await inventory.movements_between(start, end, item_id))


@router.post("/api/inventory/reservations", status_code=201)
async def reserve_stock(
    payload: ReserveIn,
    principal: Principal = Depends(_update),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    movement = await inventory.reserve_stock(
        payload.sku, payload.quantity, payload.order_id, principal.user.id
    )
    return ok(movement)


@router.post("/api/inventory/reservations/release")
async def release_reservation(
    payload: ReserveIn,
    principal: Principal = Depends(_update),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    movement = await inventory.release_reservation(
        payload.sku, payload.quantity, payload.order_id, principal.user.id
    )
    return ok(movement)


@router.get("/api/inventory/availability/{sku}")
async def check_availability(
    sku: str,
    quantity: float,
    _: Principal = Depends(_read),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    available = await inventory.check_availability(sku, quantity)
    return ok({"sku": sku, "quantity": quantity, "available": available})


@router.get("/api/inventory/stock/{sku}")
async def stock_level(
    sku: str, _: Principal = Depends(_read), inventory: InventoryService = Depends(get_inventory)
) -> dict:
    return ok(await inventory.get_stock_level(sku))


# suppliers -------------------------------------------------------------------


@router.post("/api/inventory/suppliers", status_code=201)
async def create_supplier(
    payload: SupplierIn,
    _: Principal = Depends(_manage),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    data = payload.model_dump()
    return ok(await inventory.create_supplier(data.pop("code"), data.pop("name"), **data))


@router.get("/api/inventory/suppliers")
async def list_suppliers(
    active_only: bool = False,
    _: Principal = Depends(_read),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    return ok(await inventory.list_suppliers(active_only))


@router.get("/api/inventory/suppliers/{supplier_id}")
async def get_supplier(
    supplier_id: str,
    _: Principal = Depends(_read),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    return ok(await inventory.get_supplier(supplier_id))


@router.patch("/api/inventory/suppliers/{supplier_id}")
async def update_supplier(
    supplier_id: str,
    payload: SupplierUpdateIn,
    _: Principal = Depends(_manage),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    changes = payload.model_dump(exclude_none=True)
    return ok(await inventory.update_supplier(supplier_id, **changes))


@router.post("/api/inventory/suppliers/{supplier_id}/activate")
async def activate_supplier(
    supplier_id: str,
    _: Principal = Depends(_manage),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    return ok(await inventory.activate_supplier(supplier_id))


@router.post("/api/inventory/suppliers/{supplier_id}/deactivate")
async def deactivate_supplier(
    supplier_id: str,
    _: Principal = Depends(_manage),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    return ok(await inventory.deactivate_supplier(supplier_id))


@router.delete("/api/inventory/suppliers/{supplier_id}")
async def delete_supplier(
    supplier_id: str,
    _: Principal = Depends(_manage),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    await inventory.delete_supplier(supplier_id)
    return ok({"deleted": supplier_id})


@router.get("/api/inventory/suppliers/{supplier_id}/items")
async def items_by_supplier(
    supplier_id: str,
    _: Principal = Depends(_read),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    return ok([_item_view(i) for i in await inventory.items_by_supplier(supplier_id)])
