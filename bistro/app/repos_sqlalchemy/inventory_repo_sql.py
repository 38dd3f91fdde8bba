"""SQLAlchemy repository for inventory items, their ledger and suppliers.

Items are written with an optimistic version check: the ``UPDATE`` only
matches the row when its ``version`` still equals the version the aggregate
was loaded with, and the movements appended since then are inserted in the
same transaction. Movement rows are never updated.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from .. import models
from ..domain.inventory import InventoryItem, MovementType, StockMovement, Supplier, Unit
from ..errors import AlreadyExistsError, ConcurrentUpdateError, NotFoundError
from ..ids import as_utc
from ..repos.inventory_repo import InventoryRepo, ItemFilters
from . import SessionScoped

_ITEM_FIELDS = (
    "sku",
    "name",
    "description",
    "current_stock",
    "min_threshold",
    "max_threshold",
    "reorder_point",
    "cost",
    "category",
    "location",
    "supplier_id",
    "last_ordered",
    "expiry_date",
    "movement_count",
    "created_at",
    "updated_at",
)

_SUPPLIER_FIELDS = (
    "code",
    "name",
    "contact_name",
    "email",
    "phone",
    "address",
    "website",
    "rating",
    "notes",
    "is_active",
    "created_at",
    "updated_at",
)


def _item_values(item: InventoryItem) -> dict:
    values = {name: getattr(item, name) for name in _ITEM_FIELDS}
    values["unit"] = item.unit.value
    return values


def _item_from_row(row: models.InventoryItem) -> InventoryItem:
    return InventoryItem(
        id=row.id,
        sku=row.sku,
        name=row.name,
        description=row.description,
        current_stock=row.current_stock,
        unit=Unit(row.unit),
        min_threshold=row.min_threshold,
        max_threshold=row.max_threshold,
        reorder_point=row.reorder_point,
        cost=row.cost,
        category=row.category,
        location=row.location,
        supplier_id=row.supplier_id,
        last_ordered=as_utc(row.last_ordered),
        expiry_date=as_utc(row.expiry_date),
        movement_count=row.movement_count,
        version=row.version,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _movement_row(mov: StockMovement) -> models.StockMovement:
    return models.StockMovement(
        id=mov.id,
        inventory_item_id=mov.inventory_item_id,
        seq=mov.seq,
        type=mov.type.value,
        quantity=mov.quantity,
        previous_stock=mov.previous_stock,
        new_stock=mov.new_stock,
        notes=mov.notes,
        reference=mov.reference,
        performed_by=mov.performed_by,
        performed_at=mov.performed_at,
    )


def _movement_from_row(row: models.StockMovement) -> StockMovement:
    return StockMovement(
        id=row.id,
        inventory_item_id=row.inventory_item_id,
        seq=row.seq,
        type=MovementType(row.type),
        quantity=row.quantity,
        previous_stock=row.previous_stock,
        new_stock=row.new_stock,
        notes=row.notes,
        reference=row.reference,
        performed_by=row.performed_by,
        performed_at=as_utc(row.performed_at),
    )


def _supplier_from_row(row: models.Supplier) -> Supplier:
    return Supplier(
        id=row.id,
        **{
            name: as_utc(getattr(row, name)) if name.endswith("_at") else getattr(row, name)
            for name in _SUPPLIER_FIELDS
        },
    )


class SqlInventoryRepo(SessionScoped, InventoryRepo):
    """Inventory persistence on an ``AsyncSession`` factory."""

    async def create_item(self, item: InventoryItem) -> None:
        try:
            async with self.transaction() as session:
                session.add(models.InventoryItem(id=item.id, version=item.version, **_item_values(item)))
                await session.flush()
                for mov in item.pending_movements:
                    session.add(_movement_row(mov))
        except IntegrityError as exc:
            raise AlreadyExistsError(
                "inventory_item", f"item with SKU {item.sku!r} already exists"
            ).with_context(sku=item.sku) from exc
        item.take_pending_movements()

    async def get_item(self, item_id: str, with_movements: bool = False) -> Optional[InventoryItem]:
        async with self._sessions() as session:
            row = await session.get(models.InventoryItem, item_id)
            if row is None:
                return None
            item = _item_from_row(row)
            if with_movements:
                result = await session.execute(
                    select(models.StockMovement)
                    .where(models.StockMovement.inventory_item_id == item_id)
                    .order_by(models.StockMovement.seq)
                )
                item.movements = [_movement_from_row(m) for m in result.scalars()]
            return item

    async def get_item_by_sku(self, sku: str) -> Optional[InventoryItem]:
        async with self._sessions() as session:
            result = await session.execute(
                select(models.InventoryItem).where(models.InventoryItem.sku == sku)
            )
            row = result.scalar_one_or_none()
            return _item_from_row(row) if row is not None else None

    async def update_item(self, item: InventoryItem) -> None:
        pending = list(item.pending_movements)
        try:
            async with self.transaction() as session:
                result = await session.execute(
                    update(models.InventoryItem)
                    .where(
                        models.InventoryItem.id == item.id,
                        models.InventoryItem.version == item.version,
                    )
                    .values(version=item.version + 1, **_item_values(item))
                )
                if result.rowcount == 0:
                    raise ConcurrentUpdateError("inventory_item", item.id)
                for mov in pending:
                    session.add(_movement_row(mov))
        except IntegrityError as exc:
            # two writers raced for the same ledger sequence number
            raise ConcurrentUpdateError("inventory_item", item.id) from exc
        item.version += 1
        item.take_pending_movements()

    async def delete_item(self, item_id: str) -> None:
        async with self.transaction() as session:
            await session.execute(
                delete(models.StockMovement).where(
                    models.StockMovement.inventory_item_id == item_id
                )
            )
            await session.execute(
                delete(models.InventoryItem).where(models.InventoryItem.id == item_id)
            )

    async def list_items(
        self, filters: ItemFilters | None = None, offset: int = 0, limit: int = 50
    ) -> tuple[List[InventoryItem], int]:
        filters = filters or ItemFilters()
        table = models.InventoryItem
        conditions = []
        if filters.category:
            conditions.append(table.category == filters.category)
        if filters.supplier_id:
            conditions.append(table.supplier_id == filters.supplier_id)
        if filters.low_stock:
            conditions.append(table.current_stock <= table.reorder_point)
        if filters.out_of_stock:
            conditions.append(table.current_stock <= 0)
        if filters.search:
            pattern = f"%{filters.search.lower()}%"
            conditions.append(
                or_(
                    func.lower(table.name).like(pattern),
                    func.lower(table.sku).like(pattern),
                    func.lower(table.description).like(pattern),
                )
            )
        async with self._sessions() as session:
            total = await session.scalar(
                select(func.count()).select_from(table).where(*conditions)
            )
            result = await session.execute(
                select(table).where(*conditions).order_by(table.name, table.id).offset(offset).limit(limit)
            )
            return [_item_from_row(r) for r in result.scalars()], int(total or 0)

    async def list_low_stock(self) -> List[InventoryItem]:
        table = models.InventoryItem
        async with self._sessions() as session:
            result = await session.execute(
                select(table)
                .where(table.current_stock <= table.reorder_point)
                .order_by(table.current_stock.asc(), table.sku)
            )
            return [_item_from_row(r) for r in result.scalars()]

    async def list_out_of_stock(self) -> List[InventoryItem]:
        table = models.InventoryItem
        async with self._sessions() as session:
            result = await session.execute(
                select(table)
                .where(table.current_stock <= 0)
                .order_by(table.updated_at.desc(), table.sku)
            )
            return [_item_from_row(r) for r in result.scalars()]

    async def list_movements(self, item_id: str, limit: int = 50) -> List[StockMovement]:
        table = models.StockMovement
        async with self._sessions() as session:
            result = await session.execute(
                select(table)
                .where(table.inventory_item_id == item_id)
                .order_by(table.performed_at.desc(), table.seq.desc())
                .limit(limit)
            )
            return [_movement_from_row(r) for r in result.scalars()]

    async def movements_between(
        self, start: datetime, end: datetime, item_id: str | None = None
    ) -> List[StockMovement]:
        table = models.StockMovement
        query = select(table).where(table.performed_at >= start, table.performed_at <= end)
        if item_id:
            query = query.where(table.inventory_item_id == item_id)
        async with self._sessions() as session:
            result = await session.execute(
                query.order_by(table.performed_at.desc(), table.seq.desc())
            )
            return [_movement_from_row(r) for r in result.scalars()]

    # suppliers ------------------------------------------------------------

    async def create_supplier(self, supplier: Supplier) -> None:
        try:
            async with self.transaction() as session:
                session.add(
                    models.Supplier(
                        id=supplier.id,
                        **{name: getattr(supplier, name) for name in _SUPPLIER_FIELDS},
                    )
                )
        except IntegrityError as exc:
            raise AlreadyExistsError(
                "supplier", f"supplier with code {supplier.code!r} already exists"
            ).with_context(code=supplier.code) from exc

    async def get_supplier(self, supplier_id: str) -> Optional[Supplier]:
        async with self._sessions() as session:
            row = await session.get(models.Supplier, supplier_id)
            return _supplier_from_row(row) if row is not None else None

    async def get_supplier_by_code(self, code: str) -> Optional[Supplier]:
        async with self._sessions() as session:
            result = await session.execute(
                select(models.Supplier).where(models.Supplier.code == code)
            )
            row = result.scalar_one_or_none()
            return _supplier_from_row(row) if row is not None else None

    async def update_supplier(self, supplier: Supplier) -> None:
        async with self.transaction() as session:
            result = await session.execute(
                update(models.Supplier)
                .where(models.Supplier.id == supplier.id)
                .values(**{name: getattr(supplier, name) for name in _SUPPLIER_FIELDS})
            )
            if result.rowcount == 0:
                raise NotFoundError("supplier", supplier.id, op="SqlInventoryRepo.update_supplier")

    async def delete_supplier(self, supplier_id: str) -> None:
        async with self.transaction() as session:
            await session.execute(
                delete(models.Supplier).where(models.Supplier.id == supplier_id)
            )

    async def list_suppliers(self, active_only: bool = False) -> List[Supplier]:
        query = select(models.Supplier).order_by(models.Supplier.name, models.Supplier.code)
        if active_only:
            query = query.where(models.Supplier.is_active.is_(True))
        async with self._sessions() as session:
            result = await session.execute(query)
            return [_supplier_from_row(r) for r in result.scalars()]

    async def count_items_for_supplier(self, supplier_id: str) -> int:
        async with self._sessions() as session:
            total = await session.scalar(
                select(func.count())
                .select_from(models.InventoryItem)
                .where(models.InventoryItem.supplier_id == supplier_id)
            )
            return int(total or 0)
