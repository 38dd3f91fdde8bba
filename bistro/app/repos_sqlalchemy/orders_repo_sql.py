"""SQLAlchemy-backed repository for orders.

Order lines are snapshotted into ``order_items`` together with the name and
unit price at the time they were added, so later menu changes never alter a
placed order. Totals are denormalised onto the ``orders`` row for listing.
"""

from __future__ import annotations

from datetime import timedelta
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models
from ..domain.order_status import OrderStatus
from ..domain.orders import Order, OrderItem, OrderType
from ..errors import ConcurrentUpdateError
from ..ids import as_utc
from ..repos.orders_repo import OrdersRepo
from . import SessionScoped


def _order_values(order: Order) -> dict:
    return {
        "customer_id": order.customer_id,
        "order_type": order.order_type.value,
        "status": order.status.value,
        "table_id": order.table_id,
        "delivery_address": order.delivery_address,
        "notes": order.notes,
        "subtotal": order.subtotal,
        "tax_amount": order.tax_amount,
        "total_amount": order.total_amount,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }


def _line_rows(order: Order) -> List[models.OrderItem]:
    return [
        models.OrderItem(
            id=line.id,
            order_id=order.id,
            position=pos,
            menu_item_id=line.menu_item_id,
            name=line.name,
            quantity=line.quantity,
            unit_price=line.unit_price,
            modifications=list(line.modifications),
            notes=line.notes,
            prep_time_secs=line.prep_time.total_seconds(),
        )
        for pos, line in enumerate(order.items)
    ]


async def _load(session: AsyncSession, row: models.Order) -> Order:
    result = await session.execute(
        select(models.OrderItem)
        .where(models.OrderItem.order_id == row.id)
        .order_by(models.OrderItem.position)
    )
    return Order(
        id=row.id,
        customer_id=row.customer_id,
        order_type=OrderType(row.order_type),
        status=OrderStatus(row.status),
        table_id=row.table_id,
        delivery_address=row.delivery_address,
        notes=row.notes,
        version=row.version,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        items=[
            OrderItem(
                id=line.id,
                menu_item_id=line.menu_item_id,
                name=line.name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                modifications=list(line.modifications or []),
                notes=line.notes,
                prep_time=timedelta(seconds=line.prep_time_secs),
            )
            for line in result.scalars()
        ],
    )


class SqlOrdersRepo(SessionScoped, OrdersRepo):
    async def save(self, order: Order) -> None:
        async with self.transaction() as session:
            session.add(models.Order(id=order.id, version=order.version, **_order_values(order)))
            await session.flush()  # parent row before its lines
            session.add_all(_line_rows(order))

    async def get(self, order_id: str) -> Optional[Order]:
        async with self._sessions() as session:
            row = await session.get(models.Order, order_id)
            if row is None:
                return None
            return await _load(session, row)

    async def update(self, order: Order) -> None:
        async with self.transaction() as session:
            result = await session.execute(
                update(models.Order)
                .where(models.Order.id == order.id, models.Order.version == order.version)
                .values(version=order.version + 1, **_order_values(order))
            )
            if result.rowcount == 0:
                raise ConcurrentUpdateError("order", order.id)
            await session.execute(
                delete(models.OrderItem).where(models.OrderItem.order_id == order.id)
            )
            session.add_all(_line_rows(order))
        order.version += 1

    async def list(self, status=None, customer_id=None, offset=0, limit=50):
        """Return ``(orders, total)`` newest first."""

        conditions = []
        if status is not None:
            conditions.append(models.Order.status == OrderStatus(status).value)
        if customer_id:
            conditions.append(models.Order.customer_id == customer_id)
        async with self._sessions() as session:
            total = await session.scalar(
                select(func.count()).select_from(models.Order).where(*conditions)
            )
            result = await session.execute(
                select(models.Order)
                .where(*conditions)
                .order_by(models.Order.created_at.desc(), models.Order.id)
                .offset(offset)
                .limit(limit)
            )
            orders = [await _load(session, row) for row in result.scalars().all()]
            return orders, int(total or 0)
