"""SQLAlchemy repository for kitchen tickets."""

from __future__ import annotations

from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models
from ..domain.kitchen import (
    ACTIVE_STATUSES,
    ItemStatus,
    KitchenTicket,
    KitchenTicketItem,
    Priority,
    TicketStatus,
)
from ..errors import AlreadyExistsError, ConcurrentUpdateError
from ..ids import as_utc
from ..repos.kitchen_repo import KitchenRepo, TicketFilters
from . import SessionScoped

_PRIORITY_RANK = case(
    {
        Priority.URGENT.value: 0,
        Priority.HIGH.value: 1,
        Priority.NORMAL.value: 2,
        Priority.LOW.value: 3,
    },
    value=models.KitchenOrder.priority,
    else_=4,
)


def _ticket_values(ticket: KitchenTicket) -> dict:
    override = ticket.estimated_override
    return {
        "order_id": ticket.order_id,
        "table_id": ticket.table_id,
        "status": ticket.status.value,
        "priority": ticket.priority.value,
        "assigned_station": ticket.assigned_station,
        "estimated_override_secs": override.total_seconds() if override is not None else None,
        "started_at": ticket.started_at,
        "completed_at": ticket.completed_at,
        "notes": ticket.notes,
        "created_at": ticket.created_at,
        "updated_at": ticket.updated_at,
    }


def _item_rows(ticket: KitchenTicket) -> List[models.KitchenOrderItem]:
    return [
        models.KitchenOrderItem(
            id=item.id,
            kitchen_order_id=ticket.id,
            position=pos,
            menu_item_id=item.menu_item_id,
            name=item.name,
            quantity=item.quantity,
            status=item.status.value,
            prep_time_secs=item.prep_time.total_seconds(),
            modifications=list(item.modifications),
            notes=item.notes,
            assigned_station=item.assigned_station,
            started_at=item.started_at,
            completed_at=item.completed_at,
        )
        for pos, item in enumerate(ticket.items)
    ]


def _ticket_from_rows(
    row: models.KitchenOrder, items: List[models.KitchenOrderItem]
) -> KitchenTicket:
    return KitchenTicket(
        id=row.id,
        order_id=row.order_id,
        table_id=row.table_id,
        status=TicketStatus(row.status),
        priority=Priority(row.priority),
        assigned_station=row.assigned_station,
        estimated_override=(
            timedelta(seconds=row.estimated_override_secs)
            if row.estimated_override_secs is not None
            else None
        ),
        started_at=as_utc(row.started_at),
        completed_at=as_utc(row.completed_at),
        notes=row.notes,
        version=row.version,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        items=[
            KitchenTicketItem(
                id=i.id,
                menu_item_id=i.menu_item_id,
                name=i.name,
                quantity=i.quantity,
                status=ItemStatus(i.status),
                prep_time=timedelta(seconds=i.prep_time_secs),
                modifications=list(i.modifications or []),
                notes=i.notes,
                assigned_station=i.assigned_station,
                started_at=as_utc(i.started_at),
                completed_at=as_utc(i.completed_at),
                position=i.position,
            )
            for i in sorted(items, key=lambda i: i.position)
        ],
    )


async def _load_items(
    session: AsyncSession, ticket_ids: List[str]
) -> Dict[str, List[models.KitchenOrderItem]]:
    grouped: Dict[str, List[models.KitchenOrderItem]] = {tid: [] for tid in ticket_ids}
    if not ticket_ids:
        return grouped
    result = await session.execute(
        select(models.KitchenOrderItem).where(
            models.KitchenOrderItem.kitchen_order_id.in_(ticket_ids)
        )
    )
    for item in result.scalars():
        grouped[item.kitchen_order_id].append(item)
    return grouped


class SqlKitchenRepo(SessionScoped, KitchenRepo):
    """Kitchen ticket persistence; items are owned rows rewritten on update."""

    async def save(self, ticket: KitchenTicket) -> None:
        try:
            async with self.transaction() as session:
                session.add(
                    models.KitchenOrder(id=ticket.id, version=ticket.version, **_ticket_values(ticket))
                )
                await session.flush()
                session.add_all(_item_rows(ticket))
        except IntegrityError as exc:
            raise AlreadyExistsError(
                "kitchen_order", f"kitchen order for order {ticket.order_id!r} already exists"
            ).with_context(order_id=ticket.order_id) from exc

    async def _fetch_one(self, condition) -> Optional[KitchenTicket]:
        async with self._sessions() as session:
            result = await session.execute(select(models.KitchenOrder).where(condition))
            row = result.scalar_one_or_none()
            if row is None:
                return None
            items = await _load_items(session, [row.id])
            return _ticket_from_rows(row, items[row.id])

    async def get(self, ticket_id: str) -> Optional[KitchenTicket]:
        return await self._fetch_one(models.KitchenOrder.id == ticket_id)

    async def get_by_order(self, order_id: str) -> Optional[KitchenTicket]:
        return await self._fetch_one(models.KitchenOrder.order_id == order_id)

    async def update(self, ticket: KitchenTicket) -> None:
        async with self.transaction() as session:
            result = await session.execute(
                update(models.KitchenOrder)
                .where(
                    models.KitchenOrder.id == ticket.id,
                    models.KitchenOrder.version == ticket.version,
                )
                .values(version=ticket.version + 1, **_ticket_values(ticket))
            )
            if result.rowcount == 0:
                raise ConcurrentUpdateError("kitchen_order", ticket.id)
            await session.execute(
                delete(models.KitchenOrderItem).where(
                    models.KitchenOrderItem.kitchen_order_id == ticket.id
                )
            )
            session.add_all(_item_rows(ticket))
        ticket.version += 1

    async def delete(self, ticket_id: str) -> None:
        async with self.transaction() as session:
            await session.execute(
                delete(models.KitchenOrderItem).where(
                    models.KitchenOrderItem.kitchen_order_id == ticket_id
                )
            )
            await session.execute(
                delete(models.KitchenOrder).where(models.KitchenOrder.id == ticket_id)
            )

    async def _select(self, query) -> List[KitchenTicket]:
        async with self._sessions() as session:
            rows = list((await session.execute(query)).scalars())
            items = await _load_items(session, [r.id for r in rows])
            return [_ticket_from_rows(r, items[r.id]) for r in rows]

    async def list(
        self, filters: TicketFilters | None = None, offset: int = 0, limit: int = 50
    ) -> tuple[List[KitchenTicket], int]:
        filters = filters or TicketFilters()
        table = models.KitchenOrder
        conditions = []
        if filters.status is not None:
            conditions.append(table.status == TicketStatus(filters.status).value)
        if filters.station:
            conditions.append(table.assigned_station == filters.station)
        if filters.priority is not None:
            conditions.append(table.priority == Priority(filters.priority).value)
        if filters.table_id:
            conditions.append(table.table_id == filters.table_id)
        async with self._sessions() as session:
            total = await session.scalar(
                select(func.count()).select_from(table).where(*conditions)
            )
        tickets = await self._select(
            select(table)
            .where(*conditions)
            .order_by(table.created_at.desc(), table.id)
            .offset(offset)
            .limit(limit)
        )
        return tickets, int(total or 0)

    async def list_active(self) -> List[KitchenTicket]:
        table = models.KitchenOrder
        return await self._select(
            select(table)
            .where(table.status.in_([s.value for s in ACTIVE_STATUSES]))
            .order_by(_PRIORITY_RANK, table.created_at, table.id)
        )
