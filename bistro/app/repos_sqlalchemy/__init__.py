"""SQLAlchemy-backed repository implementations.

Every repository is built from an ``async_sessionmaker`` and opens a short
session per call. ``SessionScoped.transaction`` hands out a session inside an
explicit ``BEGIN``/``COMMIT`` block for multi-statement work that must be
atomic.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


class SessionScoped:
    """Mixin giving repositories session and transaction helpers."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Yield a session whose work is committed together or not at all."""

        async with self._sessions() as session:
            async with session.begin():
                yield session


from .identity_repo_sql import SqlIdentityRepo  # noqa: E402
from .inventory_repo_sql import SqlInventoryRepo  # noqa: E402
from .kitchen_repo_sql import SqlKitchenRepo  # noqa: E402
from .orders_repo_sql import SqlOrdersRepo  # noqa: E402

__all__ = [
    "SessionScoped",
    "SqlIdentityRepo",
    "SqlInventoryRepo",
    "SqlKitchenRepo",
    "SqlOrdersRepo",
]
