"""Repository interface for kitchen tickets."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from ..domain.kitchen import KitchenTicket, Priority, TicketStatus


@dataclass
class TicketFilters:
    status: Optional[TicketStatus] = None
    station: Optional[str] = None
    priority: Optional[Priority] = None
    table_id: Optional[str] = None


class KitchenRepo(ABC):
    """Contract for kitchen ticket persistence."""

    @abstractmethod
    async def save(self, ticket: KitchenTicket) -> None:
        """Insert a new ticket with its items."""
        raise NotImplementedError

    @abstractmethod
    async def get(self, ticket_id: str) -> Optional[KitchenTicket]:
        raise NotImplementedError

    @abstractmethod
    async def get_by_order(self, order_id: str) -> Optional[KitchenTicket]:
        raise NotImplementedError

    @abstractmethod
    async def update(self, ticket: KitchenTicket) -> None:
        """Persist ``ticket`` guarded by its version; items are rewritten."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, ticket_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list(
        self, filters: TicketFilters | None = None, offset: int = 0, limit: int = 50
    ) -> tuple[List[KitchenTicket], int]:
        raise NotImplementedError

    @abstractmethod
    async def list_active(self) -> List[KitchenTicket]:
        """Tickets in NEW, PREPARING or READY, most urgent and oldest first."""
        raise NotImplementedError
