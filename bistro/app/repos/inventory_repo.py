"""Repository interface for inventory items, movements and suppliers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..domain.inventory import InventoryItem, StockMovement, Supplier


@dataclass
class ItemFilters:
    category: Optional[str] = None
    supplier_id: Optional[str] = None
    low_stock: bool = False
    out_of_stock: bool = False
    search: Optional[str] = None


class InventoryRepo(ABC):
    """Contract for inventory persistence.

    ``update_item`` must fail with ``ConcurrentUpdateError`` when the stored
    version differs from the one the aggregate was loaded with, and must
    append the aggregate's pending movements in the same transaction.
    """

    @abstractmethod
    async def create_item(self, item: InventoryItem) -> None:
        """Insert a new item together with its initial movements."""
        raise NotImplementedError

    @abstractmethod
    async def get_item(self, item_id: str, with_movements: bool = False) -> Optional[InventoryItem]:
        raise NotImplementedError

    @abstractmethod
    async def get_item_by_sku(self, sku: str) -> Optional[InventoryItem]:
        raise NotImplementedError

    @abstractmethod
    async def update_item(self, item: InventoryItem) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete_item(self, item_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_items(
        self, filters: ItemFilters | None = None, offset: int = 0, limit: int = 50
    ) -> tuple[List[InventoryItem], int]:
        """Return one page of items and the total number matching ``filters``."""
        raise NotImplementedError

    @abstractmethod
    async def list_low_stock(self) -> List[InventoryItem]:
        raise NotImplementedError

    @abstractmethod
    async def list_out_of_stock(self) -> List[InventoryItem]:
        raise NotImplementedError

    @abstractmethod
    async def list_movements(self, item_id: str, limit: int = 50) -> List[StockMovement]:
        """Newest first."""
        raise NotImplementedError

    @abstractmethod
    async def movements_between(
        self, start: datetime, end: datetime, item_id: str | None = None
    ) -> List[StockMovement]:
        raise NotImplementedError

    @abstractmethod
    async def create_supplier(self, supplier: Supplier) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_supplier(self, supplier_id: str) -> Optional[Supplier]:
        raise NotImplementedError

    @abstractmethod
    async def get_supplier_by_code(self, code: str) -> Optional[Supplier]:
        raise NotImplementedError

    @abstractmethod
    async def update_supplier(self, supplier: Supplier) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete_supplier(self, supplier_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_suppliers(self, active_only: bool = False) -> List[Supplier]:
        raise NotImplementedError

    @abstractmethod
    async def count_items_for_supplier(self, supplier_id: str) -> int:
        raise NotImplementedError
