"""Repository contracts, one per aggregate."""

from .identity_repo import IdentityRepo
from .inventory_repo import InventoryRepo, ItemFilters
from .kitchen_repo import KitchenRepo, TicketFilters
from .orders_repo import OrdersRepo

__all__ = [
    "IdentityRepo",
    "InventoryRepo",
    "ItemFilters",
    "KitchenRepo",
    "OrdersRepo",
    "TicketFilters",
]
