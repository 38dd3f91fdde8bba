from .identity_service import AuthResult, IdentityService, Principal, build_identity_service
from .inventory_service import InventoryService, StockLevel
from .kitchen_service import KitchenService
from .order_service import OrderService, register_order_handlers

__all__ = [
    "AuthResult",
    "IdentityService",
    "InventoryService",
    "KitchenService",
    "OrderService",
    "Principal",
    "StockLevel",
    "build_identity_service",
    "register_order_handlers",
]
