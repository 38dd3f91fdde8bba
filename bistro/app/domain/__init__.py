"""Domain models and helpers."""

from .identity import Permission, Role, User, UserSession
from .inventory import InventoryItem, MovementType, StockMovement, Supplier, Unit
from .kitchen import ItemStatus, KitchenTicket, KitchenTicketItem, Priority, TicketStatus
from .order_status import OrderStatus, TRANSITIONS, can_transition
from .orders import Order, OrderItem, OrderType

__all__ = [
    "InventoryItem",
    "ItemStatus",
    "KitchenTicket",
    "KitchenTicketItem",
    "MovementType",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderType",
    "Permission",
    "Priority",
    "Role",
    "StockMovement",
    "Supplier",
    "TRANSITIONS",
    "TicketStatus",
    "Unit",
    "User",
    "UserSession",
    "can_transition",
]
