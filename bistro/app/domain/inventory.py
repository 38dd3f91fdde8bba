"""Inventory aggregate: items, their append-only movement ledger and suppliers.

``InventoryItem.current_stock`` is a memo of the ledger. Every change goes
through :meth:`InventoryItem.apply_movement`, which validates the movement
against the algebra below before touching any state, so a refused movement
leaves the aggregate exactly as it was.

=========  ======================  =====================
kind       precondition            effect
=========  ======================  =====================
RECEIVED   q > 0                   stock += q
USED       q > 0, stock >= q       stock -= q
WASTED     q > 0, stock >= q       stock -= q
RETURNED   q > 0, stock >= q       stock -= q
ADJUSTED   q >= 0                  stock := q
=========  ======================  =====================
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional

from ..errors import ConflictError, InsufficientStockError, ValidationError
from ..ids import new_id, utcnow

RESERVATION_NOTE = "Stock reserved for order"
RELEASE_NOTE = "Reservation released"
INITIAL_STOCK_NOTE = "initial stock"
# stock levels are kept to this many decimals so repeated fractional draws land exactly
QUANTITY_DECIMALS = 6

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class MovementType(str, Enum):
    RECEIVED = "RECEIVED"
    USED = "USED"
    WASTED = "WASTED"
    ADJUSTED = "ADJUSTED"
    RETURNED = "RETURNED"


DECREMENTING = {MovementType.USED, MovementType.WASTED, MovementType.RETURNED}


class Unit(str, Enum):
    KG = "KG"
    L = "L"
    UNITS = "UNITS"
    G = "G"
    ML = "ML"


class AlertType(str, Enum):
    LOW_STOCK = "LOW_STOCK"
    OUT_OF_STOCK = "OUT_OF_STOCK"


@dataclass(frozen=True)
class StockMovement:
    """One immutable ledger entry."""

    inventory_item_id: str
    type: MovementType
    quantity: float
    previous_stock: float
    new_stock: float
    seq: int
    notes: str = ""
    reference: str = ""
    performed_by: str = ""
    performed_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: new_id("mov"))

    @property
    def delta(self) -> float:
        """Signed change this movement made to the stock level."""

        return self.new_stock - self.previous_stock


def quantize(value: float) -> float:
    return round(float(value), QUANTITY_DECIMALS)


def replay(movements: Iterable[StockMovement]) -> float:
    """Fold ``movements`` (oldest first) into a stock level."""

    level = 0.0
    for mov in movements:
        if mov.type == MovementType.ADJUSTED:
            level = mov.quantity
        elif mov.type == MovementType.RECEIVED:
            level = quantize(level + mov.quantity)
        else:
            level = quantize(level - mov.quantity)
    return level


def detect_alert(previous: float, current: float, reorder_point: float) -> Optional[AlertType]:
    """Return the threshold edge crossed by moving from ``previous`` to ``current``.

    Out-of-stock wins over low-stock; nothing is reported when the level was
    already past the threshold before the change.
    """

    if previous > 0 and current <= 0:
        return AlertType.OUT_OF_STOCK
    if previous > reorder_point and current <= reorder_point:
        return AlertType.LOW_STOCK
    return None


def _non_negative(name: str, value: float) -> None:
    if value is None or value < 0:
        raise ValidationError(name, "cannot be negative")


@dataclass
class InventoryItem:
    """Aggregate root owning the movement ledger of a single SKU."""

    sku: str
    name: str
    unit: Unit = Unit.UNITS
    description: str = ""
    category: str = ""
    location: str = ""
    current_stock: float = 0.0
    min_threshold: float = 0.0
    max_threshold: float = 0.0
    reorder_point: float = 0.0
    cost: float = 0.0
    supplier_id: Optional[str] = None
    last_ordered: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    movement_count: int = 0
    version: int = 0
    id: str = field(default_factory=lambda: new_id("inv"))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    movements: List[StockMovement] = field(default_factory=list, repr=False)
    pending_movements: List[StockMovement] = field(
        default_factory=list, repr=False, compare=False
    )

    @classmethod
    def new(
        cls,
        sku: str,
        name: str,
        unit: Unit | str = Unit.UNITS,
        *,
        initial_stock: float = 0.0,
        cost: float = 0.0,
        performed_by: str = "",
        **details,
    ) -> "InventoryItem":
        """Validate and build a fresh item.

        A positive ``initial_stock`` is recorded as a RECEIVED movement so the
        ledger accounts for it.
        """

        if not sku or not sku.strip():
            raise ValidationError("sku", "SKU is required", op="InventoryItem.new")
        if not name or not name.strip():
            raise ValidationError("name", "name is required", op="InventoryItem.new")
        if initial_stock is None or initial_stock < 0:
            raise ValidationError(
                "initial_stock", "initial stock cannot be negative", op="InventoryItem.new"
            )
        if cost is None or cost < 0:
            raise ValidationError("cost", "cost cannot be negative", op="InventoryItem.new")
        try:
            unit = Unit(unit)
        except ValueError as exc:
            raise ValidationError("unit", f"unknown unit {unit!r}", op="InventoryItem.new") from exc
        item = cls(sku=sku.strip(), name=name.strip(), unit=unit, cost=cost, **details)
        if initial_stock > 0:
            item.apply_movement(
                MovementType.RECEIVED,
                initial_stock,
                notes=INITIAL_STOCK_NOTE,
                performed_by=performed_by,
            )
        return item

    # -- derived state ---------------------------------------------------

    @property
    def is_low_stock(self) -> bool:
        return self.current_stock <= self.reorder_point

    @property
    def is_out_of_stock(self) -> bool:
        return self.current_stock <= 0

    def can_fulfill(self, quantity: float) -> bool:
        return quantize(self.current_stock - quantity) >= 0

    # -- ledger ----------------------------------------------------------

    def apply_movement(
        self,
        movement_type: MovementType | str,
        quantity: float,
        *,
        notes: str = "",
        reference: str = "",
        performed_by: str = "",
        at: datetime | None = None,
    ) -> StockMovement:
        """Append a movement and update the cached stock level."""

        op = "InventoryItem.apply_movement"
        try:
            movement_type = MovementType(movement_type)
        except ValueError as exc:
            raise ValidationError("type", f"unknown movement type {movement_type!r}", op=op) from exc

        if quantity is None:
            raise ValidationError("quantity", "quantity is required", op=op)
        quantity = quantize(quantity)
        if movement_type == MovementType.ADJUSTED:
            if quantity < 0:
                raise ValidationError("quantity", "adjusted level cannot be negative", op=op)
        elif quantity <= 0:
            raise ValidationError("quantity", "quantity must be positive", op=op)

        previous = self.current_stock
        if movement_type in DECREMENTING and quantize(previous - quantity) < 0:
            raise InsufficientStockError(previous, quantity, op=op).with_context(
                sku=self.sku, movement_type=movement_type.value
            )

        if movement_type == MovementType.RECEIVED:
            new_level = quantize(previous + quantity)
        elif movement_type == MovementType.ADJUSTED:
            new_level = quantity
        else:
            new_level = quantize(previous - quantity)

        when = at or utcnow()
        movement = StockMovement(
            inventory_item_id=self.id,
            type=movement_type,
            quantity=float(quantity),
            previous_stock=previous,
            new_stock=new_level,
            seq=self.movement_count + 1,
            notes=notes,
            reference=reference,
            performed_by=performed_by,
            performed_at=when,
        )
        self.current_stock = new_level
        self.movement_count = movement.seq
        self.updated_at = when
        self.movements.append(movement)
        self.pending_movements.append(movement)
        return movement

    def reserve(self, quantity: float, order_id: str, performed_by: str = "") -> StockMovement:
        """Take stock for ``order_id`` as a tagged USED movement."""

        return self.apply_movement(
            MovementType.USED,
            quantity,
            notes=RESERVATION_NOTE,
            reference=order_id,
            performed_by=performed_by,
        )

    def release(self, quantity: float, order_id: str, performed_by: str = "") -> StockMovement:
        """Give back a reservation with an offsetting RECEIVED movement."""

        return self.apply_movement(
            MovementType.RECEIVED,
            quantity,
            notes=RELEASE_NOTE,
            reference=order_id,
            performed_by=performed_by,
        )

    def take_pending_movements(self) -> List[StockMovement]:
        pending, self.pending_movements = self.pending_movements, []
        return pending

    def ledger_is_consistent(self) -> bool:
        """Check the loaded ledger replays to the cached stock level."""

        return abs(replay(self.movements) - self.current_stock) < 1e-9

    # -- attributes ------------------------------------------------------

    def update_thresholds(self, minimum: float, maximum: float, reorder_point: float) -> None:
        op = "InventoryItem.update_thresholds"
        _non_negative("min_threshold", minimum)
        _non_negative("max_threshold", maximum)
        _non_negative("reorder_point", reorder_point)
        if maximum < minimum:
            raise ConflictError(
                "inventory_item", "max threshold cannot be less than min threshold", op=op
            )
        if reorder_point < minimum or reorder_point > maximum:
            raise ConflictError(
                "inventory_item", "reorder point must be between min and max thresholds", op=op
            )
        self.min_threshold = float(minimum)
        self.max_threshold = float(maximum)
        self.reorder_point = float(reorder_point)
        self.updated_at = utcnow()

    def update_details(
        self,
        name: str,
        description: str = "",
        category: str = "",
        location: str = "",
        cost: float = 0.0,
        expiry_date: datetime | None = None,
    ) -> None:
        op = "InventoryItem.update_details"
        if not name or not name.strip():
            raise ValidationError("name", "name is required", op=op)
        if cost is None or cost < 0:
            raise ValidationError("cost", "cost cannot be negative", op=op)
        self.name = name.strip()
        self.description = description
        self.category = category
        self.location = location
        self.cost = float(cost)
        if expiry_date is not None:
            self.expiry_date = expiry_date
        self.updated_at = utcnow()

    def set_supplier(self, supplier_id: str | None) -> None:
        self.supplier_id = supplier_id
        self.updated_at = utcnow()

    def mark_ordered(self, at: datetime | None = None) -> None:
        self.last_ordered = at or utcnow()
        self.updated_at = self.last_ordered


@dataclass
class Supplier:
    """A vendor referenced by inventory items."""

    code: str
    name: str
    contact_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    website: str = ""
    rating: float = 0.0
    notes: str = ""
    is_active: bool = True
    id: str = field(default_factory=lambda: new_id("sup"))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(cls, code: str, name: str, **details) -> "Supplier":
        supplier = cls(code=(code or "").strip(), name=(name or "").strip(), **details)
        supplier.validate()
        return supplier

    def validate(self) -> None:
        op = "Supplier.validate"
        if not self.code:
            raise ValidationError("code", "supplier code is required", op=op)
        if not self.name:
            raise ValidationError("name", "supplier name is required", op=op)
        if not self.email and not self.phone:
            raise ValidationError("contact", "email or phone is required", op=op)
        if self.email and not EMAIL_RE.match(self.email):
            raise ValidationError("email", "invalid email address", op=op)
        if self.rating is None or not 0 <= self.rating <= 5:
            raise ValidationError("rating", "rating must be between 0 and 5", op=op)

    def update_details(self, **changes) -> None:
        """Apply ``changes`` atomically; invalid input leaves the supplier untouched."""

        allowed = {
            "name", "contact_name", "email", "phone", "address", "website", "rating", "notes",
        }
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(sorted(unknown)[0], "field cannot be updated")
        snapshot = {k: getattr(self, k) for k in allowed}
        for key, value in changes.items():
            setattr(self, key, value.strip() if isinstance(value, str) and key == "name" else value)
        try:
            self.validate()
        except ValidationError:
            for key, value in snapshot.items():
                setattr(self, key, value)
            raise
        self.updated_at = utcnow()

    def activate(self) -> None:
        self.is_active = True
        self.updated_at = utcnow()

    def deactivate(self) -> None:
        self.is_active = False
        self.updated_at = utcnow()
