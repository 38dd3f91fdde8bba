"""Relational schema for the core services.

These models describe the tables the repositories in ``repos_sqlalchemy``
read and write. Deletes are physical; referential rules that the domain
cares about (suppliers in use, for example) are checked before the delete is
issued.
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", String, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column(
        "permission_id",
        String,
        ForeignKey("permissions.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class Role(Base):
    """Staff roles such as ``admin`` or ``kitchen_staff``."""

    __tablename__ = "roles"

    id = Column(String, primary_key=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Permission(Base):
    """A ``resource:action`` grant."""

    __tablename__ = "permissions"

    id = Column(String, primary_key=True)
    name = Column(String, unique=True, nullable=False)
    resource = Column(String, nullable=False)
    action = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, unique=True, nullable=False)
    password_hash = Column(String, nullable=False)
    role_id = Column(String, ForeignKey("roles.id"), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class UserSession(Base):
    """Server-side session holding token fingerprints, never tokens."""

    __tablename__ = "user_sessions"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash = Column(String(64), nullable=False, index=True)
    refresh_token_hash = Column(String(64), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    ip_address = Column(String, nullable=False, default="")
    user_agent = Column(String, nullable=False, default="")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (Index("ix_user_sessions_user_active", "user_id", "is_active"),)


class Supplier(Base):
    __tablename__ = "suppliers"

    id = Column(String, primary_key=True)
    code = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    contact_name = Column(String, nullable=False, default="")
    email = Column(String, nullable=False, default="")
    phone = Column(String, nullable=False, default="")
    address = Column(Text, nullable=False, default="")
    website = Column(String, nullable=False, default="")
    rating = Column(Float, nullable=False, default=0.0)
    notes = Column(Text, nullable=False, default="")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class InventoryItem(Base):
    """Cached stock level plus thresholds; ``stock_movements`` is authoritative."""

    __tablename__ = "inventory"

    id = Column(String, primary_key=True)
    sku = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    current_stock = Column(Float, nullable=False, default=0.0)
    unit = Column(String, nullable=False)
    min_threshold = Column(Float, nullable=False, default=0.0)
    max_threshold = Column(Float, nullable=False, default=0.0)
    reorder_point = Column(Float, nullable=False, default=0.0)
    cost = Column(Float, nullable=False, default=0.0)
    category = Column(String, nullable=False, default="", index=True)
    location = Column(String, nullable=False, default="")
    supplier_id = Column(String, ForeignKey("suppliers.id"), nullable=True, index=True)
    last_ordered = Column(DateTime(timezone=True), nullable=True)
    expiry_date = Column(DateTime(timezone=True), nullable=True)
    movement_count = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class StockMovement(Base):
    """Append-only ledger rows; never updated once written."""

    __tablename__ = "stock_movements"

    id = Column(String, primary_key=True)
    inventory_item_id = Column(
        String, ForeignKey("inventory.id", ondelete="CASCADE"), nullable=False
    )
    seq = Column(Integer, nullable=False)
    type = Column(String, nullable=False)
    quantity = Column(Float, nullable=False)
    previous_stock = Column(Float, nullable=False)
    new_stock = Column(Float, nullable=False)
    notes = Column(Text, nullable=False, default="")
    reference = Column(String, nullable=False, default="", index=True)
    performed_by = Column(String, nullable=False, default="")
    performed_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("inventory_item_id", "seq", name="uq_stock_movements_item_seq"),
        Index(
            "ix_stock_movements_item_performed",
            "inventory_item_id",
            performed_at.desc(),
        ),
    )


class KitchenOrder(Base):
    """Kitchen ticket for one customer order."""

    __tablename__ = "kitchen_orders"

    id = Column(String, primary_key=True)
    order_id = Column(String, unique=True, nullable=False)
    table_id = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, index=True)
    priority = Column(String, nullable=False)
    assigned_station = Column(String, nullable=False, default="", index=True)
    estimated_override_secs = Column(Float, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=False, default="")
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class KitchenOrderItem(Base):
    __tablename__ = "kitchen_order_items"

    id = Column(String, primary_key=True)
    kitchen_order_id = Column(
        String, ForeignKey("kitchen_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False, default=0)
    menu_item_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    status = Column(String, nullable=False)
    prep_time_secs = Column(Float, nullable=False, default=0.0)
    modifications = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=False, default="")
    assigned_station = Column(String, nullable=False, default="")
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True)
    customer_id = Column(String, nullable=False, index=True)
    order_type = Column(String, nullable=False)
    status = Column(String, nullable=False, index=True)
    table_id = Column(String, nullable=False, default="")
    delivery_address = Column(Text, nullable=False, default="")
    notes = Column(Text, nullable=False, default="")
    subtotal = Column(Float, nullable=False, default=0.0)
    tax_amount = Column(Float, nullable=False, default=0.0)
    total_amount = Column(Float, nullable=False, default=0.0)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String, primary_key=True)
    order_id = Column(
        String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False, default=0)
    menu_item_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    modifications = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=False, default="")
    prep_time_secs = Column(Float, nullable=False, default=0.0)
