"""Users, roles, permissions and server-side sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..errors import ValidationError
from ..ids import as_utc, new_id, utcnow

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_KITCHEN = "kitchen_staff"
ROLE_WAITSTAFF = "waitstaff"
ROLE_HOST = "host"
ROLE_CASHIER = "cashier"

RESOURCES = ("menu", "order", "kitchen", "reservation", "inventory", "user", "report")
ACTIONS = ("create", "read", "update", "delete", "manage", "view")
ACTION_MANAGE = "manage"


@dataclass
class Permission:
    resource: str
    action: str
    description: str = ""
    id: str = field(default_factory=lambda: new_id("prm"))
    created_at: datetime = field(default_factory=utcnow)

    @property
    def name(self) -> str:
        return f"{self.resource}:{self.action}"

    def validate(self) -> None:
        if not self.resource:
            raise ValidationError("resource", "resource is required")
        if self.action not in ACTIONS:
            raise ValidationError("action", f"unknown action {self.action!r}")


@dataclass
class Role:
    name: str
    description: str = ""
    permissions: List[Permission] = field(default_factory=list)
    id: str = field(default_factory=lambda: new_id("rol"))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("name", "role name is required")

    def allows(self, resource: str, action: str) -> bool:
        """``manage`` on a resource implies every other action on it."""

        for perm in self.permissions:
            if perm.resource == resource and perm.action in (action, ACTION_MANAGE):
                return True
        return False


@dataclass
class User:
    email: str
    password_hash: str
    role_id: str
    is_active: bool = True
    last_login_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: new_id("usr"))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class UserSession:
    user_id: str
    token_hash: str
    refresh_token_hash: str
    expires_at: datetime
    ip_address: str = ""
    user_agent: str = ""
    is_active: bool = True
    id: str = field(default_factory=lambda: new_id("ses"))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= as_utc(self.expires_at)

    def is_valid(self, now: datetime | None = None) -> bool:
        return self.is_active and not self.is_expired(now)


DEFAULT_ROLES: Dict[str, Tuple[str, List[Tuple[str, str]]]] = {
    ROLE_ADMIN: (
        "Administrator with full system access",
        [(res, ACTION_MANAGE) for res in RESOURCES],
    ),
    ROLE_MANAGER: (
        "Restaurant manager with operational access",
        [(res, ACTION_MANAGE) for res in ("menu", "order", "kitchen", "reservation", "inventory")]
        + [("user", "read"), ("report", "view")],
    ),
    ROLE_KITCHEN: (
        "Kitchen staff with order and inventory access",
        [("kitchen", ACTION_MANAGE), ("order", "read"), ("inventory", "read"), ("inventory", "update")],
    ),
    ROLE_WAITSTAFF: (
        "Wait staff with order and customer access",
        [("order", a) for a in ("create", "read", "update")] + [("menu", "read"), ("kitchen", "read")],
    ),
    ROLE_HOST: (
        "Host with reservation and seating access",
        [("reservation", ACTION_MANAGE), ("order", "read"), ("menu", "read")],
    ),
    ROLE_CASHIER: (
        "Cashier with payment and order completion access",
        [("order", "read"), ("order", "update"), ("menu", "read"), ("report", "view")],
    ),
}


def default_role_id(name: str) -> str:
    return f"role_{name}"


def all_default_permissions() -> List[Tuple[str, str]]:
    """Every (resource, action) pair the default roles reference, deduplicated."""

    seen: List[Tuple[str, str]] = []
    for _, perms in DEFAULT_ROLES.values():
        for pair in perms:
            if pair not in seen:
                seen.append(pair)
    return seen
