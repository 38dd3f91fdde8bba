"""Identifier and clock helpers."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone


def new_id(prefix: str) -> str:
    """Return an opaque identifier such as ``inv_3f2a...``."""

    return f"{prefix}_{uuid.uuid4().hex}"


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalise ``value`` to an aware UTC datetime.

    SQLite drops tzinfo on round-trip, so naive values read back from the
    database are treated as UTC.
    """

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
