"""Statement timing for SQLAlchemy engines."""

from __future__ import annotations

import hashlib
import logging
import random
import time
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger("bistro.db")

MAX_SQL_CHARS = 200


def _shorten(statement: str) -> str:
    sql = " ".join(statement.split())
    if len(sql) > MAX_SQL_CHARS:
        sql = sql[: MAX_SQL_CHARS - 3] + "..."
    return sql


def _params_digest(parameters: Any) -> str:
    # bound values include password hashes and token fingerprints
    return hashlib.sha256(repr(parameters).encode()).hexdigest()[:8]


def add_query_logger(
    engine: AsyncEngine,
    label: str,
    *,
    slow_ms: int = 200,
    sample_rate: float = 0.01,
) -> None:
    """Warn about statements slower than ``slow_ms`` and sample the rest at debug."""

    target = engine.sync_engine

    @event.listens_for(target, "before_cursor_execute")
    def _started(conn, cursor, statement, parameters, context, executemany):  # type: ignore[no-untyped-def]
        context._bistro_started = time.perf_counter()

    @event.listens_for(target, "after_cursor_execute")
    def _finished(conn, cursor, statement, parameters, context, executemany):  # type: ignore[no-untyped-def]
        elapsed_ms = int((time.perf_counter() - context._bistro_started) * 1000)
        if elapsed_ms >= slow_ms:
            level = logging.WARNING
        elif random.random() < sample_rate:
            level = logging.DEBUG
        else:
            return
        logger.log(
            level,
            "query %dms db=%s sql=%s params=%s",
            elapsed_ms,
            label,
            _shorten(statement),
            _params_digest(parameters),
        )
