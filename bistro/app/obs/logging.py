import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

from ..middlewares.request_id import request_id_ctx

EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+", re.I)
BEARER_RE = re.compile(r"(?i)(bearer\s+)[\w.-]+")
JWT_RE = re.compile(r"\beyJ[\w-]+\.[\w-]+\.[\w-]+")

# attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime", "req_id"}
_FIXED = ("user", "route", "status", "latency_ms")


def _redact_pii(text: str) -> str:
    """Replace emails, bearer tokens and bare JWTs with ***."""
    text = EMAIL_RE.sub("***", text)
    text = BEARER_RE.sub(lambda m: m.group(1) + "***", text)
    text = JWT_RE.sub("***", text)
    return text


class RequestIdFilter(logging.Filter):
    """Attach request id from context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - trivial
        record.req_id = request_id_ctx.get(None)
        return True


class JsonFormatter(logging.Formatter):
    """Render logs as a single JSON object.

    The access-log fields are always present; other ``extra`` keys such as
    ``sku`` or ``order_reference`` are appended when a caller supplies them.
    """

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "req_id": getattr(record, "req_id", None),
            "msg": _redact_pii(record.getMessage()),
        }
        for key in _FIXED:
            data[key] = getattr(record, key, None)
        for key, value in vars(record).items():
            if key in _RESERVED or key in data:
                continue
            if value is None or isinstance(value, (int, float, bool)):
                data[key] = value
            else:
                data[key] = _redact_pii(str(value))
        if record.exc_info:
            data["exc"] = _redact_pii(self.formatException(record.exc_info))
        return json.dumps(data)


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure root logger with JSON formatting."""

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestIdFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
