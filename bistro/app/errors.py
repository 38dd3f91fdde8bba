"""Domain error taxonomy shared by every service.

Each error carries a :class:`ErrorKind` that the HTTP layer maps to a status
code, a stable machine ``code``, a user-safe ``message``, the name of the
operation that failed (``op``) and free-form ``context`` key/value pairs.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Broad failure categories."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAUTHENTICATED = "unauthenticated"
    UNAUTHORIZED = "unauthorized"
    INTERNAL = "internal"


HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL: 500,
}


class DomainError(Exception):
    """Base class for all domain failures."""

    kind: ErrorKind = ErrorKind.INTERNAL
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        op: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.op = op
        self.context: dict[str, Any] = dict(context or {})

    def with_context(self, **values: Any) -> "DomainError":
        """Attach key/value pairs and return ``self`` for chaining."""

        self.context.update(values)
        return self

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    def __str__(self) -> str:
        if self.op:
            return f"{self.op}: {self.message}"
        return self.message


class ValidationError(DomainError):
    kind = ErrorKind.VALIDATION
    code = "VALIDATION_FAILED"

    def __init__(self, field: str, reason: str, **kwargs: Any) -> None:
        super().__init__(f"{field}: {reason}", **kwargs)
        self.field = field
        self.reason = reason
        self.context.setdefault("field", field)


class NotFoundError(DomainError):
    kind = ErrorKind.NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Any, **kwargs: Any) -> None:
        super().__init__(f"{resource} not found", **kwargs)
        self.resource = resource
        self.identifier = identifier
        self.context.setdefault("resource", resource)
        self.context.setdefault("id", identifier)


class ConflictError(DomainError):
    kind = ErrorKind.CONFLICT
    code = "CONFLICT"

    def __init__(self, resource: str, reason: str, **kwargs: Any) -> None:
        super().__init__(reason, **kwargs)
        self.resource = resource
        self.reason = reason
        self.context.setdefault("resource", resource)


class AlreadyExistsError(ConflictError):
    code = "ALREADY_EXISTS"


class InsufficientStockError(ConflictError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, available: float, requested: float, **kwargs: Any) -> None:
        super().__init__("inventory_item", "insufficient stock", **kwargs)
        self.context.update(available=available, requested=requested)


class InvalidTransitionError(ConflictError):
    code = "INVALID_TRANSITION"

    def __init__(self, resource: str, src: Any, dst: Any, **kwargs: Any) -> None:
        src_v = getattr(src, "value", src)
        dst_v = getattr(dst, "value", dst)
        super().__init__(
            resource, f"cannot transition from {src_v} to {dst_v}", **kwargs
        )
        self.src = src
        self.dst = dst
        self.context.update({"from": src_v, "to": dst_v})


class TicketNotReadyError(ConflictError):
    code = "ITEMS_NOT_READY"

    def __init__(self, pending: int, **kwargs: Any) -> None:
        super().__init__(
            "kitchen_order", "all active items must be ready first", **kwargs
        )
        self.context["pending_items"] = pending


class ConcurrentUpdateError(ConflictError):
    code = "CONCURRENT_UPDATE"

    def __init__(self, resource: str, identifier: Any, **kwargs: Any) -> None:
        super().__init__(resource, "modified concurrently, reload and retry", **kwargs)
        self.context["id"] = identifier


class UnauthenticatedError(DomainError):
    kind = ErrorKind.UNAUTHENTICATED
    code = "UNAUTHENTICATED"


class InvalidCredentialsError(UnauthenticatedError):
    code = "INVALID_CREDENTIALS"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__("invalid email or password", **kwargs)


class AccountDisabledError(UnauthenticatedError):
    code = "ACCOUNT_DISABLED"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__("account is disabled", **kwargs)


class InvalidTokenError(UnauthenticatedError):
    code = "INVALID_TOKEN"

    def __init__(self, reason: str = "invalid token", **kwargs: Any) -> None:
        super().__init__(reason, **kwargs)


class TokenExpiredError(UnauthenticatedError):
    code = "TOKEN_EXPIRED"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__("token has expired", **kwargs)


class SessionNotFoundError(UnauthenticatedError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__("session not found", **kwargs)


class SessionRevokedError(UnauthenticatedError):
    code = "SESSION_INVALID"

    def __init__(self, reason: str = "session is no longer valid", **kwargs: Any) -> None:
        super().__init__(reason, **kwargs)


class RefreshTokenMismatchError(UnauthenticatedError):
    code = "TOKEN_MISMATCH"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__("refresh token does not match session", **kwargs)


class PasswordMismatchError(UnauthenticatedError):
    code = "INVALID_PASSWORD"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__("current password is incorrect", **kwargs)


class UnauthorizedError(DomainError):
    kind = ErrorKind.UNAUTHORIZED
    code = "FORBIDDEN"

    def __init__(self, resource: str, action: str, **kwargs: Any) -> None:
        super().__init__(f"not allowed to {action} {resource}", **kwargs)
        self.context.update(resource=resource, action=action)


class InternalError(DomainError):
    kind = ErrorKind.INTERNAL
    code = "INTERNAL_ERROR"


__all__ = [
    "AccountDisabledError",
    "AlreadyExistsError",
    "ConcurrentUpdateError",
    "ConflictError",
    "DomainError",
    "ErrorKind",
    "HTTP_STATUS",
    "InsufficientStockError",
    "InternalError",
    "InvalidCredentialsError",
    "InvalidTokenError",
    "InvalidTransitionError",
    "NotFoundError",
    "PasswordMismatchError",
    "RefreshTokenMismatchError",
    "SessionNotFoundError",
    "SessionRevokedError",
    "TicketNotReadyError",
    "TokenExpiredError",
    "UnauthenticatedError",
    "UnauthorizedError",
    "ValidationError",
]
