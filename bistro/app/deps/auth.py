"""Bearer-token dependencies for routes."""

from __future__ import annotations

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from ..errors import InvalidTokenError
from ..services.identity_service import Principal
from .services import get_identity

# errors are raised as domain errors so the envelope stays uniform
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


async def current_user(
    request: Request,
    token: str | None = Depends(oauth2_scheme),
    identity=Depends(get_identity),
) -> Principal:
    """Resolve the caller from the ``Authorization: Bearer`` header."""

    if not token:
        raise InvalidTokenError("missing bearer token")
    principal = await identity.validate(token)
    request.state.user_id = principal.user.id
    return principal


def require_permission(resource: str, action: str):
    """Return a dependency that lets through callers allowed ``action`` on ``resource``."""

    async def _checker(
        principal: Principal = Depends(current_user), identity=Depends(get_identity)
    ) -> Principal:
        await identity.authorize(principal, resource, action)
        return principal

    return _checker
