"""Authentication, session and user administration routes."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from .deps.auth import current_user, require_permission
from .deps.services import get_identity
from .domain.identity import User
from .services.identity_service import AuthResult, IdentityService, Principal
from .utils.responses import ok

router = APIRouter()


class RegisterIn(BaseModel):
    email: str
    password: str
    role_id: Optional[str] = None


class LoginIn(BaseModel):
    email: str
    password: str


class RefreshIn(BaseModel):
    refresh_token: str


class ChangePasswordIn(BaseModel):
    current_password: str
    new_password: str


class UserUpdateIn(BaseModel):
    email: Optional[str] = None


class RoleAssignIn(BaseModel):
    role_id: str


class RoleIn(BaseModel):
    name: str
    description: str = ""


class PermissionIn(BaseModel):
    resource: str
    action: str
    description: str = ""


class RolePermissionsIn(BaseModel):
    permissions: List[str]


def _user_view(user: User) -> dict:
    """Public projection of a user; the hash never leaves the service."""

    return {
        "id": user.id,
        "email": user.email,
        "role_id": user.role_id,
        "is_active": user.is_active,
        "last_login_at": user.last_login_at,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


def _auth_view(result: AuthResult) -> dict:
    tokens = result.tokens
    return {
        "access_token": tokens.access_token,
        "refresh_token": tokens.refresh_token,
        "token_type": tokens.token_type,
        "expires_at": tokens.access_expires_at,
        "refresh_expires_at": tokens.refresh_expires_at,
        "session_id": tokens.session_id,
        "user": _user_view(result.user),
        "role": result.role.name if result.role else None,
    }


@router.post("/api/auth/register", status_code=201)
async def register(payload: RegisterIn, identity: IdentityService = Depends(get_identity)) -> dict:
    user = await identity.register(payload.email, payload.password, payload.role_id)
    return ok(_user_view(user))


@router.post("/api/auth/login")
async def login(
    payload: LoginIn, request: Request, identity: IdentityService = Depends(get_identity)
) -> dict:
    result = await identity.login(
        payload.email,
        payload.password,
        ip_address=request.client.host if request.client else "",
        user_agent=request.headers.get("user-agent", ""),
    )
    return ok(_auth_view(result))


@router.post("/api/auth/refresh")
async def refresh(payload: RefreshIn, identity: IdentityService = Depends(get_identity)) -> dict:
    return ok(_auth_view(await identity.refresh(payload.refresh_token)))


@router.post("/api/auth/logout")
async def logout(
    principal: Principal = Depends(current_user),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    await identity.logout(principal.session_id)
    return ok({"session_id": principal.session_id})


@router.get("/api/auth/me")
async def me(principal: Principal = Depends(current_user)) -> dict:
    data = _user_view(principal.user)
    data["role"] = principal.role.name if principal.role else None
    data["permissions"] = [p.name for p in principal.role.permissions] if principal.role else []
    return ok(data)


@router.post("/api/auth/change-password")
async def change_password(
    payload: ChangePasswordIn,
    principal: Principal = Depends(current_user),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    await identity.change_password(
        principal.user.id, payload.current_password, payload.new_password
    )
    return ok({"changed": True})


@router.get("/api/auth/sessions")
async def my_sessions(
    principal: Principal = Depends(current_user),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    sessions = await identity.list_sessions(principal.user.id)
    return ok(
        [
            {
                "id": s.id,
                "ip_address": s.ip_address,
                "user_agent": s.user_agent,
                "expires_at": s.expires_at,
                "created_at": s.created_at,
                "current": s.id == principal.session_id,
            }
            for s in sessions
        ]
    )


@router.post("/api/auth/sessions/cleanup")
async def cleanup_sessions(
    _: Principal = Depends(require_permission("user", "manage")),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    return ok({"removed": await identity.cleanup_sessions()})


# users -----------------------------------------------------------------------


@router.get("/api/users")
async def list_users(
    offset: int = 0,
    limit: int = 50,
    _: Principal = Depends(require_permission("user", "read")),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    users, total = await identity.list_users(offset, limit)
    return ok({"items": [_user_view(u) for u in users], "total": total})


@router.get("/api/users/{user_id}")
async def get_user(
    user_id: str,
    _: Principal = Depends(require_permission("user", "read")),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    return ok(_user_view(await identity.get_user(user_id)))


@router.patch("/api/users/{user_id}")
async def update_user(
    user_id: str,
    payload: UserUpdateIn,
    _: Principal = Depends(require_permission("user", "update")),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    return ok(_user_view(await identity.update_user(user_id, email=payload.email)))


@router.post("/api/users/{user_id}/activate")
async def activate_user(
    user_id: str,
    _: Principal = Depends(require_permission("user", "update")),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    return ok(_user_view(await identity.activate_user(user_id)))


@router.post("/api/users/{user_id}/deactivate")
async def deactivate_user(
    user_id: str,
    _: Principal = Depends(require_permission("user", "update")),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    return ok(_user_view(await identity.deactivate_user(user_id)))


@router.delete("/api/users/{user_id}")
async def delete_user(
    user_id: str,
    _: Principal = Depends(require_permission("user", "delete")),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    await identity.delete_user(user_id)
    return ok({"deleted": user_id})


@router.put("/api/users/{user_id}/role")
async def assign_role(
    user_id: str,
    payload: RoleAssignIn,
    _: Principal = Depends(require_permission("user", "manage")),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    return ok(_user_view(await identity.assign_role(user_id, payload.role_id)))


@router.post("/api/users/{user_id}/sessions/invalidate")
async def invalidate_user_sessions(
    user_id: str,
    _: Principal = Depends(require_permission("user", "manage")),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    return ok({"invalidated": await identity.invalidate_user_sessions(user_id)})


# roles -----------------------------------------------------------------------


@router.get("/api/roles")
async def list_roles(
    _: Principal = Depends(require_permission("user", "read")),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    return ok(await identity.list_roles())


@router.post("/api/roles", status_code=201)
async def create_role(
    payload: RoleIn,
    _: Principal = Depends(require_permission("user", "manage")),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    return ok(await identity.create_role(payload.name, payload.description))


@router.put("/api/roles/{role_id}/permissions")
async def set_role_permissions(
    role_id: str,
    payload: RolePermissionsIn,
    _: Principal = Depends(require_permission("user", "manage")),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    return ok(await identity.set_role_permissions(role_id, payload.permissions))


@router.post("/api/roles/{role_id}/permissions/{permission}")
async def grant_permission(
    role_id: str,
    permission: str,
    _: Principal = Depends(require_permission("user", "manage")),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    return ok(await identity.grant_permission(role_id, permission))


@router.delete("/api/roles/{role_id}/permissions/{permission}")
async def revoke_permission(
    role_id: str,
    permission: str,
    _: Principal = Depends(require_permission("user", "manage")),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    return ok(await identity.revoke_permission(role_id, permission))


@router.delete("/api/roles/{role_id}")
async def delete_role(
    role_id: str,
    _: Principal = Depends(require_permission("user", "manage")),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    await identity.delete_role(role_id)
    return ok({"deleted": role_id})


@router.get("/api/permissions")
async def list_permissions(
    _: Principal = Depends(require_permission("user", "read")),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    return ok(await identity.list_permissions())


@router.post("/api/permissions", status_code=201)
async def create_permission(
    payload: PermissionIn,
    _: Principal = Depends(require_permission("user", "manage")),
    identity: IdentityService = Depends(get_identity),
) -> dict:
    return ok(
        await identity.create_permission(payload.resource, payload.action, payload.description)
    )
