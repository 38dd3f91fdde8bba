"""Authentication, sessions and user/role administration.

Tokens are signed JWTs, but a token is only honoured while the server-side
session it is bound to exists, is active and still holds the token's
fingerprint. Logout, password change, deactivation and refresh rotation all
work by changing that session row.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

from config import Settings

from ..domain.identity import (
    DEFAULT_ROLES,
    ROLE_WAITSTAFF,
    Permission,
    Role,
    User,
    UserSession,
    all_default_permissions,
    default_role_id,
)
from ..errors import (
    AccountDisabledError,
    AlreadyExistsError,
    ConflictError,
    InvalidCredentialsError,
    InvalidTokenError,
    NotFoundError,
    PasswordMismatchError,
    RefreshTokenMismatchError,
    SessionNotFoundError,
    SessionRevokedError,
    UnauthorizedError,
    ValidationError,
)
from ..ids import new_id, utcnow
from ..repos.identity_repo import IdentityRepo
from ..security.passwords import PasswordService
from ..security.tokens import TokenPair, TokenService, TokenType, fingerprint

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class AuthResult:
    user: User
    role: Optional[Role]
    tokens: TokenPair


@dataclass
class Principal:
    """The authenticated caller behind a validated access token."""

    user: User
    role: Optional[Role]
    session_id: str

    def can(self, resource: str, action: str) -> bool:
        return self.role is not None and self.role.allows(resource, action)


def _normalise_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not email:
        raise ValidationError("email", "email is required")
    if not EMAIL_RE.match(email):
        raise ValidationError("email", "invalid email format")
    return email


def build_identity_service(repo: IdentityRepo, settings: Settings) -> "IdentityService":
    return IdentityService(
        repo,
        PasswordService(settings.password_time_cost, settings.password_memory_cost),
        TokenService(
            settings.jwt_secret,
            settings.jwt_issuer,
            settings.jwt_audience,
            access_ttl=timedelta(seconds=settings.access_token_ttl),
            refresh_ttl=timedelta(seconds=settings.refresh_token_ttl),
        ),
    )


class IdentityService:
    def __init__(self, repo: IdentityRepo, passwords: PasswordService, tokens: TokenService) -> None:
        self.repo = repo
        self.passwords = passwords
        self.tokens = tokens

    # registration and login -------------------------------------------------

    async def register(self, email: str, password: str, role_id: str | None = None) -> User:
        op = "IdentityService.register"
        email = _normalise_email(email)
        if not password:
            raise ValidationError("password", "password is required", op=op)
        role_id = role_id or default_role_id(ROLE_WAITSTAFF)
        if await self.repo.get_role(role_id) is None:
            raise ValidationError("role_id", "invalid role ID", op=op)
        if await self.repo.get_user_by_email(email) is not None:
            raise AlreadyExistsError("user", "user with this email already exists", op=op)

        user = User(email=email, password_hash=self.passwords.hash(password), role_id=role_id)
        await self.repo.create_user(user)
        logger.info("user %s registered with role %s", user.id, role_id)
        return user

    async def login(
        self, email: str, password: str, ip_address: str = "", user_agent: str = ""
    ) -> AuthResult:
        op = "IdentityService.login"
        if not email or not password:
            raise InvalidCredentialsError(op=op)
        user = await self.repo.get_user_by_email(email.strip().lower())
        # same error for unknown email and wrong password
        if user is None or not self.passwords.verify(password, user.password_hash):
            logger.info("failed login attempt")
            raise InvalidCredentialsError(op=op)
        if not user.is_active:
            raise AccountDisabledError(op=op)

        session_id = new_id("ses")
        pair = self.tokens.issue_pair(
            user_id=user.id, session_id=session_id, role_id=user.role_id, email=user.email
        )
        now = utcnow()
        await self.repo.create_session(
            UserSession(
                id=session_id,
                user_id=user.id,
                token_hash=fingerprint(pair.access_token),
                refresh_token_hash=fingerprint(pair.refresh_token),
                expires_at=pair.refresh_expires_at,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )
        await self.repo.update_last_login(user.id, now)
        user.last_login_at = now
        if self.passwords.needs_rehash(user.password_hash):
            # parameters changed since this hash was made; password is known good here
            await self.repo.update_password(user.id, self.passwords.hash(password))
        logger.info("user %s logged in (session %s)", user.id, session_id)
        return AuthResult(user=user, role=await self.repo.get_role(user.role_id), tokens=pair)

    async def logout(self, session_id: str) -> None:
        """Mark the session inactive; unknown sessions are already logged out."""

        if await self.repo.get_session(session_id) is None:
            return
        await self.repo.invalidate_session(session_id)
        logger.info("session %s logged out", session_id)

    # tokens ------------------------------------------------------------------

    async def _active_user(self, user_id: str, session: UserSession, op: str) -> User:
        user = await self.repo.get_user(user_id)
        if user is None:
            await self.repo.invalidate_session(session.id)
            raise InvalidTokenError("user no longer exists", op=op)
        if not user.is_active:
            await self.repo.invalidate_session(session.id)
            raise AccountDisabledError(op=op)
        return user

    async def refresh(self, refresh_token: str) -> AuthResult:
        """Rotate both tokens of the session ``refresh_token`` belongs to."""

        op = "IdentityService.refresh"
        claims = self.tokens.decode(refresh_token, TokenType.REFRESH)
        session = await self.repo.get_session(claims.session_id)
        if session is None:
            raise SessionNotFoundError(op=op)
        if not session.is_valid():
            raise SessionRevokedError(op=op)
        presented = fingerprint(refresh_token)
        if session.refresh_token_hash != presented:
            logger.warning("refresh token replay on session %s", session.id)
            raise RefreshTokenMismatchError(op=op)
        user = await self._active_user(session.user_id, session, op)

        pair = self.tokens.issue_pair(
            user_id=user.id, session_id=session.id, role_id=user.role_id, email=user.email
        )
        session.token_hash = fingerprint(pair.access_token)
        session.refresh_token_hash = fingerprint(pair.refresh_token)
        session.expires_at = pair.refresh_expires_at
        if not await self.repo.rotate_session(session, presented):
            # lost the race to another rotation or a logout
            logger.warning("refresh token replay on session %s", session.id)
            raise RefreshTokenMismatchError(op=op)
        return AuthResult(user=user, role=await self.repo.get_role(user.role_id), tokens=pair)

    async def validate(self, access_token: str) -> Principal:
        op = "IdentityService.validate"
        claims = self.tokens.decode(access_token, TokenType.ACCESS)
        session = await self.repo.get_session_by_token_hash(fingerprint(access_token))
        if session is None:
            raise SessionNotFoundError(op=op)
        if not session.is_valid():
            raise SessionRevokedError(op=op)
        if session.id != claims.session_id:
            raise InvalidTokenError("token does not belong to this session", op=op)
        user = await self._active_user(claims.user_id, session, op)
        return Principal(user=user, role=await self.repo.get_role(user.role_id), session_id=session.id)

    # passwords and sessions --------------------------------------------------

    async def change_password(self, user_id: str, current: str, new: str) -> None:
        op = "IdentityService.change_password"
        user = await self._require_user(user_id, op)
        if not self.passwords.verify(current, user.password_hash):
            raise PasswordMismatchError(op=op)
        if current == new:
            raise ValidationError("new_password", "new password must differ from the current one", op=op)
        await self.repo.update_password(user.id, self.passwords.hash(new))
        revoked = await self.repo.invalidate_user_sessions(user.id)
        logger.info("password changed for %s, %d session(s) revoked", user.id, revoked)

    async def list_sessions(self, user_id: str) -> List[UserSession]:
        await self._require_user(user_id, "IdentityService.list_sessions")
        return await self.repo.active_sessions(user_id)

    async def invalidate_user_sessions(self, user_id: str) -> int:
        return await self.repo.invalidate_user_sessions(user_id)

    async def cleanup_sessions(self) -> int:
        removed = await self.repo.cleanup_sessions(utcnow())
        if removed:
            logger.info("removed %d expired or inactive session(s)", removed)
        return removed

    # users -------------------------------------------------------------------

    async def _require_user(self, user_id: str, op: str) -> User:
        user = await self.repo.get_user(user_id)
        if user is None:
            raise NotFoundError("user", user_id, op=op)
        return user

    async def get_user(self, user_id: str) -> User:
        return await self._require_user(user_id, "IdentityService.get_user")

    async def list_users(self, offset: int = 0, limit: int = 50) -> tuple[List[User], int]:
        if offset < 0:
            raise ValidationError("offset", "offset cannot be negative")
        if limit <= 0 or limit > 500:
            raise ValidationError("limit", "limit must be between 1 and 500")
        return await self.repo.list_users(offset, limit)

    async def update_user(self, user_id: str, *, email: str | None = None) -> User:
        op = "IdentityService.update_user"
        user = await self._require_user(user_id, op)
        if email is not None:
            email = _normalise_email(email)
            if email != user.email:
                other = await self.repo.get_user_by_email(email)
                if other is not None:
                    raise AlreadyExistsError("user", "user with this email already exists", op=op)
                user.email = email
        await self.repo.update_user(user)
        return user

    async def activate_user(self, user_id: str) -> User:
        user = await self._require_user(user_id, "IdentityService.activate_user")
        user.is_active = True
        await self.repo.update_user(user)
        return user

    async def deactivate_user(self, user_id: str) -> User:
        user = await self._require_user(user_id, "IdentityService.deactivate_user")
        user.is_active = False
        await self.repo.update_user(user)
        await self.repo.invalidate_user_sessions(user.id)
        logger.info("user %s deactivated", user.id)
        return user

    async def delete_user(self, user_id: str) -> None:
        """Remove the user together with every session it owns."""

        await self._require_user(user_id, "IdentityService.delete_user")
        await self.repo.delete_user(user_id)
        logger.info("user %s deleted", user_id)

    async def assign_role(self, user_id: str, role_id: str) -> User:
        op = "IdentityService.assign_role"
        user = await self._require_user(user_id, op)
        await self._require_role(role_id, op)
        user.role_id = role_id
        await self.repo.update_user(user)
        return user

    # roles and permissions ---------------------------------------------------

    async def list_roles(self) -> List[Role]:
        return await self.repo.list_roles()

    async def list_permissions(self) -> List[Permission]:
        return await self.repo.list_permissions()

    async def _require_role(self, role_id: str, op: str) -> Role:
        role = await self.repo.get_role(role_id)
        if role is None:
            raise NotFoundError("role", role_id, op=op)
        return role

    async def _require_permission(self, name: str, op: str) -> Permission:
        permission = await self.repo.get_permission_by_name(name)
        if permission is None:
            raise NotFoundError("permission", name, op=op)
        return permission

    async def create_role(self, name: str, description: str = "", role_id: str | None = None) -> Role:
        role = Role(name=(name or "").strip(), description=description)
        if role_id:
            role.id = role_id
        role.validate()
        if await self.repo.get_role_by_name(role.name) is not None:
            raise AlreadyExistsError(
                "role", f"role {role.name!r} already exists", op="IdentityService.create_role"
            )
        await self.repo.create_role(role)
        return role

    async def delete_role(self, role_id: str) -> None:
        op = "IdentityService.delete_role"
        await self._require_role(role_id, op)
        holders = await self.repo.count_users_with_role(role_id)
        if holders:
            raise ConflictError("role", "role is assigned to users", op=op).with_context(
                users=holders
            )
        await self.repo.delete_role(role_id)
        logger.info("role %s deleted", role_id)

    async def create_permission(self, resource: str, action: str, description: str = "") -> Permission:
        permission = Permission(resource=resource, action=action, description=description)
        permission.validate()
        await self.repo.create_permission(permission)
        return permission

    async def set_role_permissions(self, role_id: str, permission_names: List[str]) -> Role:
        """Replace the whole permission set of a role in one transaction."""

        op = "IdentityService.set_role_permissions"
        await self._require_role(role_id, op)
        ids = [(await self._require_permission(name, op)).id for name in permission_names]
        await self.repo.set_role_permissions(role_id, ids)
        return await self.repo.get_role(role_id)

    async def grant_permission(self, role_id: str, permission_name: str) -> Role:
        op = "IdentityService.grant_permission"
        await self._require_role(role_id, op)
        permission = await self._require_permission(permission_name, op)
        await self.repo.assign_permission(role_id, permission.id)
        return await self.repo.get_role(role_id)

    async def revoke_permission(self, role_id: str, permission_name: str) -> Role:
        op = "IdentityService.revoke_permission"
        await self._require_role(role_id, op)
        permission = await self._require_permission(permission_name, op)
        await self.repo.remove_permission(role_id, permission.id)
        return await self.repo.get_role(role_id)

    async def seed_default_roles(self) -> List[Role]:
        """Create the built-in roles and their permissions when missing."""

        for resource, action in all_default_permissions():
            if await self.repo.get_permission_by_name(f"{resource}:{action}") is None:
                await self.create_permission(resource, action)
        for name, (description, perms) in DEFAULT_ROLES.items():
            if await self.repo.get_role(default_role_id(name)) is None:
                await self.create_role(name, description, role_id=default_role_id(name))
                await self.set_role_permissions(
                    default_role_id(name), [f"{r}:{a}" for r, a in perms]
                )
                logger.info("seeded role %s", name)
        return await self.repo.list_roles()

    async def authorize(self, principal: Principal, resource: str, action: str) -> None:
        if not principal.can(resource, action):
            raise UnauthorizedError(resource, action, op="IdentityService.authorize").with_context(
                user_id=principal.user.id
            )
