"""SQLAlchemy repository for users, roles, permissions and sessions."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models
from ..domain.identity import Permission, Role, User, UserSession
from ..errors import AlreadyExistsError, NotFoundError
from ..ids import as_utc, utcnow
from ..repos.identity_repo import IdentityRepo
from . import SessionScoped


def _user_from_row(row: models.User) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role_id=row.role_id,
        is_active=row.is_active,
        last_login_at=as_utc(row.last_login_at),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _permission_from_row(row: models.Permission) -> Permission:
    return Permission(
        id=row.id,
        resource=row.resource,
        action=row.action,
        description=row.description,
        created_at=as_utc(row.created_at),
    )


def _session_from_row(row: models.UserSession) -> UserSession:
    return UserSession(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        refresh_token_hash=row.refresh_token_hash,
        expires_at=as_utc(row.expires_at),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        is_active=row.is_active,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


async def _role_with_permissions(session: AsyncSession, row: models.Role) -> Role:
    result = await session.execute(
        select(models.Permission)
        .join(
            models.role_permissions,
            models.role_permissions.c.permission_id == models.Permission.id,
        )
        .where(models.role_permissions.c.role_id == row.id)
        .order_by(models.Permission.name)
    )
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        permissions=[_permission_from_row(p) for p in result.scalars()],
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


class SqlIdentityRepo(SessionScoped, IdentityRepo):
    # users ----------------------------------------------------------------

    async def create_user(self, user: User) -> None:
        try:
            async with self.transaction() as session:
                session.add(
                    models.User(
                        id=user.id,
                        email=user.email,
                        password_hash=user.password_hash,
                        role_id=user.role_id,
                        is_active=user.is_active,
                        last_login_at=user.last_login_at,
                        created_at=user.created_at,
                        updated_at=user.updated_at,
                    )
                )
        except IntegrityError as exc:
            raise AlreadyExistsError("user", "email is already registered") from exc

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._sessions() as session:
            row = await session.get(models.User, user_id)
            return _user_from_row(row) if row is not None else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        async with self._sessions() as session:
            result = await session.execute(
                select(models.User).where(models.User.email == email)
            )
            row = result.scalar_one_or_none()
            return _user_from_row(row) if row is not None else None

    async def update_user(self, user: User) -> None:
        async with self.transaction() as session:
            result = await session.execute(
                update(models.User)
                .where(models.User.id == user.id)
                .values(
                    email=user.email,
                    role_id=user.role_id,
                    is_active=user.is_active,
                    updated_at=utcnow(),
                )
            )
            if result.rowcount == 0:
                raise NotFoundError("user", user.id, op="SqlIdentityRepo.update_user")

    async def update_password(self, user_id: str, password_hash: str) -> None:
        async with self.transaction() as session:
            result = await session.execute(
                update(models.User)
                .where(models.User.id == user_id)
                .values(password_hash=password_hash, updated_at=utcnow())
            )
            if result.rowcount == 0:
                raise NotFoundError("user", user_id, op="SqlIdentityRepo.update_password")

    async def update_last_login(self, user_id: str, at: datetime) -> None:
        async with self.transaction() as session:
            await session.execute(
                update(models.User).where(models.User.id == user_id).values(last_login_at=at)
            )

    async def delete_user(self, user_id: str) -> None:
        async with self.transaction() as session:
            await session.execute(
                delete(models.UserSession).where(models.UserSession.user_id == user_id)
            )
            await session.execute(delete(models.User).where(models.User.id == user_id))

    async def list_users(self, offset: int = 0, limit: int = 50) -> tuple[List[User], int]:
        async with self._sessions() as session:
            total = await session.scalar(select(func.count()).select_from(models.User))
            result = await session.execute(
                select(models.User).order_by(models.User.email).offset(offset).limit(limit)
            )
            return [_user_from_row(r) for r in result.scalars()], int(total or 0)

    # roles and permissions -------------------------------------------------

    async def create_role(self, role: Role) -> None:
        try:
            async with self.transaction() as session:
                session.add(
                    models.Role(
                        id=role.id,
                        name=role.name,
                        description=role.description,
                        created_at=role.created_at,
                        updated_at=role.updated_at,
                    )
                )
        except IntegrityError as exc:
            raise AlreadyExistsError("role", f"role {role.name!r} already exists") from exc

    async def get_role(self, role_id: str) -> Optional[Role]:
        async with self._sessions() as session:
            row = await session.get(models.Role, role_id)
            return await _role_with_permissions(session, row) if row is not None else None

    async def get_role_by_name(self, name: str) -> Optional[Role]:
        async with self._sessions() as session:
            result = await session.execute(select(models.Role).where(models.Role.name == name))
            row = result.scalar_one_or_none()
            return await _role_with_permissions(session, row) if row is not None else None

    async def list_roles(self) -> List[Role]:
        async with self._sessions() as session:
            rows = (await session.execute(select(models.Role).order_by(models.Role.name))).scalars().all()
            return [await _role_with_permissions(session, r) for r in rows]

    async def delete_role(self, role_id: str) -> None:
        async with self.transaction() as session:
            await session.execute(
                delete(models.role_permissions).where(models.role_permissions.c.role_id == role_id)
            )
            await session.execute(delete(models.Role).where(models.Role.id == role_id))

    async def count_users_with_role(self, role_id: str) -> int:
        async with self._sessions() as session:
            total = await session.scalar(
                select(func.count()).select_from(models.User).where(models.User.role_id == role_id)
            )
            return int(total or 0)

    async def create_permission(self, permission: Permission) -> None:
        try:
            async with self.transaction() as session:
                session.add(
                    models.Permission(
                        id=permission.id,
                        name=permission.name,
                        resource=permission.resource,
                        action=permission.action,
                        description=permission.description,
                        created_at=permission.created_at,
                    )
                )
        except IntegrityError as exc:
            raise AlreadyExistsError(
                "permission", f"permission {permission.name!r} already exists"
            ) from exc

    async def get_permission_by_name(self, name: str) -> Optional[Permission]:
        async with self._sessions() as session:
            result = await session.execute(
                select(models.Permission).where(models.Permission.name == name)
            )
            row = result.scalar_one_or_none()
            return _permission_from_row(row) if row is not None else None

    async def list_permissions(self) -> List[Permission]:
        async with self._sessions() as session:
            result = await session.execute(select(models.Permission).order_by(models.Permission.name))
            return [_permission_from_row(r) for r in result.scalars()]

    async def assign_permission(self, role_id: str, permission_id: str) -> None:
        async with self.transaction() as session:
            exists = await session.scalar(
                select(func.count())
                .select_from(models.role_permissions)
                .where(
                    models.role_permissions.c.role_id == role_id,
                    models.role_permissions.c.permission_id == permission_id,
                )
            )
            if not exists:
                await session.execute(
                    insert(models.role_permissions).values(role_id=role_id, permission_id=permission_id)
                )

    async def remove_permission(self, role_id: str, permission_id: str) -> None:
        async with self.transaction() as session:
            await session.execute(
                delete(models.role_permissions).where(
                    models.role_permissions.c.role_id == role_id,
                    models.role_permissions.c.permission_id == permission_id,
                )
            )

    async def set_role_permissions(self, role_id: str, permission_ids: List[str]) -> None:
        async with self.transaction() as session:
            await session.execute(
                delete(models.role_permissions).where(models.role_permissions.c.role_id == role_id)
            )
            unique_ids = list(dict.fromkeys(permission_ids))
            if unique_ids:
                await session.execute(
                    insert(models.role_permissions),
                    [{"role_id": role_id, "permission_id": pid} for pid in unique_ids],
                )

    # sessions --------------------------------------------------------------

    async def create_session(self, user_session: UserSession) -> None:
        async with self.transaction() as session:
            session.add(
                models.UserSession(
                    id=user_session.id,
                    user_id=user_session.user_id,
                    token_hash=user_session.token_hash,
                    refresh_token_hash=user_session.refresh_token_hash,
                    expires_at=user_session.expires_at,
                    ip_address=user_session.ip_address,
                    user_agent=user_session.user_agent,
                    is_active=user_session.is_active,
                    created_at=user_session.created_at,
                    updated_at=user_session.updated_at,
                )
            )

    async def get_session(self, session_id: str) -> Optional[UserSession]:
        async with self._sessions() as session:
            row = await session.get(models.UserSession, session_id)
            return _session_from_row(row) if row is not None else None

    async def get_session_by_token_hash(self, token_hash: str) -> Optional[UserSession]:
        async with self._sessions() as session:
            result = await session.execute(
                select(models.UserSession).where(models.UserSession.token_hash == token_hash)
            )
            row = result.scalars().first()
            return _session_from_row(row) if row is not None else None

    async def active_sessions(self, user_id: str) -> List[UserSession]:
        async with self._sessions() as session:
            result = await session.execute(
                select(models.UserSession)
                .where(
                    models.UserSession.user_id == user_id,
                    models.UserSession.is_active.is_(True),
                    models.UserSession.expires_at > utcnow(),
                )
                .order_by(models.UserSession.created_at.desc())
            )
            return [_session_from_row(r) for r in result.scalars()]

    async def rotate_session(self, user_session: UserSession, previous_refresh_hash: str) -> bool:
        user_session.updated_at = utcnow()
        async with self.transaction() as session:
            result = await session.execute(
                update(models.UserSession)
                .where(
                    models.UserSession.id == user_session.id,
                    models.UserSession.refresh_token_hash == previous_refresh_hash,
                    models.UserSession.is_active.is_(True),
                )
                .values(
                    token_hash=user_session.token_hash,
                    refresh_token_hash=user_session.refresh_token_hash,
                    expires_at=user_session.expires_at,
                    updated_at=user_session.updated_at,
                )
            )
            return result.rowcount == 1

    async def invalidate_session(self, session_id: str) -> None:
        async with self.transaction() as session:
            await session.execute(
                update(models.UserSession)
                .where(models.UserSession.id == session_id)
                .values(is_active=False, updated_at=utcnow())
            )

    async def invalidate_user_sessions(self, user_id: str) -> int:
        async with self.transaction() as session:
            result = await session.execute(
                update(models.UserSession)
                .where(
                    models.UserSession.user_id == user_id,
                    models.UserSession.is_active.is_(True),
                )
                .values(is_active=False, updated_at=utcnow())
            )
            return result.rowcount or 0

    async def cleanup_sessions(self, now: datetime) -> int:
        async with self.transaction() as session:
            result = await session.execute(
                delete(models.UserSession).where(
                    or_(
                        models.UserSession.expires_at <= now,
                        models.UserSession.is_active.is_(False),
                    )
                )
            )
            return result.rowcount or 0
