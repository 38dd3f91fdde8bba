"""Repository interface for users, roles, permissions and sessions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from ..domain.identity import Permission, Role, User, UserSession


class IdentityRepo(ABC):
    """Contract for identity persistence."""

    # users
    @abstractmethod
    async def create_user(self, user: User) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        raise NotImplementedError

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]:
        raise NotImplementedError

    @abstractmethod
    async def update_user(self, user: User) -> None:
        raise NotImplementedError

    @abstractmethod
    async def update_password(self, user_id: str, password_hash: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def update_last_login(self, user_id: str, at: datetime) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete_user(self, user_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_users(self, offset: int = 0, limit: int = 50) -> tuple[List[User], int]:
        raise NotImplementedError

    # roles and permissions
    @abstractmethod
    async def create_role(self, role: Role) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_role(self, role_id: str) -> Optional[Role]:
        """Return the role with its permissions loaded."""
        raise NotImplementedError

    @abstractmethod
    async def get_role_by_name(self, name: str) -> Optional[Role]:
        raise NotImplementedError

    @abstractmethod
    async def list_roles(self) -> List[Role]:
        raise NotImplementedError

    @abstractmethod
    async def delete_role(self, role_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def count_users_with_role(self, role_id: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def create_permission(self, permission: Permission) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_permission_by_name(self, name: str) -> Optional[Permission]:
        raise NotImplementedError

    @abstractmethod
    async def list_permissions(self) -> List[Permission]:
        raise NotImplementedError

    @abstractmethod
    async def assign_permission(self, role_id: str, permission_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def remove_permission(self, role_id: str, permission_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def set_role_permissions(self, role_id: str, permission_ids: List[str]) -> None:
        """Replace the whole permission set of a role atomically."""
        raise NotImplementedError

    # sessions
    @abstractmethod
    async def create_session(self, session: UserSession) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[UserSession]:
        raise NotImplementedError

    @abstractmethod
    async def get_session_by_token_hash(self, token_hash: str) -> Optional[UserSession]:
        raise NotImplementedError

    @abstractmethod
    async def active_sessions(self, user_id: str) -> List[UserSession]:
        raise NotImplementedError

    @abstractmethod
    async def rotate_session(self, session: UserSession, previous_refresh_hash: str) -> bool:
        """Store the new token fingerprints of an active ``session``.

        The write only applies while the stored refresh fingerprint still
        equals ``previous_refresh_hash``; returns ``False`` when another
        rotation or a revocation got there first.
        """
        raise NotImplementedError

    @abstractmethod
    async def invalidate_session(self, session_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def invalidate_user_sessions(self, user_id: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def cleanup_sessions(self, now: datetime) -> int:
        """Delete expired or inactive sessions and return how many went."""
        raise NotImplementedError
