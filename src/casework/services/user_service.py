from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from casework.db.models import User, UserRole
from casework.db.repositories.audit import AuditRepo
from casework.db.repositories.users import UserRepo
from casework.errors import NotFound, PermissionDenied, ValidationError
from casework.observability.logging import get_logger
from casework.services.locks import KeyedLocks
from casework.services.retry import StorageUnits
from casework.settings import Settings

log = get_logger(__name__)

ACCESS_LEVELS = range(1, 4)


@dataclass(frozen=True, slots=True)
class UserView:
    id: uuid.UUID
    name: str
    role: UserRole
    access_level: int | None
    active: bool

    @classmethod
    def from_row(cls, user: User) -> UserView:
        return cls(
            id=user.id,
            name=user.name,
            role=user.role,
            access_level=user.access_level,
            active=user.active,
        )


def validate_access_level(role: UserRole, access_level: int | None) -> None:
    if role is UserRole.administrator:
        if access_level not in ACCESS_LEVELS:
            raise ValidationError("administrators need an access level between 1 and 3")
    elif access_level is not None:
        raise ValidationError("only administrators carry an access level", role=role.value)


class UserService:
    def __init__(self, *, session: AsyncSession, settings: Settings, locks: KeyedLocks) -> None:
        self._session = session
        self._settings = settings
        self._locks = locks
        self._users = UserRepo(session)
        self._audit = AuditRepo(session)

    async def get_user(self, user_id: uuid.UUID) -> UserView:
        user = await self._users.get(user_id)
        if user is None:
            raise NotFound("user", user_id)
        return UserView.from_row(user)

    async def change_role(
        self,
        *,
        actor_id: uuid.UUID,
        user_id: uuid.UUID,
        role: UserRole,
        access_level: int | None = None,
    ) -> UserView:
        """Administrator-only: set a user's system role (and access level for administrators)."""

        validate_access_level(role, access_level)
        actor = await self._users.get(actor_id)
        if actor is None or not actor.active or actor.role is not UserRole.administrator:
            raise PermissionDenied("only administrators can change user roles")

        async with self._locks.hold("user", user_id):
            user = await self._users.get(user_id, for_update=True)
            if user is None:
                raise NotFound("user", user_id)
            previous = {"role": user.role.value, "access_level": user.access_level}

            async def _change() -> None:
                await self._users.set_role(user_id, role=role, access_level=access_level)
                await self._audit.add(
                    entity_type="user",
                    entity_id=user_id,
                    actor=str(actor_id),
                    event_type="ROLE_CHANGED",
                    details={
                        "previous": previous,
                        "role": role.value,
                        "access_level": access_level,
                    },
                )

            units = StorageUnits(
                self._session,
                attempts=self._settings.storage_retry_attempts,
                backoff_seconds=self._settings.storage_retry_backoff_seconds,
            )
            await units.run("change_role", _change)
            log.info("user_role_changed", user_id=str(user_id), role=role.value)
            return await self.get_user(user_id)
