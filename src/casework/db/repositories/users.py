from __future__ import annotations

import uuid
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from casework.db.models import User, UserRole


class UserRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        name: str,
        role: UserRole,
        national_id: str | None = None,
        access_level: int | None = None,
    ) -> User:
        user = User(name=name, role=role, national_id=national_id, access_level=access_level)
        self._session.add(user)
        await self._session.flush()
        return user

    async def get(self, user_id: uuid.UUID, *, for_update: bool = False) -> User | None:
        return await self._session.get(User, user_id, with_for_update=for_update)

    async def existing_ids(self, user_ids: Iterable[uuid.UUID]) -> set[uuid.UUID]:
        ids = set(user_ids)
        if not ids:
            return set()
        stmt = select(User.id).where(User.id.in_(ids))
        return set((await self._session.execute(stmt)).scalars().all())

    async def set_role(
        self, user_id: uuid.UUID, *, role: UserRole, access_level: int | None
    ) -> None:
        user = await self._session.get(User, user_id, with_for_update=True)
        if user is None:
            return
        user.role = role
        user.access_level = access_level
        await self._session.flush()
