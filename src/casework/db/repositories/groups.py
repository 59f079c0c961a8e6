from __future__ import annotations

import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from casework.db.models import Group


class GroupRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, name: str, description: str | None = None) -> Group:
        group = Group(name=name, description=description, active=True)
        self._session.add(group)
        await self._session.flush()
        return group

    async def get(self, group_id: uuid.UUID, *, for_update: bool = False) -> Group | None:
        # for_update=True serializes writers on backends with row locks (PostgreSQL).
        return await self._session.get(Group, group_id, with_for_update=for_update)

    async def set_active(self, group_id: uuid.UUID, active: bool) -> None:
        group = await self._session.get(Group, group_id, with_for_update=True)
        if group is None:
            return
        group.active = active
        await self._session.flush()
