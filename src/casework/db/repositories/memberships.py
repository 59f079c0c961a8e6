"""
casework.db.repositories.memberships

Membership store.

Responsibilities:
- Point read of a group's full membership as a `MembershipSnapshot`.
- Single-row insert/update/delete keyed by (group, user).
- System-wide student seat lookup backing the one-group-per-student rule.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable

from sqlalchemy import delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from casework.db.models import Group, Membership, MembershipRole
from casework.domain.membership import MembershipSnapshot, Mutation


class MembershipRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def snapshot(self, group_id: uuid.UUID) -> MembershipSnapshot:
        stmt = select(Membership.user_id, Membership.role).where(Membership.group_id == group_id)
        rows = (await self._session.execute(stmt)).all()
        return MembershipSnapshot(group_id=group_id, roles={uid: role for uid, role in rows})

    async def apply(self, group_id: uuid.UUID, mutation: Mutation) -> None:
        if mutation.kind == "insert":
            stmt = insert(Membership).values(
                group_id=group_id, user_id=mutation.user_id, role=mutation.role
            )
        elif mutation.kind == "update":
            stmt = (
                update(Membership)
                .where(Membership.group_id == group_id, Membership.user_id == mutation.user_id)
                .values(role=mutation.role)
            )
        else:
            stmt = delete(Membership).where(
                Membership.group_id == group_id, Membership.user_id == mutation.user_id
            )
        await self._session.execute(stmt)

    async def student_seats(
        self, user_ids: Iterable[uuid.UUID], *, exclude_group_id: uuid.UUID | None = None
    ) -> dict[uuid.UUID, str]:
        """Return user id -> group name for users already seated as students elsewhere."""

        ids = set(user_ids)
        if not ids:
            return {}
        stmt = (
            select(Membership.user_id, Group.name)
            .join(Group, Group.id == Membership.group_id)
            .where(Membership.user_id.in_(ids), Membership.role == MembershipRole.student)
        )
        if exclude_group_id is not None:
            stmt = stmt.where(Membership.group_id != exclude_group_id)
        return {uid: name for uid, name in (await self._session.execute(stmt)).all()}

    async def is_student_of(self, group_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        stmt = select(Membership.id).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
            Membership.role == MembershipRole.student,
        )
        return (await self._session.execute(stmt)).first() is not None


# --- Module Notes -----------------------------------------------------------
# Mutations are plain SQL statements rather than ORM instances so a failed unit can be
# rolled back and replayed without stale objects lingering in the identity map.
