from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from casework.db.models import Case, CaseActivity, CaseStatus


class CaseRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        group_id: uuid.UUID,
        folder_number: str,
        notes: str | None = None,
        consultant_id: uuid.UUID | None = None,
    ) -> Case:
        case = Case(
            group_id=group_id,
            folder_number=folder_number,
            notes=notes,
            consultant_id=consultant_id,
            status=CaseStatus.started,
            process_ref=None,
        )
        self._session.add(case)
        await self._session.flush()
        return case

    async def get(self, case_id: uuid.UUID, *, for_update: bool = False) -> Case | None:
        # populate_existing: lifecycle decisions must see committed state, not a cached row.
        return await self._session.get(
            Case, case_id, with_for_update=for_update, populate_existing=True
        )

    async def get_by_folder_number(self, folder_number: str) -> Case | None:
        stmt = select(Case).where(Case.folder_number == folder_number)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def mark_in_review(self, case_id: uuid.UUID, *, process_ref: str) -> None:
        case = await self._session.get(Case, case_id, with_for_update=True)
        if case is None:
            return
        case.status = CaseStatus.in_review
        case.process_ref = process_ref
        await self._session.flush()

    async def record_decision(
        self, case_id: uuid.UUID, *, status: CaseStatus, notes: str | None
    ) -> None:
        case = await self._session.get(Case, case_id, with_for_update=True)
        if case is None:
            return
        case.status = status
        if notes is not None:
            case.notes = notes
        await self._session.flush()

    async def close(self, case_id: uuid.UUID, *, reason: str, closed_at: datetime) -> None:
        case = await self._session.get(Case, case_id, with_for_update=True)
        if case is None:
            return
        case.status = CaseStatus.closed
        case.close_reason = reason
        case.closed_at = closed_at
        await self._session.flush()

    async def status_counts(self) -> dict[CaseStatus, int]:
        stmt = select(Case.status, func.count(Case.id)).group_by(Case.status)
        return {status: count for status, count in (await self._session.execute(stmt)).all()}

    async def delete(self, case_id: uuid.UUID) -> None:
        # Children first; there is no ORM cascade on cases.
        await self._session.execute(delete(CaseActivity).where(CaseActivity.case_id == case_id))
        await self._session.execute(delete(Case).where(Case.id == case_id))


class CaseActivityRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        *,
        case_id: uuid.UUID,
        author_id: uuid.UUID,
        description: str,
        occurred_at: datetime | None = None,
    ) -> CaseActivity:
        activity = CaseActivity(case_id=case_id, author_id=author_id, description=description)
        if occurred_at is not None:
            activity.occurred_at = occurred_at
        self._session.add(activity)
        await self._session.flush()
        return activity

    async def list_for_case(self, case_id: uuid.UUID) -> list[CaseActivity]:
        stmt = (
            select(CaseActivity)
            .where(CaseActivity.case_id == case_id)
            .order_by(CaseActivity.occurred_at.desc())
        )
        return list((await self._session.execute(stmt)).scalars().all())
