"""
casework.services.case_service

Case lifecycle controller (transaction owner + orchestrator coordination).

Responsibilities:
- Open cases and start their workflow in the orchestrator (local write -> remote call ->
  local write), degrading to "case without workflow" when the orchestrator fails.
- Complete the review task remotely first and only then record the decision locally.
- Close cases administratively, keep the route sheet, delete cases explicitly.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from casework.db.models import Case, CaseActivity, CaseStatus
from casework.db.repositories.audit import AuditRepo
from casework.db.repositories.cases import CaseActivityRepo, CaseRepo
from casework.db.repositories.groups import GroupRepo
from casework.db.repositories.memberships import MembershipRepo
from casework.db.repositories.users import UserRepo
from casework.domain.case_status import decision_status, ensure_transition
from casework.errors import (
    FolderNumberTaken,
    InvalidTransition,
    NoActiveProcess,
    NotFound,
    PermissionDenied,
    RemoteCollaboratorFailure,
    StorageUnavailable,
    ValidationError,
)
from casework.observability.logging import get_logger
from casework.orchestrator_gateway.client import OrchestratorGateway, TypedValue
from casework.services.locks import KeyedLocks
from casework.services.retry import StorageUnits
from casework.settings import Settings

log = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class CaseView:
    id: uuid.UUID
    group_id: uuid.UUID
    consultant_id: uuid.UUID | None
    folder_number: str
    status: CaseStatus
    process_ref: str | None
    notes: str | None
    close_reason: str | None
    opened_at: datetime
    closed_at: datetime | None

    @classmethod
    def from_row(cls, case: Case) -> CaseView:
        return cls(
            id=case.id,
            group_id=case.group_id,
            consultant_id=case.consultant_id,
            folder_number=case.folder_number,
            status=case.status,
            process_ref=case.process_ref,
            notes=case.notes,
            close_reason=case.close_reason,
            opened_at=case.opened_at,
            closed_at=case.closed_at,
        )


@dataclass(frozen=True, slots=True)
class OpenCaseResult:
    case: CaseView
    # Set when the case was stored but the orchestrator did not start its workflow.
    warning: str | None = None


@dataclass(frozen=True, slots=True)
class ActivityView:
    id: uuid.UUID
    case_id: uuid.UUID
    author_id: uuid.UUID
    occurred_at: datetime
    description: str

    @classmethod
    def from_row(cls, activity: CaseActivity) -> ActivityView:
        return cls(
            id=activity.id,
            case_id=activity.case_id,
            author_id=activity.author_id,
            occurred_at=activity.occurred_at,
            description=activity.description,
        )


class CaseService:
    def __init__(
        self,
        *,
        session: AsyncSession,
        settings: Settings,
        gateway: OrchestratorGateway,
        locks: KeyedLocks,
    ) -> None:
        self._session = session
        self._settings = settings
        self._gateway = gateway
        self._locks = locks

        self._cases = CaseRepo(session)
        self._activities = CaseActivityRepo(session)
        self._groups = GroupRepo(session)
        self._users = UserRepo(session)
        self._memberships = MembershipRepo(session)
        self._audit = AuditRepo(session)

    def _units(self) -> StorageUnits:
        return StorageUnits(
            self._session,
            attempts=self._settings.storage_retry_attempts,
            backoff_seconds=self._settings.storage_retry_backoff_seconds,
        )

    async def get_case(self, case_id: uuid.UUID) -> CaseView:
        return await self._require_case(case_id)

    async def status_counts(self) -> dict[str, int]:
        counts = await self._cases.status_counts()
        return {status.value: counts.get(status, 0) for status in CaseStatus}

    async def open_case(
        self,
        *,
        actor: str,
        group_id: uuid.UUID,
        folder_number: str,
        notes: str | None = None,
        consultant_id: uuid.UUID | None = None,
    ) -> OpenCaseResult:
        folder_number = folder_number.strip()
        if not folder_number:
            raise ValidationError("folder number is required")
        group = await self._groups.get(group_id)
        if group is None:
            raise NotFound("group", group_id)
        group_name = group.name
        if consultant_id is not None and await self._users.get(consultant_id) is None:
            raise NotFound("user", consultant_id)
        if await self._cases.get_by_folder_number(folder_number) is not None:
            raise FolderNumberTaken(
                "a case with this folder number already exists", folder_number=folder_number
            )

        units = self._units()

        async def _create() -> CaseView:
            case = await self._cases.create(
                group_id=group_id,
                folder_number=folder_number,
                notes=notes,
                consultant_id=consultant_id,
            )
            await self._audit.add(
                entity_type="case",
                entity_id=case.id,
                actor=actor,
                event_type="CASE_OPENED",
                details={"group_id": str(group_id), "folder_number": folder_number},
            )
            return CaseView.from_row(case)

        try:
            case = await units.run("create_case", _create)
        except IntegrityError as e:
            # Lost a race with another request using the same folder number.
            raise FolderNumberTaken(
                "a case with this folder number already exists", folder_number=folder_number
            ) from e
        log.info("case_opened", case_id=str(case.id), group_id=str(group_id), actor=actor)

        async with self._locks.hold("case", case.id):
            return await self._start_workflow(
                actor=actor, case=case, group_name=group_name, units=units
            )

    async def retry_orchestration(self, *, actor: str, case_id: uuid.UUID) -> OpenCaseResult:
        async with self._locks.hold("case", case_id):
            case = await self._require_case(case_id, for_update=True)
            if case.process_ref is not None or case.status is not CaseStatus.started:
                raise InvalidTransition(
                    "the case workflow has already been started",
                    status=case.status.value,
                )
            group = await self._groups.get(case.group_id)
            if group is None:
                raise NotFound("group", case.group_id)
            return await self._start_workflow(
                actor=actor, case=case, group_name=group.name, units=self._units()
            )

    async def complete_review_task(
        self,
        *,
        actor: str,
        case_id: uuid.UUID,
        approved: bool,
        notes: str | None = None,
        decision: str | None = None,
    ) -> CaseView:
        async with self._locks.hold("case", case_id):
            case = await self._require_case(case_id, for_update=True)
            if case.process_ref is None:
                raise NoActiveProcess(
                    "the case has no workflow in the orchestrator", case_id=str(case_id)
                )
            target = decision_status(approved)
            ensure_transition(case.status, target)

            variables = {
                "approved": TypedValue.boolean(approved),
                "decision": TypedValue.string(decision or target.value),
            }
            if notes:
                variables["notes"] = TypedValue.string(notes)

            try:
                await self._call_gateway(
                    "complete_task", self._gateway.complete_task(case.process_ref, variables)
                )
            except RemoteCollaboratorFailure as e:
                # The orchestrator did not confirm; local state stays as it was.
                log.warning(
                    "review_task_not_completed",
                    case_id=str(case_id),
                    process_ref=case.process_ref,
                    error=e.message,
                )
                raise

            async def _record() -> None:
                await self._cases.record_decision(case_id, status=target, notes=notes or None)
                await self._audit.add(
                    entity_type="case",
                    entity_id=case_id,
                    actor=actor,
                    event_type="REVIEW_COMPLETED",
                    details={"approved": approved, "decision": decision or target.value},
                )

            await self._record_confirmed(
                "record_decision", _record, case_id=case_id, process_ref=case.process_ref
            )
            log.info("case_reviewed", case_id=str(case_id), status=target.value, actor=actor)
            return await self._require_case(case_id)

    async def close_case(self, *, actor: str, case_id: uuid.UUID, reason: str) -> CaseView:
        reason = reason.strip()
        if not reason:
            raise ValidationError("a closing reason is required")
        async with self._locks.hold("case", case_id):
            case = await self._require_case(case_id, for_update=True)
            ensure_transition(case.status, CaseStatus.closed)

            async def _close() -> None:
                await self._cases.close(case_id, reason=reason, closed_at=_utcnow())
                await self._audit.add(
                    entity_type="case",
                    entity_id=case_id,
                    actor=actor,
                    event_type="CASE_CLOSED",
                    details={"reason": reason, "previous_status": case.status.value},
                )

            await self._units().run("close_case", _close)
            log.info("case_closed", case_id=str(case_id), actor=actor)
            return await self._require_case(case_id)

    async def delete_case(self, *, actor: str, case_id: uuid.UUID) -> None:
        async with self._locks.hold("case", case_id):
            case = await self._require_case(case_id, for_update=True)

            async def _delete() -> None:
                await self._cases.delete(case_id)
                await self._audit.add(
                    entity_type="case",
                    entity_id=case_id,
                    actor=actor,
                    event_type="CASE_DELETED",
                    details={"folder_number": case.folder_number, "status": case.status.value},
                )

            await self._units().run("delete_case", _delete)
            log.info("case_deleted", case_id=str(case_id), actor=actor)

    async def record_activity(
        self,
        *,
        actor_id: uuid.UUID,
        case_id: uuid.UUID,
        description: str,
        occurred_at: datetime | None = None,
    ) -> ActivityView:
        description = description.strip()
        if not description:
            raise ValidationError("an activity description is required")
        case = await self._require_case(case_id)
        if not await self._memberships.is_student_of(case.group_id, actor_id):
            raise PermissionDenied(
                "only students of the case group can record activities",
                case_id=str(case_id),
            )

        async def _add() -> ActivityView:
            activity = await self._activities.add(
                case_id=case_id,
                author_id=actor_id,
                description=description,
                occurred_at=occurred_at,
            )
            return ActivityView.from_row(activity)

        return await self._units().run("record_activity", _add)

    async def list_activities(self, case_id: uuid.UUID) -> list[ActivityView]:
        await self._require_case(case_id)
        return [ActivityView.from_row(a) for a in await self._activities.list_for_case(case_id)]

    async def _start_workflow(
        self,
        *,
        actor: str,
        case: CaseView,
        group_name: str,
        units: StorageUnits,
    ) -> OpenCaseResult:
        variables = {
            "caseId": TypedValue.string(str(case.id)),
            "groupId": TypedValue.string(str(case.group_id)),
            "candidateGroup": TypedValue.string(f"group_{group_name}"),
            "folderNumber": TypedValue.string(case.folder_number),
            "status": TypedValue.string(case.status.value),
            "notes": TypedValue.string(case.notes or ""),
            "validated": TypedValue.boolean(True),
        }
        try:
            started = await self._call_gateway(
                "start_process",
                self._gateway.start_process(self._settings.orchestrator_process_key, variables),
            )
        except RemoteCollaboratorFailure as e:
            # Degraded mode: the case record is valid without a workflow.
            log.warning("orchestration_not_started", case_id=str(case.id), error=e.message)
            await units.run(
                "audit",
                lambda: self._audit.add(
                    entity_type="case",
                    entity_id=case.id,
                    actor=actor,
                    event_type="ORCHESTRATION_FAILED",
                    details={"error": e.message, "status_code": e.status_code},
                ),
            )
            return OpenCaseResult(
                case=case, warning=f"case saved without an active workflow: {e.message}"
            )

        ensure_transition(case.status, CaseStatus.in_review)

        async def _mark() -> None:
            await self._cases.mark_in_review(case.id, process_ref=started.instance_id)
            await self._audit.add(
                entity_type="case",
                entity_id=case.id,
                actor=actor,
                event_type="PROCESS_STARTED",
                details={"process_ref": started.instance_id},
            )

        await self._record_confirmed(
            "mark_in_review",
            _mark,
            case_id=case.id,
            process_ref=started.instance_id,
            units=units,
        )
        log.info("case_in_review", case_id=str(case.id), process_ref=started.instance_id)
        return OpenCaseResult(case=await self._require_case(case.id))

    async def _record_confirmed(
        self,
        step: str,
        unit: Callable[[], Awaitable[None]],
        *,
        case_id: uuid.UUID,
        process_ref: str,
        units: StorageUnits | None = None,
    ) -> None:
        try:
            await (units or self._units()).run(step, unit)
        except StorageUnavailable:
            # The orchestrator moved on but we could not record it; operators need the ref.
            log.error(
                "orchestrator_outcome_not_recorded",
                case_id=str(case_id),
                process_ref=process_ref,
                step=step,
            )
            raise

    async def _call_gateway(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(
                call, timeout=self._settings.orchestrator_timeout_seconds
            )
        except TimeoutError as e:
            raise RemoteCollaboratorFailure(operation=operation, detail="timeout") from e

    async def _require_case(self, case_id: uuid.UUID, *, for_update: bool = False) -> CaseView:
        case = await self._cases.get(case_id, for_update=for_update)
        if case is None:
            raise NotFound("case", case_id)
        return CaseView.from_row(case)


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


# --- Module Notes -----------------------------------------------------------
# Nothing here compensates a remote call with a local rollback or the other way round:
# local status only ever reflects what the orchestrator has confirmed, and a case that
# failed to start its workflow stays valid in `started` until `retry_orchestration`.
