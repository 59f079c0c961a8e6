"""
casework.api.routers.cases

Case lifecycle endpoints.

Responsibilities:
- Open cases (reporting degraded orchestration as a warning), retry orchestration.
- Complete the review task, close and delete cases, keep the route sheet.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from starlette.status import HTTP_201_CREATED

from casework.api.deps import case_service
from casework.auth.deps import require_user, require_user_id
from casework.auth.models import Principal
from casework.services.case_service import ActivityView, CaseService, CaseView, OpenCaseResult

router = APIRouter(prefix="/v1/cases", tags=["cases"])


class OpenCaseRequest(BaseModel):
    group_id: uuid.UUID
    folder_number: str = Field(min_length=1, max_length=64)
    notes: str | None = None
    consultant_id: uuid.UUID | None = None


class ReviewRequest(BaseModel):
    approved: bool
    notes: str | None = None
    decision: str | None = Field(default=None, max_length=64)


class CloseRequest(BaseModel):
    reason: str = Field(min_length=1)


class ActivityRequest(BaseModel):
    description: str = Field(min_length=1)
    occurred_at: datetime | None = None


class CaseResponse(BaseModel):
    id: uuid.UUID
    group_id: uuid.UUID
    consultant_id: uuid.UUID | None
    folder_number: str
    status: str
    process_ref: str | None
    notes: str | None
    close_reason: str | None
    opened_at: datetime
    closed_at: datetime | None

    @classmethod
    def from_view(cls, case: CaseView) -> CaseResponse:
        return cls(
            id=case.id,
            group_id=case.group_id,
            consultant_id=case.consultant_id,
            folder_number=case.folder_number,
            status=case.status.value,
            process_ref=case.process_ref,
            notes=case.notes,
            close_reason=case.close_reason,
            opened_at=case.opened_at,
            closed_at=case.closed_at,
        )


class OpenCaseResponse(BaseModel):
    case: CaseResponse
    warning: str | None = None

    @classmethod
    def from_result(cls, result: OpenCaseResult) -> OpenCaseResponse:
        return cls(case=CaseResponse.from_view(result.case), warning=result.warning)


class ActivityResponse(BaseModel):
    id: uuid.UUID
    author_id: uuid.UUID
    occurred_at: datetime
    description: str

    @classmethod
    def from_view(cls, activity: ActivityView) -> ActivityResponse:
        return cls(
            id=activity.id,
            author_id=activity.author_id,
            occurred_at=activity.occurred_at,
            description=activity.description,
        )


@router.post("", response_model=OpenCaseResponse, status_code=HTTP_201_CREATED)
async def open_case(
    body: OpenCaseRequest,
    principal: Principal = Depends(require_user),
    svc: CaseService = Depends(case_service),
) -> OpenCaseResponse:
    # 201 even without a workflow: the record is valid, `warning` tells the caller why.
    result = await svc.open_case(
        actor=principal.subject,
        group_id=body.group_id,
        folder_number=body.folder_number,
        notes=body.notes,
        consultant_id=body.consultant_id,
    )
    return OpenCaseResponse.from_result(result)


@router.get("/stats")
async def case_stats(
    principal: Principal = Depends(require_user),
    svc: CaseService = Depends(case_service),
) -> dict[str, object]:
    by_status = await svc.status_counts()
    return {"total": sum(by_status.values()), "by_status": by_status}


@router.get("/{case_id}", response_model=CaseResponse)
async def get_case(
    case_id: uuid.UUID,
    principal: Principal = Depends(require_user),
    svc: CaseService = Depends(case_service),
) -> CaseResponse:
    return CaseResponse.from_view(await svc.get_case(case_id))


@router.post("/{case_id}/orchestrate", response_model=OpenCaseResponse)
async def retry_orchestration(
    case_id: uuid.UUID,
    principal: Principal = Depends(require_user),
    svc: CaseService = Depends(case_service),
) -> OpenCaseResponse:
    result = await svc.retry_orchestration(actor=principal.subject, case_id=case_id)
    return OpenCaseResponse.from_result(result)


@router.post("/{case_id}/review", response_model=CaseResponse)
async def complete_review(
    case_id: uuid.UUID,
    body: ReviewRequest,
    principal: Principal = Depends(require_user),
    svc: CaseService = Depends(case_service),
) -> CaseResponse:
    case = await svc.complete_review_task(
        actor=principal.subject,
        case_id=case_id,
        approved=body.approved,
        notes=body.notes,
        decision=body.decision,
    )
    return CaseResponse.from_view(case)


@router.post("/{case_id}/close", response_model=CaseResponse)
async def close_case(
    case_id: uuid.UUID,
    body: CloseRequest,
    principal: Principal = Depends(require_user),
    svc: CaseService = Depends(case_service),
) -> CaseResponse:
    case = await svc.close_case(actor=principal.subject, case_id=case_id, reason=body.reason)
    return CaseResponse.from_view(case)


@router.delete("/{case_id}")
async def delete_case(
    case_id: uuid.UUID,
    principal: Principal = Depends(require_user),
    svc: CaseService = Depends(case_service),
) -> dict[str, str]:
    await svc.delete_case(actor=principal.subject, case_id=case_id)
    return {"status": "deleted"}


@router.get("/{case_id}/activities", response_model=list[ActivityResponse])
async def list_activities(
    case_id: uuid.UUID,
    principal: Principal = Depends(require_user),
    svc: CaseService = Depends(case_service),
) -> list[ActivityResponse]:
    return [ActivityResponse.from_view(a) for a in await svc.list_activities(case_id)]


@router.post(
    "/{case_id}/activities", response_model=ActivityResponse, status_code=HTTP_201_CREATED
)
async def record_activity(
    case_id: uuid.UUID,
    body: ActivityRequest,
    actor_id: uuid.UUID = Depends(require_user_id),
    svc: CaseService = Depends(case_service),
) -> ActivityResponse:
    activity = await svc.record_activity(
        actor_id=actor_id,
        case_id=case_id,
        description=body.description,
        occurred_at=body.occurred_at,
    )
    return ActivityResponse.from_view(activity)
