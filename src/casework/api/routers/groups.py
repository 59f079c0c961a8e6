"""
casework.api.routers.groups

Group membership endpoints.

Responsibilities:
- Submit a desired membership set (reconciliation) and single add/remove changes.
- Create groups with their initial membership, toggle the active flag.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from starlette.status import HTTP_201_CREATED

from casework.api.deps import membership_service
from casework.auth.deps import require_user
from casework.auth.models import Principal
from casework.db.models import MembershipRole
from casework.domain.membership import DesiredMembership, MembershipSnapshot
from casework.services.membership_service import MembershipService

router = APIRouter(prefix="/v1/groups", tags=["groups"])


class DesiredMembershipRequest(BaseModel):
    responsible_id: uuid.UUID | None = None
    assistant_ids: list[uuid.UUID] = Field(default_factory=list)
    student_ids: list[uuid.UUID] = Field(default_factory=list)

    def to_desired(self) -> DesiredMembership:
        return DesiredMembership.of(
            responsible=self.responsible_id,
            assistants=self.assistant_ids,
            students=self.student_ids,
        )


class GroupCreateRequest(DesiredMembershipRequest):
    name: str = Field(min_length=1, max_length=256)
    description: str | None = None


class AddMemberRequest(BaseModel):
    user_id: uuid.UUID
    role: MembershipRole


class ActiveRequest(BaseModel):
    active: bool


class MembershipResponse(BaseModel):
    group_id: uuid.UUID
    responsible_id: uuid.UUID | None
    assistant_ids: list[uuid.UUID]
    student_ids: list[uuid.UUID]

    @classmethod
    def from_snapshot(cls, snapshot: MembershipSnapshot) -> MembershipResponse:
        return cls(
            group_id=snapshot.group_id,
            responsible_id=snapshot.responsible,
            assistant_ids=sorted(snapshot.assistants),
            student_ids=sorted(snapshot.students),
        )


@router.post("", response_model=MembershipResponse, status_code=HTTP_201_CREATED)
async def create_group(
    body: GroupCreateRequest,
    principal: Principal = Depends(require_user),
    svc: MembershipService = Depends(membership_service),
) -> MembershipResponse:
    snapshot = await svc.create_group(
        actor=principal.subject,
        name=body.name,
        description=body.description,
        desired=body.to_desired(),
    )
    return MembershipResponse.from_snapshot(snapshot)


@router.get("/{group_id}/members", response_model=MembershipResponse)
async def get_members(
    group_id: uuid.UUID,
    principal: Principal = Depends(require_user),
    svc: MembershipService = Depends(membership_service),
) -> MembershipResponse:
    return MembershipResponse.from_snapshot(await svc.snapshot(group_id))


@router.put("/{group_id}/members", response_model=MembershipResponse)
async def reconcile_members(
    group_id: uuid.UUID,
    body: DesiredMembershipRequest,
    principal: Principal = Depends(require_user),
    svc: MembershipService = Depends(membership_service),
) -> MembershipResponse:
    # Idempotent: clients retry with the same body after a 503.
    snapshot = await svc.reconcile(
        actor=principal.subject, group_id=group_id, desired=body.to_desired()
    )
    return MembershipResponse.from_snapshot(snapshot)


@router.post("/{group_id}/members", response_model=MembershipResponse)
async def add_member(
    group_id: uuid.UUID,
    body: AddMemberRequest,
    principal: Principal = Depends(require_user),
    svc: MembershipService = Depends(membership_service),
) -> MembershipResponse:
    snapshot = await svc.add_member(
        actor=principal.subject, group_id=group_id, user_id=body.user_id, role=body.role
    )
    return MembershipResponse.from_snapshot(snapshot)


@router.delete("/{group_id}/members/{user_id}", response_model=MembershipResponse)
async def remove_member(
    group_id: uuid.UUID,
    user_id: uuid.UUID,
    principal: Principal = Depends(require_user),
    svc: MembershipService = Depends(membership_service),
) -> MembershipResponse:
    snapshot = await svc.remove_member(actor=principal.subject, group_id=group_id, user_id=user_id)
    return MembershipResponse.from_snapshot(snapshot)


@router.post("/{group_id}/active")
async def set_active(
    group_id: uuid.UUID,
    body: ActiveRequest,
    principal: Principal = Depends(require_user),
    svc: MembershipService = Depends(membership_service),
) -> dict[str, bool]:
    await svc.set_group_active(actor=principal.subject, group_id=group_id, active=body.active)
    return {"active": body.active}
