from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from casework.api.deps import user_service
from casework.auth.deps import require_user, require_user_id
from casework.auth.models import Principal
from casework.db.models import UserRole
from casework.services.user_service import UserService, UserView

router = APIRouter(prefix="/v1/users", tags=["users"])


class RoleChangeRequest(BaseModel):
    role: UserRole
    access_level: int | None = Field(default=None, ge=1, le=3)


class UserResponse(BaseModel):
    id: uuid.UUID
    name: str
    role: str
    access_level: int | None
    active: bool

    @classmethod
    def from_view(cls, user: UserView) -> UserResponse:
        return cls(
            id=user.id,
            name=user.name,
            role=user.role.value,
            access_level=user.access_level,
            active=user.active,
        )


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: uuid.UUID,
    principal: Principal = Depends(require_user),
    svc: UserService = Depends(user_service),
) -> UserResponse:
    return UserResponse.from_view(await svc.get_user(user_id))


@router.put("/{user_id}/role", response_model=UserResponse)
async def change_role(
    user_id: uuid.UUID,
    body: RoleChangeRequest,
    actor_id: uuid.UUID = Depends(require_user_id),
    svc: UserService = Depends(user_service),
) -> UserResponse:
    user = await svc.change_role(
        actor_id=actor_id,
        user_id=user_id,
        role=body.role,
        access_level=body.access_level,
    )
    return UserResponse.from_view(user)
