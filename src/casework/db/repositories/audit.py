"""
casework.db.repositories.audit

Repository for `AuditEvent` entities.

Responsibilities:
- Append audit events (membership reconciliations, case transitions, role changes).
- Query the audit trail of one entity.
"""

from __future__ import annotations

import uuid
from typing import Any, Literal

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from casework.db.models import AuditEvent

EntityType = Literal["group", "case", "user"]


class AuditRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        *,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        actor: str,
        event_type: str,
        details: dict[str, Any],
    ) -> AuditEvent:
        # Audit events are append-only (no update/delete) in normal operation.
        ev = AuditEvent(
            entity_type=entity_type,
            entity_id=entity_id,
            actor=actor,
            event_type=event_type,
            details=details,
        )
        self._session.add(ev)
        await self._session.flush()
        return ev

    async def list_for_entity(
        self, entity_type: EntityType, entity_id: uuid.UUID, *, limit: int = 200
    ) -> list[AuditEvent]:
        # Newest-first for UI consumption.
        stmt = (
            select(AuditEvent)
            .where(AuditEvent.entity_type == entity_type, AuditEvent.entity_id == entity_id)
            .order_by(desc(AuditEvent.created_at))
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())


# --- Module Notes -----------------------------------------------------------
# Case deletion keeps the case's audit trail; it is the only record that the case existed.
