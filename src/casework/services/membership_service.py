"""
casework.services.membership_service

Group membership reconciler (transaction + invariant owner).

Responsibilities:
- Converge a group's membership to a client-submitted desired set with minimal
  insert/update/delete operations, in the fixed step order
  responsible -> assistants -> students.
- Reject ambiguous input and invariant violations before the first write.
- Serialize operations per group, and per student while a seat is being taken.
- Retry transient storage failures per unit.
- Offer single add/remove/create operations expressed as reconciliations.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import AsyncExitStack, asynccontextmanager

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from casework.db.models import MembershipRole
from casework.db.repositories.audit import AuditRepo
from casework.db.repositories.groups import GroupRepo
from casework.db.repositories.memberships import MembershipRepo
from casework.db.repositories.users import UserRepo
from casework.domain.membership import (
    DesiredMembership,
    MembershipSnapshot,
    Mutation,
    ensure_responsible_retained,
    invariant_violations,
    plan_assistants,
    plan_responsible,
    plan_students,
    students_to_seat,
    validate_desired,
)
from casework.errors import (
    InvariantViolation,
    NotFound,
    ResponsibleRequired,
    StudentAlreadyAssigned,
    ValidationError,
)
from casework.observability.logging import get_logger
from casework.services.locks import KeyedLocks
from casework.services.retry import StorageUnits
from casework.settings import Settings

log = get_logger(__name__)

Planner = Callable[[MembershipSnapshot, DesiredMembership], list[Mutation]]

# (step name, planner, apply the whole step as one storage unit)
_STEPS: tuple[tuple[str, Planner, bool], ...] = (
    ("responsible", plan_responsible, True),
    ("assistants", plan_assistants, False),
    ("students", plan_students, False),
)


class MembershipService:
    def __init__(
        self,
        *,
        session: AsyncSession,
        settings: Settings,
        locks: KeyedLocks,
    ) -> None:
        self._session = session
        self._settings = settings
        self._locks = locks

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

    async def snapshot(self, group_id: uuid.UUID) -> MembershipSnapshot:
        # Unlocked read: advisory only.
        await self._require_group(group_id)
        return await self._memberships.snapshot(group_id)

    async def reconcile(
        self,
        *,
        actor: str,
        group_id: uuid.UUID,
        desired: DesiredMembership,
    ) -> MembershipSnapshot:
        validate_desired(desired)
        async with self._locks.hold("group", group_id):
            return await self._reconcile_locked(actor=actor, group_id=group_id, desired=desired)

    async def add_member(
        self,
        *,
        actor: str,
        group_id: uuid.UUID,
        user_id: uuid.UUID,
        role: MembershipRole,
    ) -> MembershipSnapshot:
        async with self._locks.hold("group", group_id):
            await self._require_group(group_id)
            current = await self._memberships.snapshot(group_id)
            if current.role_of(user_id) is role:
                raise ValidationError(
                    "user already holds this role in the group", role=role.value
                )
            desired = _with_member(current, user_id, role)
            return await self._reconcile_locked(actor=actor, group_id=group_id, desired=desired)

    async def remove_member(
        self,
        *,
        actor: str,
        group_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> MembershipSnapshot:
        async with self._locks.hold("group", group_id):
            await self._require_group(group_id)
            current = await self._memberships.snapshot(group_id)
            if current.role_of(user_id) is None:
                raise NotFound("membership", user_id)
            desired = _without_member(current, user_id)
            return await self._reconcile_locked(actor=actor, group_id=group_id, desired=desired)

    async def create_group(
        self,
        *,
        actor: str,
        name: str,
        description: str | None,
        desired: DesiredMembership,
    ) -> MembershipSnapshot:
        """
        Create a group together with its first members.

        The group row and every first membership commit as one storage unit, so a failed
        call leaves nothing behind and the client can simply retry it.
        """

        if not name.strip():
            raise ValidationError("group name is required")
        if desired.responsible is None:
            raise ResponsibleRequired("a group is created with a responsible")
        validate_desired(desired)
        await self._ensure_users_exist(desired.user_ids())

        units = self._units()

        async def _create() -> MembershipSnapshot:
            group = await self._groups.create(name=name.strip(), description=description)
            snapshot = MembershipSnapshot(group_id=group.id)
            for _, planner, _ in _STEPS:
                mutations = planner(snapshot, desired)
                for m in mutations:
                    await self._memberships.apply(group.id, m)
                snapshot = snapshot.apply(mutations)
            await self._audit.add(
                entity_type="group",
                entity_id=group.id,
                actor=actor,
                event_type="GROUP_CREATED",
                details={"name": group.name, "result": snapshot.as_dict()},
            )
            return snapshot

        async with self._hold_students(desired.students):
            await self._ensure_students_free(None, desired.students)
            try:
                snapshot = await units.run("create_group", _create)
            except IntegrityError as e:
                raise await self._constraint_error(
                    e, step="create_group", group_id=None, seated=desired.students, units=units
                ) from e

        log.info("group_created", group_id=str(snapshot.group_id), actor=actor)
        return snapshot

    async def set_group_active(self, *, actor: str, group_id: uuid.UUID, active: bool) -> None:
        async with self._locks.hold("group", group_id):
            await self._require_group(group_id)

            async def _toggle() -> None:
                await self._groups.set_active(group_id, active)
                await self._audit.add(
                    entity_type="group",
                    entity_id=group_id,
                    actor=actor,
                    event_type="GROUP_ACTIVATED" if active else "GROUP_DEACTIVATED",
                    details={},
                )

            await self._units().run("set_group_active", _toggle)
            log.info("group_active_changed", group_id=str(group_id), active=active)

    async def _reconcile_locked(
        self,
        *,
        actor: str,
        group_id: uuid.UUID,
        desired: DesiredMembership,
    ) -> MembershipSnapshot:
        validate_desired(desired)
        await self._require_group(group_id, for_update=True)
        await self._ensure_users_exist(desired.user_ids())

        # Step 1: one snapshot for the whole invocation.
        current = await self._memberships.snapshot(group_id)
        for problem in invariant_violations(current):
            log.warning("membership_invariant_broken", group_id=str(group_id), problem=problem)

        ensure_responsible_retained(current, desired)
        seating = students_to_seat(current, desired)
        # Student seats stay held from the availability check until the last step.
        async with self._hold_students(seating):
            await self._ensure_students_free(group_id, seating)
            return await self._converge(
                actor=actor, group_id=group_id, current=current, desired=desired
            )

    async def _converge(
        self,
        *,
        actor: str,
        group_id: uuid.UUID,
        current: MembershipSnapshot,
        desired: DesiredMembership,
    ) -> MembershipSnapshot:
        if current.matches(desired):
            # Converged: end the read transaction without writing anything.
            await self._session.commit()
            log.debug("membership_unchanged", group_id=str(group_id))
            return current

        units = self._units()
        snapshot = current
        applied: list[Mutation] = []
        for step, planner, atomic in _STEPS:
            mutations = planner(snapshot, desired)
            if not mutations:
                continue
            batches = [mutations] if atomic else [[m] for m in mutations]
            for batch in batches:
                await self._apply(units, step, group_id, batch)
                snapshot = snapshot.apply(batch)
                applied.extend(batch)

        async def _record() -> None:
            await self._audit.add(
                entity_type="group",
                entity_id=group_id,
                actor=actor,
                event_type="MEMBERSHIP_RECONCILED",
                details={
                    "operations": [
                        {
                            "op": m.kind,
                            "user_id": str(m.user_id),
                            "role": m.role.value if m.role else None,
                        }
                        for m in applied
                    ],
                    "result": snapshot.as_dict(),
                },
            )

        await units.run("audit", _record)
        log.info(
            "membership_reconciled",
            group_id=str(group_id),
            actor=actor,
            operations=len(applied),
            committed_units=units.committed_units,
        )
        return snapshot

    async def _apply(
        self,
        units: StorageUnits,
        step: str,
        group_id: uuid.UUID,
        batch: list[Mutation],
    ) -> None:
        async def _unit() -> None:
            for m in batch:
                await self._memberships.apply(group_id, m)

        try:
            await units.run(step, _unit)
        except IntegrityError as e:
            seated = [m.user_id for m in batch if m.role is MembershipRole.student]
            raise await self._constraint_error(
                e, step=step, group_id=group_id, seated=seated, units=units
            ) from e

    async def _constraint_error(
        self,
        error: IntegrityError,
        *,
        step: str,
        group_id: uuid.UUID | None,
        seated: Iterable[uuid.UUID],
        units: StorageUnits,
    ) -> InvariantViolation:
        # A writer in another process got past the in-memory checks; the storage backstop held.
        log.warning(
            "membership_constraint_rejected",
            group_id=str(group_id) if group_id else None,
            step=step,
            error=str(error.orig),
        )
        seats = await self._memberships.student_seats(seated, exclude_group_id=group_id)
        if seats:
            return StudentAlreadyAssigned({str(k): v for k, v in seats.items()})
        return InvariantViolation(
            "membership change conflicts with a concurrent update",
            step=step,
            committed_units=units.committed_units,
        )

    @asynccontextmanager
    async def _hold_students(self, user_ids: Iterable[uuid.UUID]) -> AsyncIterator[None]:
        # Sorted acquisition order keeps concurrent admissions free of lock cycles.
        async with AsyncExitStack() as stack:
            for uid in sorted(set(user_ids)):
                await stack.enter_async_context(self._locks.hold("student", uid))
            yield

    async def _require_group(self, group_id: uuid.UUID, *, for_update: bool = False) -> None:
        if await self._groups.get(group_id, for_update=for_update) is None:
            raise NotFound("group", group_id)

    async def _ensure_users_exist(self, user_ids: Iterable[uuid.UUID]) -> None:
        wanted = set(user_ids)
        missing = wanted - await self._users.existing_ids(wanted)
        if missing:
            raise NotFound("user", ", ".join(sorted(str(u) for u in missing)))

    async def _ensure_students_free(
        self, group_id: uuid.UUID | None, candidates: Iterable[uuid.UUID]
    ) -> None:
        seats = await self._memberships.student_seats(candidates, exclude_group_id=group_id)
        if seats:
            raise StudentAlreadyAssigned({str(uid): name for uid, name in seats.items()})


def _with_member(
    current: MembershipSnapshot, user_id: uuid.UUID, role: MembershipRole
) -> DesiredMembership:
    base = _without_member(current, user_id)
    if role is MembershipRole.responsible:
        # The displaced responsible stays in the group as an assistant.
        assistants = set(base.assistants)
        if current.responsible is not None and current.responsible != user_id:
            assistants.add(current.responsible)
        return DesiredMembership.of(
            responsible=user_id, assistants=assistants, students=base.students
        )
    if role is MembershipRole.assistant:
        return DesiredMembership.of(
            responsible=base.responsible,
            assistants=base.assistants | {user_id},
            students=base.students,
        )
    return DesiredMembership.of(
        responsible=base.responsible,
        assistants=base.assistants,
        students=base.students | {user_id},
    )


def _without_member(current: MembershipSnapshot, user_id: uuid.UUID) -> DesiredMembership:
    desired = current.as_desired()
    return DesiredMembership.of(
        responsible=None if desired.responsible == user_id else desired.responsible,
        assistants=desired.assistants - {user_id},
        students=desired.students - {user_id},
    )


# --- Module Notes -----------------------------------------------------------
# Each storage unit is committed on its own. A failure after some units leaves a prefix
# of the plan applied; calling `reconcile` again with the same desired set re-plans from
# the stored state and finishes the job.
