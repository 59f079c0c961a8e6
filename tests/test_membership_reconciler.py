"""
tests.test_membership_reconciler

Reconciler behavior against a real SQLite store.

Responsibilities:
- Convergence, idempotence and the one-responsible / one-student-seat rules.
- Rejection before any write (ambiguity, unknown users, seated students).
"""

from __future__ import annotations

import asyncio
import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from casework.db.models import AuditEvent, Group, Membership, MembershipRole, UserRole
from casework.db.repositories.groups import GroupRepo
from casework.db.repositories.memberships import MembershipRepo
from casework.db.session import create_sessionmaker
from casework.domain.membership import DesiredMembership
from casework.errors import (
    NotFound,
    ResponsibleRequired,
    StorageUnavailable,
    StudentAlreadyAssigned,
    ValidationError,
)
from casework.services.membership_service import MembershipService


async def _audit_count(session, group_id: uuid.UUID) -> int:
    stmt = select(func.count(AuditEvent.id)).where(
        AuditEvent.entity_id == group_id, AuditEvent.event_type == "MEMBERSHIP_RECONCILED"
    )
    return (await session.execute(stmt)).scalar_one()


async def _rows(session, group_id: uuid.UUID) -> dict[uuid.UUID, MembershipRole]:
    stmt = select(Membership.user_id, Membership.role).where(Membership.group_id == group_id)
    return {uid: role for uid, role in (await session.execute(stmt)).all()}


async def _new_group(session, name: str = "G1") -> uuid.UUID:
    group = await GroupRepo(session).create(name=name)
    await session.commit()
    return group.id


@pytest.mark.asyncio
async def test_reconcile_converges_empty_group(session, memberships, make_user) -> None:
    group_id = await _new_group(session)
    r = await make_user(UserRole.faculty)
    a = await make_user(UserRole.faculty)
    s1, s2 = await make_user(), await make_user()

    desired = DesiredMembership.of(responsible=r, assistants=[a], students=[s1, s2])
    result = await memberships.reconcile(actor="tester", group_id=group_id, desired=desired)

    assert result.matches(desired)
    assert await _rows(session, group_id) == {
        r: MembershipRole.responsible,
        a: MembershipRole.assistant,
        s1: MembershipRole.student,
        s2: MembershipRole.student,
    }
    assert await _audit_count(session, group_id) == 1


@pytest.mark.asyncio
async def test_reconcile_is_idempotent(session, memberships, make_user) -> None:
    group_id = await _new_group(session)
    r, s = await make_user(UserRole.faculty), await make_user()
    desired = DesiredMembership.of(responsible=r, students=[s])

    first = await memberships.reconcile(actor="tester", group_id=group_id, desired=desired)
    second = await memberships.reconcile(actor="tester", group_id=group_id, desired=desired)

    assert first == second
    # Second call performed no writes, so no second audit entry either.
    assert await _audit_count(session, group_id) == 1


@pytest.mark.asyncio
async def test_responsible_swap_keeps_previous_as_assistant(session, memberships, make_user):
    group_id = await _new_group(session)
    old, new = await make_user(UserRole.faculty), await make_user(UserRole.faculty)
    await memberships.reconcile(
        actor="tester", group_id=group_id, desired=DesiredMembership.of(responsible=old)
    )

    result = await memberships.reconcile(
        actor="tester",
        group_id=group_id,
        desired=DesiredMembership.of(responsible=new, assistants=[old]),
    )

    assert result.responsible == new
    assert result.assistants == {old}
    rows = await _rows(session, group_id)
    assert [uid for uid, role in rows.items() if role is MembershipRole.responsible] == [new]


@pytest.mark.asyncio
async def test_displaced_responsible_not_listed_is_removed(session, memberships, make_user):
    group_id = await _new_group(session)
    old, new = await make_user(UserRole.faculty), await make_user(UserRole.faculty)
    await memberships.reconcile(
        actor="tester", group_id=group_id, desired=DesiredMembership.of(responsible=old)
    )

    result = await memberships.reconcile(
        actor="tester", group_id=group_id, desired=DesiredMembership.of(responsible=new)
    )

    assert result.role_of(old) is None
    assert await _rows(session, group_id) == {new: MembershipRole.responsible}


@pytest.mark.asyncio
async def test_removing_responsible_without_replacement_is_rejected(
    session, memberships, make_user
) -> None:
    group_id = await _new_group(session)
    r, a = await make_user(UserRole.faculty), await make_user(UserRole.faculty)
    await memberships.reconcile(
        actor="tester", group_id=group_id, desired=DesiredMembership.of(responsible=r)
    )

    with pytest.raises(ResponsibleRequired):
        await memberships.reconcile(
            actor="tester", group_id=group_id, desired=DesiredMembership.of(assistants=[a])
        )
    assert await _rows(session, group_id) == {r: MembershipRole.responsible}


@pytest.mark.asyncio
async def test_ambiguous_desired_set_is_rejected(session, memberships, make_user) -> None:
    group_id = await _new_group(session)
    r, u = await make_user(UserRole.faculty), await make_user()

    with pytest.raises(ValidationError):
        await memberships.reconcile(
            actor="tester",
            group_id=group_id,
            desired=DesiredMembership.of(responsible=r, assistants=[u], students=[u]),
        )
    assert await _rows(session, group_id) == {}


@pytest.mark.asyncio
async def test_student_seated_elsewhere_rejects_whole_admission(
    session, memberships, make_user
) -> None:
    g1 = await _new_group(session, "G1")
    g2 = await _new_group(session, "G2")
    r1, r2 = await make_user(UserRole.faculty), await make_user(UserRole.faculty)
    seated, free = await make_user(), await make_user()
    await memberships.reconcile(
        actor="tester", group_id=g1, desired=DesiredMembership.of(responsible=r1, students=[seated])
    )

    with pytest.raises(StudentAlreadyAssigned) as exc:
        await memberships.reconcile(
            actor="tester",
            group_id=g2,
            desired=DesiredMembership.of(responsible=r2, students=[seated, free]),
        )

    assert exc.value.assignments == {str(seated): "G1"}
    # All-or-nothing: neither the responsible nor the free student was written.
    assert await _rows(session, g2) == {}


@pytest.mark.asyncio
async def test_unknown_user_and_group_are_not_found(session, memberships, make_user) -> None:
    group_id = await _new_group(session)
    with pytest.raises(NotFound):
        await memberships.reconcile(
            actor="tester",
            group_id=group_id,
            desired=DesiredMembership.of(responsible=uuid.uuid4()),
        )
    with pytest.raises(NotFound):
        await memberships.reconcile(
            actor="tester", group_id=uuid.uuid4(), desired=DesiredMembership.of()
        )


@pytest.mark.asyncio
async def test_add_and_remove_member(session, memberships, make_user) -> None:
    group_id = await _new_group(session)
    r, a, s = (
        await make_user(UserRole.faculty),
        await make_user(UserRole.faculty),
        await make_user(),
    )
    await memberships.reconcile(
        actor="tester", group_id=group_id, desired=DesiredMembership.of(responsible=r)
    )

    await memberships.add_member(
        actor="tester", group_id=group_id, user_id=a, role=MembershipRole.assistant
    )
    result = await memberships.add_member(
        actor="tester", group_id=group_id, user_id=s, role=MembershipRole.student
    )
    assert result.assistants == {a}
    assert result.students == {s}

    with pytest.raises(ValidationError):
        await memberships.add_member(
            actor="tester", group_id=group_id, user_id=s, role=MembershipRole.student
        )

    result = await memberships.remove_member(actor="tester", group_id=group_id, user_id=a)
    assert result.role_of(a) is None
    with pytest.raises(NotFound):
        await memberships.remove_member(actor="tester", group_id=group_id, user_id=a)
    with pytest.raises(ResponsibleRequired):
        await memberships.remove_member(actor="tester", group_id=group_id, user_id=r)


@pytest.mark.asyncio
async def test_add_member_as_responsible_demotes_current(session, memberships, make_user):
    group_id = await _new_group(session)
    old, new = await make_user(UserRole.faculty), await make_user(UserRole.faculty)
    await memberships.reconcile(
        actor="tester", group_id=group_id, desired=DesiredMembership.of(responsible=old)
    )

    result = await memberships.add_member(
        actor="tester", group_id=group_id, user_id=new, role=MembershipRole.responsible
    )

    assert result.responsible == new
    assert result.role_of(old) is MembershipRole.assistant


@pytest.mark.asyncio
async def test_create_group_requires_responsible_and_seeds_members(
    session, memberships, make_user
) -> None:
    r, s = await make_user(UserRole.faculty), await make_user()

    with pytest.raises(ResponsibleRequired):
        await memberships.create_group(
            actor="tester", name="G", description=None, desired=DesiredMembership.of()
        )

    result = await memberships.create_group(
        actor="tester",
        name="  Civil 1  ",
        description="civil law clinic",
        desired=DesiredMembership.of(responsible=r, students=[s]),
    )
    group = await GroupRepo(session).get(result.group_id)
    assert group is not None and group.name == "Civil 1"
    assert result.responsible == r
    assert result.students == {s}


@pytest.mark.asyncio
async def test_set_group_active(session, memberships) -> None:
    group_id = await _new_group(session)
    await memberships.set_group_active(actor="tester", group_id=group_id, active=False)
    session.expire_all()
    group = await GroupRepo(session).get(group_id)
    assert group is not None and group.active is False


def _locked_db() -> OperationalError:
    return OperationalError("INSERT INTO memberships", {}, Exception("database is locked"))


@pytest.mark.asyncio
async def test_reconcile_resumes_after_storage_outage(
    session, memberships, make_user, monkeypatch
) -> None:
    group_id = await _new_group(session)
    r, a, s = (
        await make_user(UserRole.faculty),
        await make_user(UserRole.faculty),
        await make_user(),
    )
    desired = DesiredMembership.of(responsible=r, assistants=[a], students=[s])
    original_apply = MembershipRepo.apply
    outage = True

    async def flaky_apply(self, gid, mutation):
        if outage and mutation.role is MembershipRole.student:
            raise _locked_db()
        await original_apply(self, gid, mutation)

    monkeypatch.setattr(MembershipRepo, "apply", flaky_apply)

    with pytest.raises(StorageUnavailable) as exc:
        await memberships.reconcile(actor="tester", group_id=group_id, desired=desired)

    assert exc.value.step == "students"
    assert exc.value.committed_units == 2
    assert await _rows(session, group_id) == {
        r: MembershipRole.responsible,
        a: MembershipRole.assistant,
    }

    outage = False
    result = await memberships.reconcile(actor="tester", group_id=group_id, desired=desired)

    assert result.matches(desired)
    assert (await _rows(session, group_id))[s] is MembershipRole.student


@pytest.mark.asyncio
async def test_racing_admissions_of_one_student_leave_loser_untouched(
    engine, settings, locks, session, memberships, make_user, monkeypatch
) -> None:
    group_a = await _new_group(session, "GA")
    group_b = await _new_group(session, "GB")
    r1, r2 = await make_user(UserRole.faculty), await make_user(UserRole.faculty)
    s = await make_user()
    original_seats = MembershipRepo.student_seats
    racing: list[asyncio.Task] = []

    async with create_sessionmaker(engine)() as other_session:
        other = MembershipService(session=other_session, settings=settings, locks=locks)

        async def seats_then_race(self, user_ids, *, exclude_group_id=None):
            seats = await original_seats(self, user_ids, exclude_group_id=exclude_group_id)
            if not racing:
                # Group A tries to seat the same student right after B's check passed.
                racing.append(
                    asyncio.create_task(
                        other.reconcile(
                            actor="other",
                            group_id=group_a,
                            desired=DesiredMembership.of(responsible=r1, students=[s]),
                        )
                    )
                )
                await asyncio.sleep(0.05)
            return seats

        monkeypatch.setattr(MembershipRepo, "student_seats", seats_then_race)

        result = await memberships.reconcile(
            actor="tester",
            group_id=group_b,
            desired=DesiredMembership.of(responsible=r2, students=[s]),
        )
        with pytest.raises(StudentAlreadyAssigned) as exc:
            await racing[0]

    assert result.students == {s}
    assert exc.value.assignments == {str(s): "GB"}
    assert await _rows(session, group_b) == {
        r2: MembershipRole.responsible,
        s: MembershipRole.student,
    }
    assert await _rows(session, group_a) == {}


@pytest.mark.asyncio
async def test_concurrent_reconciles_on_one_group_serialize(
    engine, settings, locks, session, make_user
) -> None:
    group_id = await _new_group(session)
    r1, r2 = await make_user(UserRole.faculty), await make_user(UserRole.faculty)
    s1, s2 = await make_user(), await make_user()
    first = DesiredMembership.of(responsible=r1, students=[s1])
    second = DesiredMembership.of(responsible=r2, assistants=[r1], students=[s2])

    factory = create_sessionmaker(engine)
    async with factory() as session_a, factory() as session_b:
        await asyncio.gather(
            MembershipService(session=session_a, settings=settings, locks=locks).reconcile(
                actor="a", group_id=group_id, desired=first
            ),
            MembershipService(session=session_b, settings=settings, locks=locks).reconcile(
                actor="b", group_id=group_id, desired=second
            ),
        )

    final = await MembershipRepo(session).snapshot(group_id)
    assert final.matches(first) or final.matches(second)
    assert len(final.responsibles) == 1
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_failed_create_group_leaves_no_group(
    session, memberships, make_user, monkeypatch
) -> None:
    r, s = await make_user(UserRole.faculty), await make_user()
    original_apply = MembershipRepo.apply

    async def flaky_apply(self, gid, mutation):
        if mutation.role is MembershipRole.student:
            raise _locked_db()
        await original_apply(self, gid, mutation)

    monkeypatch.setattr(MembershipRepo, "apply", flaky_apply)

    with pytest.raises(StorageUnavailable) as exc:
        await memberships.create_group(
            actor="tester",
            name="Civil 1",
            description=None,
            desired=DesiredMembership.of(responsible=r, students=[s]),
        )

    assert exc.value.step == "create_group"
    assert exc.value.committed_units == 0
    groups = await session.execute(select(func.count(Group.id)))
    assert groups.scalar_one() == 0
    memberships_left = await session.execute(select(func.count(Membership.id)))
    assert memberships_left.scalar_one() == 0
