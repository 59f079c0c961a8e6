from __future__ import annotations

import uuid

import pytest

from casework.db.models import MembershipRole
from casework.domain.membership import (
    DesiredMembership,
    MembershipSnapshot,
    Mutation,
    ensure_responsible_retained,
    invariant_violations,
    plan_assistants,
    plan_responsible,
    plan_students,
    validate_desired,
)
from casework.errors import ResponsibleRequired, ValidationError

R = MembershipRole
GROUP = uuid.uuid4()


def _ids(n: int) -> list[uuid.UUID]:
    return sorted(uuid.uuid4() for _ in range(n))


def _snapshot(**roles: list[uuid.UUID]) -> MembershipSnapshot:
    mapping: dict[uuid.UUID, MembershipRole] = {}
    for role_name, uids in roles.items():
        for uid in uids:
            mapping[uid] = MembershipRole(role_name)
    return MembershipSnapshot(group_id=GROUP, roles=mapping)


def _plan(current: MembershipSnapshot, desired: DesiredMembership) -> MembershipSnapshot:
    snapshot = current
    for planner in (plan_responsible, plan_assistants, plan_students):
        for m in planner(snapshot, desired):
            snapshot = snapshot.apply([m])
            assert not invariant_violations(snapshot)
    return snapshot


def test_validate_desired_rejects_user_in_two_roles() -> None:
    a, b = _ids(2)
    with pytest.raises(ValidationError):
        validate_desired(DesiredMembership.of(responsible=a, assistants=[a]))
    with pytest.raises(ValidationError):
        validate_desired(DesiredMembership.of(responsible=a, assistants=[b], students=[b]))
    validate_desired(DesiredMembership.of(responsible=a, assistants=[b]))


def test_responsible_cannot_be_dropped_without_replacement() -> None:
    (a,) = _ids(1)
    current = _snapshot(responsible=[a])
    with pytest.raises(ResponsibleRequired):
        ensure_responsible_retained(current, DesiredMembership.of(assistants=[a]))
    # A group that never had one may stay without.
    ensure_responsible_retained(_snapshot(), DesiredMembership.of())


def test_swap_demotes_previous_responsible_before_promoting() -> None:
    a, b = _ids(2)
    current = _snapshot(responsible=[a], assistant=[b])
    ops = plan_responsible(current, DesiredMembership.of(responsible=b))
    assert ops == [Mutation.update(a, R.assistant), Mutation.update(b, R.responsible)]


def test_new_responsible_is_inserted_when_not_a_member() -> None:
    a, b = _ids(2)
    ops = plan_responsible(_snapshot(responsible=[a]), DesiredMembership.of(responsible=b))
    assert ops == [Mutation.update(a, R.assistant), Mutation.insert(b, R.responsible)]


def test_unchanged_responsible_plans_nothing() -> None:
    (a,) = _ids(1)
    assert plan_responsible(_snapshot(responsible=[a]), DesiredMembership.of(responsible=a)) == []


def test_assistant_moved_to_students_is_updated_in_place() -> None:
    a, b = _ids(2)
    current = _snapshot(responsible=[a], assistant=[b])
    desired = DesiredMembership.of(responsible=a, students=[b])
    assert plan_assistants(current, desired) == [Mutation.update(b, R.student)]


def test_student_plan_removes_before_admitting() -> None:
    a, s1, s2 = _ids(3)
    current = _snapshot(responsible=[a], student=[s1])
    ops = plan_students(current, DesiredMembership.of(responsible=a, students=[s2]))
    assert ops == [Mutation.delete(s1), Mutation.insert(s2, R.student)]


def test_full_plan_converges_and_keeps_one_responsible_throughout() -> None:
    a, b, c, s1, s2, s3 = _ids(6)
    current = _snapshot(responsible=[a], assistant=[b], student=[s1, s2])
    desired = DesiredMembership.of(responsible=b, assistants=[c, s1], students=[s2, s3])

    result = _plan(current, desired)

    assert result.matches(desired)
    # The displaced responsible is neither desired as assistant nor student: it leaves.
    assert result.role_of(a) is None


def test_converged_snapshot_plans_nothing() -> None:
    a, b, s = _ids(3)
    current = _snapshot(responsible=[a], assistant=[b], student=[s])
    desired = current.as_desired()
    assert current.matches(desired)
    for planner in (plan_responsible, plan_assistants, plan_students):
        assert planner(current, desired) == []


def test_invariant_violations_reports_two_responsibles() -> None:
    a, b = _ids(2)
    problems = invariant_violations(_snapshot(responsible=[a, b]))
    assert len(problems) == 1
    assert "2 responsibles" in problems[0]


def test_snapshot_refuses_insert_without_role() -> None:
    (a,) = _ids(1)
    with pytest.raises(ValueError):
        _snapshot().apply([Mutation("insert", a)])
