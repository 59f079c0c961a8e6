"""
casework.domain.membership

Membership snapshot, desired-set validation and the per-step reconciliation planner.

Responsibilities:
- Represent a group's membership as one consistent in-memory snapshot.
- Validate a client-submitted desired set (role ambiguity, responsible retention).
- Plan the ordered mutations for each reconcile step:
  responsible resolution -> assistant convergence -> student convergence.

Every planned step, applied on its own, keeps at most one responsible per group and one
role per user. Student seats in other groups are checked by the service before any step.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Literal

from casework.db.models import MembershipRole
from casework.errors import ResponsibleRequired, ValidationError

MutationKind = Literal["insert", "update", "delete"]


@dataclass(frozen=True, slots=True)
class DesiredMembership:
    responsible: uuid.UUID | None = None
    assistants: frozenset[uuid.UUID] = frozenset()
    students: frozenset[uuid.UUID] = frozenset()

    @classmethod
    def of(
        cls,
        *,
        responsible: uuid.UUID | None = None,
        assistants: Iterable[uuid.UUID] = (),
        students: Iterable[uuid.UUID] = (),
    ) -> DesiredMembership:
        return cls(
            responsible=responsible,
            assistants=frozenset(assistants),
            students=frozenset(students),
        )

    def user_ids(self) -> frozenset[uuid.UUID]:
        ids = set(self.assistants) | set(self.students)
        if self.responsible is not None:
            ids.add(self.responsible)
        return frozenset(ids)


@dataclass(frozen=True, slots=True)
class MembershipSnapshot:
    group_id: uuid.UUID
    roles: Mapping[uuid.UUID, MembershipRole] = field(default_factory=dict)

    def role_of(self, user_id: uuid.UUID) -> MembershipRole | None:
        return self.roles.get(user_id)

    def _with(self, role: MembershipRole) -> frozenset[uuid.UUID]:
        return frozenset(uid for uid, r in self.roles.items() if r is role)

    @property
    def responsibles(self) -> frozenset[uuid.UUID]:
        return self._with(MembershipRole.responsible)

    @property
    def responsible(self) -> uuid.UUID | None:
        found = self.responsibles
        return next(iter(found)) if len(found) == 1 else None

    @property
    def assistants(self) -> frozenset[uuid.UUID]:
        return self._with(MembershipRole.assistant)

    @property
    def students(self) -> frozenset[uuid.UUID]:
        return self._with(MembershipRole.student)

    def apply(self, mutations: Iterable[Mutation]) -> MembershipSnapshot:
        roles = dict(self.roles)
        for m in mutations:
            if m.kind == "delete":
                roles.pop(m.user_id, None)
            elif m.role is None:
                raise ValueError(f"{m.kind} mutation for {m.user_id} carries no role")
            else:
                roles[m.user_id] = m.role
        return MembershipSnapshot(group_id=self.group_id, roles=roles)

    def matches(self, desired: DesiredMembership) -> bool:
        return (
            self.responsible == desired.responsible
            and len(self.responsibles) <= 1
            and self.assistants == desired.assistants
            and self.students == desired.students
        )

    def as_desired(self) -> DesiredMembership:
        return DesiredMembership(
            responsible=self.responsible,
            assistants=self.assistants,
            students=self.students,
        )

    def as_dict(self) -> dict[str, object]:
        return {
            "group_id": str(self.group_id),
            "responsible": str(self.responsible) if self.responsible else None,
            "assistants": sorted(str(u) for u in self.assistants),
            "students": sorted(str(u) for u in self.students),
        }


@dataclass(frozen=True, slots=True)
class Mutation:
    kind: MutationKind
    user_id: uuid.UUID
    role: MembershipRole | None = None

    @classmethod
    def insert(cls, user_id: uuid.UUID, role: MembershipRole) -> Mutation:
        return cls("insert", user_id, role)

    @classmethod
    def update(cls, user_id: uuid.UUID, role: MembershipRole) -> Mutation:
        return cls("update", user_id, role)

    @classmethod
    def delete(cls, user_id: uuid.UUID) -> Mutation:
        return cls("delete", user_id)


def validate_desired(desired: DesiredMembership) -> None:
    """Reject a desired set that assigns one user to more than one role."""

    conflicts: set[uuid.UUID] = set(desired.assistants & desired.students)
    if desired.responsible is not None and (
        desired.responsible in desired.assistants or desired.responsible in desired.students
    ):
        conflicts.add(desired.responsible)
    if conflicts:
        raise ValidationError(
            "a user may hold only one role in a group",
            users=sorted(str(u) for u in conflicts),
        )


def ensure_responsible_retained(current: MembershipSnapshot, desired: DesiredMembership) -> None:
    # A responsible-less group is only legal when it never had one.
    if desired.responsible is None and current.responsibles:
        raise ResponsibleRequired(
            "the group responsible cannot be removed without a replacement",
            group_id=str(current.group_id),
        )


def students_to_seat(
    current: MembershipSnapshot, desired: DesiredMembership
) -> frozenset[uuid.UUID]:
    return desired.students - current.students


def invariant_violations(snapshot: MembershipSnapshot) -> list[str]:
    # One role per user holds by construction (user id keys); student seats need a
    # system-wide view.
    problems: list[str] = []
    if len(snapshot.responsibles) > 1:
        count = len(snapshot.responsibles)
        problems.append(f"group {snapshot.group_id} has {count} responsibles")
    return problems


def plan_responsible(current: MembershipSnapshot, desired: DesiredMembership) -> list[Mutation]:
    """
    Step 2. Demote the previous responsible to assistant, then promote or insert the new one.

    Demotion comes first so no applied prefix of the plan holds two responsibles.
    """

    target = desired.responsible
    previous = current.responsible
    if target is None or (target == previous and len(current.responsibles) == 1):
        return []

    ops: list[Mutation] = []
    for uid in sorted(current.responsibles - {target}):
        ops.append(Mutation.update(uid, MembershipRole.assistant))
    if current.role_of(target) is None:
        ops.append(Mutation.insert(target, MembershipRole.responsible))
    elif current.role_of(target) is not MembershipRole.responsible:
        ops.append(Mutation.update(target, MembershipRole.responsible))
    return ops


def plan_assistants(current: MembershipSnapshot, desired: DesiredMembership) -> list[Mutation]:
    """Step 3. Converge the assistant set; the desired responsible is never touched."""

    exclude = {desired.responsible} if desired.responsible is not None else set()
    target = desired.assistants - exclude
    ops: list[Mutation] = []

    for uid in sorted(current.assistants - target - exclude):
        if uid in desired.students:
            ops.append(Mutation.update(uid, MembershipRole.student))
        else:
            ops.append(Mutation.delete(uid))

    for uid in sorted(target - current.assistants):
        if current.role_of(uid) is None:
            ops.append(Mutation.insert(uid, MembershipRole.assistant))
        else:
            ops.append(Mutation.update(uid, MembershipRole.assistant))
    return ops


def plan_students(current: MembershipSnapshot, desired: DesiredMembership) -> list[Mutation]:
    """Step 4. Converge the student set; removals are planned before admissions."""

    ops: list[Mutation] = [
        Mutation.delete(uid) for uid in sorted(current.students - desired.students)
    ]
    for uid in sorted(desired.students - current.students):
        if current.role_of(uid) is None:
            ops.append(Mutation.insert(uid, MembershipRole.student))
        else:
            ops.append(Mutation.update(uid, MembershipRole.student))
    return ops


# --- Module Notes -----------------------------------------------------------
# The planners are evaluated against the snapshot produced by the previous step, which
# is how the reconciler threads one consistent view through all steps without
# re-reading the store between mutations.
