"""
casework.domain.case_status

Case status state machine.

    started -> in_review -> {approved, rejected} -> closed

`closed` is also reachable from every non-terminal state (administrative close).
"""

from __future__ import annotations

from casework.db.models import CaseStatus
from casework.errors import InvalidTransition

_FORWARD: dict[CaseStatus, frozenset[CaseStatus]] = {
    CaseStatus.started: frozenset({CaseStatus.in_review}),
    CaseStatus.in_review: frozenset({CaseStatus.approved, CaseStatus.rejected}),
    CaseStatus.approved: frozenset(),
    CaseStatus.rejected: frozenset(),
    CaseStatus.closed: frozenset(),
}


def is_terminal(status: CaseStatus) -> bool:
    return status is CaseStatus.closed


def can_transition(current: CaseStatus, target: CaseStatus) -> bool:
    if is_terminal(current):
        return False
    if target is CaseStatus.closed:
        return True
    return target in _FORWARD[current]


def ensure_transition(current: CaseStatus, target: CaseStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(
            f"cannot move case from {current.value} to {target.value}",
            current=current.value,
            target=target.value,
        )


def decision_status(approved: bool) -> CaseStatus:
    return CaseStatus.approved if approved else CaseStatus.rejected
