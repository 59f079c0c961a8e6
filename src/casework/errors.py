"""
casework.errors

Tagged error taxonomy shared by the reconciler, the lifecycle controller and the API.

Responsibilities:
- Give every failure a stable machine-readable `code`.
- Carry enough context (`details`) for callers to decide whether to retry.
"""

from __future__ import annotations

from typing import Any


class CaseworkError(Exception):
    code = "casework_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationError(CaseworkError):
    """Malformed or ambiguous input, rejected before any mutation."""

    code = "validation_error"


class NotFound(CaseworkError):
    code = "not_found"

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(f"{entity} not found", entity=entity, id=str(entity_id))
        self.entity = entity
        self.entity_id = entity_id


class PermissionDenied(CaseworkError):
    code = "permission_denied"


class InvariantViolation(CaseworkError):
    code = "invariant_violation"


class StudentAlreadyAssigned(InvariantViolation):
    code = "student_already_assigned"

    def __init__(self, assignments: dict[str, str]) -> None:
        # assignments: user id -> name of the group already holding the student.
        names = ", ".join(f"{uid} ({group})" for uid, group in sorted(assignments.items()))
        super().__init__(
            f"students already belong to another group: {names}",
            assignments=assignments,
        )
        self.assignments = assignments


class ResponsibleRequired(InvariantViolation):
    code = "responsible_required"


class FolderNumberTaken(InvariantViolation):
    code = "folder_number_taken"


class InvalidTransition(InvariantViolation):
    code = "invalid_transition"


class NoActiveProcess(InvariantViolation):
    code = "no_active_process"


class StorageUnavailable(CaseworkError):
    """
    Transient storage failure after bounded retries.

    Steps before `step` may already be committed; re-invoking with identical input is safe.
    """

    code = "storage_unavailable"

    def __init__(self, *, step: str, committed_units: int, cause: str) -> None:
        super().__init__(
            f"storage unavailable during {step}",
            step=step,
            committed_units=committed_units,
            cause=cause,
        )
        self.step = step
        self.committed_units = committed_units


class RemoteCollaboratorFailure(CaseworkError):
    code = "remote_failure"

    def __init__(
        self,
        *,
        operation: str,
        detail: str,
        status_code: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(
            f"orchestrator {operation} failed: {detail}",
            operation=operation,
            status_code=status_code,
            body=body,
        )
        self.operation = operation
        self.status_code = status_code
        self.body = body


# --- Module Notes -----------------------------------------------------------
# The API layer maps these classes to HTTP statuses in `api.errors`; the service layer
# never imports anything HTTP-specific to raise them.
