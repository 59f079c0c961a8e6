"""
casework.db.models

Core persistence schema.

Responsibilities:
- Define ORM models for the membership store and the case store:
  - User: identity + system role (+ access level for administrators)
  - Group / Membership: work groups and their (group, user, role) rows
  - Case: case file driven through review in step with the orchestrator
  - CaseActivity: route-sheet entries recorded against a case
  - AuditEvent: append-only audit trail
- Carry storage-level backstops for the membership invariants.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy import Uuid as SAUuid
from sqlalchemy.orm import Mapped, mapped_column

from casework.db.base import Base


def _utcnow() -> datetime:
    # Persist naive UTC timestamps; SQLite has no tz-aware column type.
    return datetime.now(UTC).replace(tzinfo=None)


class UserRole(enum.StrEnum):
    # Member names equal values: the DB stores names and partial indexes compare literals.
    student = "student"
    faculty = "faculty"
    consultant = "consultant"
    administrator = "administrator"


class MembershipRole(enum.StrEnum):
    responsible = "responsible"
    assistant = "assistant"
    student = "student"


class CaseStatus(enum.StrEnum):
    started = "started"
    in_review = "in_review"
    approved = "approved"
    rejected = "rejected"
    closed = "closed"


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    national_id: Mapped[str | None] = mapped_column(String(32), nullable=True, unique=True)

    role: Mapped[UserRole] = mapped_column(Enum(UserRole), nullable=False, index=True)
    # Only administrators carry an access level (1..3).
    access_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, onupdate=_utcnow)


class Group(Base):
    __tablename__ = "groups"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, onupdate=_utcnow)


class Membership(Base):
    __tablename__ = "memberships"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    group_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("groups.id"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    role: Mapped[MembershipRole] = mapped_column(Enum(MembershipRole), nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        # One role per user in a group.
        UniqueConstraint("group_id", "user_id", name="uq_memberships_group_user"),
        # Supports the system-wide "is this user already seated as a student" lookup.
        Index("ix_memberships_user_role", "user_id", "role"),
        # At most one responsible per group.
        Index(
            "uq_memberships_group_responsible",
            "group_id",
            unique=True,
            sqlite_where=text("role = 'responsible'"),
            postgresql_where=text("role = 'responsible'"),
        ),
        # At most one student membership per user, system-wide.
        Index(
            "uq_memberships_student_user",
            "user_id",
            unique=True,
            sqlite_where=text("role = 'student'"),
            postgresql_where=text("role = 'student'"),
        ),
    )


class Case(Base):
    __tablename__ = "cases"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    group_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("groups.id"), nullable=False, index=True
    )
    consultant_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True
    )
    folder_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    status: Mapped[CaseStatus] = mapped_column(Enum(CaseStatus), nullable=False, index=True)
    # Opaque orchestrator instance id; written once, never cleared.
    process_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    close_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    opened_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, index=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, onupdate=_utcnow)


class CaseActivity(Base):
    __tablename__ = "case_activities"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    case_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("cases.id"), nullable=False
    )
    author_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    occurred_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)

    __table_args__ = (Index("ix_case_activities_case_occurred", "case_id", "occurred_at"),)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(SAUuid(as_uuid=True), nullable=False)

    actor: Mapped[str] = mapped_column(String(256), nullable=False)  # user id / system
    event_type: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, index=True)

    __table_args__ = (Index("ix_audit_entity_created", "entity_type", "entity_id", "created_at"),)


# --- Module Notes -----------------------------------------------------------
# Relationships are deliberately not declared: deletes are explicit and ordered in the
# service layer, and snapshots are built from plain queries rather than lazy loads.
