"""
tests.conftest

Shared fixtures: a file-backed SQLite database per test, service factories and an
in-memory orchestrator double.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from casework.db.init_db import init_db
from casework.db.models import UserRole
from casework.db.repositories.users import UserRepo
from casework.db.session import create_engine, create_sessionmaker
from casework.errors import RemoteCollaboratorFailure
from casework.orchestrator_gateway.client import ProcessStarted, Variables
from casework.services.case_service import CaseService
from casework.services.locks import KeyedLocks
from casework.services.membership_service import MembershipService
from casework.services.user_service import UserService
from casework.settings import Settings


@dataclass
class FakeGateway:
    """Records calls; `fail_start` / `fail_complete` make the next calls fail."""

    instance_ids: list[str] = field(default_factory=lambda: ["P1", "P2", "P3"])
    fail_start: bool = False
    fail_complete: bool = False
    hang: bool = False
    started: list[tuple[str, dict[str, object]]] = field(default_factory=list)
    completed: list[tuple[str, dict[str, object]]] = field(default_factory=list)

    async def start_process(self, process_key: str, variables: Variables) -> ProcessStarted:
        if self.hang:
            await asyncio.sleep(60)
        if self.fail_start:
            raise RemoteCollaboratorFailure(
                operation="start_process", detail="HTTP 500", status_code=500
            )
        self.started.append((process_key, {k: v.value for k, v in variables.items()}))
        return ProcessStarted(instance_id=self.instance_ids.pop(0))

    async def complete_task(self, instance_id: str, variables: Variables) -> None:
        # Yield like a real network call would.
        await asyncio.sleep(0)
        if self.fail_complete:
            raise RemoteCollaboratorFailure(
                operation="complete_task", detail="HTTP 409", status_code=409
            )
        self.completed.append((instance_id, {k: v.value for k, v in variables.items()}))


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        env="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'casework.db'}",
        storage_retry_backoff_seconds=0,
        orchestrator_timeout_seconds=0.5,
        jwt_secret="test-secret",
    )


@pytest_asyncio.fixture
async def engine(settings: Settings) -> AsyncIterator[AsyncEngine]:
    engine = create_engine(settings)
    await init_db(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    session_factory: async_sessionmaker[AsyncSession] = create_sessionmaker(engine)
    async with session_factory() as session:
        yield session


@pytest.fixture
def locks() -> KeyedLocks:
    return KeyedLocks()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def memberships(session: AsyncSession, settings: Settings, locks: KeyedLocks) -> MembershipService:
    return MembershipService(session=session, settings=settings, locks=locks)


@pytest.fixture
def cases(
    session: AsyncSession, settings: Settings, locks: KeyedLocks, gateway: FakeGateway
) -> CaseService:
    return CaseService(session=session, settings=settings, gateway=gateway, locks=locks)


@pytest.fixture
def users_svc(session: AsyncSession, settings: Settings, locks: KeyedLocks) -> UserService:
    return UserService(session=session, settings=settings, locks=locks)


@pytest_asyncio.fixture
async def make_user(session: AsyncSession):
    repo = UserRepo(session)

    async def _make(
        role: UserRole = UserRole.student,
        *,
        name: str | None = None,
        access_level: int | None = None,
    ) -> uuid.UUID:
        user = await repo.create(
            name=name or f"{role.value}-{uuid.uuid4().hex[:6]}",
            role=role,
            access_level=access_level,
        )
        await session.commit()
        return user.id

    return _make


# --- Module Notes -----------------------------------------------------------
# Every test gets a fresh database file under tmp_path, so partial unique indexes and
# commit boundaries behave exactly as they do against a real SQLite deployment.
