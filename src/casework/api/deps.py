"""
casework.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Provide settings, request-scoped DB sessions and the shared infrastructure stored on
  app.state (lock registry, orchestrator gateway).
- Build services per request.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from casework.orchestrator_gateway.client import OrchestratorGateway
from casework.services.case_service import CaseService
from casework.services.locks import KeyedLocks
from casework.services.membership_service import MembershipService
from casework.services.user_service import UserService
from casework.settings import Settings, get_settings


def settings_dep(request: Request) -> Settings:
    # The app factory pins its settings on app.state; fall back to the env-driven ones.
    return getattr(request.app.state, "settings", None) or get_settings()


def sessionmaker_from_app(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.sessionmaker  # type: ignore[attr-defined]


def locks_from_app(request: Request) -> KeyedLocks:
    return request.app.state.locks  # type: ignore[attr-defined]


def gateway_from_app(request: Request) -> OrchestratorGateway:
    return request.app.state.gateway  # type: ignore[attr-defined]


async def db_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
) -> AsyncIterator[AsyncSession]:
    # Commits are issued by the services, one per storage unit.
    async with session_factory() as session:
        yield session


def membership_service(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
    locks: KeyedLocks = Depends(locks_from_app),
) -> MembershipService:
    return MembershipService(session=session, settings=settings, locks=locks)


def case_service(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
    locks: KeyedLocks = Depends(locks_from_app),
    gateway: OrchestratorGateway = Depends(gateway_from_app),
) -> CaseService:
    return CaseService(session=session, settings=settings, gateway=gateway, locks=locks)


def user_service(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
    locks: KeyedLocks = Depends(locks_from_app),
) -> UserService:
    return UserService(session=session, settings=settings, locks=locks)


# --- Module Notes -----------------------------------------------------------
# Tests pass their own Settings to `create_app`; nothing here reads the environment
# directly once the app is built.
