"""
casework.api.app

FastAPI app factory.

Responsibilities:
- Build the FastAPI application and register routers, middleware and error handlers.
- Initialize and dispose shared infrastructure (DB engine/session factory, lock registry,
  orchestrator HTTP client).
- Provide a single composition root where cross-cutting concerns live.
"""

from __future__ import annotations

from fastapi import FastAPI

from casework import __version__
from casework.api.errors import register_error_handlers
from casework.api.routers.cases import router as cases_router
from casework.api.routers.groups import router as groups_router
from casework.api.routers.health import router as health_router
from casework.api.routers.users import router as users_router
from casework.db.init_db import init_db
from casework.db.session import create_engine, create_sessionmaker
from casework.observability.logging import configure_logging, get_logger
from casework.observability.middleware import RequestContextMiddleware
from casework.orchestrator_gateway.client import (
    HttpOrchestratorGateway,
    OrchestratorGateway,
    build_http_client,
)
from casework.services.locks import KeyedLocks
from casework.settings import Settings

log = get_logger(__name__)


def create_app(*, settings: Settings, gateway: OrchestratorGateway | None = None) -> FastAPI:
    configure_logging(
        service_name=settings.service_name,
        level=settings.log_level,
        json=settings.env != "dev",
    )

    app = FastAPI(
        title="Case Workflow & Group Membership Engine",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings
    # One registry per process: same-entity operations serialize across requests.
    app.state.locks = KeyedLocks()

    app.add_middleware(RequestContextMiddleware)
    register_error_handlers(app)
    app.include_router(health_router, tags=["health"])
    app.include_router(groups_router)
    app.include_router(cases_router)
    app.include_router(users_router)

    @app.on_event("startup")
    async def _startup() -> None:
        log.info("startup", env=settings.env)
        engine = create_engine(settings)
        app.state.engine = engine
        app.state.sessionmaker = create_sessionmaker(engine)
        app.state.http = None
        if gateway is None:
            app.state.http = build_http_client(settings)
            app.state.gateway = HttpOrchestratorGateway(settings=settings, http=app.state.http)
        else:
            app.state.gateway = gateway
        if settings.env in ("dev", "test"):
            # Dev/test convenience: create tables automatically. Prod uses Alembic migrations.
            await init_db(engine)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        http = getattr(app.state, "http", None)
        if http is not None:
            await http.aclose()
        engine = getattr(app.state, "engine", None)
        if engine is not None:
            await engine.dispose()
        log.info("shutdown")

    return app


# --- Module Notes -----------------------------------------------------------
# `gateway` is injectable so tests (and a future message-queue transport) can replace the
# HTTP orchestrator client without touching routers or services.
