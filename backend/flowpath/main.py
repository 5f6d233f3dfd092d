from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from flowpath.core.app_context import AppContext, get_app_context, set_app_context
from flowpath.core.logging import RequestContextMiddleware, setup_logging
from flowpath.core.stores import InMemoryFlowStore, InMemoryMembershipStore, InMemorySessionStore
from flowpath.db.base import Base
from flowpath.db.repository import (
    SqlAlchemyFlowStore,
    SqlAlchemyMembershipStore,
    SqlAlchemySessionStore,
)
from flowpath.db.session import get_engine, get_session_factory
from flowpath.router import api_router
from flowpath.services.flow_lifecycle_service import FlowLifecycleService
from flowpath.services.membership_service import MembershipService
from flowpath.services.traversal_service import TraversalService
from flowpath.settings import Settings, get_settings

setup_logging()

logger = logging.getLogger(__name__)


def build_context(settings: Settings | None = None) -> AppContext:
    """Wire services onto SQL stores when DATABASE_URL is set, in-memory stores otherwise."""
    settings = settings or get_settings()
    if settings.sqlalchemy_database_url:
        factory = get_session_factory()
        flow_store = SqlAlchemyFlowStore(factory)
        membership_store = SqlAlchemyMembershipStore(factory)
        session_store = SqlAlchemySessionStore(factory)
        persistence = "sql"
    else:
        flow_store = InMemoryFlowStore()
        membership_store = InMemoryMembershipStore()
        session_store = InMemorySessionStore()
        persistence = "memory"

    memberships = MembershipService(membership_store)
    flows = FlowLifecycleService(flow_store, memberships)
    return AppContext(
        flows=flows,
        memberships=memberships,
        traversals=TraversalService(flows, session_store),
        persistence=persistence,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup/shutdown handler."""
    ctx = get_app_context(app)
    if ctx.persistence == "sql":
        try:
            Base.metadata.create_all(bind=get_engine())
            logger.info("Database tables ensured (create_all)")
        except Exception as e:
            logger.warning("Failed to create DB tables on startup: %s", e)
    logger.info("Flowpath started with %s persistence", ctx.persistence)

    yield

    logger.info("Application shutting down")


def create_app(ctx: AppContext | None = None) -> FastAPI:
    app = FastAPI(
        title="Flowpath API",
        version="0.1.0",
        description="Onboarding flow builder with conditional routing",
        lifespan=lifespan,
    )
    app.add_middleware(RequestContextMiddleware)
    set_app_context(app, ctx or build_context())

    @app.get("/health", response_class=PlainTextResponse)
    async def health() -> str:
        return "ok"

    app.include_router(api_router)
    return app


app = create_app()
