"""FastAPI application factory.

Creates the app with request logging, lifespan events for database
initialization and reconciliation wiring, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from src.hireos.api.middleware.logging import LoggingMiddleware
from src.hireos.api.v1.router import router as v1_router
from src.hireos.candidates.repository import CandidateRepository
from src.hireos.config import get_settings
from src.hireos.core.database import close_db, get_session, init_db
from src.hireos.core.logging import configure_structlog
from src.hireos.crm.service import ReconciliationService
from src.hireos.crm.sources.registry import build_registry
from src.hireos.crm.store import RepositoryCandidateStore
from src.hireos.integrations.repository import IntegrationRepository


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB and reconciliation services, close DB on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    # ── CRM Reconciliation ──────────────────────────────────────────────
    candidate_repo = CandidateRepository(session_factory=get_session)
    registry = build_registry(settings)

    app.state.candidate_repository = candidate_repo
    app.state.integration_repository = IntegrationRepository(session_factory=get_session)
    app.state.source_registry = registry
    app.state.reconciliation_service = ReconciliationService(
        store=RepositoryCandidateStore(candidate_repo),
        registry=registry,
        settings=settings,
    )
    log.info("crm_sync.initialized", providers=registry.provider_ids())

    yield

    await close_db()
    log.info("app.shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="HireOS API",
        version="0.1.0",
        description="Hiring pipeline platform: candidate/CRM reconciliation",
        lifespan=lifespan,
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    app.include_router(v1_router)

    return app


# Module-level app for uvicorn
app = create_app()
