"""
app.py - FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the store, the authorizer, the audit sink and the reservation
services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from backend.controllers.reservation_controller import router as reservation_router
from backend.repository.data_repository import DataRepository
from backend.services.audit_service import AuditService
from backend.services.auth_service import RoleAuthorizationService
from backend.services.bulk_transition_service import BulkTransitionService
from backend.services.lifecycle_service import ReservationLifecycleService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    No global singletons - every dependency is traceable from this function.
    """
    settings = settings or get_settings()

    # --- Repository (implements the ReservationStore port) ---
    repository = DataRepository(settings)

    # --- Ports backed by the same database ---
    authorizer = RoleAuthorizationService(repository=repository, settings=settings)
    audit_service = AuditService(repository=repository)

    # --- Services (business logic, no direct DB access) ---
    lifecycle_service = ReservationLifecycleService(
        store=repository,
        authorizer=authorizer,
        audit=audit_service,
        settings=settings,
    )
    bulk_service = BulkTransitionService(lifecycle=lifecycle_service, settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(reservation_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.repository = repository
    app.state.authorizer = authorizer
    app.state.audit_service = audit_service
    app.state.lifecycle_service = lifecycle_service
    app.state.bulk_service = bulk_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema must exist before seeding; seeding is skipped when rooms exist.
    """
    repository: DataRepository = app.state.repository
    settings: Settings = app.state.settings

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo rooms and users (skipped if Rooms table not empty)")
        repository.seed_demo_data()

    logger.info("Startup complete - system ready")


# Module-level app object for uvicorn
app = create_app()
