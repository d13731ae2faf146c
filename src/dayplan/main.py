"""FastAPI application entry point."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import health, plans, routing
from .config import settings
from .data.jobs_repository import InMemoryJobStore, load_jobs
from .services.dispatch.priority import PriorityRankPrioritizer
from .services.inventory.requirements import CatalogInventorySource, load_catalog
from .services.planning import PlanningOrchestrator


def build_orchestrator() -> PlanningOrchestrator:
    return PlanningOrchestrator.from_settings(
        job_store=InMemoryJobStore(load_jobs()),
        prioritizer=PriorityRankPrioritizer(),
        inventory_source=CatalogInventorySource(load_catalog()),
    )


def create_app(orchestrator: PlanningOrchestrator | None = None) -> FastAPI:
    app = FastAPI(title=settings.app_name, root_path="")
    app.state.orchestrator = orchestrator or build_orchestrator()
    if settings.frontend_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.frontend_allowed_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.get("/")
    def root():
        return {
            "service": settings.app_name,
            "status": "running",
            "api_prefix": settings.api_prefix,
            "health": f"{settings.api_prefix}/health",
            "docs": "/docs",
        }

    app.include_router(health.router, prefix=settings.api_prefix)
    app.include_router(plans.router, prefix=settings.api_prefix)
    app.include_router(routing.router, prefix=settings.api_prefix)
    return app


app = create_app()
