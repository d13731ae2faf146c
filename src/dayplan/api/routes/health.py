"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request, status

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


@router.get("/health/plans", status_code=status.HTTP_200_OK)
def health_plans(request: Request) -> dict:
    orchestrator = request.app.state.orchestrator
    return {
        "service": "planning",
        "healthy": True,
        "plans": len(orchestrator.repository),
        "estimator": orchestrator.estimator.name,
        "auto_approve": orchestrator.auto_approve,
    }
