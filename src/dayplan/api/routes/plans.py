"""Daily plan endpoints."""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import date
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from ...errors import NotFoundError, PlanStateError, ValidationError
from ...models.domain import Plan, PlanningResult
from ...schemas.planning import PlanModel, PlanningRequest, PlanningResultModel
from ...services.outputs.schedule_formatter import schedule_to_csv, schedule_to_json
from ...services.planning.orchestrator import PlanningOrchestrator

router = APIRouter(prefix="/plans", tags=["plans"])


def get_orchestrator(request: Request) -> PlanningOrchestrator:
    return request.app.state.orchestrator


def _plan_model(plan: Plan) -> PlanModel:
    return PlanModel.model_validate(asdict(plan))


def _result_model(result: PlanningResult) -> PlanningResultModel:
    return PlanningResultModel(**asdict(result), success=result.success)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, PlanStateError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    logging.exception(f"Unexpected planning error: {exc}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Planning request failed: {str(exc)}",
    )


@router.post("", response_model=PlanningResultModel, status_code=status.HTTP_201_CREATED)
async def start_planning(
    payload: PlanningRequest,
    orchestrator: PlanningOrchestrator = Depends(get_orchestrator),
) -> PlanningResultModel:
    try:
        result = await orchestrator.start_planning(payload.user_id, payload.job_ids, payload.plan_date)
    except Exception as exc:
        raise _http_error(exc) from exc
    return _result_model(result)


@router.get("", response_model=List[PlanModel])
def list_plans(
    user_id: str = Query(..., min_length=1),
    orchestrator: PlanningOrchestrator = Depends(get_orchestrator),
) -> List[PlanModel]:
    return [_plan_model(plan) for plan in orchestrator.list_plans(user_id)]


@router.get("/active", response_model=PlanModel)
def get_active_plan(
    user_id: str = Query(..., min_length=1),
    plan_date: date = Query(...),
    orchestrator: PlanningOrchestrator = Depends(get_orchestrator),
) -> PlanModel:
    try:
        return _plan_model(orchestrator.get_active_plan_for_date(user_id, plan_date))
    except Exception as exc:
        raise _http_error(exc) from exc


@router.delete("/active", status_code=status.HTTP_200_OK)
def clear_active_plan(
    user_id: str = Query(..., min_length=1),
    plan_date: date = Query(...),
    orchestrator: PlanningOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Reset the day so it can be planned again."""
    removed = orchestrator.clear_plan_for_date(user_id, plan_date)
    return {"cleared": removed is not None, "plan_id": removed.id if removed else None}


@router.post("/expire-stale", status_code=status.HTTP_200_OK)
def expire_stale_plans(orchestrator: PlanningOrchestrator = Depends(get_orchestrator)) -> dict:
    expired = orchestrator.expire_stale_plans()
    return {"expired": expired, "count": len(expired)}


@router.get("/{plan_id}", response_model=PlanModel)
def get_plan(plan_id: str, orchestrator: PlanningOrchestrator = Depends(get_orchestrator)) -> PlanModel:
    try:
        return _plan_model(orchestrator.get_plan(plan_id))
    except Exception as exc:
        raise _http_error(exc) from exc


@router.post("/{plan_id}/retry", response_model=PlanningResultModel)
async def retry_planning(
    plan_id: str, orchestrator: PlanningOrchestrator = Depends(get_orchestrator)
) -> PlanningResultModel:
    try:
        result = await orchestrator.retry_planning(plan_id)
    except Exception as exc:
        raise _http_error(exc) from exc
    return _result_model(result)


@router.post("/{plan_id}/cancel", status_code=status.HTTP_200_OK)
def cancel_planning(plan_id: str, orchestrator: PlanningOrchestrator = Depends(get_orchestrator)) -> dict:
    try:
        orchestrator.cancel_planning(plan_id)
    except Exception as exc:
        raise _http_error(exc) from exc
    return {"success": True, "message": f"Plan {plan_id} cancelled"}


@router.post("/{plan_id}/approve", response_model=PlanModel)
def approve_plan(plan_id: str, orchestrator: PlanningOrchestrator = Depends(get_orchestrator)) -> PlanModel:
    try:
        return _plan_model(orchestrator.approve_plan(plan_id))
    except Exception as exc:
        raise _http_error(exc) from exc


@router.get("/{plan_id}/schedule")
def get_schedule(plan_id: str, orchestrator: PlanningOrchestrator = Depends(get_orchestrator)) -> dict:
    try:
        return schedule_to_json(orchestrator.get_plan(plan_id))
    except Exception as exc:
        raise _http_error(exc) from exc


@router.get("/{plan_id}/schedule.csv")
def get_schedule_csv(plan_id: str, orchestrator: PlanningOrchestrator = Depends(get_orchestrator)) -> Response:
    try:
        plan = orchestrator.get_plan(plan_id)
    except Exception as exc:
        raise _http_error(exc) from exc
    return Response(
        content=schedule_to_csv(plan),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{plan_id}_schedule.csv"'},
    )
