"""
Engine API Routes

Trigger scoring runs and inspect the registry and scheduler.
"""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from signal_engine.adapters import get_adapter_registration, list_platforms
from signal_engine.errors import ConfigurationError
from signal_engine.schemas import EngineRequest
from signal_engine.services.scheduler import scheduler_service
from signal_engine.settings import get_app_config

router = APIRouter(prefix="/api/engine", tags=["engine"])


class RunResponse(BaseModel):
    status: str
    task_id: str | None = None
    result: dict | None = None


@router.get("/platforms", response_model=list[str])
async def get_platforms():
    return list_platforms()


@router.get("/scheduler", response_model=dict)
async def get_scheduler_status():
    return {"running": scheduler_service.is_running(), "jobs": scheduler_service.get_jobs()}


@router.post("/run", response_model=RunResponse, status_code=status.HTTP_202_ACCEPTED)
async def run_user(request: EngineRequest):
    """Enqueue a scoring run, or run it inline when Celery is disabled."""
    if get_adapter_registration(request.platform) is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported platform '{request.platform}'",
        )

    if get_app_config().celery_enabled:
        from signal_engine.worker.tasks import process_user
        async_result = process_user.delay(request.model_dump())
        return RunResponse(status="queued", task_id=async_result.id)

    from signal_engine.engine import run_engine
    try:
        result = await run_engine(request)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(e))
    return RunResponse(status="done", result=result.to_dict())
