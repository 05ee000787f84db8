from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from yumrun_api.api.envelope import ApiResponse, ok
from yumrun_api.core.settings import settings
from yumrun_api.db.session import get_session


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "disabled", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/readyz", summary="Service readiness", response_model=ApiResponse[ReadinessPayload])
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ApiResponse[ReadinessPayload]:
    components: Dict[str, ComponentStatus] = {}
    overall: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.opt(exception=exc).warning("Database readiness probe failed")
        components["database"] = ComponentStatus(status="error", detail=str(exc))
        overall = "error"
    else:
        components["database"] = ComponentStatus(status="ready")

    scheduler = getattr(request.app.state, "job_scheduler", None)
    if not settings.job_scheduler_enabled:
        components["scheduler"] = ComponentStatus(status="disabled", detail="job_scheduler_enabled is false")
    elif scheduler is not None and scheduler.is_running:
        components["scheduler"] = ComponentStatus(status="ready")
    else:
        components["scheduler"] = ComponentStatus(status="error", detail="Scheduler is not running")
        if overall == "ready":
            overall = "degraded"

    return ok(ReadinessPayload(status=overall, components=components))
