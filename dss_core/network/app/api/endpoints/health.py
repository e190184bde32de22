"""
Health and Prometheus endpoints shared by both apps.
"""
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse

from dss_core.monitoring.health import HealthState, HealthStatus
from dss_core.monitoring.metrics import METRICS_CONTENT_TYPE, get_metrics_manager
from dss_core.network.app.dependencies import get_health_state

router = APIRouter(tags=["Health"])


@router.get("/health", summary="Service health")
async def health(
    health_state: Annotated[HealthState, Depends(get_health_state)],
) -> JSONResponse:
    current = health_state.status
    code = (
        status.HTTP_500_INTERNAL_SERVER_ERROR
        if current == HealthStatus.FAIL
        else status.HTTP_200_OK
    )
    return JSONResponse(status_code=code, content={"status": current.value})


@router.get("/metrics", summary="Prometheus metrics")
async def metrics() -> Response:
    return Response(
        content=get_metrics_manager().render_latest(),
        media_type=METRICS_CONTENT_TYPE,
    )
