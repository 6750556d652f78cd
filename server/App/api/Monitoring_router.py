"""
Monitoring API Router

Provides endpoints for:
- Starting and stopping the periodic performance sampler
- Reading retained performance samples
- Composite health check
"""

from typing import List

from fastapi import APIRouter, Query, Request, status

from App.api.errors import to_http_exception
from App.exceptions import VectorEngineError
from App.schema.Optimization_schema import HealthCheck, MonitoringStartRequest, PerformanceSample

router = APIRouter(tags=["Monitoring"])


@router.post("/start", status_code=status.HTTP_202_ACCEPTED, summary="Start Monitoring")
async def start_monitoring(body: MonitoringStartRequest, request: Request) -> dict:
    await request.app.state.engine.start_monitoring(body.interval_seconds)
    return {"monitoring": True, "interval_seconds": body.interval_seconds}


@router.post("/stop", status_code=status.HTTP_200_OK, summary="Stop Monitoring")
async def stop_monitoring(request: Request) -> dict:
    await request.app.state.engine.stop_monitoring()
    return {"monitoring": False}


@router.get(
    "/history",
    response_model=List[PerformanceSample],
    status_code=status.HTTP_200_OK,
    summary="Performance History",
)
async def performance_history(request: Request, hours: float = Query(24, gt=0)) -> List[PerformanceSample]:
    return request.app.state.engine.get_performance_history(hours)


@router.get(
    "/health",
    response_model=HealthCheck,
    status_code=status.HTTP_200_OK,
    summary="Health Check",
    description="Performance score, detected issues and raw metrics",
)
async def health(request: Request) -> HealthCheck:
    try:
        return await request.app.state.engine.get_health_check()
    except VectorEngineError as e:
        raise to_http_exception(e)
