"""
FastAPI application for the experimentation engine.

Provides REST endpoints for:
- Health and Prometheus metrics
- Test creation, listing, retrieval and deletion
- Lifecycle actions (start, pause, complete, refresh)
- Traffic allocation and event recording

Engine errors map onto HTTP statuses: ValidationError -> 400,
NotFoundError -> 404, InvalidStateError -> 409.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from ..config.settings import Settings, get_settings
from ..core.data_types import ABTest, CamelModel
from ..core.exceptions import ExperimentError, InvalidStateError, NotFoundError, ValidationError
from ..experiments.service import ABTestingService
from .logger import LogCategory, get_logger
from .metrics import get_metrics_collector

logger = get_logger("api", LogCategory.API)

router = APIRouter()


# =============================================================================
# Request / Response Models
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    uptime_seconds: float
    components: dict[str, str]


class EventRequest(CamelModel):
    """One event to record against a variant."""

    variant_id: str
    type: str
    value: float | None = None


class EventResponse(CamelModel):
    test_id: str
    variant_id: str
    type: str
    status: str = "recorded"


class AllocationResponse(CamelModel):
    test_id: str
    unit_id: str
    variant_id: str
    variant_name: str


# =============================================================================
# Dependencies
# =============================================================================


def get_service(request: Request) -> ABTestingService:
    """Service bound to the application by create_app."""
    return request.app.state.service


# =============================================================================
# REST API Endpoints
# =============================================================================


@router.get("/health", response_model=HealthResponse)
def get_health(request: Request, service: ABTestingService = Depends(get_service)) -> HealthResponse:
    """Get service health status."""
    storage_ok = service.repository.health_check()
    return HealthResponse(
        status="healthy" if storage_ok else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.time() - request.app.state.started_at,
        components={"storage": "healthy" if storage_ok else "unhealthy"},
    )


@router.get("/metrics")
def get_metrics() -> Response:
    """Get Prometheus metrics."""
    metrics = get_metrics_collector()
    return Response(
        content=metrics.get_metrics(),
        media_type=metrics.get_content_type(),
    )


@router.get("/tests", response_model=list[ABTest])
def list_tests(
    campaign_id: str | None = Query(default=None, alias="campaignId"),
    service: ABTestingService = Depends(get_service),
) -> list[ABTest]:
    return service.list_tests(campaign_id)


@router.post("/tests", response_model=ABTest, status_code=201)
def create_test(
    payload: dict[str, Any] = Body(...),
    service: ABTestingService = Depends(get_service),
) -> ABTest:
    # Raw body so that every violated constraint is reported, not just schema errors
    return service.create_test(payload)


@router.get("/tests/{test_id}", response_model=ABTest)
def get_test(test_id: str, service: ABTestingService = Depends(get_service)) -> ABTest:
    return service.get_test(test_id)


@router.delete("/tests/{test_id}", status_code=204)
def delete_test(test_id: str, service: ABTestingService = Depends(get_service)) -> Response:
    service.delete_test(test_id)
    return Response(status_code=204)


@router.post("/tests/{test_id}/start", response_model=ABTest)
def start_test(test_id: str, service: ABTestingService = Depends(get_service)) -> ABTest:
    return service.start_test(test_id)


@router.post("/tests/{test_id}/pause", response_model=ABTest)
def pause_test(test_id: str, service: ABTestingService = Depends(get_service)) -> ABTest:
    return service.pause_test(test_id)


@router.post("/tests/{test_id}/complete", response_model=ABTest)
def complete_test(test_id: str, service: ABTestingService = Depends(get_service)) -> ABTest:
    return service.complete_test(test_id)


@router.post("/tests/{test_id}/refresh", response_model=ABTest)
def refresh_results(test_id: str, service: ABTestingService = Depends(get_service)) -> ABTest:
    return service.refresh_results(test_id)


@router.get("/tests/{test_id}/allocation", response_model=AllocationResponse)
def allocate(
    test_id: str,
    unit_id: str = Query(..., alias="unitId", min_length=1),
    service: ABTestingService = Depends(get_service),
) -> AllocationResponse:
    variant = service.allocate(test_id, unit_id)
    return AllocationResponse(test_id=test_id, unit_id=unit_id, variant_id=variant.id, variant_name=variant.name)


@router.post("/tests/{test_id}/events", response_model=EventResponse, status_code=202)
def record_event(
    test_id: str,
    event: EventRequest,
    service: ABTestingService = Depends(get_service),
) -> EventResponse:
    service.record_event(test_id, event.variant_id, event.type, event.value)
    return EventResponse(test_id=test_id, variant_id=event.variant_id, type=event.type)


# =============================================================================
# Error Handling
# =============================================================================


ERROR_STATUS: dict[type[ExperimentError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    InvalidStateError: 409,
}


async def handle_experiment_error(request: Request, exc: ExperimentError) -> JSONResponse:
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error(f"Unhandled engine error on {request.url.path}: {exc}")
    else:
        logger.info(f"Rejected {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=status, content=exc.to_dict())


# =============================================================================
# App Factory
# =============================================================================


def create_app(
    service: ABTestingService | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: Engine to expose. Built from settings when omitted.
        settings: Application settings.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or get_settings()
    app = FastAPI(
        title=settings.app_name,
        description="A/B testing engine for marketplace campaigns",
        version=settings.app_version,
    )
    app.state.service = service or ABTestingService.from_settings(settings)
    app.state.started_at = time.time()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    @app.middleware("http")
    async def record_request_metrics(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        get_metrics_collector().record_request(endpoint, request.method, response.status_code, time.time() - start)
        return response

    app.add_exception_handler(ExperimentError, handle_experiment_error)
    app.include_router(router)

    metrics = get_metrics_collector()
    metrics.set_system_info(settings.app_version, settings.environment)
    logger.info(f"API application created ({settings.environment})")
    return app


__all__ = ["create_app", "router", "get_service"]
