"""Health check and metrics endpoints"""

from fastapi import APIRouter, Depends, Response, status
from datetime import datetime
from typing import Dict, Any
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

from src.container import ServiceContainer
from src.database import session_scope
from src.api.dependencies import get_container

router = APIRouter(tags=["Health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def basic_health_check():
    """
    Basic health check endpoint

    Returns simple health status and timestamp
    """
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat() + "Z"
    }


@router.get("/api/v1/health", status_code=status.HTTP_200_OK)
def detailed_health_check(container: ServiceContainer = Depends(get_container)) -> Dict[str, Any]:
    """
    Detailed health check with dependency status

    Checks:
    - Database
    - Storage provider (and its circuit breaker)
    - Event publisher

    Returns overall status and individual service statuses
    """
    services: Dict[str, Any] = {}
    overall_status = "healthy"

    # Check database connectivity
    try:
        with session_scope(container.session_factory) as db:
            db.execute(text("SELECT 1")).scalar_one()
        services["database"] = "connected"
    except Exception as e:
        services["database"] = f"disconnected: {str(e)}"
        overall_status = "degraded"

    # Check storage backend
    storage = container.storage
    breaker = storage.circuit_breaker.snapshot()
    if breaker["state"] != "closed":
        overall_status = "degraded"
    try:
        available = storage.is_available()
    except Exception as e:
        available = False
        services["storage_error"] = str(e)
    services["storage"] = {
        "provider": storage.provider_name,
        "status": "connected" if available else "disconnected",
        "circuit_breaker": breaker,
    }
    if not available:
        overall_status = "degraded"

    # Check event publisher
    publisher = container.publisher
    try:
        publisher_available = publisher.is_available()
    except Exception:
        publisher_available = False
    services["event_publisher"] = {
        "provider": publisher.provider_type(),
        "status": "connected" if publisher_available else "disconnected",
    }
    if not publisher_available:
        overall_status = "degraded"

    services["worker_pool"] = {"in_flight": container.pool.active_count()}

    return {
        "status": overall_status,
        "version": "1.0.0",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "services": services
    }


@router.get("/metrics")
def metrics() -> Response:
    """Prometheus scrape endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
