"""
Health check endpoints for the Payment Reminder Orchestrator.
"""
import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
import structlog

from reminder_orchestrator.core.dependencies import ServiceContainer, get_container

router = APIRouter()
logger = structlog.get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    uptime_seconds: float
    timestamp: datetime
    service_name: str
    checks: Dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request, container: ServiceContainer = Depends(get_container)):
    """
    Service health with database connectivity and circuit breaker states.

    Open circuits degrade the status; an unreachable database makes it unhealthy.
    """
    start_time = getattr(request.app.state, "start_time", time.time())
    database_ok = container.repository.health_check()

    circuits = {
        "accounting": container.accounting_client.get_circuit_status(),
        "voice": container.voice_client.get_circuit_status(),
        "sms": container.sms_client.get_circuit_status(),
    }

    if not database_ok:
        status = "unhealthy"
    elif any(c["state"] != "closed" for c in circuits.values()):
        status = "degraded"
    else:
        status = "healthy"

    response = HealthResponse(
        status=status,
        version=container.config.service_version,
        uptime_seconds=time.time() - start_time,
        timestamp=datetime.now(timezone.utc),
        service_name=container.config.service_name,
        checks={"database": "healthy" if database_ok else "unhealthy", "circuits": circuits},
    )

    logger.info("Health check completed", status=response.status)
    return response
