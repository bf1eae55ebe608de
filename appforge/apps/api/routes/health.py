from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from appforge.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from appforge.apps.api.response import SuccessEnvelope, success_response
from appforge.core.config import get_settings
from appforge.persistence.db import pool_stats
from appforge.services.resilience import get_circuit_breaker_state
from appforge.services.telemetry import external_latency_by_integration

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)

_CI_DISPATCH_BREAKER = "ci.github_dispatch"
_LATENCY_WINDOW_S = 300


class HealthResponse(BaseModel):
    status: str
    service: str
    database: dict[str, Any] = Field(default_factory=dict)
    integrations: dict[str, dict[str, Any]] = Field(default_factory=dict)
    ci_dispatch_breaker: str = "unknown"


@router.get("/health", response_model=SuccessEnvelope[HealthResponse] | HealthResponse)
async def health(request: Request) -> dict:
    # Liveness plus a short window of external call latency for operators.
    payload = HealthResponse(
        status="ok",
        service=get_settings().app_name,
        database=pool_stats(),
        integrations=external_latency_by_integration(_LATENCY_WINDOW_S),
        ci_dispatch_breaker=await get_circuit_breaker_state(_CI_DISPATCH_BREAKER),
    )
    return success_response(request=request, data=payload)
