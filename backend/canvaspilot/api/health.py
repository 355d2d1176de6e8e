"""Health check + provider availability."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from canvaspilot.dependencies import get_gateway
from canvaspilot.llm.gateway import ModelGateway
from canvaspilot.models.responses import HealthResponse, ProviderStatus

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(gateway: ModelGateway = Depends(get_gateway)) -> HealthResponse:
    return HealthResponse(
        status="ok",
        version="0.1.0",
        providers=[ProviderStatus(**s) for s in gateway.provider_status()],
    )
