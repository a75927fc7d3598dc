"""System status and health check endpoints."""

from fastapi import APIRouter, Depends

from levered_agent import __version__
from levered_agent.api.deps import get_proxy
from levered_agent.api.models import HealthResponse, StatusResponse
from levered_agent.proxy import AgentProxy

router = APIRouter()


@router.get("/status", response_model=StatusResponse)
async def get_status(proxy: AgentProxy = Depends(get_proxy)) -> StatusResponse:
    """Session activity and uptime of the proxy."""
    return StatusResponse(**proxy.status())


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__)
