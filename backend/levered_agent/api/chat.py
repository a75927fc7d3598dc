"""Chat and reset endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from levered_agent.api.deps import get_proxy
from levered_agent.api.models import ChatRequest, ResetResponse
from levered_agent.config import settings
from levered_agent.proxy import AgentProxy
from levered_agent.utils.stream import keep_alive_generator

logger = logging.getLogger(__name__)

# Rate limiter for chat endpoint
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)

router = APIRouter()


@router.post("/chat")
@limiter.limit(settings.rate_limit_chat)
async def chat(
    request: Request,
    chat_request: ChatRequest,
    proxy: AgentProxy = Depends(get_proxy),
) -> StreamingResponse:
    """Send a message to the agent and stream its events back."""
    logger.info(f"Chat request received: {chat_request.message[:100]}")

    if not proxy.started:
        logger.error("Chat request rejected: agent supervisor not started")
        raise HTTPException(status_code=503, detail="The agent process is not available")

    client_id, sink = await proxy.open_chat(chat_request.message)

    async def generate():
        try:
            async for frame in keep_alive_generator(
                sink.stream(),
                interval_seconds=proxy.settings.keepalive_interval,
            ):
                yield frame
        finally:
            proxy.disconnect(client_id)

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
            "X-Client-ID": client_id,
        },
    )


@router.post("/reset", response_model=ResetResponse)
async def reset(proxy: AgentProxy = Depends(get_proxy)) -> ResetResponse:
    """Stop any running job and start the next message in a fresh conversation."""
    if not proxy.started:
        raise HTTPException(status_code=503, detail="The agent process is not available")
    return ResetResponse(**await proxy.reset())
