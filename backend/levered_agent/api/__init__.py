"""API routes for the Levered agent proxy."""

from fastapi import APIRouter

from levered_agent.api.chat import router as chat_router
from levered_agent.api.system import router as system_router

api_router = APIRouter()
api_router.include_router(chat_router, tags=["chat"])
api_router.include_router(system_router, tags=["system"])

__all__ = ["api_router"]
