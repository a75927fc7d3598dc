"""FastAPI dependencies."""

from fastapi import Request

from levered_agent.proxy import AgentProxy


def get_proxy(request: Request) -> AgentProxy:
    """The agent proxy attached to the running app."""
    return request.app.state.proxy
