"""Agent proxy service: wires the supervisor, decoder and broadcaster together.

One ``AgentProxy`` serves one conversation. Each chat request becomes a
subscriber that receives the events of the job it started; a reset is
announced to every subscriber currently listening.
"""

import logging
import time
import uuid
from typing import Any

from levered_agent.broadcaster import EventBroadcaster, QueueSink
from levered_agent.config import Settings
from levered_agent.errors import SupervisorError
from levered_agent.events import ErrorEvent, StatusEvent, now_ms
from levered_agent.supervisor import ProcessSupervisor, SpawnFn

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"


class AgentProxy:
    """Orchestrates chat and reset requests against the agent process."""

    def __init__(self, settings: Settings, spawn: SpawnFn | None = None) -> None:
        self.settings = settings
        self.broadcaster = EventBroadcaster()
        self.supervisor = ProcessSupervisor(
            settings.supervisor_config(),
            sink=self.broadcaster,
            spawn=spawn,
        )
        self._started_at: float | None = None

    @property
    def started(self) -> bool:
        return self.supervisor.is_alive()

    def start(self) -> None:
        self._started_at = time.time()
        self.supervisor.start()
        logger.info("Agent proxy started")

    async def shutdown(self) -> None:
        """Disconnect every subscriber and stop any running job."""
        logger.info(f"Shutting down agent proxy ({self.broadcaster.subscriber_count} subscribers)")
        self.broadcaster.close_all()
        await self.supervisor.stop()

    async def open_chat(self, message: str) -> tuple[str, QueueSink]:
        """Register a subscriber for ``message`` and start the agent on it.

        If the supervisor refuses the message, the refusal is delivered to
        this subscriber alone and the subscriber is removed; the returned
        sink still yields that error before ending.
        """
        client_id = str(uuid.uuid4())
        sink = QueueSink()
        self.broadcaster.add_subscriber(client_id, sink)

        try:
            logger.info("Sending message to agent", extra={"client_id": client_id})
            await self.supervisor.send_message(message)
        except SupervisorError as e:
            logger.error(f"Failed to send message to agent: {e}", extra={"client_id": client_id})
            self.broadcaster.send_to_one(client_id, ErrorEvent(error=str(e)).as_terminal())
            self.broadcaster.remove_subscriber(client_id)

        return client_id, sink

    def disconnect(self, client_id: str) -> None:
        self.broadcaster.remove_subscriber(client_id)

    async def reset(self) -> dict[str, Any]:
        """Discard the conversation and tell every listener about it."""
        await self.supervisor.reset()
        self.broadcaster.broadcast(StatusEvent(status="reset", detail="Session has been reset"))
        logger.info("Agent session reset")
        return {
            "status": "reset",
            "session_id": DEFAULT_SESSION_ID,
            "timestamp": now_ms(),
        }

    def status(self) -> dict[str, Any]:
        """Snapshot of the proxy for the status endpoint."""
        started_at_ms = int(self._started_at * 1000) if self._started_at else 0
        last_activity = self.supervisor.session.last_activity_at
        return {
            "status": "ok",
            "sessions": [
                {
                    "id": DEFAULT_SESSION_ID,
                    "started_at": started_at_ms,
                    "last_activity": int(last_activity * 1000) if last_activity else started_at_ms,
                    "busy": self.supervisor.is_busy(),
                }
            ],
            "uptime": int((time.time() - self._started_at) * 1000) if self._started_at else 0,
            "subscribers": self.broadcaster.subscriber_count,
        }
