"""Request and response models for the HTTP API."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_MESSAGE_LENGTH = 100_000


class ChatRequest(BaseModel):
    """Chat request body."""

    message: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    session_id: str | None = Field(default=None, alias="sessionId")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("message")
    @classmethod
    def message_not_empty(cls, v: str) -> str:
        """Validate message is not empty or whitespace only."""
        if not v.strip():
            raise ValueError("Message cannot be empty or whitespace only")
        return v


class CamelModel(BaseModel):
    """Response model serialized with the camelCase names clients expect."""

    model_config = ConfigDict(populate_by_name=True)


class SessionInfo(CamelModel):
    id: str = Field(description="Session identifier")
    started_at: int = Field(alias="startedAt", description="Server start time (epoch ms)")
    last_activity: int = Field(alias="lastActivity", description="Last message or exit (epoch ms)")
    busy: bool = Field(description="Whether a message is being processed")


class StatusResponse(CamelModel):
    """Proxy status."""

    status: str = Field(description="Service status")
    sessions: list[SessionInfo] = Field(default_factory=list)
    uptime: int = Field(description="Milliseconds since the server started")
    subscribers: int = Field(default=0, description="Open event streams")


class ResetResponse(CamelModel):
    """Result of a conversation reset."""

    status: str = Field(default="reset")
    session_id: str = Field(alias="sessionId")
    timestamp: int = Field(description="Reset time (epoch ms)")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status")
    version: str = Field(description="Application version")
