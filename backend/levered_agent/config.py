"""Configuration management for the Levered agent proxy."""

import logging
import os
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from levered_agent.supervisor import SupervisorConfig

logger = logging.getLogger(__name__)

LOG_LEVELS = ("debug", "info", "warning", "error")


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="LEVERED_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "Levered Agent"
    debug: bool = False
    host: str = "localhost"
    port: int = 3100

    # Agent executable
    claude_path: str = "claude"
    working_directory: Path = Field(default_factory=Path.cwd)
    claude_args: str = ""  # Comma-separated extra arguments
    resume_flag: str = "--resume"

    # Timeouts (seconds)
    timeout: int = 300  # Per-message job limit, 0 disables
    shutdown_grace_seconds: float = 5.0
    keepalive_interval: float = 15.0

    # Logging
    log_level: str = "info"
    json_logs: bool = False
    log_dir: Path = Field(default_factory=lambda: Path(".levered"))
    log_file_name: str = "agent.log"

    # HTTP
    cors_origins: str = "*"  # Comma-separated
    rate_limit_enabled: bool = True
    rate_limit_chat: str = "20/minute"

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in the TCP range."""
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level name."""
        v = v.lower()
        if v == "warn":
            v = "warning"
        if v not in LOG_LEVELS:
            raise ValueError(f"Log level must be one of: {', '.join(LOG_LEVELS)}")
        return v

    @field_validator("rate_limit_chat")
    @classmethod
    def validate_rate_limit(cls, v: str) -> str:
        """Validate rate limit format (e.g., '20/minute')."""
        if "/" not in v:
            raise ValueError("Rate limit must be in format 'N/period' (e.g., '20/minute')")
        return v

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Timeout cannot be negative")
        return v

    @property
    def log_file(self) -> Path:
        return self.log_dir / self.log_file_name

    def extra_args(self) -> list[str]:
        return [a.strip() for a in self.claude_args.split(",") if a.strip()]

    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def supervisor_config(self) -> SupervisorConfig:
        """Settings for the process supervisor."""
        return SupervisorConfig(
            executable=self.claude_path,
            working_directory=str(self.working_directory),
            extra_args=self.extra_args(),
            resume_flag=self.resume_flag,
            grace_period=self.shutdown_grace_seconds,
            timeout=float(self.timeout) if self.timeout else None,
        )


settings = Settings()


def get_config_dict(current: Settings | None = None) -> dict[str, Any]:
    """Get config as dict for API responses and startup logs."""
    current = current or settings
    return {
        "app_name": current.app_name,
        "host": current.host,
        "port": current.port,
        "claude_path": current.claude_path,
        "working_directory": str(current.working_directory),
        "log_level": current.log_level,
        "timeout": current.timeout,
    }


def validate_critical_settings(current: Settings | None = None) -> None:
    """Log warnings for settings likely to break the proxy."""
    current = current or settings

    if not current.working_directory.is_dir():
        logger.warning(
            f"Working directory {current.working_directory} does not exist - "
            "the agent will fail to start."
        )

    if os.sep in current.claude_path and not Path(current.claude_path).exists():
        logger.warning(f"Agent executable not found at {current.claude_path}")

    if current.host in ("0.0.0.0", "::"):
        logger.warning(
            "Listening on all interfaces. The agent runs with permissions bypassed; "
            "only expose this server on trusted networks."
        )
