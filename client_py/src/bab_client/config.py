"""
Client configuration and validation.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class ClientConfig(BaseModel):
    """Configuration for the connection and reconnection policy."""

    server_url: str = Field(
        default="ws://localhost:8000/ws",
        description="WebSocket endpoint of the game server"
    )
    reconnect_attempts: int = Field(
        default=5,
        ge=0,
        le=50,
        description="Reconnect attempts after a dropped connection (0 = never)"
    )
    reconnect_delay: float = Field(
        default=1.0,
        gt=0,
        description="Initial delay between reconnect attempts in seconds"
    )
    reconnect_delay_max: float = Field(
        default=5.0,
        gt=0,
        description="Upper bound on the backoff delay in seconds"
    )
    force_reconnect_threshold: float = Field(
        default=5.0,
        ge=0,
        description="Seconds hidden before a forced reconnect on return"
    )
    force_reconnect_delay: float = Field(
        default=0.1,
        ge=0,
        description="Pause between teardown and reconnect in a forced reconnect"
    )
    session_file: Optional[str] = Field(
        default=None,
        description="Path of the JSON session store (in-memory when unset)"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level for the runner"
    )

    @field_validator('reconnect_delay_max')
    @classmethod
    def validate_reconnect_delay_max(cls, v, info):
        """Validate the backoff cap isn't below the initial delay."""
        delay = info.data.get('reconnect_delay', 1.0)
        if v < delay:
            raise ValueError(f'reconnect_delay_max ({v}) must be >= reconnect_delay ({delay})')
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f'Invalid log level: {v}')
        return level

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt number `attempt` (1-based)."""
        return min(self.reconnect_delay * (2 ** max(attempt - 1, 0)), self.reconnect_delay_max)


# Default configuration
default_config = ClientConfig()


def create_config(**overrides) -> ClientConfig:
    """Create a client configuration with optional overrides."""
    config_dict = default_config.model_dump()
    config_dict.update(overrides)
    return ClientConfig(**config_dict)


def config_from_env() -> ClientConfig:
    """Build a configuration from BAB_* environment variables."""
    overrides = {}
    if os.getenv("BAB_SERVER_URL"):
        overrides["server_url"] = os.getenv("BAB_SERVER_URL")
    if os.getenv("BAB_RECONNECT_ATTEMPTS"):
        overrides["reconnect_attempts"] = int(os.getenv("BAB_RECONNECT_ATTEMPTS"))
    if os.getenv("BAB_SESSION_FILE"):
        overrides["session_file"] = os.getenv("BAB_SESSION_FILE")
    if os.getenv("LOG_LEVEL"):
        overrides["log_level"] = os.getenv("LOG_LEVEL")
    return create_config(**overrides)
