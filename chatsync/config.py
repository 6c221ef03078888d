"""
Config Module - Settings for the chat synchronization engine and its collaborators
"""

import os
from typing import Any, Dict

from pydantic import BaseModel, Field


class SyncSettings(BaseModel):
    """Connection, paging and timing settings"""

    api_url: str = Field("http://localhost:8065/api", description="Base URL of the REST API")
    ws_url: str = Field("ws://localhost:8065/api/websocket", description="Push-stream URL")
    token: str = Field("", description="Auth token for the push stream and REST calls")
    user_id: str = Field("", description="Local user ID, author of optimistic posts")
    page_size: int = Field(30, ge=1, description="Posts per history page")
    reconnect_base_delay: float = Field(1.0, gt=0, description="Backoff base in seconds")
    reconnect_max_delay: float = Field(30.0, gt=0, description="Backoff cap in seconds")
    max_reconnect_attempts: int = Field(10, ge=0, description="Attempts before the connection is flagged degraded")
    heartbeat_interval: float = Field(30.0, gt=0, description="Seconds between pings")
    heartbeat_timeout: float = Field(10.0, gt=0, description="Seconds to wait for a pong")
    typing_timeout: float = Field(5.0, gt=0, description="Seconds before a typing indicator expires")
    typing_throttle: float = Field(3.0, ge=0, description="Minimum seconds between outbound typing frames")
    echo_clock_skew: float = Field(2.0, ge=0, description="Seconds a matching post may predate its send and still count as its echo")
    request_timeout: float = Field(15.0, gt=0, description="REST request timeout in seconds")
    log_level: str = Field("INFO", description="Root log level")

    @classmethod
    def from_env(cls, prefix: str = "CHATSYNC_", **overrides: Any) -> "SyncSettings":
        """
        Build settings from environment variables

        Each field is read from ``<prefix><FIELD_NAME>``; unset variables keep
        their defaults and explicit overrides win over the environment.

        Args:
            prefix: Environment variable prefix
            **overrides: Field values taking precedence

        Returns:
            Validated settings
        """
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{prefix}{name.upper()}")
            if raw is not None:
                values[name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
