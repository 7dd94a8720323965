"""
Pydantic Tunnel Models

Provider selection, connection state and per-session status of the tunnel
that exposes the local webhook listener.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class TunnelProviderName(str, Enum):
    NGROK = "ngrok"
    ZROK = "zrok"
    MANUAL = "manual"


class TunnelStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


class TunnelConfig(BaseModel):
    """
    Settings for one tunnel session.

    Durations are in seconds. Backoff doubles per reconnect attempt starting
    at `reconnect_backoff_seconds` and never exceeds `max_backoff_seconds`.
    """

    enabled: bool = True
    provider: TunnelProviderName
    local_port: int
    public_url: Optional[str] = None
    ngrok_authtoken: Optional[str] = None
    ngrok_domain: Optional[str] = None
    zrok_token: Optional[str] = None
    zrok_unique_name: Optional[str] = None
    health_check_interval_seconds: float = Field(default=60.0, gt=0)
    reconnect_max_retries: int = Field(default=10, ge=0)
    reconnect_backoff_seconds: float = Field(default=5.0, ge=0)
    max_backoff_seconds: float = Field(default=60.0, ge=0)
    connect_timeout_seconds: float = Field(default=30.0, gt=0)
    health_probe_timeout_seconds: float = Field(default=5.0, gt=0)


class TunnelInfo(BaseModel):
    """Snapshot of a tunnel session, as reported to tools and /stats."""

    provider: TunnelProviderName
    status: TunnelStatus = TunnelStatus.DISCONNECTED
    public_url: Optional[str] = None
    connected_at: Optional[datetime] = None
    last_error: Optional[str] = None
    reconnect_attempts: int = 0
    health_check_enabled: bool = False

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider.value,
            "status": self.status.value,
            "publicUrl": self.public_url,
            "connectedAt": self.connected_at.isoformat() if self.connected_at else None,
            "lastError": self.last_error,
            "reconnectAttempts": self.reconnect_attempts,
            "healthCheckEnabled": self.health_check_enabled,
        }
