"""
Bitnovo Pay Configuration Module

Loads environment variables for the MCP server, the webhook receiver and the
tunnel that exposes it publicly.
"""
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Any, Dict, Literal, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Notes:
    - BITNOVO_DEVICE_SECRET enables HMAC verification of webhooks; without it
      webhooks are accepted but recorded as unvalidated
    - Durations keep the millisecond units of the environment variables;
      use the *_seconds properties internally
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_ignore_empty=True,
        extra="ignore",
    )

    # Bitnovo Pay API
    bitnovo_device_id: Optional[str] = None
    bitnovo_base_url: str = "https://pos.bitnovo.com"
    bitnovo_device_secret: Optional[str] = None

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Webhook receiver
    webhook_enabled: bool = False
    webhook_host: str = "0.0.0.0"
    webhook_port: int = Field(default=3000, ge=1024, le=65535)
    webhook_path: str = "/webhook/bitnovo"
    webhook_max_events: int = Field(default=1000, ge=1)
    webhook_event_ttl_ms: int = Field(default=3_600_000, ge=1000)
    webhook_public_url: Optional[str] = None

    # Tunnel
    tunnel_enabled: bool = True
    tunnel_provider: Optional[Literal["ngrok", "zrok", "manual"]] = None
    ngrok_authtoken: Optional[str] = None
    ngrok_domain: Optional[str] = None
    zrok_token: Optional[str] = None
    zrok_unique_name: Optional[str] = None
    tunnel_health_check_interval: int = Field(default=60_000, ge=1000)
    tunnel_reconnect_max_retries: int = Field(default=10, ge=0)
    tunnel_reconnect_backoff_ms: int = Field(default=5000, ge=0)

    # QR cache
    qr_cache_max_entries: int = Field(default=1000, ge=1)
    qr_cache_ttl_ms: int = Field(default=3_600_000, ge=1000)

    @field_validator("log_level", "tunnel_provider", mode="before")
    @classmethod
    def normalize_case(cls, v: Any, info) -> Any:
        """Accept LOG_LEVEL=info and TUNNEL_PROVIDER=NGROK."""
        if not isinstance(v, str):
            return v
        return v.upper() if info.field_name == "log_level" else v.lower()

    @field_validator("webhook_path")
    @classmethod
    def path_is_absolute(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("WEBHOOK_PATH must start with '/'")
        return v

    @field_validator("webhook_public_url", "bitnovo_base_url")
    @classmethod
    def url_is_http(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"must be a valid HTTP/HTTPS URL, got: {v}")
        return v.rstrip("/")

    @property
    def webhook_event_ttl_seconds(self) -> float:
        return self.webhook_event_ttl_ms / 1000

    @property
    def tunnel_health_check_interval_seconds(self) -> float:
        return self.tunnel_health_check_interval / 1000

    @property
    def tunnel_reconnect_backoff_seconds(self) -> float:
        return self.tunnel_reconnect_backoff_ms / 1000

    @property
    def qr_cache_ttl_seconds(self) -> float:
        return self.qr_cache_ttl_ms / 1000

    def masked_summary(self) -> Dict[str, Any]:
        """
        Configuration snapshot that is safe to log.

        Secrets are reduced to presence flags and the device id is masked.
        """
        return {
            "device_id": mask_device_id(self.bitnovo_device_id),
            "base_url": self.bitnovo_base_url,
            "has_device_secret": bool(self.bitnovo_device_secret),
            "log_level": self.log_level,
            "webhook_enabled": self.webhook_enabled,
            "webhook_port": self.webhook_port,
            "webhook_path": self.webhook_path,
            "tunnel_enabled": self.tunnel_enabled,
            "tunnel_provider": self.tunnel_provider or "auto",
        }


def mask_device_id(device_id: Optional[str]) -> str:
    """Keep the first and last four characters of a device id."""
    if not device_id or len(device_id) <= 8:
        return "****"
    return f"{device_id[:4]}****{device_id[-4:]}"


def load_settings(**overrides: Any) -> Settings:
    """
    Build settings from the environment.

    Keyword overrides take precedence over environment values, which keeps
    tests independent of the caller's shell.
    """
    return Settings(**overrides)
