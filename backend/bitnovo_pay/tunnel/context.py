"""
Execution Context Detection

Guesses where the server runs so a tunnel provider can be picked when
TUNNEL_PROVIDER is not set. Hosted automation platforms and servers with a
known public URL need no tunnel (manual); containers and laptops get ngrok.
"""
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Mapping, Optional

from ..models.tunnel import TunnelProviderName

logger = logging.getLogger(__name__)


class ExecutionContext(str, Enum):
    N8N = "n8n"
    OPAL = "opal"
    DOCKER = "docker"
    KUBERNETES = "kubernetes"
    SERVER = "server"
    LOCAL = "local"


@dataclass
class ContextDetectionResult:
    context: ExecutionContext
    confidence: float
    suggested_provider: TunnelProviderName
    indicators: List[str] = field(default_factory=list)
    public_url: Optional[str] = None


def detect_context(
    env: Optional[Mapping[str, str]] = None,
    dockerenv_path: Path = Path("/.dockerenv")
) -> ContextDetectionResult:
    """
    Inspect environment variables (and /.dockerenv) for platform markers.

    Args:
        env: Environment to inspect, defaults to os.environ
        dockerenv_path: Marker file created by Docker

    Returns:
        Detected context with the provider it suggests
    """
    env = os.environ if env is None else env

    n8n = [key for key in ("N8N_HOST", "N8N_PROTOCOL", "WEBHOOK_URL") if env.get(key)]
    if env.get("N8N_HOST"):
        public_url = env.get("WEBHOOK_URL") or env.get("WEBHOOK_PUBLIC_URL")
        if not public_url:
            protocol = env.get("N8N_PROTOCOL", "https")
            public_url = f"{protocol}://{env['N8N_HOST']}"
        return ContextDetectionResult(
            ExecutionContext.N8N, 0.9, TunnelProviderName.MANUAL, n8n, public_url.rstrip("/")
        )

    if env.get("OPAL_SERVER_URL") or env.get("OPAL_ENVIRONMENT"):
        indicators = [key for key in ("OPAL_SERVER_URL", "OPAL_ENVIRONMENT") if env.get(key)]
        public_url = env.get("WEBHOOK_PUBLIC_URL") or env.get("OPAL_SERVER_URL")
        return ContextDetectionResult(
            ExecutionContext.OPAL, 0.8, TunnelProviderName.MANUAL, indicators,
            public_url.rstrip("/") if public_url else None
        )

    if env.get("WEBHOOK_PUBLIC_URL"):
        return ContextDetectionResult(
            ExecutionContext.SERVER, 0.7, TunnelProviderName.MANUAL,
            ["WEBHOOK_PUBLIC_URL"], env["WEBHOOK_PUBLIC_URL"].rstrip("/")
        )

    if env.get("KUBERNETES_SERVICE_HOST"):
        return ContextDetectionResult(
            ExecutionContext.KUBERNETES, 0.9, TunnelProviderName.NGROK, ["KUBERNETES_SERVICE_HOST"]
        )

    if dockerenv_path.exists() or env.get("DOCKER_CONTAINER"):
        return ContextDetectionResult(
            ExecutionContext.DOCKER, 0.8, TunnelProviderName.NGROK, ["/.dockerenv"]
        )

    return ContextDetectionResult(ExecutionContext.LOCAL, 0.5, TunnelProviderName.NGROK)


def recommend_provider(result: ContextDetectionResult) -> str:
    """Human-readable reason for the suggested provider."""
    if result.suggested_provider == TunnelProviderName.MANUAL:
        if result.public_url:
            return f"{result.context.value} exposes a public URL ({result.public_url}); no tunnel needed"
        return f"{result.context.value} detected but no public URL found; set WEBHOOK_PUBLIC_URL"
    return f"{result.context.value} environment has no public address; using ngrok tunnel"
