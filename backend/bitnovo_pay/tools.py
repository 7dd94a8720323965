"""
MCP Webhook Tools

Lets the assistant read received payment notifications and inspect how
Bitnovo Pay can reach the webhook listener.

Tools:
- get_webhook_events: stored notifications, newest first
- get_webhook_url: public webhook URL, optionally probed
- get_tunnel_status: tunnel session state
"""
import logging
from typing import Any, Dict, Optional

import httpx
from mcp.server.fastmcp import FastMCP

from .models.webhooks import PAYMENT_STATUS_DESCRIPTIONS
from .runtime import Runtime

logger = logging.getLogger(__name__)

MAX_EVENTS_LIMIT = 500
URL_PROBE_TIMEOUT_SECONDS = 5.0


class WebhookTools:
    """Tool implementations; they read the runtime's current components."""

    def __init__(self, runtime: Runtime, http_client: Optional[httpx.AsyncClient] = None):
        self._runtime = runtime
        self._http_client = http_client

    def _require_store(self):
        if self._runtime.event_store is None:
            raise RuntimeError("Runtime not initialized")
        return self._runtime.event_store

    async def get_webhook_events(
        self,
        identifier: Optional[str] = None,
        limit: int = 50,
        validated_only: bool = False
    ) -> Dict[str, Any]:
        """
        Args:
            identifier: Only events of this payment
            limit: Maximum number of events (clamped to 1..500)
            validated_only: Only events whose signature was verified

        Returns:
            {"events": [...], "count": int, "stats": {...}}
        """
        store = self._require_store()
        limit = max(1, min(limit, MAX_EVENTS_LIMIT))

        if identifier:
            events = store.get_by_identifier(identifier)
            if validated_only:
                events = [event for event in events if event.validated]
            events = events[:limit]
        elif validated_only:
            events = store.get_validated(limit)
        else:
            events = store.get_recent(limit)

        logger.debug(f"get_webhook_events returned {len(events)} events (identifier={identifier})")
        return {
            "events": [event.to_public_dict() for event in events],
            "count": len(events),
            "stats": store.get_stats(),
        }

    async def get_webhook_url(self, validate: bool = False) -> Dict[str, Any]:
        """
        Public webhook URL with setup instructions.

        With `validate`, GETs <public url>/health to confirm the listener is
        reachable from outside.
        """
        settings = self._runtime.settings
        server = self._runtime.webhook_server

        if not settings.webhook_enabled or server is None:
            return {
                "configured": False,
                "webhookUrl": None,
                "message": "Webhooks are disabled. Set WEBHOOK_ENABLED=true and restart.",
            }

        public_url = server.get_public_url()
        webhook_url = server.get_webhook_url()
        manager = server.get_tunnel_manager()
        provider = manager.config.provider.value if manager else None

        if webhook_url is None:
            return {
                "configured": False,
                "webhookUrl": None,
                "provider": provider,
                "localUrl": f"http://localhost:{settings.webhook_port}{settings.webhook_path}",
                "message": (
                    "No public URL available. Configure a tunnel provider "
                    "(NGROK_AUTHTOKEN, ZROK_TOKEN) or set WEBHOOK_PUBLIC_URL."
                ),
            }

        result: Dict[str, Any] = {
            "configured": True,
            "webhookUrl": webhook_url,
            "provider": provider,
            "instructions": [
                "Open the Bitnovo Pay merchant dashboard",
                "Go to the device settings of this device",
                f"Set the notification URL to {webhook_url}",
                "Keep BITNOVO_DEVICE_SECRET in sync so signatures can be verified",
            ],
        }

        if validate:
            result["validation"] = await self._probe(f"{public_url.rstrip('/')}/health")

        return result

    async def _probe(self, url: str) -> Dict[str, Any]:
        try:
            if self._http_client is not None:
                response = await self._http_client.get(url, timeout=URL_PROBE_TIMEOUT_SECONDS)
            else:
                async with httpx.AsyncClient(timeout=URL_PROBE_TIMEOUT_SECONDS) as client:
                    response = await client.get(url)
        except httpx.HTTPError as e:
            logger.warning(f"Webhook URL probe failed: {e}")
            return {"reachable": False, "error": str(e) or type(e).__name__}

        return {"reachable": response.is_success, "statusCode": response.status_code}

    async def get_tunnel_status(self) -> Dict[str, Any]:
        settings = self._runtime.settings
        server = self._runtime.webhook_server

        if server is None:
            return {"enabled": False, "message": "Webhook server not running"}

        manager = server.get_tunnel_manager()
        if manager is None:
            return {
                "enabled": settings.tunnel_enabled,
                "tunnel": None,
                "webhookUrl": server.get_webhook_url(),
            }

        info = manager.get_info()
        return {
            "enabled": manager.config.enabled,
            "tunnel": info.to_public_dict() if info else None,
            "webhookUrl": server.get_webhook_url(),
        }


def register_webhook_tools(mcp: FastMCP, runtime: Runtime) -> WebhookTools:
    """Register the webhook tools on `mcp`."""
    tools = WebhookTools(runtime)
    statuses = ", ".join(f"{code} ({text})" for code, text in PAYMENT_STATUS_DESCRIPTIONS.items())

    @mcp.tool(
        description=(
            "List payment notifications received via webhook, newest first. "
            f"Payment statuses: {statuses}."
        )
    )
    async def get_webhook_events(
        identifier: Optional[str] = None,
        limit: int = 50,
        validated_only: bool = False,
    ) -> Dict[str, Any]:
        return await tools.get_webhook_events(identifier, limit, validated_only)

    @mcp.tool(
        description="Public URL to configure in Bitnovo Pay for payment notifications."
    )
    async def get_webhook_url(validate: bool = False) -> Dict[str, Any]:
        return await tools.get_webhook_url(validate)

    @mcp.tool(description="Status of the tunnel that exposes the webhook listener.")
    async def get_tunnel_status() -> Dict[str, Any]:
        return await tools.get_tunnel_status()

    logger.info("Webhook tools registered")
    return tools
