"""
Webhook API Endpoints

Receives Bitnovo Pay payment notifications and exposes diagnostics.

Endpoints:
- POST {webhook_path} - signed payment status notification
- GET /health - liveness plus event store and handler stats
- GET /stats - deeper diagnostics (store, handler, QR cache, tunnel, config)
"""
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional
import json
import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ..models.webhooks import WebhookRequest

if TYPE_CHECKING:
    from ..server import WebhookServer

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 1024 * 1024


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error(status_code: int, error: str, error_code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": error,
            "errorCode": error_code,
            "timestamp": _timestamp(),
        },
    )


async def _read_body(request: Request) -> Optional[bytes]:
    """
    Read the request body, stopping once it passes MAX_BODY_BYTES.

    Returns:
        Body bytes, or None if the declared or received size is over the limit
    """
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > MAX_BODY_BYTES:
        return None

    buffer = bytearray()
    async for chunk in request.stream():
        buffer.extend(chunk)
        if len(buffer) > MAX_BODY_BYTES:
            return None
    return bytes(buffer)


def create_webhook_router(server: "WebhookServer") -> APIRouter:
    """
    Build the router for one webhook server.

    The webhook path is configurable, so routes are registered here rather
    than with decorators at import time.
    """
    router = APIRouter()

    async def receive_webhook(request: Request) -> JSONResponse:
        """
        Process a Bitnovo Pay notification.

        Headers:
            X-NONCE: single-use nonce
            X-SIGNATURE: hex(HMAC-SHA256(device_secret, nonce + raw_body))

        Returns:
            200 {"success": true, "eventId", "timestamp"} or
            4xx/5xx {"success": false, "error", "errorCode", "timestamp"}
        """
        request_id = getattr(request.state, "request_id", None)
        started = time.perf_counter()

        # Raw bytes are kept for the signature; JSON is parsed from them once
        raw = await _read_body(request)
        if raw is None:
            logger.warning(f"Webhook rejected [{request_id}]: body over {MAX_BODY_BYTES} bytes")
            return _error(400, "Payload too large", "PAYLOAD_TOO_LARGE")

        raw_body = raw.decode("utf-8", errors="replace")
        try:
            body: Any = json.loads(raw_body) if raw_body else None
        except json.JSONDecodeError:
            body = None

        webhook_request = WebhookRequest(
            headers={
                "x-nonce": request.headers.get("x-nonce"),
                "x-signature": request.headers.get("x-signature"),
            },
            body=body,
            raw_body=raw_body,
        )

        result = await server.handler.handle(webhook_request)
        duration_ms = (time.perf_counter() - started) * 1000

        if result.success:
            logger.info(
                f"Webhook processed [{request_id}]: {result.event_id} "
                f"(validated={result.validated}, {duration_ms:.1f}ms)"
            )
            return JSONResponse(
                status_code=result.status_code,
                content={
                    "success": True,
                    "eventId": result.event_id,
                    "validated": result.validated,
                    "timestamp": _timestamp(),
                },
            )

        logger.warning(
            f"Webhook failed [{request_id}]: {result.error_code} - {result.error} "
            f"({duration_ms:.1f}ms)"
        )
        content: Dict[str, Any] = {
            "success": False,
            "error": result.error,
            "errorCode": result.error_code,
            "timestamp": _timestamp(),
        }
        if result.event_id:
            # Stored for audit despite the failure
            content["eventId"] = result.event_id
            content["validated"] = False
        return JSONResponse(status_code=result.status_code, content=content)

    async def health() -> Dict[str, Any]:
        """Liveness plus event store and handler counters."""
        stats = server.event_store.get_stats()
        handler_stats = server.handler.get_stats()
        return {
            "status": "ok",
            "timestamp": _timestamp(),
            "webhook": {
                "enabled": server.settings.webhook_enabled,
                "path": server.settings.webhook_path,
            },
            "eventStore": {
                "totalEvents": stats["totalEvents"],
                "uniqueIdentifiers": stats["uniqueIdentifiers"],
                "validatedCount": stats["validatedCount"],
                "invalidatedCount": stats["invalidatedCount"],
            },
            "handler": {
                "noncesCached": handler_stats["noncesCached"],
                "hasDeviceSecret": handler_stats["hasDeviceSecret"],
            },
        }

    async def stats() -> Dict[str, Any]:
        """Raw store, handler, QR cache and tunnel snapshot."""
        tunnel_manager = server.get_tunnel_manager()
        tunnel_info = tunnel_manager.get_info() if tunnel_manager else None
        return {
            "eventStore": server.event_store.get_stats(),
            "handler": server.handler.get_stats(),
            "qrCache": server.qr_cache.get_stats() if server.qr_cache else None,
            "tunnel": tunnel_info.to_public_dict() if tunnel_info else None,
            "config": {
                "maxEvents": server.settings.webhook_max_events,
                "eventTtlMs": server.settings.webhook_event_ttl_ms,
                "path": server.settings.webhook_path,
            },
        }

    router.add_api_route(server.settings.webhook_path, receive_webhook, methods=["POST"])
    router.add_api_route("/health", health, methods=["GET"])
    router.add_api_route("/stats", stats, methods=["GET"])
    return router
