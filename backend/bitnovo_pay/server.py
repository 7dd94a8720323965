"""
Bitnovo Pay Webhook Server - FastAPI Application

Receives payment notifications from Bitnovo Pay while the MCP server talks
over stdio. The FastAPI app is served by uvicorn inside the same event loop,
and an optional tunnel publishes it under a public URL.

Startup order: HTTP listener first, then tunnel (a tunnel failure is logged
and the listener keeps serving). Shutdown order is the reverse.
"""
import asyncio
import contextlib
import logging
import socket
import uuid
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api.webhooks import create_webhook_router
from .config import Settings
from .exceptions import BitnovoError, TunnelError
from .models.tunnel import TunnelConfig, TunnelProviderName
from .services.event_store import WebhookEventStore
from .services.qr_cache import QrCache
from .services.scheduler import SweepScheduler
from .services.webhook_handler import NONCE_HEADER, SIGNATURE_HEADER, WebhookHandler
from .tunnel.context import detect_context, recommend_provider
from .tunnel.manager import TunnelManager

logger = logging.getLogger(__name__)

ALLOWED_ORIGINS = [
    "https://pos.bitnovo.com",
    "https://dev-payments.pre-bnvo.com",
    "https://pay.bitnovo.com",
    "https://paytest.bitnovo.com",
]

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": "default-src 'none'",
}

STARTUP_TIMEOUT_SECONDS = 10.0
SHUTDOWN_TIMEOUT_SECONDS = 5.0


def build_tunnel_config(settings: Settings) -> TunnelConfig:
    """
    Derive the tunnel configuration from settings.

    Without TUNNEL_PROVIDER the provider comes from WEBHOOK_PUBLIC_URL
    (manual) or from execution context detection.
    """
    public_url = settings.webhook_public_url

    if settings.tunnel_provider:
        provider = TunnelProviderName(settings.tunnel_provider)
    elif public_url:
        provider = TunnelProviderName.MANUAL
    else:
        detected = detect_context()
        provider = detected.suggested_provider
        public_url = public_url or detected.public_url
        logger.info(
            f"Detected execution context: {detected.context.value} "
            f"(confidence={detected.confidence}) - {recommend_provider(detected)}"
        )

    return TunnelConfig(
        enabled=settings.tunnel_enabled,
        provider=provider,
        local_port=settings.webhook_port,
        public_url=public_url,
        ngrok_authtoken=settings.ngrok_authtoken,
        ngrok_domain=settings.ngrok_domain,
        zrok_token=settings.zrok_token,
        zrok_unique_name=settings.zrok_unique_name,
        health_check_interval_seconds=settings.tunnel_health_check_interval_seconds,
        reconnect_max_retries=settings.tunnel_reconnect_max_retries,
        reconnect_backoff_seconds=settings.tunnel_reconnect_backoff_seconds,
    )


class _EmbeddedUvicornServer(uvicorn.Server):
    """uvicorn server that leaves process signals to the MCP entrypoint."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class WebhookServer:
    """
    HTTP listener plus tunnel for inbound webhooks.

    The FastAPI app is built eagerly so it can be exercised with a
    TestClient without binding a port.
    """

    def __init__(
        self,
        settings: Settings,
        handler: WebhookHandler,
        event_store: WebhookEventStore,
        qr_cache: Optional[QrCache] = None,
        scheduler: Optional[SweepScheduler] = None,
        tunnel_manager: Optional[TunnelManager] = None
    ):
        self.settings = settings
        self.handler = handler
        self.event_store = event_store
        self.qr_cache = qr_cache
        self._scheduler = scheduler
        self._tunnel_manager = tunnel_manager

        self._server: Optional[uvicorn.Server] = None
        self._serve_task: Optional[asyncio.Task] = None
        self.app = self._create_app()

    # ========================================================================
    # Application
    # ========================================================================

    def _create_app(self) -> FastAPI:
        app = FastAPI(
            title="Bitnovo Pay Webhooks",
            description="Payment notification receiver for the Bitnovo Pay MCP server",
            version="1.0.0",
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
        )

        app.add_middleware(
            CORSMiddleware,
            allow_origins=ALLOWED_ORIGINS,
            allow_credentials=False,
            allow_methods=["POST"],
            allow_headers=["Content-Type", NONCE_HEADER, SIGNATURE_HEADER],
            max_age=600,
        )

        @app.middleware("http")
        async def request_context(request: Request, call_next):
            """
            Attach a request id and security headers, and log the request.

            Browser requests from an origin outside ALLOWED_ORIGINS are
            refused. Preflights are left to CORSMiddleware.
            """
            request_id = uuid.uuid4().hex[:12]
            request.state.request_id = request_id
            logger.debug(f"{request.method} {request.url.path} [{request_id}]")

            origin = request.headers.get("origin")
            if origin and origin not in ALLOWED_ORIGINS and request.method != "OPTIONS":
                logger.warning(f"Rejected origin {origin} [{request_id}]")
                response = JSONResponse(
                    status_code=403,
                    content={
                        "success": False,
                        "error": "Origin not allowed",
                        "errorCode": "ORIGIN_NOT_ALLOWED",
                    },
                )
            else:
                response = await call_next(request)

            for name, value in SECURITY_HEADERS.items():
                response.headers.setdefault(name, value)
            response.headers["X-Request-ID"] = request_id
            logger.info(
                f"{request.method} {request.url.path} -> {response.status_code} [{request_id}]"
            )
            return response

        app.add_exception_handler(BitnovoError, self._bitnovo_error_handler)
        app.add_exception_handler(StarletteHTTPException, self._http_error_handler)
        app.add_exception_handler(Exception, self._general_error_handler)

        app.include_router(create_webhook_router(self), tags=["Webhooks"])
        return app

    async def _bitnovo_error_handler(self, request: Request, exc: BitnovoError):
        """Map domain errors to their status code and standard error body."""
        logger.warning(f"Bitnovo error: {exc.error_code} - {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    async def _http_error_handler(self, request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(
                status_code=404,
                content={
                    "success": False,
                    "error": "Not found",
                    "errorCode": "NOT_FOUND",
                    "availableEndpoints": [
                        f"POST {self.settings.webhook_path}",
                        "GET /health",
                        "GET /stats",
                    ],
                },
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": str(exc.detail),
                "errorCode": "HTTP_ERROR",
            },
            headers=getattr(exc, "headers", None),
        )

    async def _general_error_handler(self, request: Request, exc: Exception):
        """
        Catch-all handler for unexpected errors.

        Logs the full exception but returns a generic message to the client.
        """
        logger.error(f"Unexpected error: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal server error",
                "errorCode": "INTERNAL_ERROR",
            },
        )

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self) -> None:
        """
        Bind the HTTP listener, then start the tunnel.

        Raises:
            OSError: The port could not be bound
        """
        if self.is_running():
            logger.warning("Webhook server already running")
            return

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.settings.webhook_host, self.settings.webhook_port))
        except OSError:
            sock.close()
            logger.error(
                f"Cannot bind webhook server to "
                f"{self.settings.webhook_host}:{self.settings.webhook_port}"
            )
            raise

        # log_config=None keeps uvicorn on the root handlers (stderr)
        config = uvicorn.Config(
            self.app,
            log_config=None,
            log_level=self.settings.log_level.lower(),
            lifespan="off",
            access_log=False,
        )
        self._server = _EmbeddedUvicornServer(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[sock]))

        try:
            await asyncio.wait_for(self._wait_started(), timeout=STARTUP_TIMEOUT_SECONDS)
        except Exception:
            await self._stop_listener()
            raise

        logger.info(
            f"Webhook server listening on "
            f"http://{self.settings.webhook_host}:{self.settings.webhook_port}"
            f"{self.settings.webhook_path}"
        )

        await self._start_tunnel()

    async def _wait_started(self) -> None:
        while not self._server.started:
            if self._serve_task.done():
                self._serve_task.result()
                raise RuntimeError("Webhook server exited during startup")
            await asyncio.sleep(0.05)

    async def _start_tunnel(self) -> None:
        if not self.settings.tunnel_enabled:
            logger.info("Tunnel disabled; webhook server reachable on the local port only")
            return

        if self._tunnel_manager is None:
            self._tunnel_manager = TunnelManager(
                build_tunnel_config(self.settings),
                scheduler=self._scheduler,
            )

        try:
            public_url = await self._tunnel_manager.start()
            logger.info(f"Webhook public URL: {public_url}{self.settings.webhook_path}")
        except TunnelError as e:
            logger.error(f"Tunnel failed to start, continuing without it: {e.message}")

    async def stop(self) -> None:
        """Stop the tunnel, then the HTTP listener."""
        if self._tunnel_manager is not None:
            try:
                await self._tunnel_manager.stop()
            except Exception as e:
                logger.error(f"Error stopping tunnel: {e}")

        await self._stop_listener()

    async def _stop_listener(self) -> None:
        server, task = self._server, self._serve_task
        self._server = None
        self._serve_task = None
        if server is None or task is None:
            return

        server.should_exit = True
        try:
            await asyncio.wait_for(task, timeout=SHUTDOWN_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Webhook server did not stop in time, cancelling")
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("Webhook server stopped")

    # ========================================================================
    # Accessors
    # ========================================================================

    def is_running(self) -> bool:
        return self._serve_task is not None and not self._serve_task.done()

    def get_tunnel_manager(self) -> Optional[TunnelManager]:
        return self._tunnel_manager

    def get_public_url(self) -> Optional[str]:
        """Public base URL from the live tunnel, else the configured one."""
        if self._tunnel_manager is not None:
            url = self._tunnel_manager.get_public_url()
            if url:
                return url
        return self.settings.webhook_public_url

    def get_webhook_url(self) -> Optional[str]:
        public_url = self.get_public_url()
        if not public_url:
            return None
        return f"{public_url.rstrip('/')}{self.settings.webhook_path}"
