"""
Runtime - composition root for the in-memory components.

One Runtime owns the sweep scheduler, the webhook event store, the nonce
cache, the QR cache, the webhook handler and (when enabled) the webhook
server. Everything lives in process memory and is gone after shutdown.
"""
import logging
from typing import Optional

from .config import Settings
from .services.event_store import WebhookEventStore
from .services.nonce_cache import NonceCache
from .services.qr_cache import QrCache
from .services.scheduler import SweepScheduler
from .services.webhook_handler import WebhookHandler
from .server import WebhookServer

logger = logging.getLogger(__name__)


class Runtime:
    """
    Builds, starts and tears down the server components.

    `initialize()` may be called again (for example after a configuration
    change); the previous components are shut down first so none of their
    background jobs outlive them.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.scheduler: Optional[SweepScheduler] = None
        self.event_store: Optional[WebhookEventStore] = None
        self.nonce_cache: Optional[NonceCache] = None
        self.qr_cache: Optional[QrCache] = None
        self.handler: Optional[WebhookHandler] = None
        self.webhook_server: Optional[WebhookServer] = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self, start_server: bool = True) -> None:
        """
        Create every component and start background jobs.

        Args:
            start_server: Bind the webhook listener when webhooks are enabled
        """
        if self._initialized:
            logger.info("Runtime already initialized, shutting down previous instance")
            await self.shutdown()

        settings = self.settings
        logger.info(f"Initializing runtime: {settings.masked_summary()}")

        self.scheduler = SweepScheduler()
        self.scheduler.start()

        self.event_store = WebhookEventStore(
            max_entries=settings.webhook_max_events,
            ttl_seconds=settings.webhook_event_ttl_seconds,
        )
        self.event_store.start_cleanup_task(self.scheduler)

        self.nonce_cache = NonceCache()

        self.qr_cache = QrCache(
            max_entries=settings.qr_cache_max_entries,
            ttl_seconds=settings.qr_cache_ttl_seconds,
        )
        self.qr_cache.start_cleanup_task(self.scheduler)

        self.handler = WebhookHandler(
            self.event_store,
            self.nonce_cache,
            device_secret=settings.bitnovo_device_secret,
        )

        if settings.webhook_enabled:
            self.webhook_server = WebhookServer(
                settings,
                self.handler,
                self.event_store,
                qr_cache=self.qr_cache,
                scheduler=self.scheduler,
            )
            if start_server:
                try:
                    await self.webhook_server.start()
                except Exception as e:
                    # MCP tools keep working without the listener
                    logger.error(f"Webhook server failed to start: {e}", exc_info=True)
        else:
            logger.info("Webhooks disabled (set WEBHOOK_ENABLED=true to receive notifications)")

        self._initialized = True
        logger.info("Runtime initialized")

    async def shutdown(self) -> None:
        """Stop the server, cancel all jobs and drop in-memory state."""
        if self.webhook_server is not None:
            try:
                await self.webhook_server.stop()
            except Exception as e:
                logger.error(f"Error stopping webhook server: {e}")
            self.webhook_server = None

        if self.event_store is not None:
            self.event_store.shutdown()
        if self.qr_cache is not None:
            self.qr_cache.shutdown()
        if self.nonce_cache is not None:
            self.nonce_cache.clear()
        if self.scheduler is not None:
            self.scheduler.shutdown()

        self.handler = None
        self._initialized = False
        logger.info("Runtime shutdown complete")
