"""
Tunnel Supervisor

Wraps a TunnelProvider with the session state machine:

    disconnected -> connecting -> connected
    connected -> reconnecting -> connected      (transient health failure)
    reconnecting -> error                       (retries exhausted)

Reconnects back off exponentially from the configured base delay, doubling
per attempt and capped at the maximum delay. A reconnect already in flight
swallows further triggers. A successful reconnect resets the attempt counter
and clears the last error.

Errors stay inside the supervisor; callers observe them through TunnelInfo.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from ..exceptions import TunnelConnectError, TunnelHealthError
from ..models.tunnel import TunnelConfig, TunnelInfo, TunnelStatus
from ..services.scheduler import SweepScheduler, attach_job
from .base import TunnelProvider

logger = logging.getLogger(__name__)


class TunnelSupervisor:
    """
    State, backoff and health checks for one provider instance.

    Connect, disconnect and each reconnect attempt run under one lock, so
    transitions never interleave.
    """

    def __init__(
        self,
        provider: TunnelProvider,
        config: TunnelConfig,
        scheduler: Optional[SweepScheduler] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self._provider = provider
        self._config = config
        self._scheduler = scheduler
        self._sleep = sleep

        self._info = TunnelInfo(provider=provider.name)
        self._lock = asyncio.Lock()
        self._reconnecting = False
        self._closing = False
        self._reconnect_task: Optional[asyncio.Task] = None
        self._health_job_id: Optional[str] = None

    @property
    def provider(self) -> TunnelProvider:
        return self._provider

    @property
    def info(self) -> TunnelInfo:
        """Copy of the current session state."""
        return self._info.model_copy()

    @property
    def is_reconnecting(self) -> bool:
        return self._reconnecting

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt `attempt` (1-based)."""
        delay = self._config.reconnect_backoff_seconds * (2 ** (attempt - 1))
        return min(delay, self._config.max_backoff_seconds)

    # ========================================================================
    # Connect / disconnect
    # ========================================================================

    async def connect(self) -> str:
        """
        Open the tunnel.

        Returns:
            Public URL

        Raises:
            TunnelConnectError: Provider failed; status is left at `error`
        """
        async with self._lock:
            self._closing = False
            self._info.status = TunnelStatus.CONNECTING
            try:
                public_url = await self._provider.connect()
            except TunnelConnectError as e:
                self._mark_failed(e.message)
                raise
            except Exception as e:
                self._mark_failed(str(e))
                raise TunnelConnectError(f"{self._provider.name.value} connection failed: {e}")

            self._mark_connected(public_url)

        self._start_health_check()
        logger.info(f"{self._provider.name.value} tunnel connected: {public_url}")
        return public_url

    async def disconnect(self) -> None:
        """
        Stop health checks, cancel any reconnect, and close the tunnel.

        From here until the next connect(), no health check or reconnect
        may reopen the provider.
        """
        self._closing = True
        self._stop_health_check()

        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        async with self._lock:
            try:
                await self._provider.disconnect()
            except Exception as e:
                logger.error(f"{self._provider.name.value} disconnect error: {e}")
            self._info.status = TunnelStatus.DISCONNECTED
            self._info.public_url = None
            self._info.connected_at = None

    def _mark_connected(self, public_url: str) -> None:
        self._info.status = TunnelStatus.CONNECTED
        self._info.public_url = public_url
        self._info.connected_at = datetime.now(timezone.utc)

    def _mark_failed(self, message: str) -> None:
        self._info.status = TunnelStatus.ERROR
        self._info.last_error = message
        logger.error(f"{self._provider.name.value} connection failed: {message}")

    # ========================================================================
    # Reconnect
    # ========================================================================

    async def reconnect(self) -> None:
        """
        Re-establish the tunnel with exponential backoff.

        Returns immediately if a reconnect is already running. Ends either
        `connected` (attempts reset) or `error` (retries exhausted).
        """
        if self._reconnecting:
            logger.debug("Tunnel reconnect already in progress, ignoring trigger")
            return
        if self._closing:
            logger.debug("Tunnel is shutting down, ignoring reconnect")
            return

        self._reconnecting = True
        self._stop_health_check()
        self._info.status = TunnelStatus.RECONNECTING
        name = self._provider.name.value

        try:
            while True:
                if self._info.reconnect_attempts >= self._config.reconnect_max_retries:
                    self._info.status = TunnelStatus.ERROR
                    logger.error(
                        f"{name} tunnel reconnection exhausted after "
                        f"{self._info.reconnect_attempts} attempts: {self._info.last_error}"
                    )
                    return

                self._info.reconnect_attempts += 1
                attempt = self._info.reconnect_attempts
                delay = self.backoff_delay(attempt)
                logger.info(f"Attempting {name} tunnel reconnection #{attempt} in {delay:.1f}s")
                await self._sleep(delay)

                async with self._lock:
                    if self._closing:
                        return
                    try:
                        await self._provider.disconnect()
                        public_url = await self._provider.connect()
                    except Exception as e:
                        self._info.last_error = str(e)
                        logger.error(f"{name} tunnel reconnection #{attempt} failed: {e}")
                        continue

                    self._mark_connected(public_url)
                    self._info.reconnect_attempts = 0
                    self._info.last_error = None

                self._start_health_check()
                logger.info(f"{name} tunnel reconnected: {public_url}")
                return
        finally:
            self._reconnecting = False

    def trigger_reconnect(self) -> Optional[asyncio.Task]:
        """Start a reconnect in the background unless one is running or the tunnel is closing."""
        if self._closing:
            return None
        if self._reconnecting or (self._reconnect_task is not None and not self._reconnect_task.done()):
            return self._reconnect_task
        self._reconnect_task = asyncio.create_task(self.reconnect())
        return self._reconnect_task

    async def wait_for_reconnect(self) -> None:
        task = self._reconnect_task
        if task is not None:
            await task

    # ========================================================================
    # Health checks
    # ========================================================================

    async def _probe(self) -> None:
        name = self._provider.name.value
        try:
            healthy = await self._provider.check_health()
        except Exception as e:
            raise TunnelHealthError(f"{name} health probe raised: {e}")
        if not healthy:
            raise TunnelHealthError(f"{name} tunnel health check failed")

    async def run_health_check(self) -> bool:
        """
        Probe the tunnel once; on failure start a background reconnect.

        Only a connected tunnel is probed. A failure that lands after
        disconnect() has started is ignored.

        Returns:
            True if healthy (or not connected), False if a reconnect was triggered
        """
        if self._closing or self._info.status != TunnelStatus.CONNECTED:
            return True

        try:
            await self._probe()
        except TunnelHealthError as e:
            if self._closing or self._info.status != TunnelStatus.CONNECTED:
                logger.debug(f"Ignoring health failure after shutdown: {e.message}")
                return True
            self._info.last_error = e.message
            logger.warning(e.message)
            self.trigger_reconnect()
            return False
        return True

    def _start_health_check(self) -> None:
        self._stop_health_check()
        self._health_job_id = attach_job(
            self._scheduler,
            f"tunnel_health_{id(self):x}",
            self._health_job,
            self._config.health_check_interval_seconds,
        )
        self._info.health_check_enabled = self._health_job_id is not None

    def _stop_health_check(self) -> None:
        if self._scheduler is not None and self._health_job_id is not None:
            self._scheduler.remove_job(self._health_job_id)
        self._health_job_id = None
        self._info.health_check_enabled = False

    async def _health_job(self) -> None:
        try:
            await self.run_health_check()
        except Exception as e:
            logger.error(f"Tunnel health check error: {e}", exc_info=True)
