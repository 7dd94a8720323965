"""
Tunnel Manager

Factory and delegator: picks the provider named in the configuration, wraps
it in a TunnelSupervisor and forwards lifecycle calls. Retry policy lives in
the supervisor, so swapping providers and swapping retry behavior are
independent.
"""
import logging
from typing import Callable, Dict, Optional

from ..exceptions import TunnelError
from ..models.tunnel import TunnelConfig, TunnelInfo, TunnelProviderName, TunnelStatus
from ..services.scheduler import SweepScheduler
from .base import TunnelProvider
from .providers import ManualProvider, NgrokProvider, ZrokProvider
from .supervisor import TunnelSupervisor

logger = logging.getLogger(__name__)

PROVIDERS: Dict[TunnelProviderName, Callable[[TunnelConfig], TunnelProvider]] = {
    TunnelProviderName.NGROK: NgrokProvider,
    TunnelProviderName.ZROK: ZrokProvider,
    TunnelProviderName.MANUAL: ManualProvider,
}


class TunnelManager:
    """Owns at most one live tunnel session."""

    def __init__(
        self,
        config: TunnelConfig,
        scheduler: Optional[SweepScheduler] = None,
        provider_factory: Optional[Callable[[TunnelConfig], TunnelProvider]] = None
    ):
        self._config = config
        self._scheduler = scheduler
        self._provider_factory = provider_factory
        self._supervisor: Optional[TunnelSupervisor] = None

        if config.enabled:
            logger.info(f"Tunnel manager initialized (provider={config.provider.value})")
        else:
            logger.info("Tunnel disabled")

    @property
    def config(self) -> TunnelConfig:
        return self._config

    @property
    def supervisor(self) -> Optional[TunnelSupervisor]:
        return self._supervisor

    def _create_provider(self) -> TunnelProvider:
        if self._provider_factory is not None:
            return self._provider_factory(self._config)
        factory = PROVIDERS.get(self._config.provider)
        if factory is None:
            raise TunnelError(f"Unknown tunnel provider: {self._config.provider}")
        return factory(self._config)

    async def start(self) -> str:
        """
        Create the provider and connect.

        Returns:
            Public URL

        Raises:
            TunnelError: Tunnel disabled or provider unknown
            TunnelConnectError: Connection failed (session info keeps the error)
        """
        if not self._config.enabled:
            raise TunnelError("Tunnel is disabled")

        if self._supervisor is not None:
            await self.stop()

        self._supervisor = TunnelSupervisor(
            self._create_provider(),
            self._config,
            scheduler=self._scheduler,
        )
        public_url = await self._supervisor.connect()
        logger.info(f"Tunnel started: {self._config.provider.value} -> {public_url}")
        return public_url

    async def stop(self) -> None:
        supervisor, self._supervisor = self._supervisor, None
        if supervisor is not None:
            await supervisor.disconnect()
            logger.info("Tunnel stopped")

    def get_info(self) -> Optional[TunnelInfo]:
        if self._supervisor is None:
            return None
        return self._supervisor.info

    def is_connected(self) -> bool:
        info = self.get_info()
        return info is not None and info.status == TunnelStatus.CONNECTED

    def get_public_url(self) -> Optional[str]:
        info = self.get_info()
        return info.public_url if info is not None else None
