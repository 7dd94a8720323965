"""
Tunnel Provider Interface

A provider knows how to open and close one public tunnel to the local
webhook listener and how to tell whether it is still alive. State tracking,
backoff and health scheduling live in TunnelSupervisor, not in providers.
"""
from typing import Protocol, runtime_checkable

from ..models.tunnel import TunnelProviderName


@runtime_checkable
class TunnelProvider(Protocol):
    """
    Capability set of a tunnel backend.

    connect() returns the public URL or raises TunnelConnectError.
    disconnect() must be safe to call when nothing is connected.
    """

    name: TunnelProviderName

    async def connect(self) -> str:
        ...

    async def disconnect(self) -> None:
        ...

    async def check_health(self) -> bool:
        ...
