"""
Tunnel package for Bitnovo Pay.

Exposes the local webhook listener under a public URL.
"""
from .base import TunnelProvider
from .context import ContextDetectionResult, ExecutionContext, detect_context, recommend_provider
from .manager import TunnelManager
from .providers import ManualProvider, NgrokProvider, ZrokProvider
from .supervisor import TunnelSupervisor

__all__ = [
    "TunnelProvider",
    "ContextDetectionResult",
    "ExecutionContext",
    "detect_context",
    "recommend_provider",
    "TunnelManager",
    "ManualProvider",
    "NgrokProvider",
    "ZrokProvider",
    "TunnelSupervisor",
]
