"""
Models package for Bitnovo Pay.

Exports webhook, tunnel and QR models.
"""
from .webhooks import (
    PAYMENT_STATUS_DESCRIPTIONS,
    PaymentStatus,
    WebhookEvent,
    WebhookHandlerResult,
    WebhookPayload,
    WebhookRequest,
)
from .tunnel import TunnelConfig, TunnelInfo, TunnelProviderName, TunnelStatus
from .qr import QrCacheEntry, QrImage

__all__ = [
    "PAYMENT_STATUS_DESCRIPTIONS",
    "PaymentStatus",
    "WebhookEvent",
    "WebhookHandlerResult",
    "WebhookPayload",
    "WebhookRequest",
    "TunnelConfig",
    "TunnelInfo",
    "TunnelProviderName",
    "TunnelStatus",
    "QrCacheEntry",
    "QrImage",
]
