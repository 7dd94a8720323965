"""
Pydantic QR Models

Descriptor of a rendered payment QR image and its cache bookkeeping.
"""
from typing import Literal
from pydantic import BaseModel, Field


class QrImage(BaseModel):
    """
    Rendered QR code.

    `data` is the base64-encoded image; its length drives the cache's
    memory estimate.
    """

    data: str
    format: Literal["png", "svg", "jpeg"] = "png"
    style: str = "basic"
    width: int = Field(default=300, gt=0)
    height: int = Field(default=300, gt=0)


class QrCacheEntry(BaseModel):
    """Cached QR image plus access tracking (monotonic-clock seconds)."""

    data: QrImage
    timestamp: float
    access_count: int = 1
    last_accessed: float
