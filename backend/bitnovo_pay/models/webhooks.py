"""
Pydantic Webhook Models

Inbound Bitnovo Pay notification schema and the normalized event that the
event store keeps for the tool layer.
"""
from datetime import datetime
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

PaymentStatus = Literal["NR", "PE", "AC", "IA", "OC", "CO", "CA", "EX", "FA", "RF"]

PAYMENT_STATUS_DESCRIPTIONS: Dict[str, str] = {
    "NR": "Not ready",
    "PE": "Pending",
    "AC": "Awaiting completion",
    "IA": "Insufficient amount",
    "OC": "Out of condition",
    "CO": "Completed",
    "CA": "Cancelled",
    "EX": "Expired",
    "FA": "Failed",
    "RF": "Refunded",
}


class WebhookPayload(BaseModel):
    """
    Body of a Bitnovo Pay payment notification.

    Mirrors the gateway's payment serializer. Unknown keys are dropped;
    known keys are not coerced across JSON types (integers still pass as
    amounts).
    """

    model_config = ConfigDict(extra="ignore", strict=True)

    identifier: str = Field(min_length=1)
    status: PaymentStatus
    fiat_amount: Optional[float] = None
    notes: Optional[str] = None
    reference: Optional[str] = None
    created_at: Optional[str] = None
    expired_at: Optional[str] = None
    expected_input_amount: Optional[float] = None
    input_amount: Optional[float] = None
    confirmed_amount: Optional[float] = None
    unconfirmed_amount: Optional[float] = None
    crypto_amount: Optional[float] = None
    exchange_rate: Optional[float] = None
    network_fee: Optional[float] = None
    expired_time: Optional[str] = None
    address: Optional[str] = None
    tag_memo: Optional[str] = None
    input_currency: Optional[str] = None
    fiat: Optional[str] = None
    language: Optional[str] = None
    payment_uri: Optional[str] = None
    web_url: Optional[str] = None
    good_fee: Optional[bool] = None


class WebhookEvent(BaseModel):
    """
    One accepted webhook delivery.

    Created by the webhook handler whether or not the signature check
    passed; `validated` records the outcome. Owned by the event store.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    event_id: str = Field(alias="eventId")
    identifier: str
    status: PaymentStatus
    received_at: datetime = Field(alias="receivedAt")
    payload: Dict[str, Any]
    signature: Optional[str] = None
    nonce: str
    validated: bool

    def to_public_dict(self) -> Dict[str, Any]:
        """Serialize with camelCase keys; the signature is not exposed."""
        data = self.model_dump(by_alias=True, mode="json", exclude={"signature"})
        data["statusDescription"] = PAYMENT_STATUS_DESCRIPTIONS.get(self.status, "Unknown")
        return data


class WebhookRequest(BaseModel):
    """Transport-independent view of an inbound webhook HTTP request."""

    headers: Dict[str, Optional[str]] = Field(default_factory=dict)
    body: Any = None
    raw_body: str = ""

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


class WebhookHandlerResult(BaseModel):
    """Outcome of processing one webhook request."""

    success: bool
    status_code: int
    event_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    validated: Optional[bool] = None
