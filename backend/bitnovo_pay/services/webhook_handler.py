"""
Webhook Handler for Bitnovo Pay Notifications

Validates an inbound webhook and records it in the event store.

Processing steps, strictly in order for each request:
1. Parse      - JSON body against WebhookPayload           (400, nothing stored)
2. Headers    - X-NONCE / X-SIGNATURE when a secret is set (401, nothing stored)
3. Replay     - nonce through the nonce cache              (409, nothing stored)
4. Verify     - HMAC over the raw body                     (mismatch stored as unvalidated, 401)
5. Persist    - deterministic event_id, duplicates are no-ops
6. Respond    - WebhookHandlerResult

Without a device secret, signature checks are skipped and every event is
stored with validated=False. A warning is logged at startup.
"""
import hashlib
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import ValidationError

from ..exceptions import (
    AuthenticationError,
    BitnovoError,
    ReplayError,
    SignatureMismatchError,
    WebhookValidationError,
)
from ..models.webhooks import WebhookEvent, WebhookHandlerResult, WebhookPayload, WebhookRequest
from .event_store import WebhookEventStore, utcnow
from .nonce_cache import NonceCache
from .signature_service import generate_nonce, validate_webhook_signature

logger = logging.getLogger(__name__)

NONCE_HEADER = "X-NONCE"
SIGNATURE_HEADER = "X-SIGNATURE"


def generate_event_id(identifier: str, nonce: str) -> str:
    """Deterministic event id for an (identifier, nonce) pair."""
    digest = hashlib.sha256(f"{identifier}:{nonce}".encode("utf-8")).hexdigest()
    return f"evt_{digest[:32]}"


class WebhookHandler:
    """
    Stateless-per-request processor in front of the event store.

    All expected failures are turned into a WebhookHandlerResult; nothing
    raises past `handle`.
    """

    def __init__(
        self,
        event_store: WebhookEventStore,
        nonce_cache: NonceCache,
        device_secret: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self._event_store = event_store
        self._nonce_cache = nonce_cache
        self._device_secret = device_secret or None
        self._clock = clock

        if self._device_secret is None:
            logger.warning(
                "BITNOVO_DEVICE_SECRET not set - webhook signatures will not be "
                "verified and events are stored as unvalidated"
            )

    async def handle(self, request: WebhookRequest) -> WebhookHandlerResult:
        """
        Process an incoming webhook request.

        Args:
            request: Headers, parsed body and raw body of the request

        Returns:
            WebhookHandlerResult with the HTTP status to answer with
        """
        mismatch: Optional[SignatureMismatchError] = None
        try:
            payload = self._parse(request)
            nonce, signature = self._extract_headers(request)
            self._check_replay(nonce)
            try:
                validated = self._verify(nonce, signature, request.raw_body)
            except SignatureMismatchError as e:
                # Recorded for audit, reported to the caller below
                mismatch = e
                validated = False
            event_id = self._persist(payload, nonce, signature, validated)

        except BitnovoError as e:
            logger.warning(f"Webhook rejected: {e.error_code} - {e.message}")
            return WebhookHandlerResult(
                success=False,
                status_code=e.status_code,
                error=e.message,
                error_code=e.error_code,
            )

        except Exception as e:
            logger.error(f"Unexpected error processing webhook: {e}", exc_info=True)
            return WebhookHandlerResult(
                success=False,
                status_code=500,
                error="Internal error processing webhook",
                error_code="INTERNAL_ERROR",
            )

        if mismatch is not None:
            logger.warning(
                f"Webhook signature mismatch ({mismatch.details.get('reason')}), "
                f"stored {event_id} as unvalidated"
            )
            return WebhookHandlerResult(
                success=False,
                status_code=mismatch.status_code,
                event_id=event_id,
                error=mismatch.message,
                error_code=mismatch.error_code,
                validated=False,
            )

        return WebhookHandlerResult(
            success=True,
            status_code=200,
            event_id=event_id,
            validated=validated,
        )

    # ========================================================================
    # Steps
    # ========================================================================

    def _parse(self, request: WebhookRequest) -> WebhookPayload:
        body = request.body
        if body is None:
            if not request.raw_body:
                raise WebhookValidationError("Request body is empty")
            try:
                body = json.loads(request.raw_body)
            except json.JSONDecodeError as e:
                raise WebhookValidationError(f"Request body is not valid JSON: {e.msg}")
            request.body = body

        if not isinstance(body, dict):
            raise WebhookValidationError("Webhook payload must be a JSON object")

        try:
            return WebhookPayload.model_validate(body)
        except ValidationError as e:
            errors = [
                {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]
            first = errors[0]
            raise WebhookValidationError(
                f"Invalid webhook payload: {first['field']}: {first['message']}",
                details={"errors": errors},
            )

    def _extract_headers(self, request: WebhookRequest) -> Tuple[str, Optional[str]]:
        nonce = request.header(NONCE_HEADER)
        signature = request.header(SIGNATURE_HEADER)

        if self._device_secret is not None:
            missing = [
                name for name, value in ((NONCE_HEADER, nonce), (SIGNATURE_HEADER, signature))
                if not value
            ]
            if missing:
                raise AuthenticationError(
                    f"Missing required headers: {', '.join(missing)}",
                    details={"missing": missing},
                )

        if not nonce:
            # Unsigned delivery with verification disabled
            nonce = generate_nonce()
        return nonce, signature or None

    def _check_replay(self, nonce: str) -> None:
        if not self._nonce_cache.add(nonce):
            raise ReplayError("Nonce already used (possible replay attack)")

    def _verify(self, nonce: str, signature: Optional[str], raw_body: str) -> bool:
        if self._device_secret is None:
            return False

        check = validate_webhook_signature(self._device_secret, nonce, raw_body, signature or "")
        if not check.is_valid:
            raise SignatureMismatchError(
                "Invalid webhook signature",
                details={"reason": check.error},
            )
        return True

    def _persist(
        self,
        payload: WebhookPayload,
        nonce: str,
        signature: Optional[str],
        validated: bool
    ) -> str:
        event_id = generate_event_id(payload.identifier, nonce)
        event = WebhookEvent(
            event_id=event_id,
            identifier=payload.identifier,
            status=payload.status,
            received_at=self._clock(),
            payload=payload.model_dump(exclude_none=True),
            signature=signature,
            nonce=nonce,
            validated=validated,
        )
        if not self._event_store.store(event):
            logger.debug(f"Webhook event {event_id} already stored")
        return event_id

    def get_stats(self) -> Dict[str, Any]:
        return {
            "noncesCached": self._nonce_cache.size(),
            "hasDeviceSecret": self._device_secret is not None,
        }
