"""
Bitnovo Pay Exception Hierarchy

Error codes are machine-readable and returned to webhook callers in the
``errorCode`` field. Tunnel errors never reach HTTP callers; they are
contained by the tunnel supervisor and surface as status fields.
"""
from typing import Optional, Dict, Any


class BitnovoError(Exception):
    """
    Base exception for webhook and tunnel errors.

    Carries the HTTP status the error maps to when it is turned into a
    response.
    """

    status_code: int = 500

    def __init__(
        self,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API error response format."""
        return {
            "success": False,
            "error": self.message,
            "errorCode": self.error_code,
            "details": self.details
        }


class WebhookValidationError(BitnovoError):
    """
    Webhook payload is malformed.

    Examples:
    - Body is not JSON
    - Missing identifier or unknown status code
    """

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class AuthenticationError(BitnovoError):
    """
    Signature material is missing while a device secret is configured.

    Example:
    - X-NONCE or X-SIGNATURE header absent
    """

    status_code = 401

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("MISSING_SIGNATURE_HEADERS", message, details)


class ReplayError(BitnovoError):
    """
    Nonce was already seen inside the freshness window.

    Replayed deliveries are dropped without recording an event.
    """

    status_code = 409

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("REPLAY_DETECTED", message, details)


class SignatureMismatchError(BitnovoError):
    """
    HMAC signature does not match the raw body.

    Not fatal to the request: the event is still stored with
    validated=False.
    """

    status_code = 401

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_SIGNATURE", message, details)


class TunnelError(BitnovoError):
    """Base class for tunnel provider failures."""

    status_code = 503

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: str = "TUNNEL_ERROR"
    ):
        super().__init__(error_code, message, details)


class TunnelConnectError(TunnelError):
    """
    Tunnel could not be established.

    Examples:
    - ngrok rejected the auth token
    - zrok exited or printed no URL before the startup timeout
    - manual provider without WEBHOOK_PUBLIC_URL
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, error_code="TUNNEL_CONNECT_ERROR")


class TunnelHealthError(TunnelError):
    """Health probe against an established tunnel failed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, error_code="TUNNEL_HEALTH_ERROR")
