"""
Signature Service for Bitnovo Pay Webhooks

Implements HMAC-SHA256 verification of webhook deliveries.

Signature formula used by the gateway:
    hex(HMAC-SHA256(device_secret, nonce + raw_body))

The raw body must be the exact bytes received. Parsing and re-serializing
the JSON can reorder keys or change whitespace and break the signature.
"""
import hmac
import hashlib
import secrets
from typing import NamedTuple, Optional

MISSING_SECRET = "missing-secret"
LENGTH_MISMATCH = "length-mismatch"
MISMATCH = "mismatch"


class SignatureCheck(NamedTuple):
    """Result of a signature verification."""

    is_valid: bool
    error: Optional[str] = None


def compute_webhook_signature(secret: str, nonce: str, raw_body: str) -> str:
    """
    Compute the expected signature for a webhook body.

    Args:
        secret: Device secret shared with the gateway
        nonce: Value of the X-NONCE header
        raw_body: Request body exactly as received

    Returns:
        Lowercase hexadecimal HMAC-SHA256 digest
    """
    message = (nonce + raw_body).encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def validate_webhook_signature(
    secret: Optional[str],
    nonce: str,
    raw_body: str,
    received_signature: str
) -> SignatureCheck:
    """
    Verify a webhook signature using constant-time comparison.

    Args:
        secret: Device secret; empty or None fails with `missing-secret`
        nonce: Value of the X-NONCE header
        raw_body: Request body exactly as received
        received_signature: Value of the X-SIGNATURE header

    Returns:
        SignatureCheck with is_valid and an error reason
        (`missing-secret`, `length-mismatch` or `mismatch`)
    """
    if not secret:
        return SignatureCheck(False, MISSING_SECRET)

    expected = compute_webhook_signature(secret, nonce, raw_body)
    received = received_signature.strip().lower()

    if len(received) != len(expected):
        return SignatureCheck(False, LENGTH_MISMATCH)

    if not hmac.compare_digest(expected.encode("ascii"), received.encode("ascii", "replace")):
        return SignatureCheck(False, MISMATCH)

    return SignatureCheck(True)


def generate_nonce(length: int = 32) -> str:
    """Random hexadecimal nonce of `length` characters."""
    return secrets.token_hex((length + 1) // 2)[:length]


def create_test_signature(secret: str, nonce: str, body: str) -> str:
    """Sign a body the way the gateway does; used by tests and local tooling."""
    return compute_webhook_signature(secret, nonce, body)
