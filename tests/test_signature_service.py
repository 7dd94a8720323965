"""
Tests for webhook HMAC signature verification.
"""
import hashlib
import hmac

from bitnovo_pay.services.signature_service import (
    LENGTH_MISMATCH,
    MISMATCH,
    MISSING_SECRET,
    compute_webhook_signature,
    create_test_signature,
    generate_nonce,
    validate_webhook_signature,
)

SECRET = "device_secret"
NONCE = "abc123nonce"
BODY = '{"identifier":"pay_1","status":"CO"}'


class TestComputeSignature:

    def test_matches_hmac_of_nonce_plus_body(self):
        expected = hmac.new(
            SECRET.encode(), (NONCE + BODY).encode(), hashlib.sha256
        ).hexdigest()
        assert compute_webhook_signature(SECRET, NONCE, BODY) == expected

    def test_is_deterministic(self):
        first = compute_webhook_signature(SECRET, NONCE, BODY)
        second = compute_webhook_signature(SECRET, NONCE, BODY)
        assert first == second
        assert len(first) == 64

    def test_single_byte_change_changes_signature(self):
        original = compute_webhook_signature(SECRET, NONCE, BODY)
        assert compute_webhook_signature(SECRET, NONCE, BODY.replace("CO", "CA")) != original
        assert compute_webhook_signature(SECRET, NONCE + "x", BODY) != original
        assert compute_webhook_signature(SECRET + "x", NONCE, BODY) != original

    def test_whitespace_in_body_matters(self):
        """Re-serialized JSON must not verify against the original signature."""
        spaced = '{"identifier": "pay_1", "status": "CO"}'
        assert compute_webhook_signature(SECRET, NONCE, spaced) != compute_webhook_signature(
            SECRET, NONCE, BODY
        )


class TestValidateSignature:

    def test_valid_signature(self):
        signature = create_test_signature(SECRET, NONCE, BODY)
        result = validate_webhook_signature(SECRET, NONCE, BODY, signature)
        assert result.is_valid is True
        assert result.error is None

    def test_uppercase_hex_accepted(self):
        signature = create_test_signature(SECRET, NONCE, BODY).upper()
        assert validate_webhook_signature(SECRET, NONCE, BODY, signature).is_valid

    def test_missing_secret(self):
        signature = create_test_signature(SECRET, NONCE, BODY)
        for secret in (None, ""):
            result = validate_webhook_signature(secret, NONCE, BODY, signature)
            assert result.is_valid is False
            assert result.error == MISSING_SECRET

    def test_length_mismatch(self):
        result = validate_webhook_signature(SECRET, NONCE, BODY, "deadbeef")
        assert result.is_valid is False
        assert result.error == LENGTH_MISMATCH

    def test_flipped_character_is_mismatch(self):
        signature = create_test_signature(SECRET, NONCE, BODY)
        flipped = ("0" if signature[0] != "0" else "1") + signature[1:]
        result = validate_webhook_signature(SECRET, NONCE, BODY, flipped)
        assert result.is_valid is False
        assert result.error == MISMATCH

    def test_tampered_body_is_mismatch(self):
        signature = create_test_signature(SECRET, NONCE, BODY)
        result = validate_webhook_signature(SECRET, NONCE, BODY + " ", signature)
        assert result.error == MISMATCH


class TestGenerateNonce:

    def test_length_and_alphabet(self):
        nonce = generate_nonce()
        assert len(nonce) == 32
        assert all(c in "0123456789abcdef" for c in nonce)

    def test_odd_length(self):
        assert len(generate_nonce(15)) == 15

    def test_unique(self):
        assert len({generate_nonce() for _ in range(50)}) == 50
