"""Unit tests for webhook HMAC verification."""

from src.pm_payment.providers.webhook import compute_signature, verify_webhook_signature

BODY = b'{"transaction":{"id":"BP-WDR-1","status_code":"TS"}}'


class TestVerifyWebhookSignature:
    def test_valid_signature(self) -> None:
        sig = compute_signature(BODY, "secret")
        assert verify_webhook_signature(BODY, sig, "secret", is_production=True)

    def test_prefixed_signature(self) -> None:
        sig = "sha256=" + compute_signature(BODY, "secret")
        assert verify_webhook_signature(BODY, sig, "secret", is_production=True)

    def test_uppercase_hex_accepted(self) -> None:
        sig = compute_signature(BODY, "secret").upper()
        assert verify_webhook_signature(BODY, sig, "secret", is_production=True)

    def test_tampered_body(self) -> None:
        sig = compute_signature(BODY, "secret")
        assert not verify_webhook_signature(BODY + b" ", sig, "secret", is_production=True)

    def test_missing_header(self) -> None:
        assert not verify_webhook_signature(BODY, None, "secret", is_production=False)

    def test_no_secret_outside_production(self) -> None:
        assert verify_webhook_signature(BODY, None, "", is_production=False)

    def test_no_secret_in_production(self) -> None:
        assert not verify_webhook_signature(BODY, "anything", "", is_production=True)
