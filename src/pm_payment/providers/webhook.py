"""HMAC-SHA256 verification of provider webhook callbacks.

Signature header is the hex digest of the raw body, optionally prefixed
with "sha256=". With no secret configured verification is skipped outside
production and every callback is rejected in production.
"""

import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("x-signature", "x-callback-signature")


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    raw_body: bytes,
    signature_header: str | None,
    secret: str,
    is_production: bool,
) -> bool:
    if not secret:
        if is_production:
            logger.error("Webhook secret not configured in production, rejecting callback")
            return False
        logger.warning("Webhook secret not configured, skipping signature verification")
        return True

    if not signature_header:
        logger.error("Webhook callback missing signature header")
        return False

    received = signature_header.strip()
    if received.startswith("sha256="):
        received = received[len("sha256="):]

    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected.encode(), received.lower().encode())
