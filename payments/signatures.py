"""HMAC checks for data that claims to come from Razorpay."""

import hashlib
import hmac
import logging

from django.conf import settings

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def _secret(name: str) -> bytes:
    secret = (getattr(settings, "RAZORPAY", {}) or {}).get(name)
    if not secret:
        logger.error("Razorpay %s missing in settings", name)
        raise ConfigurationError(f"RAZORPAY['{name}'] setting is required to verify signatures")
    return secret.encode()


def _matches(secret: bytes, message: bytes, received_sig) -> bool:
    expected = hmac.new(secret, message, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected.encode(), (received_sig or "").strip().encode())


def verify_payment_signature(gateway_order_id: str, payment_id: str, received_sig: str) -> bool:
    """Check the checkout callback signature over ``"<order_id>|<payment_id>"``.

    Keyed with the API key secret. Returns False on any mismatch; raises
    :class:`ConfigurationError` only when the secret is not configured.
    """
    secret = _secret("KEY_SECRET")
    msg = f"{gateway_order_id or ''}|{payment_id or ''}".encode()
    return _matches(secret, msg, received_sig)


def verify_webhook_signature(raw_body: bytes, received_sig: str) -> bool:
    """Check ``X-Razorpay-Signature`` over the request body exactly as received.

    The body must be the raw bytes: re-serialised JSON will not reproduce
    what Razorpay signed.
    """
    secret = _secret("WEBHOOK_SECRET")
    return _matches(secret, raw_body or b"", received_sig)
