"""Razorpay Orders API adapter.

Only the two calls the reconciliation flows need: opening an order (the
payment intent the checkout UI pays against) and listing the payments made
against one. Provider error bodies look like::

    {"error": {"code": "BAD_REQUEST_ERROR", "description": "...", "reason": "..."}}

and are folded into :class:`~payments.errors.GatewayError`.
"""

import json
import logging

import requests
from django.apps import apps
from django.conf import settings
from requests import RequestException
from requests.auth import HTTPBasicAuth

from .errors import ConfigurationError, GatewayError

logger = logging.getLogger(__name__)

COMMON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


class RazorpayClient:
    def __init__(self, key_id: str, key_secret: str, base_url: str = "https://api.razorpay.com", timeout: float = 30):
        if not key_id or not key_secret:
            raise ConfigurationError(
                "Razorpay configuration is missing. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )
        self.key_id = key_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._auth = HTTPBasicAuth(key_id, key_secret)

    @classmethod
    def from_settings(cls) -> "RazorpayClient":
        conf = getattr(settings, "RAZORPAY", {}) or {}
        return cls(
            key_id=conf.get("KEY_ID", ""),
            key_secret=conf.get("KEY_SECRET", ""),
            base_url=conf.get("BASE_URL") or "https://api.razorpay.com",
            timeout=conf.get("TIMEOUT", 30),
        )

    def _url(self, path: str) -> str:
        return f"{self.base_url}/v1/{path.lstrip('/')}"

    def _request(self, method: str, path: str, default_reason: str, payload=None) -> dict:
        try:
            resp = requests.request(
                method, self._url(path), json=payload, headers=COMMON_HEADERS,
                auth=self._auth, timeout=self.timeout,
            )
        except RequestException as e:
            logger.warning("Razorpay %s %s failed: %s", method, path, e.__class__.__name__)
            raise GatewayError("network_error", "Payment gateway is unreachable, please try again")

        try:
            data = resp.json()
        except ValueError:
            data = {"raw": resp.text[:800]}

        if 200 <= resp.status_code < 300:
            return data

        provider_error = data.get("error") if isinstance(data, dict) else None
        provider_error = provider_error if isinstance(provider_error, dict) else {}
        reason = provider_error.get("reason") or provider_error.get("code") or default_reason
        message = provider_error.get("description") or f"Payment gateway responded with HTTP {resp.status_code}"
        logger.error(
            "Razorpay %s %s rejected: status=%s body=%s",
            method, path, resp.status_code, json.dumps(data)[:800],
        )
        raise GatewayError(reason, message)

    def create_intent(self, amount_minor_units: int, currency: str, receipt: str, metadata=None) -> dict:
        """Open a Razorpay order. Returns ``{id, amount, currency, receipt, status}``."""
        payload = {
            "amount": int(amount_minor_units),
            "currency": currency,
            "receipt": receipt,
            "notes": {k: str(v) for k, v in (metadata or {}).items()},
        }
        data = self._request("POST", "orders", "order_creation_failed", payload)
        if not data.get("id"):
            raise GatewayError("invalid_response", "Payment gateway did not return an order id")
        return {
            "id": data.get("id"),
            "amount": data.get("amount", payload["amount"]),
            "currency": data.get("currency", currency),
            "receipt": data.get("receipt", receipt),
            "status": data.get("status", "created"),
        }

    def fetch_order_payments(self, gateway_order_id: str) -> list:
        data = self._request("GET", f"orders/{gateway_order_id}/payments", "payment_lookup_failed")
        return list(data.get("items") or [])


def get_gateway() -> RazorpayClient:
    """Return the process-wide client built by ``PaymentsConfig.ready()``."""
    gateway = apps.get_app_config("payments").gateway
    if gateway is None:
        raise ConfigurationError(
            "Razorpay configuration is missing. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
        )
    return gateway
