"""
Razorpay order creation and payment signature checks.

Creating the gateway order is a remote call; verifying the checkout signature
is local HMAC-SHA256 over "order_id|payment_id" keyed by the key secret.
"""
import hashlib
import hmac
import logging

import httpx

from config import Settings
from errors import GatewayError

logger = logging.getLogger(__name__)

RAZORPAY_ORDERS_URL = "https://api.razorpay.com/v1/orders"


def payment_signature(secret: str, gateway_order_id: str, payment_id: str) -> str:
    message = f"{gateway_order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def signature_matches(secret: str, gateway_order_id: str, payment_id: str, signature: str) -> bool:
    expected = payment_signature(secret, gateway_order_id, payment_id)
    return hmac.compare_digest(expected.encode(), (signature or "").encode())


class RazorpayGateway:
    def __init__(self, settings: Settings, timeout: float = 15.0):
        self.key_id = settings.razorpay_key_id
        self.key_secret = settings.razorpay_key_secret
        self.timeout = timeout

    def create_order(self, amount_minor: int, currency: str, receipt: str) -> str:
        if not self.key_id or not self.key_secret:
            raise GatewayError("Payment gateway not configured")
        body = {"amount": amount_minor, "currency": currency, "receipt": receipt}
        try:
            resp = httpx.post(RAZORPAY_ORDERS_URL, json=body, auth=(self.key_id, self.key_secret), timeout=self.timeout)
            resp.raise_for_status()
            gateway_order_id = resp.json()["id"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise GatewayError(f"Razorpay order creation failed: {e}") from e
        logger.info("Created Razorpay order %s for receipt %s", gateway_order_id, receipt)
        return gateway_order_id
