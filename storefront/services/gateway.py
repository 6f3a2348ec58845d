"""Razorpay REST client.

Only the calls the checkout flow needs: create an order, fetch a payment,
fetch an order, and verify checkout/webhook signatures.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from storefront.config import get_settings
from storefront.core.exceptions import PaymentGatewayError, ServiceUnavailableError
from storefront.core.security import hmac_sha256_hex, signatures_match

logger = logging.getLogger(__name__)


class RazorpayClient:
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str = "",
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        if not self.configured:
            logger.error("Razorpay credentials are not configured")
            raise PaymentGatewayError("Payment gateway is not configured")

        try:
            with httpx.Client(
                base_url=self.base_url,
                auth=(self.key_id, self.key_secret),
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            ) as client:
                response = client.request(method, path, **kwargs)
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            logger.error(f"Razorpay {method} {path} unreachable: {e}")
            raise ServiceUnavailableError("Payment gateway is unreachable")
        except httpx.HTTPError as e:
            logger.error(f"Razorpay {method} {path} failed: {e}")
            raise PaymentGatewayError("Payment gateway request failed")

        if response.status_code >= 400:
            try:
                description = response.json().get("error", {}).get("description")
            except ValueError:
                description = None
            description = description or f"HTTP {response.status_code}"
            logger.error(f"Razorpay {method} {path} returned {response.status_code}: {description}")
            raise PaymentGatewayError(f"Payment gateway error: {description}")

        try:
            return response.json()
        except ValueError:
            raise PaymentGatewayError("Payment gateway returned an invalid response")

    def create_order(self, amount: int, currency: str, receipt: str, notes: Dict[str, str]) -> Dict[str, Any]:
        """Create a gateway order; ``amount`` is in the smallest currency unit."""
        return self._request("POST", "/orders", json={
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes,
        })

    def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/payments/{payment_id}")

    def fetch_order(self, order_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/orders/{order_id}")

    def verify_payment_signature(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        if not self.key_secret:
            return False
        expected = hmac_sha256_hex(self.key_secret, f"{gateway_order_id}|{gateway_payment_id}")
        return signatures_match(expected, signature)

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        if not self.webhook_secret:
            logger.warning("Razorpay webhook secret is not configured; rejecting webhook")
            return False
        # Razorpay signs the raw request bytes
        expected = hmac_sha256_hex(self.webhook_secret, body)
        return signatures_match(expected, signature)


def get_payment_gateway() -> RazorpayClient:
    settings = get_settings()
    return RazorpayClient(
        key_id=settings.RAZORPAY_KEY_ID,
        key_secret=settings.RAZORPAY_KEY_SECRET,
        webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
        base_url=settings.RAZORPAY_API_URL,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
