"""
Payment gateway client

Talks to the Stripe REST API. Only the two calls checkout needs are
implemented: creating a payment intent and cancelling one.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import requests

import config
from errors import PaymentAuthorizationFailedError

logger = logging.getLogger(__name__)

# Storefront payment method -> gateway payment instrument types
PAYMENT_METHOD_TYPES = {
    "credit_card": ["card"],
    "debit_card": ["card"],
    "paypal": ["paypal"],
}


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: str
    amount: int
    currency: str
    status: str = "requires_payment_method"


class PaymentGateway:
    """Stripe payment intents over HTTP."""

    def __init__(
        self,
        secret_key: str,
        api_url: str = "https://api.stripe.com/v1",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.secret_key = secret_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, path: str, data: dict) -> dict:
        response = self.session.post(
            f"{self.api_url}/{path}",
            data=data,
            auth=(self.secret_key, ""),
            timeout=self.timeout,
        )
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if not response.ok:
            error = body.get("error")
            message = error.get("message") if isinstance(error, dict) else error
            raise PaymentAuthorizationFailedError(
                str(message or response.text or f"HTTP {response.status_code}")
            )
        return body

    def authorize(
        self,
        amount_cents: int,
        currency: str,
        payment_method: str,
        metadata: Optional[dict] = None,
    ) -> PaymentIntent:
        """Create a payment intent for ``amount_cents``.

        Transport errors, timeouts and declines all surface as
        PaymentAuthorizationFailedError. Nothing is retried here.
        """
        data = {
            "amount": int(amount_cents),
            "currency": currency,
            "payment_method_types[]": PAYMENT_METHOD_TYPES.get(payment_method, ["card"]),
        }
        for key, value in (metadata or {}).items():
            data[f"metadata[{key}]"] = str(value)

        try:
            body = self._post("payment_intents", data)
        except requests.Timeout:
            logger.error("Payment gateway timed out after %ss", self.timeout)
            raise PaymentAuthorizationFailedError("Payment gateway timed out")
        except requests.RequestException as e:
            logger.error("Payment gateway unreachable: %s", e)
            raise PaymentAuthorizationFailedError("Payment gateway unreachable")

        if not body.get("id") or not body.get("client_secret"):
            raise PaymentAuthorizationFailedError("Malformed gateway response")
        logger.info("Created payment intent %s for %d %s", body["id"], amount_cents, currency)
        return PaymentIntent(
            id=body["id"],
            client_secret=body["client_secret"],
            amount=int(body.get("amount", amount_cents)),
            currency=body.get("currency", currency),
            status=body.get("status", "requires_payment_method"),
        )

    def cancel(self, intent_id: str) -> bool:
        """Void an intent. Returns False instead of raising; callers are already unwinding."""
        try:
            self._post(f"payment_intents/{intent_id}/cancel", {})
        except (requests.RequestException, PaymentAuthorizationFailedError) as e:
            logger.warning("Could not cancel payment intent %s: %s", intent_id, e)
            return False
        logger.info("Cancelled payment intent %s", intent_id)
        return True


_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency returning the configured gateway."""
    global _gateway
    if _gateway is None:
        _gateway = PaymentGateway(
            config.STRIPE_SECRET_KEY,
            api_url=config.STRIPE_API_URL,
            timeout=config.PAYMENT_TIMEOUT_SECONDS,
        )
    return _gateway
