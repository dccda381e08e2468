"""
Minimal Stripe REST client.

Only the calls the membership and credits flows need: customer lookup,
subscription lookup, Checkout sessions and webhook signature verification.
"""

import hashlib
import hmac
import json
import logging
import time
from typing import Any

import httpx

from aurelia.core.config import settings

logger = logging.getLogger("aurelia.stripe")


class StripeError(Exception):
    """Stripe request failed or returned an error."""


class SignatureVerificationError(StripeError):
    """``Stripe-Signature`` header did not match the payload."""


def _parse_signature_header(header: str) -> tuple[int | None, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == "v1":
            signatures.append(value)
    return timestamp, signatures


def compute_signature(payload: bytes, timestamp: int, secret: str) -> str:
    signed_payload = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()


def construct_event(
    payload: bytes,
    signature_header: str | None,
    secret: str,
    tolerance: int | None = None,
    now: float | None = None,
) -> dict[str, Any]:
    """
    Verify a webhook payload and return the decoded event.

    Raises:
        SignatureVerificationError: Missing/invalid header, no matching
            ``v1`` signature, or a timestamp outside the tolerance.
    """
    if not signature_header:
        raise SignatureVerificationError("Missing Stripe-Signature header")
    timestamp, signatures = _parse_signature_header(signature_header)
    if timestamp is None or not signatures:
        raise SignatureVerificationError("Unable to extract timestamp and signatures from header")

    expected = compute_signature(payload, timestamp, secret)
    if not any(hmac.compare_digest(expected.encode(), candidate.encode()) for candidate in signatures):
        raise SignatureVerificationError("No signatures found matching the expected signature for payload")

    tolerance = settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS if tolerance is None else tolerance
    now = time.time() if now is None else now
    if tolerance and abs(now - timestamp) > tolerance:
        raise SignatureVerificationError("Timestamp outside the tolerance zone")

    try:
        return json.loads(payload)
    except ValueError as e:
        raise SignatureVerificationError(f"Invalid payload: {e}") from e


class StripeClient:
    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self.transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(settings.STRIPE_SECRET_KEY)

    async def _request(
        self, method: str, path: str, params: dict[str, Any] | None = None, data: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        if not settings.STRIPE_SECRET_KEY:
            raise StripeError("STRIPE_SECRET_KEY is not set")
        try:
            async with httpx.AsyncClient(
                base_url=settings.STRIPE_API_URL,
                timeout=settings.HTTP_TIMEOUT_SECONDS,
                transport=self.transport,
            ) as client:
                response = await client.request(
                    method,
                    path,
                    params=params,
                    data=data,
                    headers={"Authorization": f"Bearer {settings.STRIPE_SECRET_KEY}"},
                )
        except httpx.HTTPError as e:
            logger.error("Stripe %s %s failed: %s", method, path, e)
            raise StripeError(str(e)) from e

        if response.is_error:
            try:
                message = response.json().get("error", {}).get("message", response.text)
            except ValueError:
                message = response.text
            logger.error("Stripe %s %s returned %s: %s", method, path, response.status_code, message)
            raise StripeError(message)
        return response.json()

    async def find_customer(self, email: str) -> dict[str, Any] | None:
        result = await self._request("GET", "/v1/customers", params={"email": email, "limit": 1})
        customers = result.get("data") or []
        return customers[0] if customers else None

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/v1/customers/{customer_id}")

    async def active_subscription(self, customer_id: str) -> dict[str, Any] | None:
        result = await self._request(
            "GET", "/v1/subscriptions", params={"customer": customer_id, "status": "active", "limit": 1}
        )
        subscriptions = result.get("data") or []
        return subscriptions[0] if subscriptions else None

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/v1/subscriptions/{subscription_id}")

    async def create_checkout_session(self, params: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/v1/checkout/sessions", data=params)

    @staticmethod
    def subscription_product(subscription: dict[str, Any]) -> str | None:
        items = (subscription.get("items") or {}).get("data") or []
        if not items:
            return None
        product = (items[0].get("price") or {}).get("product")
        if isinstance(product, dict):
            return product.get("id")
        return product


# Global instance
stripe_client = StripeClient()
