"""Stripe Checkout API client.

Stripe API Reference:
- Checkout Sessions: https://stripe.com/docs/api/checkout/sessions
- Webhook signatures: https://stripe.com/docs/webhooks#verify-manually
"""

import hashlib
import hmac
import json
import logging
import time
from typing import Optional

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from trackfit_api.config.env import (
    DEFAULT_SIGNATURE_TOLERANCE_SEC,
    get_stripe_api_base,
    get_stripe_secret_key,
)
from trackfit_api.errors import InvalidSignature, PaymentServiceUnavailable

logger = logging.getLogger(__name__)

PROVIDER = "stripe"
MAX_ATTEMPTS = 3


def _is_transient(exc: BaseException) -> bool:
    """Network failures, 5xx and 429 are retried; other 4xx are final."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status >= 500 or status == 429
    return False


def provider_error_message(exc: Exception) -> str:
    """Best-effort human-readable message from a failed provider call."""
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            body = exc.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = (body.get("error") or {}).get("message")
            if message:
                return message
        return f"Stripe API returned HTTP {exc.response.status_code}"
    return str(exc) or type(exc).__name__


def _flatten_form(data: dict, prefix: str = "") -> list[tuple[str, str]]:
    """Encode nested dicts/lists the way Stripe expects form parameters.

    {"metadata": {"a": "1"}, "items": [{"q": 1}]}
    -> [("metadata[a]", "1"), ("items[0][q]", "1")]
    """
    pairs: list[tuple[str, str]] = []
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            pairs.extend(_flatten_form(value, name))
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                item_name = f"{name}[{index}]"
                if isinstance(item, dict):
                    pairs.extend(_flatten_form(item, item_name))
                else:
                    pairs.append((item_name, str(item)))
        elif isinstance(value, bool):
            pairs.append((name, "true" if value else "false"))
        else:
            pairs.append((name, str(value)))
    return pairs


class StripeClient:
    """Stripe Checkout client (one-time payment mode).

    Environment Variables:
    - STRIPE_SECRET_KEY: API secret key (sk_...)
    - STRIPE_API_BASE: API base URL (default: https://api.stripe.com)
    """

    def __init__(self, secret_key: Optional[str] = None, base_url: Optional[str] = None):
        self.secret_key = secret_key or get_stripe_secret_key()
        self.base_url = (base_url or get_stripe_api_base()).rstrip("/")

    def _headers(self, idempotency_key: Optional[str] = None) -> dict:
        headers = {"Authorization": f"Bearer {self.secret_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        reraise=True,
    )
    async def _request(
        self,
        method: str,
        path: str,
        *,
        form: Optional[dict] = None,
        idempotency_key: Optional[str] = None,
    ) -> dict:
        url = f"{self.base_url}{path}"
        data = _flatten_form(form) if form else None

        async with httpx.AsyncClient() as client:
            response = await client.request(
                method,
                url,
                headers=self._headers(idempotency_key),
                data=data,
                timeout=30.0,
            )
            response.raise_for_status()
            return response.json()

    async def create_checkout_session(
        self,
        *,
        amount_minor: int,
        currency: str,
        product_name: str,
        product_description: str,
        success_url: str,
        cancel_url: str,
        metadata: dict,
        idempotency_key: Optional[str] = None,
    ) -> dict:
        """Create a one-item Checkout Session.

        Args:
            amount_minor: Unit amount in minor currency units (e.g. paise)
            currency: ISO currency code (lowercase)
            product_name: Line item name shown on the checkout page
            product_description: Line item description
            success_url: Redirect after payment; may contain {CHECKOUT_SESSION_ID}
            cancel_url: Redirect on cancel
            metadata: String key/value pairs echoed back on the session and webhook
            idempotency_key: Stripe Idempotency-Key (optional)

        Returns:
            Checkout Session object (id, url, payment_status, status, ...)

        Raises:
            httpx.HTTPError: If the request fails after retries
        """
        form = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {
                            "name": product_name,
                            "description": product_description,
                        },
                        "unit_amount": amount_minor,
                    },
                    "quantity": 1,
                }
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": {k: v for k, v in metadata.items() if v is not None},
        }

        session = await self._request(
            "POST", "/v1/checkout/sessions", form=form, idempotency_key=idempotency_key
        )
        logger.info(
            "Stripe checkout session created",
            extra={
                "event": "stripe.checkout_session.created",
                "session_id": session.get("id"),
                "amount_minor": amount_minor,
                "currency": currency,
            },
        )
        return session

    async def retrieve_session(self, session_id: str) -> dict:
        """Retrieve a Checkout Session (payment_status, status, metadata, payment_intent).

        Raises:
            httpx.HTTPError: If the request fails after retries
        """
        return await self._request("GET", f"/v1/checkout/sessions/{session_id}")


def construct_event(
    payload: bytes,
    sig_header: Optional[str],
    secret: str,
    *,
    tolerance: int = DEFAULT_SIGNATURE_TOLERANCE_SEC,
    now: Optional[float] = None,
) -> dict:
    """Verify a Stripe-Signature header and decode the event.

    Header format: "t=<unix ts>,v1=<hex>[,v1=<hex>...]". The expected
    signature is HMAC-SHA256(secret, "<t>.<raw body>").

    Raises:
        InvalidSignature: header missing/malformed, no matching v1 signature,
            or timestamp outside the tolerance window
        ValueError: payload is not valid JSON
    """
    if not sig_header:
        raise InvalidSignature("Missing Stripe-Signature header")

    timestamp: Optional[str] = None
    signatures: list[str] = []
    for item in sig_header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)

    if not timestamp or not signatures:
        raise InvalidSignature("Malformed Stripe-Signature header")

    try:
        timestamp_int = int(timestamp)
    except ValueError:
        raise InvalidSignature("Malformed Stripe-Signature timestamp")

    signed_payload = timestamp.encode("utf-8") + b"." + payload
    expected = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()

    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise InvalidSignature("No signatures found matching the expected signature for payload")

    current = time.time() if now is None else now
    if tolerance and abs(current - timestamp_int) > tolerance:
        raise InvalidSignature("Timestamp outside the tolerance zone")

    return json.loads(payload)


def sign_payload(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header value for payload (used for local replay)."""
    ts = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(
        secret.encode("utf-8"), str(ts).encode("utf-8") + b"." + payload, hashlib.sha256
    ).hexdigest()
    return f"t={ts},v1={digest}"


def get_stripe_client() -> StripeClient:
    """FastAPI dependency: Stripe client built from environment.

    Raises:
        PaymentServiceUnavailable: If STRIPE_SECRET_KEY is not configured
    """
    try:
        return StripeClient()
    except ValueError:
        logger.error(
            "Stripe client is not configured",
            extra={"event": "stripe.misconfigured"},
        )
        raise PaymentServiceUnavailable("Payment service is not configured")
