"""Test doubles and token helpers shared by the test modules."""

import json
import time
from typing import Optional

import httpx
import jwt

from trackfit_api.billing.stripe import sign_payload
from trackfit_api.db.models import ROLE_USER

TEST_JWT_SECRET = "test-jwt-secret-0123456789abcdef0123456789"
TEST_WEBHOOK_SECRET = "whsec_test_secret"
TEST_CLIENT_URL = "http://localhost:5173"


class FakeStripeClient:
    """In-memory stand-in for StripeClient.

    Sessions are kept in self.sessions so tests can flip payment_status or
    expire a session between calls.
    """

    def __init__(self):
        self.sessions: dict[str, dict] = {}
        self.created: list[dict] = []
        self.retrieved: list[str] = []

    async def create_checkout_session(self, **kwargs) -> dict:
        number = len(self.created) + 1
        session_id = f"cs_test_{number}"
        session = {
            "id": session_id,
            "url": f"https://checkout.stripe.test/pay/{session_id}",
            "status": "open",
            "payment_status": "unpaid",
            "payment_intent": f"pi_test_{number}",
            "metadata": dict(kwargs.get("metadata") or {}),
        }
        self.created.append(kwargs)
        self.sessions[session_id] = session
        return session

    async def retrieve_session(self, session_id: str) -> dict:
        self.retrieved.append(session_id)
        if session_id not in self.sessions:
            request = httpx.Request("GET", f"https://api.stripe.com/v1/checkout/sessions/{session_id}")
            response = httpx.Response(
                404,
                json={"error": {"message": f"No such checkout.session: '{session_id}'"}},
                request=request,
            )
            raise httpx.HTTPStatusError("not found", request=request, response=response)
        return self.sessions[session_id]

    def mark_paid(self, session_id: str) -> None:
        self.sessions[session_id]["payment_status"] = "paid"
        self.sessions[session_id]["status"] = "complete"


class FakeMailer:
    """Records outgoing mail instead of talking to SMTP."""

    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail

    async def send_async(self, to: str, subject: str, html: str, text: Optional[str] = None) -> None:
        if self.fail:
            raise OSError("SMTP connection refused")
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})


def make_token(user_id: str, role: str = ROLE_USER, secret: str = TEST_JWT_SECRET, ttl: int = 3600) -> str:
    now = int(time.time())
    return jwt.encode(
        {"sub": user_id, "role": role, "iat": now, "exp": now + ttl},
        secret,
        algorithm="HS256",
    )


def auth_headers(user_id: str, role: str = ROLE_USER) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


def checkout_completed_event(
    event_id: str,
    session_id: str,
    metadata: dict,
    payment_intent: str = "pi_webhook_1",
) -> bytes:
    """Raw body of a checkout.session.completed event."""
    event = {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_status": "paid",
                "status": "complete",
                "payment_intent": payment_intent,
                "metadata": metadata,
            }
        },
    }
    return json.dumps(event).encode("utf-8")


def signed_headers(payload: bytes, secret: str = TEST_WEBHOOK_SECRET) -> dict:
    return {
        "Stripe-Signature": sign_payload(payload, secret),
        "Content-Type": "application/json",
    }
