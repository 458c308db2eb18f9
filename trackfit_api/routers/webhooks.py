"""Stripe webhook handler.

Error taxonomy (keeps provider retry storms bounded):
  (A) Signature missing / invalid / stale        → 400 INVALID_SIGNATURE
  (B) Invalid JSON or missing event id           → 400 INVALID_REQUEST
  (C) Our misconfig (missing webhook secret)     → 500 PAYMENT_SERVICE_UNAVAILABLE
  (D) Internal DB/processing error after verify  → 500 WEBHOOK_INTERNAL_ERROR
  500 is ONLY for (C)(D). Signature mismatch is NEVER 500 and touches no state.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from trackfit_api.billing.reconcile import process_checkout_completed
from trackfit_api.billing.stripe import PROVIDER, construct_event
from trackfit_api.billing.webhook_dedup import (
    get_stripe_dedup_key,
    mark_dedup_done,
    mark_dedup_failed,
    try_acquire_dedup,
)
from trackfit_api.config.env import get_stripe_webhook_secret, get_webhook_end_date_policy
from trackfit_api.context import request_id_var
from trackfit_api.db.session import get_db
from trackfit_api.errors import InvalidRequest, PaymentServiceUnavailable
from trackfit_api.schemas import WebhookAck
from trackfit_api.utils.sanitize import payload_hash_bytes, sanitize_str

router = APIRouter(prefix="/payments", tags=["webhooks"])
logger = logging.getLogger(__name__)

EVENT_CHECKOUT_COMPLETED = "checkout.session.completed"


def _internal_error(request: Request, payload_hash: str, exc: Exception) -> JSONResponse:
    """Log once + 500 Problem Details with Retry-After so the provider redelivers."""
    request_id = request_id_var.get()
    logger.error(
        "WEBHOOK_INTERNAL_ERROR",
        extra={
            "provider": PROVIDER,
            "payload_hash": payload_hash,
            "error_type": type(exc).__name__,
            "error_msg": sanitize_str(str(exc)),
        },
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={
            "type": "https://api.trackfit.app/problems/webhook-internal-error",
            "title": "Internal processing error",
            "status": 500,
            "detail": "An internal error occurred while processing the webhook",
            "instance": f"urn:trackfit:trace:{request_id}" if request_id else str(request.url.path),
            "error_code": "WEBHOOK_INTERNAL_ERROR",
        },
        media_type="application/problem+json",
        headers={"Retry-After": "60"},
    )


@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
):
    """Asynchronous payment reconciliation from Stripe events.

    The signature is checked against the raw body before anything is read
    from or written to the database.
    """
    # ── Step 0: Raw body ingestion ───────────────────────────────────────────
    raw_body: bytes = await request.body()
    payload_hash = payload_hash_bytes(raw_body)

    # ── Step 1: Configuration (C → 500) ─────────────────────────────────────
    try:
        secret = get_stripe_webhook_secret()
        policy = get_webhook_end_date_policy()
    except ValueError as exc:
        logger.error(
            "WEBHOOK_PROVIDER_MISCONFIG",
            extra={"provider": PROVIDER, "error_msg": str(exc)},
        )
        raise PaymentServiceUnavailable("Webhook secret not configured")

    # ── Step 2: Signature verification (A → 400, fail closed) ──────────────
    try:
        event = construct_event(raw_body, stripe_signature, secret)
    except ValueError:
        raise InvalidRequest("Request body is not valid JSON")
    # InvalidSignature propagates to the problem+json handler

    # ── Step 3: Event fields (B → 400) ──────────────────────────────────────
    if not isinstance(event, dict):
        raise InvalidRequest("Webhook payload must be a JSON object")
    try:
        dedup_key = get_stripe_dedup_key(event)
    except ValueError as exc:
        raise InvalidRequest(sanitize_str(str(exc)))
    event_type = event.get("type")

    logger.info(
        "WEBHOOK_RECEIVED",
        extra={
            "provider": PROVIDER,
            "event_type": event_type,
            "payload_hash": payload_hash,
            "payload_size": len(raw_body),
        },
    )

    # ── Step 4: Dedup gate ──────────────────────────────────────────────────
    try:
        is_first = try_acquire_dedup(db, PROVIDER, dedup_key, payload_hash)
    except Exception as exc:
        db.rollback()
        return _internal_error(request, payload_hash, exc)

    if not is_first:
        logger.info(
            "WEBHOOK_ALREADY_PROCESSED",
            extra={"provider": PROVIDER, "payload_hash": payload_hash},
        )
        return WebhookAck(status="already_processed")

    # ── Step 5: Business processing (D → 500) ───────────────────────────────
    try:
        if event_type == EVENT_CHECKOUT_COMPLETED:
            session = (event.get("data") or {}).get("object") or {}
            outcome = process_checkout_completed(db, session, policy=policy)
            logger.info(
                "WEBHOOK_CHECKOUT_RECONCILED",
                extra={
                    "provider": PROVIDER,
                    "completed_now": outcome.completed_now,
                    "booking_confirmed": outcome.booking_confirmed,
                    "membership_error": outcome.membership_error,
                },
            )
        else:
            logger.info(
                "WEBHOOK_EVENT_IGNORED",
                extra={"provider": PROVIDER, "event_type": event_type},
            )

        mark_dedup_done(db, PROVIDER, dedup_key)
    except Exception as exc:
        db.rollback()
        mark_dedup_failed(db, PROVIDER, dedup_key)
        return _internal_error(request, payload_hash, exc)

    return WebhookAck(status="processed")
