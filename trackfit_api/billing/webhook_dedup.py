"""Webhook dedup gate: at most one successful processing per (provider, dedup_key).

Two-step claim:
  1. INSERT a 'processing' row; the UNIQUE (provider, dedup_key) constraint
     lets exactly one concurrent delivery win.
       → insert ok         : first processor → continue
       → IntegrityError    : a row exists → step 2
  2. UPDATE ... SET status='processing' WHERE status='failed'
       → 1 row             : previous attempt failed; re-claimed
       → 0 rows            : 'done' or concurrent 'processing' → duplicate

Both steps are plain INSERT/UPDATE statements, so the gate behaves the same
on PostgreSQL and SQLite.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from trackfit_api.db.models import WebhookDedupEvent
from trackfit_api.utils.clock import utcnow

logger = logging.getLogger(__name__)

DEDUP_PROCESSING = "processing"
DEDUP_DONE = "done"
DEDUP_FAILED = "failed"


def get_stripe_dedup_key(event: dict) -> str:
    """Dedup key for a Stripe event: the event id (stable across redeliveries).

    Raises ValueError if the event carries no id.
    """
    event_id = event.get("id")
    if not event_id:
        raise ValueError("Cannot derive Stripe dedup_key: event 'id' missing")
    return f"ev_{event_id}"


def try_acquire_dedup(
    db: Session,
    provider: str,
    dedup_key: str,
    request_hash: Optional[str] = None,
) -> bool:
    """Attempt to claim processing rights for (provider, dedup_key).

    Returns:
        True:  first delivery, or a previous 'failed' attempt was re-claimed.
        False: already 'done' or being processed concurrently; the caller
               ACKs without side effects.
    """
    now = utcnow()

    db.add(
        WebhookDedupEvent(
            provider=provider,
            dedup_key=dedup_key,
            status=DEDUP_PROCESSING,
            request_hash=request_hash,
            first_seen_at=now,
        )
    )
    try:
        db.commit()
        logger.debug(
            "WEBHOOK_DEDUP_ACQUIRED",
            extra={"provider": provider, "dedup_key_prefix": dedup_key[:16]},
        )
        return True
    except IntegrityError:
        db.rollback()

    result = db.execute(
        update(WebhookDedupEvent)
        .where(
            WebhookDedupEvent.provider == provider,
            WebhookDedupEvent.dedup_key == dedup_key,
            WebhookDedupEvent.status == DEDUP_FAILED,
        )
        .values(status=DEDUP_PROCESSING, last_seen_at=now)
    )
    db.commit()

    if result.rowcount == 1:
        logger.info(
            "WEBHOOK_DEDUP_RETRY_RECLAIMED",
            extra={"provider": provider, "dedup_key_prefix": dedup_key[:16]},
        )
        return True

    logger.info(
        "WEBHOOK_DEDUP_DUPLICATE",
        extra={"provider": provider, "dedup_key_prefix": dedup_key[:16]},
    )
    return False


def _set_status(db: Session, provider: str, dedup_key: str, status: str) -> None:
    db.execute(
        update(WebhookDedupEvent)
        .where(
            WebhookDedupEvent.provider == provider,
            WebhookDedupEvent.dedup_key == dedup_key,
        )
        .values(status=status, last_seen_at=utcnow())
    )
    db.commit()


def mark_dedup_done(db: Session, provider: str, dedup_key: str) -> None:
    """Mark dedup record as 'done' after successful business processing."""
    _set_status(db, provider, dedup_key, DEDUP_DONE)


def mark_dedup_failed(db: Session, provider: str, dedup_key: str) -> None:
    """Mark dedup record as 'failed' on processing error (provider may retry)."""
    _set_status(db, provider, dedup_key, DEDUP_FAILED)
