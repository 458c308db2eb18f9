"""Checkout initiation (payment intent).

Creates (or reuses) a provider checkout session for a membership purchase or
a spa booking and records the attempt as a Pending Payment.
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from sqlalchemy.orm import Session

from trackfit_api.billing.stripe import StripeClient, provider_error_message
from trackfit_api.config.env import get_client_url, get_payment_currency
from trackfit_api.context import payment_id_var
from trackfit_api.db.models import (
    PAYMENT_PENDING,
    PAYMENT_TYPE_MEMBERSHIP,
    PAYMENT_TYPE_SPA,
    PAYMENT_TYPES,
    PLACEHOLDER_SESSION_PREFIX,
    Membership,
    Payment,
    SpaBooking,
    User,
)
from trackfit_api.errors import InvalidRequest, NotFound, PaymentServiceUnavailable, ProviderError

logger = logging.getLogger(__name__)

# Charged when a spa checkout arrives without a usable amount
DEFAULT_SPA_PRICE = 499.0


@dataclass
class CheckoutRequest:
    """Normalized checkout input (wire names are camelCase)."""

    user_id: Optional[str]
    type: Optional[str]
    amount: Any = None
    membership_id: Optional[str] = None
    booking_id: Optional[str] = None
    plan_type: Optional[str] = None
    payment_id: Optional[str] = None
    description: Optional[str] = None
    trainer_id: Optional[str] = None


@dataclass
class CheckoutResult:
    session_id: str
    url: Optional[str]
    payment: Payment
    reused: bool = False


def _parse_amount(raw: Any) -> Optional[float]:
    """Positive float, or None for missing / non-numeric / non-positive input."""
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if value != value or value <= 0:  # NaN
        return None
    return value


def resolve_amount(payment_type: str, raw: Any) -> float:
    """Amount to charge in major units.

    Spa checkouts fall back to DEFAULT_SPA_PRICE; any other type must carry
    a positive amount.
    """
    amount = _parse_amount(raw)
    if amount is not None:
        return amount
    if payment_type == PAYMENT_TYPE_SPA:
        return DEFAULT_SPA_PRICE
    raise InvalidRequest("Invalid amount value")


def product_text(payment_type: str, plan_type: Optional[str], description: Optional[str]) -> tuple[str, str]:
    """Line item (name, description) shown on the checkout page."""
    if payment_type == PAYMENT_TYPE_SPA:
        return description or "SPA Service", "SPA service booking at TrackFit"
    return (
        f"{plan_type or 'Fitness'} {payment_type}",
        f"{plan_type or 'Standard'} {payment_type.lower()} for TrackFit",
    )


def placeholder_session_id() -> str:
    return PLACEHOLDER_SESSION_PREFIX + secrets.token_hex(16)


def _is_placeholder(session_id: Optional[str]) -> bool:
    return bool(session_id) and session_id.startswith(PLACEHOLDER_SESSION_PREFIX)


def _validate(db: Session, req: CheckoutRequest) -> tuple[User, float, Optional[Membership], Optional[SpaBooking]]:
    if not req.type or not req.user_id:
        raise InvalidRequest("Missing required payment information: type and userId")
    if req.type not in PAYMENT_TYPES:
        raise InvalidRequest(f"Unsupported payment type '{req.type}'")

    amount = resolve_amount(req.type, req.amount)

    user = db.query(User).filter(User.id == req.user_id).first()
    if user is None:
        raise NotFound("User not found")

    membership = None
    if req.type == PAYMENT_TYPE_MEMBERSHIP and req.membership_id:
        membership = db.query(Membership).filter(Membership.id == req.membership_id).first()
        # Another user's membership or booking reads as missing
        if membership is None or membership.user_id != user.id:
            raise NotFound("Membership not found")

    booking = None
    if req.type == PAYMENT_TYPE_SPA and req.booking_id:
        booking = db.query(SpaBooking).filter(SpaBooking.id == req.booking_id).first()
        if booking is None or booking.user_id != user.id:
            raise NotFound("SPA booking not found")

    return user, amount, membership, booking


def _find_pending_for_reference(db: Session, req: CheckoutRequest) -> Optional[Payment]:
    query = db.query(Payment).filter(Payment.status == PAYMENT_PENDING)
    if req.type == PAYMENT_TYPE_MEMBERSHIP and req.membership_id:
        query = query.filter(Payment.membership_id == req.membership_id)
    elif req.type == PAYMENT_TYPE_SPA and req.booking_id:
        query = query.filter(Payment.booking_id == req.booking_id)
    else:
        return None
    return query.order_by(Payment.created_at.desc()).first()


async def _live_session(stripe_client: StripeClient, payment: Payment) -> Optional[dict]:
    """Provider session for payment if it can still be completed, else None."""
    session_id = payment.stripe_session_id
    if not session_id or _is_placeholder(session_id):
        return None
    try:
        session = await stripe_client.retrieve_session(session_id)
    except httpx.HTTPError as exc:
        logger.info(
            "CHECKOUT_SESSION_LOOKUP_FAILED",
            extra={"session_id": session_id, "error": provider_error_message(exc)},
        )
        return None
    if session.get("status") == "expired":
        return None
    return session


async def initiate_checkout(
    db: Session,
    stripe_client: StripeClient,
    req: CheckoutRequest,
) -> CheckoutResult:
    """Create or reuse a checkout session and record a Pending payment.

    Raises:
        InvalidRequest: missing type/userId, unsupported type, bad amount,
            or a retry target that is no longer Pending
        NotFound: user, membership, booking or retry payment missing
        PaymentServiceUnavailable: CLIENT_URL not configured
        ProviderError: checkout session creation failed
    """
    user, amount, membership, booking = _validate(db, req)

    client_url = get_client_url()
    if not client_url:
        logger.error("CLIENT_URL is not configured", extra={"event": "checkout.misconfigured"})
        raise PaymentServiceUnavailable("Server configuration error: CLIENT_URL not set")

    existing: Optional[Payment] = None

    if req.payment_id:
        existing = db.query(Payment).filter(Payment.id == req.payment_id).first()
        if existing is None or existing.user_id != user.id:
            raise NotFound("Payment not found")
        if existing.status != PAYMENT_PENDING:
            raise InvalidRequest(f"Payment is already {existing.status}")

        if existing.type == PAYMENT_TYPE_SPA and not req.booking_id and existing.booking_id:
            req.booking_id = existing.booking_id
            booking = db.query(SpaBooking).filter(SpaBooking.id == req.booking_id).first()
            if booking is None:
                raise NotFound("SPA booking not found")

        if _is_placeholder(existing.stripe_session_id):
            existing.stripe_session_id = None
    else:
        pending = _find_pending_for_reference(db, req)
        if pending is not None:
            session = await _live_session(stripe_client, pending)
            if session is not None:
                payment_id_var.set(pending.id)
                logger.info(
                    "CHECKOUT_SESSION_REUSED",
                    extra={"session_id": pending.stripe_session_id},
                )
                return CheckoutResult(
                    session_id=pending.stripe_session_id,
                    url=session.get("url"),
                    payment=pending,
                    reused=True,
                )
            existing = pending

    product_name, product_description = product_text(req.type, req.plan_type, req.description)

    try:
        session = await stripe_client.create_checkout_session(
            amount_minor=round(amount * 100),
            currency=get_payment_currency(),
            product_name=product_name,
            product_description=product_description,
            success_url=f"{client_url}/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{client_url}/payment/cancel",
            metadata={
                "userId": user.id,
                "type": req.type,
                "membershipId": req.membership_id or "",
                "planType": req.plan_type or "",
                "bookingId": req.booking_id or "",
                "paymentId": existing.id if existing is not None else "",
            },
        )
    except httpx.HTTPError as exc:
        db.rollback()
        message = provider_error_message(exc)
        logger.error("CHECKOUT_SESSION_CREATE_FAILED", extra={"error": message})
        raise ProviderError(f"Payment processing error: {message}") from exc

    if existing is not None:
        payment = existing
        payment.stripe_session_id = session["id"]
        payment.amount = amount
    else:
        payment = Payment(
            user_id=user.id,
            amount=amount,
            type=req.type,
            status=PAYMENT_PENDING,
            stripe_session_id=session["id"],
            membership_id=req.membership_id if req.type == PAYMENT_TYPE_MEMBERSHIP else None,
            booking_id=req.booking_id if req.type == PAYMENT_TYPE_SPA else None,
            trainer_id=req.trainer_id,
            plan_type=req.plan_type,
            description=req.description,
        )
        db.add(payment)
        db.flush()
        if booking is not None:
            booking.payment_id = payment.id

    db.commit()
    db.refresh(payment)

    payment_id_var.set(payment.id)
    logger.info(
        "CHECKOUT_SESSION_CREATED",
        extra={
            "session_id": payment.stripe_session_id,
            "type": payment.type,
            "amount": payment.amount,
            "retry": existing is not None,
        },
    )
    return CheckoutResult(session_id=session["id"], url=session.get("url"), payment=payment)


def create_pending_payment(db: Session, req: CheckoutRequest) -> Payment:
    """Record a Pending payment before any provider session exists.

    The payment gets a placeholder session id; a later checkout with
    paymentId set replaces it with a real provider session.

    Raises:
        InvalidRequest / NotFound: as for initiate_checkout validation
    """
    user, amount, _membership, booking = _validate(db, req)

    payment = Payment(
        user_id=user.id,
        amount=amount,
        type=req.type,
        status=PAYMENT_PENDING,
        stripe_session_id=placeholder_session_id(),
        membership_id=req.membership_id if req.type == PAYMENT_TYPE_MEMBERSHIP else None,
        booking_id=req.booking_id if req.type == PAYMENT_TYPE_SPA else None,
        trainer_id=req.trainer_id,
        plan_type=req.plan_type,
        description=req.description,
    )
    db.add(payment)
    db.flush()
    if booking is not None:
        booking.payment_id = payment.id
    db.commit()
    db.refresh(payment)

    payment_id_var.set(payment.id)
    logger.info("PENDING_PAYMENT_CREATED", extra={"type": payment.type, "amount": payment.amount})
    return payment
