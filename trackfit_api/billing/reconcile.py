"""Payment reconciliation: synchronous session verification and webhook processing.

Payment completion is a conditional UPDATE (status = 'Pending' -> 'Completed'),
so concurrent verifiers and webhook deliveries complete a payment exactly
once. Only the caller that performed that transition activates the paid-for
membership, whatever its current status (renewals reactivate an Expired
membership). Spa confirmation is guarded by the booking row:

- a spa booking is confirmed only while it is still Pending, and admins are
  notified only by the caller that confirmed it

Membership activation errors do not undo the payment completion. Callers
see a Completed payment with the membership unchanged, and the error is
reported alongside the payment.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httpx
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from trackfit_api.billing.membership import activate_membership
from trackfit_api.billing.stripe import StripeClient, provider_error_message
from trackfit_api.config.env import END_DATE_POLICY_CALENDAR
from trackfit_api.context import payment_id_var
from trackfit_api.db.models import (
    BOOKING_CONFIRMED,
    BOOKING_PENDING,
    PAYMENT_COMPLETED,
    PAYMENT_PENDING,
    PAYMENT_TYPE_MEMBERSHIP,
    PAYMENT_TYPE_SPA,
    ROLE_ADMIN,
    Membership,
    Notification,
    Payment,
    SpaBooking,
    User,
)
from trackfit_api.errors import InvalidRequest, NotFound, PaymentFlowError, PaymentNotCompleted, ProviderError
from trackfit_api.utils.clock import utcnow

logger = logging.getLogger(__name__)

# Amounts recorded when the webhook has to create the payment itself
WEBHOOK_SPA_FALLBACK_PRICE = 50.0
WEBHOOK_MEMBERSHIP_FALLBACK_PRICE = 0.0

NOTIFICATION_SPA_CONFIRMED = "SpaBookingConfirmed"


@dataclass
class VerifyResult:
    payment: Payment
    already_processed: bool
    membership: Optional[Membership] = None
    membership_error: Optional[str] = None


@dataclass
class WebhookOutcome:
    payment: Optional[Payment]
    completed_now: bool = False
    membership: Optional[Membership] = None
    membership_error: Optional[str] = None
    booking_confirmed: bool = False


def complete_payment(
    db: Session,
    payment_id: str,
    *,
    transaction_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Transition payment Pending -> Completed.

    Returns:
        True if this call performed the transition, False if the payment was
        no longer Pending (another caller won, or it is Failed).
    """
    values: dict = {"status": PAYMENT_COMPLETED, "payment_date": now or utcnow()}
    if transaction_id:
        values["transaction_id"] = transaction_id

    result = db.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == PAYMENT_PENDING)
        .values(**values)
    )
    db.commit()
    return result.rowcount == 1


def _activate_for_payment(
    db: Session, payment: Payment, policy: str, now: Optional[datetime]
) -> tuple[Optional[Membership], Optional[str]]:
    """Activate the membership a just-completed payment paid for.

    Runs whatever the membership's current status is, so a renewal of an
    Expired membership is reactivated.

    Returns (membership, error message). Errors are logged, never raised.
    """
    if payment.type != PAYMENT_TYPE_MEMBERSHIP or not payment.membership_id:
        return None, None

    membership = db.query(Membership).filter(Membership.id == payment.membership_id).first()
    if membership is None:
        logger.warning(
            "MEMBERSHIP_NOT_FOUND_FOR_PAYMENT",
            extra={"membership_id": payment.membership_id},
        )
        return None, "Membership not found"

    try:
        return activate_membership(db, membership.id, policy=policy, now=now), None
    except Exception as exc:
        detail = exc.detail if isinstance(exc, PaymentFlowError) else str(exc)
        logger.error(
            "MEMBERSHIP_ACTIVATION_FAILED",
            extra={
                "membership_id": payment.membership_id,
                "error_type": type(exc).__name__,
                "error_msg": detail,
            },
            exc_info=True,
        )
        return None, detail or type(exc).__name__


async def verify_session(
    db: Session,
    stripe_client: StripeClient,
    session_id: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> VerifyResult:
    """Confirm a checkout session with the provider and reconcile local state.

    Raises:
        InvalidRequest: session_id missing
        ProviderError: provider lookup failed
        NotFound: no Pending payment for the session
        PaymentNotCompleted: provider reports the session unpaid
    """
    if not session_id:
        raise InvalidRequest("session_id is required")

    payment = db.query(Payment).filter(Payment.stripe_session_id == session_id).first()
    if payment is not None and payment.status == PAYMENT_COMPLETED:
        payment_id_var.set(payment.id)
        logger.info("PAYMENT_ALREADY_PROCESSED", extra={"session_id": session_id})
        return VerifyResult(payment=payment, already_processed=True)

    try:
        session = await stripe_client.retrieve_session(session_id)
    except httpx.HTTPError as exc:
        message = provider_error_message(exc)
        logger.error("CHECKOUT_SESSION_RETRIEVE_FAILED", extra={"session_id": session_id, "error": message})
        raise ProviderError(f"Error verifying payment: {message}") from exc

    if payment is None or payment.status != PAYMENT_PENDING:
        raise NotFound("No pending payment found for this session")

    payment_id_var.set(payment.id)
    payment_status = session.get("payment_status")
    if payment_status != "paid":
        logger.info("PAYMENT_NOT_PAID", extra={"session_id": session_id, "payment_status": payment_status})
        raise PaymentNotCompleted("Payment not completed", payment_status)

    won = complete_payment(db, payment.id, transaction_id=session.get("payment_intent"), now=now)
    db.refresh(payment)
    if not won:
        logger.info("PAYMENT_COMPLETED_CONCURRENTLY", extra={"session_id": session_id})
        return VerifyResult(payment=payment, already_processed=True)

    logger.info("PAYMENT_COMPLETED", extra={"session_id": session_id, "source": "verify_session"})

    membership, membership_error = _activate_for_payment(db, payment, END_DATE_POLICY_CALENDAR, now)
    db.refresh(payment)
    return VerifyResult(
        payment=payment,
        already_processed=False,
        membership=membership,
        membership_error=membership_error,
    )


def _notify_admins(db: Session, payment: Payment, booking: SpaBooking) -> None:
    """One notification per admin. Failures are logged and swallowed."""
    try:
        admins = db.query(User).filter(User.role == ROLE_ADMIN).all()
        for admin in admins:
            db.add(
                Notification(
                    recipient_id=admin.id,
                    type=NOTIFICATION_SPA_CONFIRMED,
                    title="New SPA Booking Confirmed",
                    message=f"A new SPA booking has been confirmed with payment ID: {payment.id}",
                    related_id=booking.id,
                    is_read=False,
                )
            )
        db.commit()
        logger.info("ADMIN_NOTIFICATIONS_SENT", extra={"booking_id": booking.id, "count": len(admins)})
    except Exception as exc:
        db.rollback()
        logger.warning(
            "ADMIN_NOTIFICATION_FAILED",
            extra={"booking_id": booking.id, "error_type": type(exc).__name__},
            exc_info=True,
        )


def _confirm_booking(db: Session, payment: Payment) -> bool:
    """Spa booking Pending -> Confirmed; notifies admins on transition."""
    if payment.type != PAYMENT_TYPE_SPA or not payment.booking_id:
        return False

    result = db.execute(
        update(SpaBooking)
        .where(SpaBooking.id == payment.booking_id, SpaBooking.status == BOOKING_PENDING)
        .values(status=BOOKING_CONFIRMED, payment_id=payment.id)
    )
    db.commit()
    if result.rowcount != 1:
        return False

    booking = db.query(SpaBooking).filter(SpaBooking.id == payment.booking_id).first()
    logger.info("SPA_BOOKING_CONFIRMED", extra={"booking_id": payment.booking_id})
    _notify_admins(db, payment, booking)
    return True


def _create_completed_payment(db: Session, session: dict, now: datetime) -> tuple[Optional[Payment], bool]:
    """Record a payment the webhook saw before any local Pending payment existed.

    Returns (payment, created). created is False when a concurrent request
    recorded the session first and its row is returned instead.
    """
    metadata = session.get("metadata") or {}
    user_id = metadata.get("userId")
    payment_type = metadata.get("type")
    membership_id = metadata.get("membershipId") or None
    booking_id = metadata.get("bookingId") or None

    if not user_id:
        logger.error("WEBHOOK_PAYMENT_UNATTRIBUTED", extra={"session_id": session.get("id")})
        return None, False

    if payment_type == PAYMENT_TYPE_SPA and booking_id:
        booking = db.query(SpaBooking).filter(SpaBooking.id == booking_id).first()
        if booking is None:
            logger.error("WEBHOOK_SPA_BOOKING_NOT_FOUND", extra={"booking_id": booking_id})
            return None, False
        payment = Payment(
            user_id=user_id,
            booking_id=booking_id,
            amount=booking.price or WEBHOOK_SPA_FALLBACK_PRICE,
            type=PAYMENT_TYPE_SPA,
            description="SPA Service Booking",
        )
    elif payment_type == PAYMENT_TYPE_MEMBERSHIP or membership_id:
        membership = None
        if membership_id:
            membership = db.query(Membership).filter(Membership.id == membership_id).first()
        payment = Payment(
            user_id=user_id,
            membership_id=membership_id,
            amount=(membership.price if membership and membership.price else WEBHOOK_MEMBERSHIP_FALLBACK_PRICE),
            type=PAYMENT_TYPE_MEMBERSHIP,
            plan_type=(membership.plan_type if membership else None) or metadata.get("planType") or None,
        )
    else:
        logger.error(
            "WEBHOOK_UNKNOWN_PAYMENT_TYPE",
            extra={"session_id": session.get("id"), "type": payment_type},
        )
        return None, False

    payment.status = PAYMENT_COMPLETED
    payment.stripe_session_id = session.get("id")
    payment.transaction_id = session.get("payment_intent")
    payment.payment_date = now
    db.add(payment)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent request recorded this session first
        db.rollback()
        return db.query(Payment).filter(Payment.stripe_session_id == session.get("id")).first(), False
    db.refresh(payment)
    logger.info("WEBHOOK_PAYMENT_CREATED", extra={"type": payment.type, "amount": payment.amount})
    return payment, True


def process_checkout_completed(
    db: Session,
    session: dict,
    *,
    policy: str,
    now: Optional[datetime] = None,
) -> WebhookOutcome:
    """Reconcile a checkout.session.completed event.

    Lookup order: metadata paymentId, then the session id; if neither
    resolves, the payment is created as Completed from the session metadata.

    Args:
        db: Database session
        session: The event's checkout session object
        policy: Membership end-date policy for activations triggered here
        now: Processing time (defaults to current UTC time)
    """
    current = now or utcnow()
    metadata = session.get("metadata") or {}
    session_id = session.get("id")

    payment: Optional[Payment] = None
    if metadata.get("paymentId"):
        payment = db.query(Payment).filter(Payment.id == metadata["paymentId"]).first()
    if payment is None and session_id:
        payment = db.query(Payment).filter(Payment.stripe_session_id == session_id).first()

    completed_now = False
    if payment is None:
        payment, completed_now = _create_completed_payment(db, session, current)
        if payment is None:
            return WebhookOutcome(payment=None)
    if not completed_now and payment.status == PAYMENT_PENDING:
        completed_now = complete_payment(
            db, payment.id, transaction_id=session.get("payment_intent"), now=current
        )
        db.refresh(payment)

    payment_id_var.set(payment.id)

    if payment.status != PAYMENT_COMPLETED:
        logger.error(
            "WEBHOOK_PAYMENT_NOT_COMPLETABLE",
            extra={"session_id": session_id, "status": payment.status},
        )
        return WebhookOutcome(payment=payment)

    if completed_now:
        logger.info("PAYMENT_COMPLETED", extra={"session_id": session_id, "source": "webhook"})

    booking_confirmed = _confirm_booking(db, payment)
    membership, membership_error = None, None
    if completed_now:
        membership, membership_error = _activate_for_payment(db, payment, policy, current)

    return WebhookOutcome(
        payment=payment,
        completed_now=completed_now,
        membership=membership,
        membership_error=membership_error,
        booking_confirmed=booking_confirmed,
    )
