"""Payment endpoints: checkout, session verification, OTP gate and history."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import update
from sqlalchemy.orm import Session

from trackfit_api.auth.session_auth import (
    AuthContext,
    ensure_self_or_admin,
    require_admin,
    require_trainer,
    require_user,
)
from trackfit_api.billing.checkout import CheckoutRequest, create_pending_payment, initiate_checkout
from trackfit_api.billing.otp import issue_otp, verify_otp
from trackfit_api.billing.reconcile import verify_session
from trackfit_api.billing.stripe import StripeClient, get_stripe_client
from trackfit_api.db.models import PAYMENT_COMPLETED, PAYMENT_FAILED, PAYMENT_PENDING, Payment
from trackfit_api.db.session import get_db
from trackfit_api.errors import InvalidRequest, NotFound
from trackfit_api.mail.mailer import SMTPMailer, get_mailer
from trackfit_api.schemas import (
    CheckoutCreateRequest,
    CheckoutResponse,
    MembershipOut,
    PaymentListResponse,
    PaymentOut,
    PaymentStatusUpdateRequest,
    PaymentStatusUpdateResponse,
    SendOTPRequest,
    SendOTPResponse,
    VerifyOTPRequest,
    VerifyOTPResponse,
    VerifySessionResponse,
)
from trackfit_api.utils.clock import utcnow

router = APIRouter(prefix="/payments", tags=["payments"])
logger = logging.getLogger(__name__)

ADMIN_SETTABLE_STATUSES = {PAYMENT_COMPLETED, PAYMENT_FAILED}


def _to_checkout_request(body: CheckoutCreateRequest) -> CheckoutRequest:
    return CheckoutRequest(
        user_id=body.user_id,
        type=body.type,
        amount=body.amount,
        membership_id=body.membership_id,
        booking_id=body.booking_id,
        plan_type=body.plan_type,
        payment_id=body.payment_id,
        description=body.description,
        trainer_id=body.trainer_id,
    )


# ============================================================================
# Checkout
# ============================================================================


@router.post("", response_model=CheckoutResponse)
@router.post("/retry", response_model=CheckoutResponse)
async def create_checkout(
    body: CheckoutCreateRequest,
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
    stripe_client: StripeClient = Depends(get_stripe_client),
) -> CheckoutResponse:
    """Start (or retry) a checkout for a membership or spa booking.

    Returns the provider session id the client redirects to. Calling this
    again for a membership/booking whose session is still open returns that
    same session.
    """
    ensure_self_or_admin(auth, body.user_id)
    result = await initiate_checkout(db, stripe_client, _to_checkout_request(body))
    return CheckoutResponse(
        session_id=result.session_id,
        url=result.url,
        payment=PaymentOut.model_validate(result.payment),
    )


@router.post("/create-pending", response_model=PaymentOut, status_code=status.HTTP_201_CREATED)
async def create_pending(
    body: CheckoutCreateRequest,
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
) -> PaymentOut:
    """Record a Pending payment without contacting the provider."""
    ensure_self_or_admin(auth, body.user_id)
    payment = create_pending_payment(db, _to_checkout_request(body))
    return PaymentOut.model_validate(payment)


# ============================================================================
# Session verification (redirect path)
# ============================================================================


@router.get("/verify-session", response_model=VerifySessionResponse, response_model_exclude_none=True)
async def verify_checkout_session(
    session_id: Optional[str] = Query(None),
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
    stripe_client: StripeClient = Depends(get_stripe_client),
) -> VerifySessionResponse:
    """Reconcile a checkout session after the client returns from the provider."""
    if session_id:
        owner = db.query(Payment.user_id).filter(Payment.stripe_session_id == session_id).scalar()
        if owner is not None:
            ensure_self_or_admin(auth, owner)

    result = await verify_session(db, stripe_client, session_id)

    if result.already_processed:
        message = "Payment was already processed"
    elif result.membership_error:
        message = "Payment completed but membership activation failed"
    elif result.membership is not None:
        message = "Payment completed and membership activated"
    else:
        message = "Payment completed successfully"

    return VerifySessionResponse(
        message=message,
        already_processed=result.already_processed,
        payment=PaymentOut.model_validate(result.payment),
        membership=MembershipOut.model_validate(result.membership) if result.membership else None,
        membership_error=result.membership_error,
    )


# ============================================================================
# OTP gate
# ============================================================================


@router.post("/send-otp", response_model=SendOTPResponse)
async def send_otp(
    body: SendOTPRequest,
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
    mailer: SMTPMailer = Depends(get_mailer),
) -> SendOTPResponse:
    """Mail a payment verification code to the user."""
    ensure_self_or_admin(auth, body.user_id)
    otp_session = await issue_otp(db, mailer, body.user_id, body.email)
    return SendOTPResponse(message="OTP sent successfully", expires_at=otp_session.expires_at)


@router.post("/verify-otp", response_model=VerifyOTPResponse, response_model_exclude_none=True)
async def verify_payment_otp(
    body: VerifyOTPRequest,
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
) -> VerifyOTPResponse:
    """Consume the user's verification code."""
    ensure_self_or_admin(auth, body.user_id)
    membership = verify_otp(db, body.user_id, body.otp)
    return VerifyOTPResponse(
        message="OTP verified successfully",
        membership=MembershipOut.model_validate(membership) if membership else None,
    )


# ============================================================================
# Payment history
# ============================================================================


def _list_response(payments: list[Payment]) -> PaymentListResponse:
    return PaymentListResponse(
        message="Payment records retrieved successfully" if payments else "No payment records found",
        payments=[PaymentOut.model_validate(p) for p in payments],
    )


@router.get("/user/{user_id}", response_model=PaymentListResponse)
async def list_user_payments(
    user_id: str,
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
) -> PaymentListResponse:
    ensure_self_or_admin(auth, user_id)
    payments = (
        db.query(Payment)
        .filter(Payment.user_id == user_id)
        .order_by(Payment.created_at.desc())
        .all()
    )
    return _list_response(payments)


@router.get("/trainer/{trainer_id}", response_model=PaymentListResponse)
async def list_trainer_payments(
    trainer_id: str,
    auth: AuthContext = Depends(require_trainer),
    db: Session = Depends(get_db),
) -> PaymentListResponse:
    ensure_self_or_admin(auth, trainer_id)
    payments = (
        db.query(Payment)
        .filter(Payment.trainer_id == trainer_id)
        .order_by(Payment.created_at.desc())
        .all()
    )
    return _list_response(payments)


@router.get("/all", response_model=PaymentListResponse)
async def list_all_payments(
    auth: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> PaymentListResponse:
    payments = db.query(Payment).order_by(Payment.created_at.desc()).all()
    return _list_response(payments)


# ============================================================================
# Admin status management
# ============================================================================


@router.put("/{payment_id}", response_model=PaymentStatusUpdateResponse)
async def update_payment_status(
    payment_id: str,
    body: PaymentStatusUpdateRequest,
    auth: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> PaymentStatusUpdateResponse:
    """Resolve a Pending payment manually (Completed or Failed).

    Finished payments are immutable.
    """
    if body.status not in ADMIN_SETTABLE_STATUSES:
        raise InvalidRequest(f"Status must be one of {sorted(ADMIN_SETTABLE_STATUSES)}")

    payment = db.query(Payment).filter(Payment.id == payment_id).first()
    if payment is None:
        raise NotFound("Payment record not found")

    values: dict = {"status": body.status}
    if body.status == PAYMENT_COMPLETED:
        values["payment_date"] = utcnow()

    result = db.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == PAYMENT_PENDING)
        .values(**values)
    )
    db.commit()
    db.refresh(payment)

    if result.rowcount != 1:
        raise InvalidRequest(f"Payment is already {payment.status}")

    logger.info(
        "PAYMENT_STATUS_UPDATED",
        extra={"payment_id": payment_id, "status": body.status, "admin_id": auth.user_id},
    )
    return PaymentStatusUpdateResponse(
        message="Payment status updated successfully",
        payment=PaymentOut.model_validate(payment),
    )
