"""Payment OTP gate.

A 6-digit code is mailed to the user before checkout. Each user has at most
one live code; issuing a new one replaces the old. Codes expire after
OTP_TTL and are deleted on first successful use or on an expired attempt.
"""

import hmac
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from trackfit_api.db.models import MEMBERSHIP_PENDING, Membership, OTPSession, User
from trackfit_api.errors import Expired, InvalidCode, InvalidRequest, NotFound, ProviderError
from trackfit_api.mail.mailer import SMTPMailer
from trackfit_api.utils.clock import ensure_utc, utcnow

logger = logging.getLogger(__name__)

OTP_TTL = timedelta(minutes=5)
OTP_SUBJECT = "TrackFit - Payment Verification OTP"

_OTP_HTML = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #333;">Payment Verification</h2>
  <p>Your one-time password (OTP) for payment verification is:</p>
  <h1 style="color: #007bff; font-size: 32px;">{code}</h1>
  <p>This OTP will expire in 5 minutes.</p>
  <p style="color: #666; font-size: 12px;">If you didn't request this OTP, please ignore this email.</p>
</div>
"""


def generate_code() -> str:
    """Uniformly random 6-digit code (100000-999999)."""
    return str(secrets.randbelow(900000) + 100000)


async def issue_otp(
    db: Session,
    mailer: SMTPMailer,
    user_id: Optional[str],
    email: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> OTPSession:
    """Create a fresh OTP session for user_id and mail the code.

    Args:
        db: Database session
        mailer: Mail sender
        user_id: User requesting the code
        email: Destination address (defaults to the user's stored email)
        now: Issue time (defaults to current UTC time)

    Returns:
        The stored OTPSession (code included; callers must not echo it)

    Raises:
        InvalidRequest: user_id missing, or no email available
        NotFound: user does not exist
        ProviderError: mail delivery failed
    """
    if not user_id:
        raise InvalidRequest("userId is required")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFound(f"User {user_id} not found")

    destination = email or user.email
    if not destination:
        raise InvalidRequest("No email address available for this user")

    issued_at = now or utcnow()
    otp_session = OTPSession(
        user_id=user_id,
        email=destination,
        code=generate_code(),
        expires_at=issued_at + OTP_TTL,
        created_at=issued_at,
    )

    db.query(OTPSession).filter(OTPSession.user_id == user_id).delete(synchronize_session=False)
    db.add(otp_session)
    db.commit()
    db.refresh(otp_session)

    try:
        await mailer.send_async(
            destination,
            OTP_SUBJECT,
            _OTP_HTML.format(code=otp_session.code),
            f"Your TrackFit payment verification code is {otp_session.code}. It expires in 5 minutes.",
        )
    except Exception as exc:
        # An undeliverable code must not stay redeemable
        db.delete(otp_session)
        db.commit()
        logger.error(
            "OTP_MAIL_FAILED",
            extra={"error_type": type(exc).__name__},
        )
        raise ProviderError("Failed to send verification code") from exc

    logger.info("OTP_ISSUED", extra={"expires_at": otp_session.expires_at.isoformat()})
    return otp_session


def verify_otp(
    db: Session,
    user_id: Optional[str],
    otp: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> Optional[Membership]:
    """Consume the user's OTP.

    Check order: session exists, not expired, code matches. An expired
    session is deleted; a mismatch leaves it in place for another attempt.

    Returns:
        The user's most recent Pending membership, if any

    Raises:
        InvalidRequest: user_id or otp missing
        NotFound: no live session for the user
        Expired: session past its expiry (deleted)
        InvalidCode: code mismatch
    """
    if not user_id or not otp:
        raise InvalidRequest("userId and otp are required")

    otp_session = db.query(OTPSession).filter(OTPSession.user_id == user_id).first()
    if otp_session is None:
        raise NotFound("No verification code found. Please request a new one.")

    current = now or utcnow()
    if current > ensure_utc(otp_session.expires_at):
        db.delete(otp_session)
        db.commit()
        logger.info("OTP_EXPIRED")
        raise Expired("Verification code has expired. Please request a new one.")

    if not hmac.compare_digest(otp_session.code.encode("utf-8"), str(otp).strip().encode("utf-8")):
        logger.info("OTP_MISMATCH")
        raise InvalidCode("Invalid verification code")

    db.delete(otp_session)
    db.commit()
    logger.info("OTP_VERIFIED")

    return (
        db.query(Membership)
        .filter(Membership.user_id == user_id, Membership.status == MEMBERSHIP_PENDING)
        .order_by(Membership.created_at.desc())
        .first()
    )
