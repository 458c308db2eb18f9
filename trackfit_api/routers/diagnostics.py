"""Diagnostics endpoints (local / dev only).

Mounted by create_app() only when TRACKFIT_ENABLE_DIAGNOSTICS is set and
the environment is not production. The OTP echo lets QA complete the
payment flow without a mailbox; it must never be reachable in production.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from trackfit_api.auth.session_auth import AuthContext, ensure_self_or_admin, require_user
from trackfit_api.billing.otp import issue_otp
from trackfit_api.db.session import get_db
from trackfit_api.mail.mailer import SMTPMailer, get_mailer
from trackfit_api.schemas import DiagnosticOTPResponse, SendOTPRequest

router = APIRouter(prefix="/payments/debug", tags=["diagnostics"])
logger = logging.getLogger(__name__)


@router.post("/send-otp", response_model=DiagnosticOTPResponse)
async def debug_send_otp(
    body: SendOTPRequest,
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
    mailer: SMTPMailer = Depends(get_mailer),
) -> DiagnosticOTPResponse:
    """Issue an OTP exactly like /payments/send-otp and echo the code."""
    ensure_self_or_admin(auth, body.user_id)
    otp_session = await issue_otp(db, mailer, body.user_id, body.email)
    logger.warning("DIAGNOSTIC_OTP_ECHOED")
    return DiagnosticOTPResponse(
        message="OTP sent successfully",
        expires_at=otp_session.expires_at,
        otp=otp_session.code,
    )
