"""Pydantic schemas for API requests/responses.

Field names are snake_case in Python and camelCase on the wire, matching
what the TrackFit client sends and expects.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model with camelCase aliases; accepts either spelling on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ============================================================================
# Payments
# ============================================================================


class PaymentOut(CamelModel):
    """Payment record as returned to clients."""

    id: str
    user_id: str
    amount: float
    type: str
    status: str
    stripe_session_id: Optional[str] = None
    transaction_id: Optional[str] = None
    membership_id: Optional[str] = None
    booking_id: Optional[str] = None
    trainer_id: Optional[str] = None
    plan_type: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime
    payment_date: Optional[datetime] = None


class MembershipOut(CamelModel):
    id: str
    user_id: str
    plan_type: str
    duration: str
    price: Optional[float] = None
    status: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class CheckoutCreateRequest(CamelModel):
    """Body for POST /payments, /payments/retry and /payments/create-pending.

    type and userId are optional here so that their absence is reported as
    INVALID_REQUEST (400) rather than a schema error. amount is accepted in
    any shape; non-numeric values are judged by the checkout rules.
    """

    amount: Any = None
    type: Optional[str] = None
    user_id: Optional[str] = None
    membership_id: Optional[str] = None
    booking_id: Optional[str] = None
    plan_type: Optional[str] = None
    payment_id: Optional[str] = None
    description: Optional[str] = None
    trainer_id: Optional[str] = None


class CheckoutResponse(CamelModel):
    session_id: str
    url: Optional[str] = None
    payment: PaymentOut


class VerifySessionResponse(CamelModel):
    message: str
    already_processed: bool = False
    payment: PaymentOut
    membership: Optional[MembershipOut] = None
    membership_error: Optional[str] = None


class PaymentListResponse(CamelModel):
    message: str
    payments: list[PaymentOut]


class PaymentStatusUpdateRequest(CamelModel):
    status: str = Field(..., description="Target status: Completed or Failed")


class PaymentStatusUpdateResponse(CamelModel):
    message: str
    payment: PaymentOut


# ============================================================================
# OTP
# ============================================================================


class SendOTPRequest(CamelModel):
    user_id: Optional[str] = None
    email: Optional[str] = None


class SendOTPResponse(CamelModel):
    message: str
    expires_at: datetime


class DiagnosticOTPResponse(SendOTPResponse):
    """Non-production only: includes the generated code."""

    otp: str


class VerifyOTPRequest(CamelModel):
    user_id: Optional[str] = None
    otp: Optional[str] = None


class VerifyOTPResponse(CamelModel):
    message: str
    verified: bool = True
    membership: Optional[MembershipOut] = None


# ============================================================================
# Webhook
# ============================================================================


class WebhookAck(BaseModel):
    received: bool = True
    status: str


# ============================================================================
# RFC 9457 Problem Details
# ============================================================================


class ProblemDetail(BaseModel):
    """RFC 9457 Problem Details for HTTP API errors.

    error_code is a stable machine-readable code; payment_status carries the
    provider's raw status for PAYMENT_NOT_COMPLETED.
    """

    type: str = Field(..., description="URI reference identifying the problem type")
    title: str = Field(..., description="Short, human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: str | dict[str, Any] = Field(..., description="Human-readable explanation")
    instance: Optional[str] = Field(None, description="URI reference identifying the specific occurrence")
    error_code: Optional[str] = Field(None, description="Stable machine-readable error code")
    payment_status: Optional[str] = Field(None, description="Provider payment status (unpaid sessions)")
