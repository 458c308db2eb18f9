"""Payment flow error taxonomy.

Every error carries the HTTP status, a stable error_code and a title; the
exception handler in main.py renders them as RFC 9457 Problem Details.
"""

from typing import Optional


class PaymentFlowError(Exception):
    """Base class for errors raised by the payment workflows."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"
    title: str = "Internal Server Error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    @property
    def error_type(self) -> str:
        return f"https://api.trackfit.app/problems/{self.error_code.lower().replace('_', '-')}"

    def extensions(self) -> dict:
        """Extra Problem Details members for this error."""
        return {}


class InvalidRequest(PaymentFlowError):
    status_code = 400
    error_code = "INVALID_REQUEST"
    title = "Invalid Request"


class NotFound(PaymentFlowError):
    status_code = 404
    error_code = "NOT_FOUND"
    title = "Not Found"


class InvalidSignature(PaymentFlowError):
    status_code = 400
    error_code = "INVALID_SIGNATURE"
    title = "Webhook Signature Verification Failed"


class PaymentNotCompleted(PaymentFlowError):
    """Provider reports the checkout session as not paid."""

    status_code = 400
    error_code = "PAYMENT_NOT_COMPLETED"
    title = "Payment Not Completed"

    def __init__(self, detail: str, payment_status: Optional[str]):
        super().__init__(detail)
        self.payment_status = payment_status

    def extensions(self) -> dict:
        return {"payment_status": self.payment_status}


class PaymentServiceUnavailable(PaymentFlowError):
    status_code = 500
    error_code = "PAYMENT_SERVICE_UNAVAILABLE"
    title = "Payment Service Unavailable"


class ProviderError(PaymentFlowError):
    """An external collaborator (payment provider, mail sender) failed."""

    status_code = 500
    error_code = "PROVIDER_ERROR"
    title = "Provider Error"


class Expired(PaymentFlowError):
    status_code = 400
    error_code = "OTP_EXPIRED"
    title = "Verification Code Expired"


class InvalidCode(PaymentFlowError):
    status_code = 400
    error_code = "OTP_INVALID_CODE"
    title = "Invalid Verification Code"
