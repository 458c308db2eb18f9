"""Request context management for observability."""

from contextvars import ContextVar

# Request ID - unique per HTTP request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Authenticated user for the current request
user_id_var: ContextVar[str] = ContextVar("user_id", default="")

# Payment being processed (checkout, verify, webhook)
payment_id_var: ContextVar[str] = ContextVar("payment_id", default="")
