"""Redaction of payment secrets and customer data before anything is logged.

Stripe keys, webhook secrets, checkout client secrets, bearer tokens and
e-mail addresses are replaced with [REDACTED]. Dict values under sensitive
keys (OTP codes, signatures, recipients) are dropped regardless of content.
"""

import hashlib
import re
import traceback
from typing import Any

REDACTED = "[REDACTED]"

MAX_STR_LOG: int = 2048
MAX_TRACEBACK_LOG: int = 8192
MAX_DEPTH: int = 6

_SENSITIVE_KEYS: frozenset[str] = frozenset({
    "authorization", "token", "access_token", "api_key", "secret",
    "password", "signature", "stripe-signature", "email", "to",
    "otp", "code", "card", "client_secret",
})

_SECRET_RE = re.compile(
    r"Bearer \S+"
    r"|\bsk_(?:live|test)_\S+"
    r"|\bwhsec_\S+"
    r"|\bcs_(?:live|test)_\S+_secret_\S+"
    r"|[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"
)


def payload_hash_bytes(raw: bytes) -> str:
    return hashlib.sha256(raw).hexdigest()


def _redact(text: str) -> str:
    return _SECRET_RE.sub(REDACTED, text)


def sanitize_str(s: str) -> str:
    """Redact secrets in s; oversized strings become a length + digest marker."""
    if not isinstance(s, str):
        return s  # type: ignore[return-value]

    if len(s) > MAX_STR_LOG:
        digest = hashlib.sha256(s.encode("utf-8", errors="replace")).hexdigest()[:16]
        return f"[TRUNCATED len={len(s)} sha256={digest}]"
    return _redact(s)


def sanitize_obj(obj: Any, depth: int = 0) -> Any:
    """Walk a log extra, redacting sensitive keys and secret-looking strings."""
    if depth >= MAX_DEPTH:
        return "[DEPTH_LIMIT]"

    if isinstance(obj, dict):
        return {
            key: REDACTED
            if isinstance(key, str) and key.lower() in _SENSITIVE_KEYS
            else sanitize_obj(value, depth + 1)
            for key, value in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return [sanitize_obj(item, depth + 1) for item in obj]
    if isinstance(obj, str):
        return sanitize_str(obj)
    return obj


def sanitize_exc(exc_info: tuple) -> str:
    """Formatted traceback with secrets redacted.

    Long tracebacks keep their tail, where the raising frame and the
    exception message are.
    """
    _type, value, _tb = exc_info
    if value is None:
        return ""
    try:
        te = traceback.TracebackException.from_exception(value, capture_locals=False)
        text = "".join(te.format())
    except Exception:
        return "[TRACEBACK_FORMAT_ERROR]"
    if len(text) > MAX_TRACEBACK_LOG:
        text = "...\n" + text[-MAX_TRACEBACK_LOG:]
    return _redact(text)
