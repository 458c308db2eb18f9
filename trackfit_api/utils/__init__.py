"""Utility functions and helpers."""

from trackfit_api.utils.clock import ensure_utc, utcnow
from trackfit_api.utils.logging import JSONFormatter, configure_json_logging

__all__ = [
    "JSONFormatter",
    "configure_json_logging",
    "ensure_utc",
    "utcnow",
]
