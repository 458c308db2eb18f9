"""Checkout, reconciliation, membership and OTP workflows."""
