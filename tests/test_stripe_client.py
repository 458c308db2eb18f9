"""Tests for the Stripe client: form encoding, signatures and transient retries."""

import asyncio
import json
import smtplib
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from tenacity import wait_none

from trackfit_api.billing.stripe import (
    StripeClient,
    _flatten_form,
    _is_transient,
    construct_event,
    provider_error_message,
    sign_payload,
)
from trackfit_api.errors import InvalidSignature
from trackfit_api.mail.mailer import SMTPMailer

SECRET = "whsec_unit"
NOW = 1_790_000_000


# ============================================================================
# Form encoding
# ============================================================================


def test_flatten_form_nested_structures():
    pairs = _flatten_form(
        {
            "mode": "payment",
            "line_items": [{"price_data": {"unit_amount": 49900}, "quantity": 1}],
            "metadata": {"userId": "u1", "bookingId": None},
            "payment_method_types": ["card"],
            "livemode": False,
        }
    )

    assert ("mode", "payment") in pairs
    assert ("line_items[0][price_data][unit_amount]", "49900") in pairs
    assert ("line_items[0][quantity]", "1") in pairs
    assert ("metadata[userId]", "u1") in pairs
    assert ("payment_method_types[0]", "card") in pairs
    assert ("livemode", "false") in pairs
    assert not any(name == "metadata[bookingId]" for name, _ in pairs)


# ============================================================================
# Webhook signatures
# ============================================================================


def test_construct_event_accepts_valid_signature():
    payload = json.dumps({"id": "evt_1", "type": "checkout.session.completed"}).encode()
    header = sign_payload(payload, SECRET, timestamp=NOW)

    event = construct_event(payload, header, SECRET, now=NOW + 10)

    assert event["id"] == "evt_1"


def test_construct_event_accepts_any_matching_v1():
    payload = b'{"id": "evt_rotated"}'
    valid = sign_payload(payload, SECRET, timestamp=NOW)
    header = f"t={NOW},v1={'0' * 64},{valid.split(',')[1]}"

    assert construct_event(payload, header, SECRET, now=NOW)["id"] == "evt_rotated"


@pytest.mark.parametrize(
    "header",
    [
        None,
        "",
        "v1=abc",
        f"t={NOW}",
        "t=yesterday,v1=abc",
    ],
)
def test_construct_event_rejects_malformed_headers(header):
    with pytest.raises(InvalidSignature):
        construct_event(b"{}", header, SECRET, now=NOW)


def test_construct_event_rejects_wrong_secret():
    payload = b'{"id": "evt_1"}'
    header = sign_payload(payload, "whsec_other", timestamp=NOW)

    with pytest.raises(InvalidSignature):
        construct_event(payload, header, SECRET, now=NOW)


def test_construct_event_rejects_tampered_body():
    header = sign_payload(b'{"amount": 100}', SECRET, timestamp=NOW)

    with pytest.raises(InvalidSignature):
        construct_event(b'{"amount": 1}', header, SECRET, now=NOW)


def test_construct_event_rejects_stale_timestamp():
    payload = b'{"id": "evt_1"}'
    header = sign_payload(payload, SECRET, timestamp=NOW)

    with pytest.raises(InvalidSignature):
        construct_event(payload, header, SECRET, now=NOW + 301)


# ============================================================================
# Provider errors and retries
# ============================================================================


def _response(status_code: int, body: dict) -> httpx.Response:
    return httpx.Response(
        status_code,
        json=body,
        request=httpx.Request("POST", "https://api.stripe.com/v1/checkout/sessions"),
    )


def _status_error(status_code: int, body: dict) -> httpx.HTTPStatusError:
    response = _response(status_code, body)
    return httpx.HTTPStatusError("error", request=response.request, response=response)


@pytest.mark.parametrize(
    "exc, expected",
    [
        (httpx.ConnectError("refused"), True),
        (httpx.ReadTimeout("slow"), True),
        (_status_error(500, {}), True),
        (_status_error(429, {}), True),
        (_status_error(400, {}), False),
        (_status_error(404, {}), False),
        (ValueError("bad"), False),
    ],
)
def test_transient_classification(exc, expected):
    assert _is_transient(exc) is expected


def test_provider_error_message_prefers_stripe_message():
    exc = _status_error(400, {"error": {"message": "Invalid currency: xyz"}})
    assert provider_error_message(exc) == "Invalid currency: xyz"
    assert provider_error_message(_status_error(502, {})) == "Stripe API returned HTTP 502"


@pytest.fixture
def no_backoff():
    with patch.object(StripeClient._request.retry, "wait", wait_none()):
        yield


def test_transient_failure_is_retried(no_backoff):
    stripe_client = StripeClient(secret_key="sk_test_unit", base_url="https://api.stripe.com")
    ok = _response(200, {"id": "cs_test_retry", "url": "https://checkout.stripe.test/x"})
    request_mock = AsyncMock(side_effect=[httpx.ConnectError("reset"), ok])

    with patch.object(httpx.AsyncClient, "request", request_mock):
        session = asyncio.run(stripe_client.retrieve_session("cs_test_retry"))

    assert session["id"] == "cs_test_retry"
    assert request_mock.await_count == 2


def test_retries_give_up_after_three_attempts(no_backoff):
    stripe_client = StripeClient(secret_key="sk_test_unit", base_url="https://api.stripe.com")
    request_mock = AsyncMock(side_effect=httpx.ConnectError("down"))

    with patch.object(httpx.AsyncClient, "request", request_mock):
        with pytest.raises(httpx.ConnectError):
            asyncio.run(stripe_client.retrieve_session("cs_test_down"))

    assert request_mock.await_count == 3


def test_client_errors_are_not_retried(no_backoff):
    stripe_client = StripeClient(secret_key="sk_test_unit", base_url="https://api.stripe.com")
    request_mock = AsyncMock(return_value=_response(400, {"error": {"message": "Missing required param"}}))

    with patch.object(httpx.AsyncClient, "request", request_mock):
        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(
                stripe_client.create_checkout_session(
                    amount_minor=100,
                    currency="inr",
                    product_name="x",
                    product_description="y",
                    success_url="http://localhost/ok",
                    cancel_url="http://localhost/cancel",
                    metadata={},
                )
            )

    assert request_mock.await_count == 1


def test_create_checkout_session_sends_form_and_auth():
    stripe_client = StripeClient(secret_key="sk_test_unit", base_url="https://api.stripe.com")
    request_mock = AsyncMock(return_value=_response(200, {"id": "cs_test_new", "url": "u"}))

    with patch.object(httpx.AsyncClient, "request", request_mock):
        asyncio.run(
            stripe_client.create_checkout_session(
                amount_minor=49900,
                currency="inr",
                product_name="SPA Service",
                product_description="SPA service booking at TrackFit",
                success_url="http://localhost/ok",
                cancel_url="http://localhost/cancel",
                metadata={"userId": "u1"},
            )
        )

    args, kwargs = request_mock.call_args
    assert args == ("POST", "https://api.stripe.com/v1/checkout/sessions")
    assert kwargs["headers"]["Authorization"] == "Bearer sk_test_unit"
    assert ("line_items[0][price_data][unit_amount]", "49900") in kwargs["data"]
    assert ("metadata[userId]", "u1") in kwargs["data"]


# ============================================================================
# Mail retries
# ============================================================================


def test_mailer_retries_then_succeeds():
    mailer = SMTPMailer(settings={"host": "smtp.test", "port": 587, "user": None, "password": None, "sender": "no-reply@trackfit.app"})
    server = MagicMock()
    smtp_factory = MagicMock()
    smtp_factory.return_value.__enter__.side_effect = [smtplib.SMTPServerDisconnected("bye"), server]

    with patch.object(SMTPMailer.send.retry, "wait", wait_none()), patch(
        "trackfit_api.mail.mailer.smtplib.SMTP", smtp_factory
    ):
        mailer.send("member@example.com", "Subject", "<p>hi</p>")

    assert smtp_factory.call_count == 2
    server.send_message.assert_called_once()


def test_mailer_gives_up_after_three_attempts():
    mailer = SMTPMailer(settings={"host": "smtp.test", "port": 587, "sender": "no-reply@trackfit.app"})
    smtp_factory = MagicMock(side_effect=OSError("connection refused"))

    with patch.object(SMTPMailer.send.retry, "wait", wait_none()), patch(
        "trackfit_api.mail.mailer.smtplib.SMTP", smtp_factory
    ):
        with pytest.raises(OSError):
            mailer.send("member@example.com", "Subject", "<p>hi</p>")

    assert smtp_factory.call_count == 3
