"""Tests for synchronous reconciliation (GET /payments/verify-session)."""

from unittest.mock import patch

import pytest

from tests.helpers import auth_headers
from trackfit_api.db.models import (
    MEMBERSHIP_ACTIVE,
    MEMBERSHIP_EXPIRED,
    MEMBERSHIP_PENDING,
    PAYMENT_COMPLETED,
    PAYMENT_PENDING,
    Membership,
    Payment,
    User,
)
from trackfit_api.utils.clock import ensure_utc


@pytest.fixture
def membership_checkout(client, fake_stripe, member, pending_membership) -> dict:
    """A Pending membership payment with an open provider session."""
    user_id = member.id
    response = client.post(
        "/payments",
        json={
            "type": "Membership",
            "userId": user_id,
            "membershipId": pending_membership.id,
            "planType": "Premium",
            "amount": 2999,
        },
        headers=auth_headers(user_id),
    )
    assert response.status_code == 200, response.text
    return response.json()


def _verify(client, user_id: str, session_id: str):
    return client.get(
        "/payments/verify-session",
        params={"session_id": session_id},
        headers=auth_headers(user_id),
    )


def test_paid_session_completes_payment_and_activates_membership(
    client, db_session, fake_stripe, member, pending_membership, membership_checkout
):
    user_id, membership_id = member.id, pending_membership.id
    fake_stripe.mark_paid("cs_test_1")

    response = _verify(client, user_id, "cs_test_1")

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["alreadyProcessed"] is False
    assert data["payment"]["status"] == PAYMENT_COMPLETED
    assert data["payment"]["transactionId"] == "pi_test_1"
    assert data["membership"]["status"] == MEMBERSHIP_ACTIVE
    assert "membershipError" not in data

    payment = db_session.query(Payment).filter(Payment.stripe_session_id == "cs_test_1").one()
    assert payment.payment_date is not None
    membership = db_session.get(Membership, membership_id)
    assert membership.status == MEMBERSHIP_ACTIVE
    # Quarterly plan, calendar arithmetic
    start = ensure_utc(membership.start_date)
    end = ensure_utc(membership.end_date)
    assert (end.year * 12 + end.month) - (start.year * 12 + start.month) == 3


def test_verifying_twice_is_idempotent(client, db_session, fake_stripe, member, membership_checkout):
    user_id = member.id
    fake_stripe.mark_paid("cs_test_1")

    first = _verify(client, user_id, "cs_test_1")
    lookups_after_first = len(fake_stripe.retrieved)
    second = _verify(client, user_id, "cs_test_1")

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["alreadyProcessed"] is True
    assert second.json()["payment"] == first.json()["payment"]
    # The second call never reaches the provider
    assert len(fake_stripe.retrieved) == lookups_after_first


def test_unpaid_session_is_rejected_with_provider_status(client, db_session, member, membership_checkout):
    user_id = member.id

    response = _verify(client, user_id, "cs_test_1")

    assert response.status_code == 400
    data = response.json()
    assert data["error_code"] == "PAYMENT_NOT_COMPLETED"
    assert data["payment_status"] == "unpaid"
    payment = db_session.query(Payment).filter(Payment.stripe_session_id == "cs_test_1").one()
    assert payment.status == PAYMENT_PENDING


def test_session_without_local_payment_is_not_found(client, fake_stripe, member):
    fake_stripe.sessions["cs_orphan"] = {"id": "cs_orphan", "payment_status": "paid", "status": "complete"}

    response = _verify(client, member.id, "cs_orphan")

    assert response.status_code == 404
    assert response.json()["error_code"] == "NOT_FOUND"


def test_unknown_session_surfaces_provider_error(client, member):
    response = _verify(client, member.id, "cs_does_not_exist")

    assert response.status_code == 500
    data = response.json()
    assert data["error_code"] == "PROVIDER_ERROR"
    assert "No such checkout.session" in data["detail"]


def test_missing_session_id_is_invalid(client, member):
    response = client.get("/payments/verify-session", headers=auth_headers(member.id))

    assert response.status_code == 400
    assert response.json()["error_code"] == "INVALID_REQUEST"


def test_activation_failure_leaves_payment_completed(
    client, db_session, fake_stripe, member, pending_membership, membership_checkout
):
    """Reconciliation gap: the payment stands even when activation fails."""
    user_id, membership_id = member.id, pending_membership.id
    fake_stripe.mark_paid("cs_test_1")

    with patch(
        "trackfit_api.billing.reconcile.activate_membership",
        side_effect=RuntimeError("database is locked"),
    ):
        response = _verify(client, user_id, "cs_test_1")

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["payment"]["status"] == PAYMENT_COMPLETED
    assert data["membershipError"] == "database is locked"
    assert data["message"] == "Payment completed but membership activation failed"

    assert db_session.get(Membership, membership_id).status == MEMBERSHIP_PENDING
    payment = db_session.query(Payment).filter(Payment.stripe_session_id == "cs_test_1").one()
    assert payment.status == PAYMENT_COMPLETED


def test_other_users_session_is_hidden(client, db_session, fake_stripe, membership_checkout):
    stranger = User(name="Other Member", email="other@example.com")
    db_session.add(stranger)
    db_session.commit()
    fake_stripe.mark_paid("cs_test_1")

    response = _verify(client, stranger.id, "cs_test_1")

    assert response.status_code == 404
    payment = db_session.query(Payment).filter(Payment.stripe_session_id == "cs_test_1").one()
    assert payment.status == PAYMENT_PENDING


def test_paid_renewal_reactivates_expired_membership(client, db_session, fake_stripe, member):
    user_id = member.id
    lapsed = Membership(user_id=user_id, plan_type="Basic", duration="Monthly", price=999.0, status=MEMBERSHIP_EXPIRED)
    db_session.add(lapsed)
    db_session.commit()
    membership_id = lapsed.id
    checkout = client.post(
        "/payments",
        json={"type": "Membership", "userId": user_id, "membershipId": membership_id, "amount": 999},
        headers=auth_headers(user_id),
    )
    assert checkout.status_code == 200, checkout.text
    fake_stripe.mark_paid("cs_test_1")

    response = _verify(client, user_id, "cs_test_1")

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["membership"]["status"] == MEMBERSHIP_ACTIVE
    assert "membershipError" not in data
    db_session.expire_all()
    assert db_session.get(Membership, membership_id).status == MEMBERSHIP_ACTIVE
