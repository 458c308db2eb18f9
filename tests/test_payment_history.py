"""Tests for payment history listings and the admin status update."""

from datetime import datetime, timedelta, timezone

import pytest

from tests.helpers import auth_headers
from trackfit_api.db.models import (
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    ROLE_ADMIN,
    ROLE_TRAINER,
    Payment,
    User,
)


@pytest.fixture
def trainer(db_session) -> User:
    user = User(name="Coach Ravi", email="ravi@example.com", role=ROLE_TRAINER)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def payments(db_session, member, trainer) -> list[Payment]:
    base = datetime(2026, 9, 1, tzinfo=timezone.utc)
    rows = [
        Payment(user_id=member.id, amount=2999.0, type="Membership", created_at=base),
        Payment(
            user_id=member.id,
            amount=1200.0,
            type="SpaService",
            trainer_id=trainer.id,
            created_at=base + timedelta(days=1),
        ),
        Payment(user_id="someone-else", amount=499.0, type="SpaService", created_at=base + timedelta(days=2)),
    ]
    db_session.add_all(rows)
    db_session.commit()
    return rows


def test_user_history_newest_first(client, member, payments):
    response = client.get(f"/payments/user/{member.id}", headers=auth_headers(member.id))

    assert response.status_code == 200
    data = response.json()
    assert [p["amount"] for p in data["payments"]] == [1200.0, 2999.0]
    assert data["message"] == "Payment records retrieved successfully"


def test_user_history_empty(client, member):
    response = client.get(f"/payments/user/{member.id}", headers=auth_headers(member.id))

    assert response.json() == {"message": "No payment records found", "payments": []}


def test_user_cannot_read_other_history(client, member, payments):
    response = client.get("/payments/user/someone-else", headers=auth_headers(member.id))

    assert response.status_code == 404


def test_trainer_history(client, trainer, payments):
    response = client.get(f"/payments/trainer/{trainer.id}", headers=auth_headers(trainer.id, ROLE_TRAINER))

    assert response.status_code == 200
    assert [p["amount"] for p in response.json()["payments"]] == [1200.0]


def test_member_cannot_use_trainer_listing(client, member, trainer):
    response = client.get(f"/payments/trainer/{trainer.id}", headers=auth_headers(member.id))

    assert response.status_code == 403


def test_admin_lists_all(client, admin, payments):
    response = client.get("/payments/all", headers=auth_headers(admin.id, ROLE_ADMIN))

    assert response.status_code == 200
    assert len(response.json()["payments"]) == 3


def test_admin_completes_pending_payment(client, db_session, admin, payments):
    payment_id = payments[0].id

    response = client.put(
        f"/payments/{payment_id}",
        json={"status": PAYMENT_COMPLETED},
        headers=auth_headers(admin.id, ROLE_ADMIN),
    )

    assert response.status_code == 200, response.text
    assert response.json()["payment"]["status"] == PAYMENT_COMPLETED
    assert response.json()["payment"]["paymentDate"] is not None
    assert db_session.get(Payment, payment_id).status == PAYMENT_COMPLETED


def test_completed_payment_is_immutable(client, db_session, admin, payments):
    payment_id = payments[0].id
    headers = auth_headers(admin.id, ROLE_ADMIN)
    client.put(f"/payments/{payment_id}", json={"status": PAYMENT_COMPLETED}, headers=headers)

    response = client.put(f"/payments/{payment_id}", json={"status": PAYMENT_FAILED}, headers=headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "Payment is already Completed"
    assert db_session.get(Payment, payment_id).status == PAYMENT_COMPLETED


def test_admin_cannot_reset_to_pending(client, admin, payments):
    response = client.put(
        f"/payments/{payments[0].id}",
        json={"status": PAYMENT_PENDING},
        headers=auth_headers(admin.id, ROLE_ADMIN),
    )

    assert response.status_code == 400


def test_status_update_unknown_payment(client, admin):
    response = client.put(
        "/payments/missing",
        json={"status": PAYMENT_FAILED},
        headers=auth_headers(admin.id, ROLE_ADMIN),
    )

    assert response.status_code == 404
