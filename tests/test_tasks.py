from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.db import session as db_session_module
from storefront.models.otp import Otp, OtpPurpose
from storefront.models.token_blacklist import TokenBlacklist
from storefront.tasks import email_tasks, security_tasks
from tests.helpers import add_to_cart, auth_headers, create_address, create_product, create_user, size_of


@pytest.fixture()
def sent_messages(monkeypatch) -> list:
    messages = []
    monkeypatch.setattr(email_tasks, "_send_email_smtp", messages.append)
    return messages


def test_purge_expired_otps(db_session: Session, session_factory, monkeypatch):
    now = datetime.utcnow()
    db_session.add_all(
        [
            Otp(email="old@gmail.com", code="111111", purpose=OtpPurpose.PASSWORD_RESET,
                expires_at=now - timedelta(minutes=5)),
            Otp(email="new@gmail.com", code="222222", purpose=OtpPurpose.PASSWORD_RESET,
                expires_at=now + timedelta(minutes=5)),
        ]
    )
    db_session.commit()
    monkeypatch.setattr(security_tasks, "SessionLocal", session_factory)

    result = security_tasks.purge_expired_otps()

    assert result == {"deleted": 1}
    db_session.expire_all()
    assert [otp.email for otp in db_session.query(Otp).all()] == ["new@gmail.com"]


def test_cleanup_expired_blacklisted_tokens(db_session: Session, session_factory, monkeypatch):
    now = datetime.utcnow()
    db_session.add_all(
        [
            TokenBlacklist(jti="stale", user_id=1, expires_at=now - timedelta(hours=1)),
            TokenBlacklist(jti="live", user_id=1, expires_at=now + timedelta(hours=1)),
        ]
    )
    db_session.commit()
    monkeypatch.setattr(security_tasks, "SessionLocal", session_factory)

    result = security_tasks.cleanup_expired_blacklisted_tokens()

    assert result == {"deleted": 1}
    db_session.expire_all()
    assert [row.jti for row in db_session.query(TokenBlacklist).all()] == ["live"]


def test_send_email_task_builds_message(sent_messages: list):
    email_tasks.send_email_task("buyer@gmail.com", "Password Reset OTP", "Your OTP is 123456", "<p>123456</p>")

    assert len(sent_messages) == 1
    message = sent_messages[0]
    assert message["To"] == "buyer@gmail.com"
    assert message["Subject"] == "Password Reset OTP"
    assert message.is_multipart()


def test_order_emails_render(
    client: TestClient,
    db_session: Session,
    session_factory,
    sent_messages: list,
    monkeypatch,
):
    user = create_user(db_session)
    add_to_cart(db_session, user, size_of(create_product(db_session, name="Linen Shirt")))
    address = create_address(db_session, user)
    order = client.post(
        "/api/checkout/place-order",
        headers=auth_headers(user),
        json={"address_id": address.id},
    ).json()["data"]
    monkeypatch.setattr(db_session_module, "SessionLocal", session_factory)

    email_tasks.send_order_confirmation(order["id"])
    email_tasks.send_item_status_update(order["items"][0]["id"])

    assert [m["Subject"] for m in sent_messages] == [
        f"Order Placed - {order['order_number']}",
        f"Linen Shirt is pending - {order['order_number']}",
    ]
    assert all(m["To"] == user.email for m in sent_messages)


def test_order_confirmation_for_missing_order(session_factory, sent_messages: list, monkeypatch):
    monkeypatch.setattr(db_session_module, "SessionLocal", session_factory)

    email_tasks.send_order_confirmation(12345)

    assert sent_messages == []


def test_health_endpoints(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"

    root = client.get("/")
    assert root.json()["docs"] == "/api/docs"


def test_responses_carry_correlation_id(client: TestClient):
    response = client.get("/health", headers={"X-Correlation-ID": "abc-123"})

    assert response.headers["X-Correlation-ID"] == "abc-123"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert "X-Process-Time" in response.headers


def test_csrf_enforced_in_production(client: TestClient, db_session: Session, monkeypatch):
    user = create_user(db_session)
    monkeypatch.setattr(settings, "ENVIRONMENT", "production")

    response = client.post(
        "/api/address",
        headers=auth_headers(user),
        json={"full_name": "x"},
    )
    assert response.status_code == 403
    assert response.json()["message"] == "CSRF validation failed"

    # Exempt paths work without the token
    response = client.post("/api/users/login", json={"email": user.email})
    assert response.status_code == 400


def test_database_health_reports_pool(client: TestClient):
    response = client.get("/health/database")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "pool_class" in response.json()["pool"]


def test_unknown_route_uses_error_envelope(client: TestClient):
    response = client.get("/api/nothing-here")

    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["data"] is None
    assert body["timestamp"].endswith("Z")


def test_login_is_rate_limited(client: TestClient):
    for _ in range(10):
        client.post("/api/users/login", json={"email": "nobody@gmail.com", "password": "wrong"})

    response = client.post("/api/users/login", json={"email": "nobody@gmail.com", "password": "wrong"})

    assert response.status_code == 429
    assert response.json()["message"] == "Too many requests. Please try again later."
