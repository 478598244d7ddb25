from datetime import datetime, timedelta

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from storefront.core.security import decode_token
from storefront.models.otp import Otp, OtpPurpose
from storefront.models.user import User
from tests.helpers import PASSWORD, auth_headers, create_user


def _otp(db: Session, email: str, purpose: OtpPurpose) -> Otp:
    db.expire_all()
    return db.query(Otp).filter(Otp.email == email, Otp.purpose == purpose).one()


def test_forgot_password_unknown_email(client: TestClient):
    response = client.post("/api/users/forgot-password/send-otp", json={"email": "ghost@gmail.com"})

    assert response.status_code == 404
    assert response.json()["message"] == "No user found with this email"


def test_forgot_password_full_flow(client: TestClient, db_session: Session, queued_tasks: list):
    user = create_user(db_session, username="forgetful")
    old_headers = auth_headers(user)

    response = client.post("/api/users/forgot-password/send-otp", json={"email": user.email})
    assert response.status_code == 200
    assert queued_tasks[-1][0] == "send_email_task"

    otp = _otp(db_session, user.email, OtpPurpose.PASSWORD_RESET)
    assert len(otp.code) == 6
    assert queued_tasks[-1][1][0] == user.email

    response = client.post(
        "/api/users/forgot-password/verify-otp",
        json={"email": user.email, "otp": otp.code},
    )
    assert response.status_code == 200

    response = client.post(
        "/api/users/forgot-password/reset",
        json={"email": user.email, "otp": otp.code, "newPassword": "Fresh@Pass9"},
    )
    assert response.status_code == 200
    assert db_session.query(Otp).count() == 0

    login = client.post("/api/users/login", json={"email": user.email, "password": "Fresh@Pass9"})
    assert login.status_code == 200

    # Tokens from before the reset no longer work
    stale = client.get("/api/users/profile", headers=old_headers)
    assert stale.status_code == 401


def test_forgot_password_wrong_code(client: TestClient, db_session: Session):
    user = create_user(db_session, username="forgetful")
    client.post("/api/users/forgot-password/send-otp", json={"email": user.email})
    otp = _otp(db_session, user.email, OtpPurpose.PASSWORD_RESET)
    wrong = "000000" if otp.code != "000000" else "111111"

    response = client.post(
        "/api/users/forgot-password/verify-otp",
        json={"email": user.email, "otp": wrong},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid OTP"


def test_forgot_password_expired_code_is_deleted(client: TestClient, db_session: Session):
    user = create_user(db_session, username="forgetful")
    client.post("/api/users/forgot-password/send-otp", json={"email": user.email})
    otp = _otp(db_session, user.email, OtpPurpose.PASSWORD_RESET)
    otp.expires_at = datetime.utcnow() - timedelta(seconds=1)
    db_session.commit()

    response = client.post(
        "/api/users/forgot-password/verify-otp",
        json={"email": user.email, "otp": otp.code},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "OTP has expired. Please request a new one."
    assert db_session.query(Otp).count() == 0


def test_forgot_password_verify_without_otp(client: TestClient, db_session: Session):
    user = create_user(db_session, username="forgetful")

    response = client.post(
        "/api/users/forgot-password/verify-otp",
        json={"email": user.email, "otp": "123456"},
    )

    assert response.status_code == 404


def test_resend_overwrites_previous_code(client: TestClient, db_session: Session):
    user = create_user(db_session, username="forgetful")
    client.post("/api/users/forgot-password/send-otp", json={"email": user.email})
    first = _otp(db_session, user.email, OtpPurpose.PASSWORD_RESET)
    first_expiry = first.expires_at

    response = client.post("/api/users/forgot-password/resend-otp", json={"email": user.email})

    assert response.status_code == 200
    assert db_session.query(Otp).count() == 1
    assert _otp(db_session, user.email, OtpPurpose.PASSWORD_RESET).expires_at >= first_expiry


def test_reset_rejects_weak_password(client: TestClient, db_session: Session):
    user = create_user(db_session, username="forgetful")
    client.post("/api/users/forgot-password/send-otp", json={"email": user.email})
    otp = _otp(db_session, user.email, OtpPurpose.PASSWORD_RESET)

    response = client.post(
        "/api/users/forgot-password/reset",
        json={"email": user.email, "otp": otp.code, "newPassword": "short"},
    )

    assert response.status_code == 400
    assert db_session.query(Otp).count() == 1


def test_update_email_flow(client: TestClient, db_session: Session):
    user = create_user(db_session, username="mover")
    headers = auth_headers(user)

    response = client.post(
        "/api/users/update-email/send-otp",
        headers=headers,
        json={"email": "Mover.New@gmail.com"},
    )
    assert response.status_code == 200
    otp = _otp(db_session, "mover.new@gmail.com", OtpPurpose.EMAIL_UPDATE)

    response = client.post(
        "/api/users/update-email/verify-otp",
        headers=headers,
        json={"email": "mover.new@gmail.com", "otp": otp.code},
    )
    assert response.status_code == 200
    token = response.json()["data"]["token"]
    assert decode_token(token)["email"] == "mover.new@gmail.com"

    db_session.expire_all()
    assert db_session.get(User, user.id).email == "mover.new@gmail.com"



def test_update_email_expired_code_is_deleted(client: TestClient, db_session: Session):
    user = create_user(db_session, username="mover")
    headers = auth_headers(user)
    client.post("/api/users/update-email/send-otp", headers=headers, json={"email": "mover.new@gmail.com"})
    otp = _otp(db_session, "mover.new@gmail.com", OtpPurpose.EMAIL_UPDATE)
    otp.expires_at = datetime.utcnow() - timedelta(seconds=1)
    db_session.commit()

    response = client.post(
        "/api/users/update-email/verify-otp",
        headers=headers,
        json={"email": "mover.new@gmail.com", "otp": otp.code},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "OTP has expired. Please request a new one."
    db_session.expire_all()
    assert db_session.query(Otp).count() == 0
    assert db_session.get(User, user.id).email == "mover@gmail.com"


def test_update_email_taken(client: TestClient, db_session: Session):
    user = create_user(db_session, username="mover")
    create_user(db_session, username="squatter", email="wanted@gmail.com")

    response = client.post(
        "/api/users/update-email/send-otp",
        headers=auth_headers(user),
        json={"email": "wanted@gmail.com"},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Email already exists"


def test_update_email_verify_without_request(client: TestClient, db_session: Session):
    user = create_user(db_session, username="mover")

    response = client.post(
        "/api/users/update-email/verify-otp",
        headers=auth_headers(user),
        json={"email": "mover.new@gmail.com", "otp": "123456"},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Please request a new OTP"


def test_login_still_works_after_failed_reset(client: TestClient, db_session: Session):
    user = create_user(db_session, username="forgetful")

    response = client.post(
        "/api/users/forgot-password/reset",
        json={"email": user.email, "otp": "123456", "newPassword": "Fresh@Pass9"},
    )
    assert response.status_code == 404

    login = client.post("/api/users/login", json={"email": user.email, "password": PASSWORD})
    assert login.status_code == 200
