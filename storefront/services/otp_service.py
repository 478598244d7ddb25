import secrets
from datetime import datetime, timedelta
from typing import Optional

import structlog
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.exceptions import InvalidOtp, OtpExpired
from storefront.models.otp import Otp, OtpPurpose
from storefront.utils import email as email_utils

logger = structlog.get_logger()

PURPOSE_LABELS = {
    OtpPurpose.PASSWORD_RESET: "Password Reset",
    OtpPurpose.EMAIL_UPDATE: "Email Update",
}


def _ttl_seconds(purpose: OtpPurpose) -> int:
    if purpose == OtpPurpose.PASSWORD_RESET:
        return settings.PASSWORD_RESET_OTP_TTL_SECONDS
    return settings.EMAIL_UPDATE_OTP_TTL_SECONDS


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def issue_otp(
    db: Session,
    email: str,
    purpose: OtpPurpose,
    new_email: Optional[str] = None,
) -> Otp:
    """Create or overwrite the code for (email, purpose) and queue the email."""
    ttl = _ttl_seconds(purpose)
    code = generate_code()
    expires_at = datetime.utcnow() + timedelta(seconds=ttl)

    otp = (
        db.query(Otp)
        .filter(Otp.email == email, Otp.purpose == purpose)
        .first()
    )
    if otp is None:
        otp = Otp(email=email, purpose=purpose)
        db.add(otp)

    otp.code = code
    otp.expires_at = expires_at
    if new_email is not None:
        otp.new_email = new_email

    db.commit()
    db.refresh(otp)

    email_utils.send_otp_email(email, code, PURPOSE_LABELS[purpose], ttl)
    logger.info("otp_issued", email=email, purpose=purpose.value, expires_at=expires_at.isoformat())
    return otp


def check_otp(
    db: Session,
    email: str,
    code: str,
    purpose: OtpPurpose,
    missing_status: int = status.HTTP_404_NOT_FOUND,
    missing_message: str = "No OTP found for this email",
) -> Otp:
    """
    Validate a submitted code without consuming it.

    Order of checks: missing, mismatch, expiry. An expired code is deleted
    before the error is raised so the user has to request a new one.
    """
    otp = (
        db.query(Otp)
        .filter(Otp.email == email, Otp.purpose == purpose)
        .first()
    )
    if otp is None:
        raise HTTPException(status_code=missing_status, detail=missing_message)

    if otp.code != code.strip():
        logger.warning("otp_mismatch", email=email, purpose=purpose.value)
        raise InvalidOtp()

    if otp.is_expired:
        db.delete(otp)
        db.commit()
        logger.info("otp_expired", email=email, purpose=purpose.value)
        raise OtpExpired()

    return otp


def consume_otp(db: Session, otp: Otp) -> None:
    """Delete a verified code. The caller commits."""
    db.delete(otp)
