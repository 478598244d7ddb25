import re
import secrets
from typing import Optional

import structlog
from email_validator import EmailNotValidError, validate_email
from fastapi import HTTPException, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.exceptions import (
    APIError,
    EmailAlreadyExists,
    InvalidCredentials,
    UserNotFound,
    UsernameAlreadyExists,
)
from storefront.core.security import (
    PASSWORD_RULE_MESSAGE,
    hash_password,
    is_strong_password,
    verify_password,
)
from storefront.models.otp import OtpPurpose
from storefront.models.user import User
from storefront.models.wallet import Wallet
from storefront.schemas.user import (
    ChangePasswordRequest,
    UserProfileUpdate,
    UserRegister,
)
from storefront.services import otp_service
from storefront.services.wallet_service import WalletService

logger = structlog.get_logger()

USERNAME_RE = re.compile(r"^[A-Za-z0-9_]+$")
BLOCKED_MESSAGE = "You are temporarily blocked. Please contact admin."


def _bad_request(message: str) -> APIError:
    return APIError(status_code=status.HTTP_400_BAD_REQUEST, message=message)


def normalize_email(raw: str) -> str:
    try:
        return validate_email(raw.strip(), check_deliverability=False).normalized.lower()
    except EmailNotValidError:
        raise _bad_request("Invalid email address")


def validate_username(username: str) -> None:
    if not USERNAME_RE.match(username):
        raise _bad_request("Username should only contain letters, numbers and underscores.")
    if len(username) <= 3:
        raise _bad_request("Username must be more than 3 characters long.")


def _generate_referral_code(db: Session) -> str:
    for _ in range(10):
        code = secrets.token_hex(4).upper()
        if not db.query(User.id).filter(User.referral_code == code).first():
            return code
    raise RuntimeError("Failed to generate unique referral code")


def _raise_conflict(existing: User, email: Optional[str]) -> None:
    if email is not None and existing.email == email:
        raise EmailAlreadyExists()
    raise UsernameAlreadyExists()


class UserService:

    @staticmethod
    def register(db: Session, payload: UserRegister) -> User:
        """
        Create an account and its wallet.

        Checks run in a fixed order so the first failing rule decides the
        message: required fields, username format, password strength,
        uniqueness, confirmation match, referral code.
        """
        if not (payload.username and payload.email and payload.password and payload.confirm_password):
            raise _bad_request("All fields are required")

        username = payload.username.strip()
        validate_username(username)

        if not is_strong_password(payload.password):
            raise _bad_request(PASSWORD_RULE_MESSAGE)

        email = normalize_email(payload.email)

        existing = (
            db.query(User)
            .filter(or_(User.email == email, User.username == username))
            .first()
        )
        if existing:
            _raise_conflict(existing, email)

        if payload.password != payload.confirm_password:
            raise _bad_request("Passwords do not match")

        referrer = None
        if payload.referral_code:
            referrer = (
                db.query(User)
                .filter(User.referral_code == payload.referral_code.strip().upper())
                .first()
            )
            if referrer is None:
                raise _bad_request("Invalid referral code")

        user = User(
            username=username,
            email=email,
            password_hash=hash_password(payload.password),
            referral_code=_generate_referral_code(db),
            referred_by_id=referrer.id if referrer else None,
        )
        db.add(user)
        db.flush()
        db.add(Wallet(user_id=user.id, balance=0.0))
        db.flush()

        if referrer is not None:
            WalletService.credit(
                db,
                referrer.id,
                settings.REFERRAL_BONUS,
                f"Referral bonus for inviting {username}",
            )
            WalletService.credit(
                db,
                user.id,
                settings.REFERRAL_SIGNUP_BONUS,
                "Referral signup bonus",
            )

        db.commit()
        db.refresh(user)
        logger.info("user_registered", user_id=user.id, referred_by=user.referred_by_id)
        return user

    @staticmethod
    def authenticate(db: Session, email: Optional[str], password: Optional[str]) -> User:
        if not email or not password:
            raise _bad_request("All fields are required")

        user = db.query(User).filter(User.email == email.strip().lower()).first()
        if not user:
            raise InvalidCredentials()

        if user.is_blocked:
            logger.warning("blocked_user_login_attempt", user_id=user.id)
            raise _bad_request(BLOCKED_MESSAGE)

        if not verify_password(password, user.password_hash):
            raise InvalidCredentials()

        return user

    @staticmethod
    def get_profile(db: Session, user: User) -> dict:
        return {
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "firstname": user.firstname,
            "lastname": user.lastname,
            "image": user.image,
            "role": user.role.value,
            "referral_code": user.referral_code,
            "created_at": user.created_at,
            "referral_earnings": WalletService.referral_earnings(db, user.id),
        }

    @staticmethod
    def update_profile(db: Session, user: User, payload: UserProfileUpdate) -> User:
        """Email is not editable here; it changes through the OTP flow."""
        if payload.username:
            username = payload.username.strip()
            validate_username(username)
            conflict = (
                db.query(User)
                .filter(User.username == username, User.id != user.id)
                .first()
            )
            if conflict:
                raise UsernameAlreadyExists()
            user.username = username

        # Empty strings keep the current value
        user.firstname = payload.firstname or user.firstname
        user.lastname = payload.lastname or user.lastname
        user.image = payload.image or user.image

        db.commit()
        db.refresh(user)
        return user

    @staticmethod
    def change_password(db: Session, user: User, payload: ChangePasswordRequest) -> None:
        if not payload.old_password or not payload.new_password:
            raise _bad_request("All fields are required")

        if not is_strong_password(payload.new_password):
            raise _bad_request(PASSWORD_RULE_MESSAGE)

        if not verify_password(payload.old_password, user.password_hash):
            raise _bad_request("Current password is incorrect")

        user.password_hash = hash_password(payload.new_password)
        db.commit()
        logger.info("password_changed", user_id=user.id)

    # ---------------------------------------------------------------
    # Forgot password
    # ---------------------------------------------------------------
    @staticmethod
    def send_password_reset_otp(db: Session, email: Optional[str]) -> None:
        if not email:
            raise _bad_request("Email is required")

        email = email.strip().lower()
        user = db.query(User).filter(User.email == email).first()
        if not user:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="No user found with this email",
            )

        otp_service.issue_otp(db, email, OtpPurpose.PASSWORD_RESET)

    @staticmethod
    def resend_password_reset_otp(db: Session, email: Optional[str]) -> None:
        UserService.send_password_reset_otp(db, email)

    @staticmethod
    def verify_password_reset_otp(db: Session, email: Optional[str], code: Optional[str]) -> None:
        """The code stays valid for the reset step."""
        if not email or not code:
            raise _bad_request("Email and OTP are required")

        otp_service.check_otp(db, email.strip().lower(), code, OtpPurpose.PASSWORD_RESET)

    @staticmethod
    def reset_password(
        db: Session,
        email: Optional[str],
        code: Optional[str],
        new_password: Optional[str],
    ) -> None:
        if not email or not code or not new_password:
            raise _bad_request("All fields are required")

        if not is_strong_password(new_password):
            raise _bad_request(PASSWORD_RULE_MESSAGE)

        email = email.strip().lower()
        otp = otp_service.check_otp(db, email, code, OtpPurpose.PASSWORD_RESET)

        user = db.query(User).filter(User.email == email).first()
        if not user:
            raise UserNotFound()

        user.password_hash = hash_password(new_password)
        # Tokens issued before the reset stop working
        user.session_version += 1
        otp_service.consume_otp(db, otp)
        db.commit()
        logger.info("password_reset", user_id=user.id)

    # ---------------------------------------------------------------
    # Email update
    # ---------------------------------------------------------------
    @staticmethod
    def send_email_update_otp(db: Session, user: User, new_email: Optional[str]) -> None:
        if not new_email:
            raise _bad_request("Email is required")

        email = normalize_email(new_email)
        taken = db.query(User).filter(User.email == email, User.id != user.id).first()
        if taken:
            raise EmailAlreadyExists()

        otp_service.issue_otp(db, email, OtpPurpose.EMAIL_UPDATE, new_email=email)

    @staticmethod
    def resend_email_update_otp(db: Session, user: User, new_email: Optional[str]) -> None:
        UserService.send_email_update_otp(db, user, new_email)

    @staticmethod
    def verify_email_update_otp(
        db: Session,
        user: User,
        new_email: Optional[str],
        code: Optional[str],
    ) -> User:
        if not new_email or not code:
            raise _bad_request("Email and OTP are required")

        email = new_email.strip().lower()
        otp = otp_service.check_otp(
            db,
            email,
            code,
            OtpPurpose.EMAIL_UPDATE,
            missing_status=status.HTTP_400_BAD_REQUEST,
            missing_message="Please request a new OTP",
        )

        # Someone may have claimed the address since the code was sent
        taken = db.query(User).filter(User.email == email, User.id != user.id).first()
        if taken:
            raise EmailAlreadyExists()

        user.email = otp.new_email or email
        otp_service.consume_otp(db, otp)
        db.commit()
        db.refresh(user)
        logger.info("email_updated", user_id=user.id)
        return user

    # ---------------------------------------------------------------
    # Google sign-in
    # ---------------------------------------------------------------
    @staticmethod
    def link_google_account(
        db: Session,
        google_id: str,
        email: str,
        firstname: Optional[str] = None,
        lastname: Optional[str] = None,
        image: Optional[str] = None,
    ) -> User:
        """
        Resolve the local account for a Google profile after the OAuth
        handshake has completed elsewhere.

        An existing account with the same email gets the Google id attached
        if it has none. Otherwise a password-less account is created with a
        generated username and an empty wallet.
        """
        email = normalize_email(email)
        user = db.query(User).filter(User.email == email).first()

        if user:
            if not user.google_id:
                user.google_id = google_id
                db.commit()
                db.refresh(user)
            return user

        base = re.sub(r"[^a-z0-9_]", "", (firstname or email.split("@")[0]).lower()) or "user"
        username = f"{base}{secrets.token_hex(3)}"
        while db.query(User.id).filter(User.username == username).first():
            username = f"{base}{secrets.token_hex(3)}"

        user = User(
            username=username,
            email=email,
            password_hash=None,
            google_id=google_id,
            firstname=firstname,
            lastname=lastname,
            image=image,
            referral_code=_generate_referral_code(db),
        )
        db.add(user)
        db.flush()
        db.add(Wallet(user_id=user.id, balance=0.0))
        db.commit()
        db.refresh(user)
        logger.info("google_user_created", user_id=user.id)
        return user
