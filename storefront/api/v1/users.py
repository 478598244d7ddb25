from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user, is_token_revoked, session_version_matches
from storefront.core.config import settings
from storefront.core.rate_limiter import limiter
from storefront.core.security import create_access_token, create_user_tokens, decode_token
from storefront.db.session import get_db
from storefront.middleware.csrf import CSRF_COOKIE_NAME, generate_csrf_token, set_csrf_cookie
from storefront.models.token_blacklist import TokenBlacklist
from storefront.models.user import User
from storefront.schemas.user import (
    ChangePasswordRequest,
    EmailRequest,
    OtpVerifyRequest,
    PasswordResetRequest,
    RefreshTokenRequest,
    UserLogin,
    UserProfileUpdate,
    UserRegister,
)
from storefront.services.user_service import UserService
from storefront.utils.response import success

router = APIRouter()


def _blacklist_token(db: Session, token: str, reason: str) -> None:
    payload = decode_token(token)
    jti = payload.get("jti")
    user_id = payload.get("sub")
    exp = payload.get("exp")
    if not jti or not user_id or not exp:
        return

    existing = db.query(TokenBlacklist).filter(TokenBlacklist.jti == jti).first()
    if existing:
        return

    db.add(
        TokenBlacklist(
            jti=jti,
            user_id=int(user_id),
            expires_at=datetime.utcfromtimestamp(exp),
            reason=reason,
        )
    )


def _should_use_secure_cookies(request: Request) -> bool:
    if settings.ENVIRONMENT != "production":
        return False
    return request.url.scheme == "https"


def _set_auth_cookies(
    response: JSONResponse,
    access_token: str,
    refresh_token: str,
    request: Request,
) -> None:
    secure = _should_use_secure_cookies(request)
    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        secure=secure,
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        path="/",
    )
    response.set_cookie(
        key="refresh_token",
        value=refresh_token,
        httponly=True,
        secure=secure,
        samesite="lax",
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 86400,
        path="/",
    )


def _user_payload(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "role": user.role.value,
        "referral_code": user.referral_code,
    }


def _token_response(user: User, message: str, request: Request, status_code: int = 200) -> JSONResponse:
    access_token, refresh_token = create_user_tokens(user)
    response = JSONResponse(
        status_code=status_code,
        content=success(
            data={
                "user": _user_payload(user),
                "token": access_token,
                "refresh_token": refresh_token,
            },
            message=message,
        ),
    )
    _set_auth_cookies(response, access_token, refresh_token, request)
    return response


@router.get("/csrf-token")
def get_csrf_token():
    token = generate_csrf_token()
    response = JSONResponse(content=success(message="CSRF token set"))
    set_csrf_cookie(response, token)
    return response


@router.post(
    "/register",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Register user account",
    description="""
Creates an account, its wallet and (with a valid referral code) the referral
credits, then signs the user in.

Validation (400, first failing rule wins):
1. All of username, email, password, confirmPassword present
2. Username of letters, digits and underscores, longer than 3
3. Password of 8+ characters with a special character
4. Email and username unused
5. Passwords match
""",
    tags=["Users"],
)
@limiter.limit("10/minute")
def register(request: Request, user_in: UserRegister, db: Session = Depends(get_db)):
    user = UserService.register(db, user_in)
    return _token_response(user, "Registration successful!", request, status.HTTP_201_CREATED)


@router.post("/login", response_model=dict, tags=["Users"])
@limiter.limit("10/minute")
def login(request: Request, credentials: UserLogin, db: Session = Depends(get_db)):
    user = UserService.authenticate(db, credentials.email, credentials.password)

    # Rotate session version in production to invalidate older tokens.
    if settings.ENVIRONMENT == "production":
        user.session_version += 1
        db.commit()
        db.refresh(user)

    return _token_response(user, "Login successful", request)


@router.post("/refresh")
@limiter.limit("20/minute")
def refresh_token(
    request: Request,
    body: RefreshTokenRequest | None = None,
    db: Session = Depends(get_db),
):
    refresh_token_value = request.cookies.get("refresh_token") or (body.refresh_token if body else None)
    if not refresh_token_value:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token not found",
        )

    payload = decode_token(refresh_token_value)
    if payload.get("type") != "refresh":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )

    if is_token_revoked(db, payload.get("jti")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
        )

    user = db.query(User).filter(User.id == int(payload.get("sub"))).first()
    if not user or user.is_blocked:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )

    if not session_version_matches(payload, user):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session has been invalidated. Please login again.",
        )

    new_access_token = create_access_token(user)
    response = JSONResponse(
        content=success(data={"token": new_access_token}, message="Token refreshed")
    )
    response.set_cookie(
        key="access_token",
        value=new_access_token,
        httponly=True,
        secure=_should_use_secure_cookies(request),
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        path="/",
    )
    return response


@router.post("/logout")
def logout(request: Request, db: Session = Depends(get_db)):
    auth_header = request.headers.get("Authorization") or ""
    bearer = auth_header.split(" ", 1)[1] if auth_header.startswith("Bearer ") else None
    tokens = {
        request.cookies.get("access_token"),
        request.cookies.get("refresh_token"),
        bearer,
    }

    for token in tokens:
        if not token:
            continue
        try:
            _blacklist_token(db, token, reason="logout")
        except HTTPException:
            # Already expired or malformed: nothing to revoke
            continue

    try:
        db.commit()
    except IntegrityError:
        db.rollback()

    response = JSONResponse(content=success(message="Logout successful"))
    secure = _should_use_secure_cookies(request)
    response.delete_cookie(key="access_token", path="/", samesite="lax", secure=secure)
    response.delete_cookie(key="refresh_token", path="/", samesite="lax", secure=secure)
    response.delete_cookie(key=CSRF_COOKIE_NAME, path="/", samesite="lax", secure=secure)
    return response


# --------------------------------------------------
# Profile
# --------------------------------------------------
@router.get("/profile", response_model=dict)
def get_profile(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return success(
        data=UserService.get_profile(db, current_user),
        message="User profile fetched successfully",
    )


@router.put("/profile", response_model=dict)
def update_profile(
    payload: UserProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user = UserService.update_profile(db, current_user, payload)
    return success(
        data={
            "firstname": user.firstname,
            "lastname": user.lastname,
            "username": user.username,
            "email": user.email,
            "image": user.image,
        },
        message="Profile updated successfully",
    )


@router.post("/change-password", response_model=dict)
@limiter.limit("5/minute")
def change_password(
    request: Request,
    payload: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    UserService.change_password(db, current_user, payload)
    return success(message="Password updated successfully")


# --------------------------------------------------
# Forgot password (OTP)
# --------------------------------------------------
@router.post("/forgot-password/send-otp", response_model=dict)
@limiter.limit("5/minute")
def forgot_password_send_otp(request: Request, payload: EmailRequest, db: Session = Depends(get_db)):
    UserService.send_password_reset_otp(db, payload.email)
    return success(message="Password reset OTP sent successfully")


@router.post("/forgot-password/verify-otp", response_model=dict)
@limiter.limit("10/minute")
def forgot_password_verify_otp(request: Request, payload: OtpVerifyRequest, db: Session = Depends(get_db)):
    UserService.verify_password_reset_otp(db, payload.email, payload.otp)
    return success(data={"verified": True}, message="OTP verified successfully")


@router.post("/forgot-password/resend-otp", response_model=dict)
@limiter.limit("5/minute")
def forgot_password_resend_otp(request: Request, payload: EmailRequest, db: Session = Depends(get_db)):
    UserService.resend_password_reset_otp(db, payload.email)
    return success(message="New OTP sent successfully")


@router.post("/forgot-password/reset", response_model=dict)
@limiter.limit("5/minute")
def forgot_password_reset(request: Request, payload: PasswordResetRequest, db: Session = Depends(get_db)):
    UserService.reset_password(db, payload.email, payload.otp, payload.new_password)
    return success(message="Password reset successful")


# --------------------------------------------------
# Email update (OTP)
# --------------------------------------------------
@router.post("/update-email/send-otp", response_model=dict)
@limiter.limit("5/minute")
def update_email_send_otp(
    request: Request,
    payload: EmailRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    UserService.send_email_update_otp(db, current_user, payload.email)
    return success(message="OTP sent successfully")


@router.post("/update-email/verify-otp", response_model=dict)
@limiter.limit("10/minute")
def update_email_verify_otp(
    request: Request,
    payload: OtpVerifyRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user = UserService.verify_email_update_otp(db, current_user, payload.email, payload.otp)
    return _token_response(user, "Email updated successfully", request)


@router.post("/update-email/resend-otp", response_model=dict)
@limiter.limit("5/minute")
def update_email_resend_otp(
    request: Request,
    payload: EmailRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    UserService.resend_email_update_otp(db, current_user, payload.email)
    return success(message="New OTP sent successfully")
