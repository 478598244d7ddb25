import re
import uuid
from datetime import datetime, timedelta
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import HTTPException, status
from storefront.core.config import settings

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

MAX_PASSWORD_BYTES = 72
PASSWORD_SPECIAL_CHARS_RE = re.compile(r'[!@#$%^&*(),.?":{}|<>]')
PASSWORD_RULE_MESSAGE = (
    "Password must be at least 8 characters long and contain at least one special character."
)


def is_strong_password(password: str) -> bool:
    return len(password) >= 8 and PASSWORD_SPECIAL_CHARS_RE.search(password) is not None


def hash_password(password: str) -> str:
    """Hash password using bcrypt (safe wrapper)"""
    password_bytes = password.encode("utf-8")

    if len(password_bytes) > MAX_PASSWORD_BYTES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password is too long"
        )

    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    """Verify plain password against hash"""
    if not hashed_password:
        # Accounts created through Google sign-in have no local password.
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False

def _encode(claims: dict, lifetime: timedelta, token_type: str) -> str:
    payload = {
        **claims,
        "type": token_type,
        "jti": uuid.uuid4().hex,
        "exp": datetime.utcnow() + lifetime,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(user) -> str:
    claims = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role.value,
        "session_version": user.session_version,
    }
    return _encode(claims, timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES), "access")


def create_refresh_token(user) -> str:
    claims = {"sub": str(user.id), "session_version": user.session_version}
    return _encode(claims, timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS), "refresh")


def create_user_tokens(user) -> tuple[str, str]:
    """Access/refresh pair bound to the user's current session version.

    Bumping ``session_version`` on the user invalidates both at once.
    """
    return create_access_token(user), create_refresh_token(user)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
