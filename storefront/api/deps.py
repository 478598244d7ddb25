import structlog
from datetime import datetime
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from storefront.core.security import decode_token
from storefront.db.session import get_db
from storefront.models.token_blacklist import TokenBlacklist
from storefront.models.user import User, UserRole

logger = structlog.get_logger()


def is_token_revoked(db: Session, jti: str) -> bool:
    if not jti:
        return True
    return (
        db.query(TokenBlacklist)
        .filter(
            TokenBlacklist.jti == jti,
            TokenBlacklist.expires_at > datetime.utcnow(),
        )
        .first()
        is not None
    )


def extract_access_token(request: Request) -> str | None:
    # An explicit header wins over a cookie left behind by an earlier login
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1]
    return request.cookies.get("access_token")


def session_version_matches(payload: dict, user: User) -> bool:
    raw_session_version = payload.get("session_version", 0)
    try:
        token_session_version = int(raw_session_version)
    except (TypeError, ValueError):
        token_session_version = -1
    return token_session_version == user.session_version


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """Get current authenticated user from cookie or bearer token."""
    token = extract_access_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    payload = decode_token(token)
    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )

    if is_token_revoked(db, payload.get("jti")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )

    user = db.query(User).filter(User.id == int(user_id)).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    if user.is_blocked:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are temporarily blocked. Please contact admin.",
        )

    if not session_version_matches(payload, user):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session has been invalidated. Please login again.",
        )

    return user


def require_admin(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> User:
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )

    logger.info(
        "admin_action",
        action=f"{request.method} {request.url.path}",
        admin_user_id=current_user.id,
        client_ip=request.client.host if request.client else None,
    )
    return current_user
