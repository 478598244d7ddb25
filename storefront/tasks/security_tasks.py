from datetime import datetime

import structlog
from celery import shared_task

from storefront.db.session import SessionLocal
from storefront.models.otp import Otp
from storefront.models.token_blacklist import TokenBlacklist

logger = structlog.get_logger()


def _purge_expired(model) -> int:
    db = SessionLocal()
    try:
        deleted = (
            db.query(model)
            .filter(model.expires_at < datetime.utcnow())
            .delete(synchronize_session=False)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    logger.info("expired_rows_purged", table=model.__tablename__, deleted=deleted)
    return deleted


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def purge_expired_otps(self):
    """Expired codes are already refused on verify; this only reclaims the rows."""
    try:
        return {"deleted": _purge_expired(Otp)}
    except Exception as exc:
        raise self.retry(exc=exc)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def cleanup_expired_blacklisted_tokens(self):
    try:
        return {"deleted": _purge_expired(TokenBlacklist)}
    except Exception as exc:
        raise self.retry(exc=exc)
