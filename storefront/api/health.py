from fastapi import APIRouter
from sqlalchemy import text

from storefront.core.celery_app import celery_app
from storefront.core.config import settings
from storefront.db.session import engine

API_VERSION = "1.0.0"

router = APIRouter(tags=["Health"])


def _pool_metrics() -> dict:
    pool = engine.pool
    metrics = {"pool_class": type(pool).__name__}
    for name in ("size", "checkedout", "status"):
        probe = getattr(pool, name, None)
        metrics[name] = probe() if callable(probe) else None
    return metrics


@router.get("/")
def service_index():
    return {
        "message": settings.PROJECT_NAME,
        "docs": f"{settings.API_PREFIX}/docs",
        "version": API_VERSION,
    }


@router.get("/health")
def liveness():
    return {"status": "healthy", "environment": settings.ENVIRONMENT, "version": API_VERSION}


@router.get("/health/database")
def database_health():
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception as exc:
        return {"status": "unhealthy", "pool": {}, "reason": f"Database connectivity check failed: {exc}"}
    return {"status": "healthy", "pool": _pool_metrics()}


@router.get("/health/email")
def email_worker_health():
    """Email goes out through Celery, so a live worker means mail can be sent."""
    try:
        replies = celery_app.control.inspect(timeout=1.0).ping() or {}
    except Exception as exc:
        return {"status": "unhealthy", "reason": f"Celery worker check failed: {exc}"}
    if not replies:
        return {"status": "unhealthy", "reason": "No active Celery workers"}
    return {"status": "healthy", "workers": len(replies)}
