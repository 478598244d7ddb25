from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from storefront.core.config import settings


def _engine_options() -> dict:
    if settings.is_sqlite:
        # SQLite connections are shared across the threadpool in tests and dev
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": 20,
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_recycle": 3600,
        "pool_pre_ping": True,
    }


engine = create_engine(settings.DATABASE_URL, echo=settings.DEBUG, **_engine_options())

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=True)


def get_db() -> Iterator[Session]:
    """Request-scoped session; always closed once the response is sent."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
