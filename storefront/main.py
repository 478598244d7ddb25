import sentry_sdk
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from slowapi.middleware import SlowAPIMiddleware

from storefront.api import health
from storefront.api.v1 import address, admin, cart, checkout, products, reviews, users, wallet
from storefront.core.config import settings
from storefront.core.error_handlers import register_exception_handlers
from storefront.core.logging_config import configure_logging
from storefront.core.rate_limiter import limiter
from storefront.middleware.csrf import enforce_csrf
from storefront.middleware.request_context import request_context

configure_logging()
logger = structlog.get_logger()

ROUTERS = (
    (users.router, "users", "Users"),
    (products.router, "products", "Products"),
    (address.router, "address", "Address"),
    (wallet.router, "wallet", "Wallet"),
    (cart.router, "cart", "Cart"),
    (reviews.router, "reviews", "Reviews"),
    (checkout.router, "checkout", "Checkout"),
    (admin.router, "admin", "Admin"),
)


def _init_sentry() -> None:
    if settings.ENVIRONMENT != "production" or not settings.SENTRY_DSN:
        return
    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            traces_sample_rate=0.1,
            integrations=[FastApiIntegration(), SqlalchemyIntegration()],
        )
    except Exception as exc:
        logger.warning("sentry_init_failed", error=str(exc))
    else:
        logger.info("sentry_initialized")


def _allowed_origins() -> list:
    origins = list(settings.BACKEND_CORS_ORIGINS)
    # Credentialed requests need the storefront origin listed verbatim
    if settings.FRONTEND_URL and settings.FRONTEND_URL not in origins:
        origins.append(settings.FRONTEND_URL)
    return origins


_init_sentry()

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
    docs_url=f"{settings.API_PREFIX}/docs",
    redoc_url=f"{settings.API_PREFIX}/redoc",
)
app.state.limiter = limiter

# Starlette runs the last registered middleware first
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-CSRF-Token", "X-Correlation-ID", "X-Requested-With"],
    expose_headers=["X-Correlation-ID", "X-Process-Time"],
    max_age=3600,
)
app.middleware("http")(enforce_csrf)
app.middleware("http")(request_context)

register_exception_handlers(app)

app.include_router(health.router)
for router, prefix, tag in ROUTERS:
    app.include_router(router, prefix=f"{settings.API_PREFIX}/{prefix}", tags=[tag])
