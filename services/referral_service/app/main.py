"""FastAPI application for the Referral Service."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from libs.common.config import get_settings
from libs.common.error_handler import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import limiter, rate_limit_exceeded_handler
from services.referral_service.routers import (
    admin_router,
    commissions_router,
    customers_router,
    referrals_router,
    webhooks_router,
)
from slowapi.errors import RateLimitExceeded

settings = get_settings()


def create_app() -> FastAPI:
    """Create and configure the Referral Service FastAPI app."""
    app = FastAPI(
        title="Pawtraits Referral Service",
        version="0.1.0",
        description="Referral codes, commissions and customer credit for Pawtraits.",
    )

    # Add rate limiter state to app
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add observability (structured logging + request tracing)
    add_observability_middleware(app)

    # Add global exception handlers for consistent error responses
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "referral"}

    # Storefront routes
    app.include_router(referrals_router)
    app.include_router(customers_router)

    # Internal service-to-service routes
    app.include_router(commissions_router)

    # Admin routes
    app.include_router(admin_router)

    # Stripe
    app.include_router(webhooks_router)

    return app


app = create_app()
