"""FastAPI application for the Variations Service."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from libs.common.config import get_settings
from libs.common.error_handler import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from services.variations_service.routers import public_router

settings = get_settings()


def create_app() -> FastAPI:
    """Create and configure the Variations Service FastAPI app."""
    app = FastAPI(
        title="Pawtraits Variations Service",
        version="0.1.0",
        description="Public AI portrait variations of catalog images.",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    add_observability_middleware(app)
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "variations"}

    app.include_router(public_router)

    return app


app = create_app()
