"""Variations service routers."""

from services.variations_service.routers.public import router as public_router

__all__ = ["public_router"]
