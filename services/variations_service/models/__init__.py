"""Variations Service models package."""

from services.variations_service.models.catalog_image import CatalogImage  # noqa: F401

__all__ = ["CatalogImage"]
