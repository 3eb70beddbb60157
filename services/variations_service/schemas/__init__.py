"""Variations Service schemas package."""

from services.variations_service.schemas.variation import (  # noqa: F401
    GenerateVariationRequest,
    GenerateVariationResponse,
    ProviderUnavailableResponse,
    RateLimitExceededResponse,
    VariationMetadata,
)

__all__ = [
    "GenerateVariationRequest",
    "GenerateVariationResponse",
    "ProviderUnavailableResponse",
    "RateLimitExceededResponse",
    "VariationMetadata",
]
