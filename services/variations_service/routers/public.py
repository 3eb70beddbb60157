"""Public (unauthenticated) AI portrait variation endpoint."""

import time

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from libs.common.logging import get_logger
from libs.common.rate_limit import PublicRateLimiter, RateLimitResult, get_client_ip
from libs.db.session import get_async_db
from services.variations_service.schemas import (
    GenerateVariationRequest,
    GenerateVariationResponse,
    ProviderUnavailableResponse,
    RateLimitExceededResponse,
    VariationMetadata,
)
from services.variations_service.services.gemini_client import (
    GeminiImageClient,
    ImageGenerationError,
    ProviderUnavailableError,
    get_gemini_client,
)
from services.variations_service.services.prompt_builder import VariationPromptBuilder
from services.variations_service.services.variation import (
    decode_user_image,
    generate_catalog_variation,
    get_public_catalog_image,
)
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/public", tags=["public"])

GENERATE_ENDPOINT = "/public/generate-variation"

_rate_limiter = PublicRateLimiter()
_prompt_builder = VariationPromptBuilder()


def get_rate_limiter() -> PublicRateLimiter:
    return _rate_limiter


def _rate_limited(limit: RateLimitResult) -> JSONResponse:
    payload = RateLimitExceededResponse(
        message=(
            f"You have reached the maximum of {limit.limit} generations. "
            f"Please try again in {limit.retry_after_seconds} seconds."
        ),
        retry_after=limit.retry_after_seconds or 1,
        reset_at=limit.reset_at,
    )
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=payload.model_dump(mode="json"),
        headers={
            "Retry-After": str(payload.retry_after),
            "X-RateLimit-Limit": str(limit.limit),
            "X-RateLimit-Remaining": "0",
        },
    )


@router.post(
    "/generate-variation",
    response_model=GenerateVariationResponse,
    responses={
        429: {"model": RateLimitExceededResponse},
        503: {"model": ProviderUnavailableResponse},
    },
)
async def generate_variation(
    request: Request,
    body: GenerateVariationRequest,
    db: AsyncSession = Depends(get_async_db),
    rate_limiter: PublicRateLimiter = Depends(get_rate_limiter),
    client: GeminiImageClient = Depends(get_gemini_client),
):
    """Re-render a public catalog portrait with the visitor's own pet.

    Limited per client IP. Malformed requests are rejected before any quota
    is consumed; the slot is then taken atomically before the provider call.
    """
    client_ip = get_client_ip(request)

    limit = await rate_limiter.check_limit(client_ip, GENERATE_ENDPOINT)
    if not limit.allowed:
        return _rate_limited(limit)

    if not body.catalog_image_id or not body.user_image_base64:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields: catalog_image_id and user_image_base64",
        )
    user_image = decode_user_image(body.user_image_base64)
    catalog_image = await get_public_catalog_image(db, body.catalog_image_id)

    limit = await rate_limiter.record_request(client_ip, GENERATE_ENDPOINT)
    if not limit.allowed:
        return _rate_limited(limit)

    start = time.monotonic()
    try:
        result = await generate_catalog_variation(
            catalog_image=catalog_image,
            user_image=user_image,
            client=client,
            builder=_prompt_builder,
        )
    except ProviderUnavailableError as exc:
        logger.warning("Image provider unavailable: %s", exc)
        payload = ProviderUnavailableResponse(
            message=(
                "The AI image generation service is currently at capacity. "
                "Please try again in a few minutes."
            ),
            retry_after=exc.retry_after_seconds,
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=payload.model_dump(mode="json"),
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )
    except ImageGenerationError as exc:
        logger.error("Variation generation failed for %s: %s", catalog_image.id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate variation",
        )

    return GenerateVariationResponse(
        image_base64=result.image.base64,
        mime_type=result.image.mime_type,
        metadata=VariationMetadata(
            breed_name=catalog_image.breed_name or "Unknown",
            theme_name=catalog_image.theme_name or "Unknown",
            style_name=catalog_image.style_name or "Unknown",
            aspect_ratio=catalog_image.aspect_ratio,
        ),
        rate_limit_remaining=limit.remaining,
        generation_time_ms=int((time.monotonic() - start) * 1000),
    )
