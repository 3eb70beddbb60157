"""Input checks and orchestration for public portrait variations."""

import base64
import binascii
import re
import uuid

from fastapi import HTTPException, status
from libs.common.logging import get_logger
from services.variations_service.models import CatalogImage
from services.variations_service.services.gemini_client import (
    GeminiImageClient,
    GenerationResult,
    InlineImage,
)
from services.variations_service.services.prompt_builder import (
    VariationPromptBuilder,
    VariationPromptOptions,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

MAX_IMAGE_BYTES = 5 * 1024 * 1024
DATA_URL_PATTERN = re.compile(r"^data:image/(jpeg|jpg|png);base64,")


def decode_user_image(data_url: str) -> InlineImage:
    """Decode a ``data:image/...;base64,`` upload (JPEG or PNG, at most 5MB)."""
    match = DATA_URL_PATTERN.match(data_url)
    if not match:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid image format. Only JPEG and PNG are supported.",
        )

    encoded = data_url[match.end():]
    # base64 is ~4/3 of the raw size; reject before decoding
    if len(encoded) * 3 // 4 > MAX_IMAGE_BYTES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Image too large. Maximum size is 5MB.",
        )

    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Image data is not valid base64",
        )
    if not data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Image data is empty",
        )

    subtype = match.group(1)
    mime_type = "image/png" if subtype == "png" else "image/jpeg"
    return InlineImage(data=data, mime_type=mime_type)


async def get_public_catalog_image(db: AsyncSession, catalog_image_id: str) -> CatalogImage:
    not_found = HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Catalog image not found or not public",
    )
    try:
        image_id = uuid.UUID(str(catalog_image_id))
    except ValueError:
        raise not_found

    result = await db.execute(
        select(CatalogImage).where(
            CatalogImage.id == image_id,
            CatalogImage.is_public.is_(True),
        )
    )
    catalog_image = result.scalar_one_or_none()
    if catalog_image is None:
        raise not_found
    return catalog_image


def prompt_options_for(catalog_image: CatalogImage) -> VariationPromptOptions:
    return VariationPromptOptions(
        composition_template=catalog_image.composition_template,
        aspect_ratio=catalog_image.aspect_ratio,
        breed_name=catalog_image.breed_name,
        theme_name=catalog_image.theme_name,
        style_name=catalog_image.style_name,
        format_name=catalog_image.format_name,
    )


async def generate_catalog_variation(
    *,
    catalog_image: CatalogImage,
    user_image: InlineImage,
    client: GeminiImageClient,
    builder: VariationPromptBuilder,
) -> GenerationResult:
    """Render ``catalog_image`` with the pet from ``user_image``.

    The reference portrait goes first, the pet photo second; the prompt
    refers to them in that order.
    """
    reference = await client.download_image(catalog_image.image_url)
    prompt = builder.build_subject_replacement_prompt(prompt_options_for(catalog_image))
    logger.info(
        "Generating variation of catalog image %s (breed=%s)",
        catalog_image.id,
        catalog_image.breed_name or "unknown",
    )
    return await client.generate_variation(prompt, [reference, user_image])
