from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class GenerateVariationRequest(BaseModel):
    # Both are checked by the endpoint so missing values answer 400, not 422
    catalog_image_id: Optional[str] = None
    user_image_base64: Optional[str] = None


class VariationMetadata(BaseModel):
    breed_name: str
    theme_name: str
    style_name: str
    aspect_ratio: Optional[str] = None


class GenerateVariationResponse(BaseModel):
    success: bool = True
    image_base64: str
    mime_type: str
    metadata: VariationMetadata
    rate_limit_remaining: int
    generation_time_ms: int


class RateLimitExceededResponse(BaseModel):
    error: str = "Rate limit exceeded"
    message: str
    retry_after: int
    reset_at: datetime


class ProviderUnavailableResponse(BaseModel):
    error: str = "AI service temporarily unavailable"
    message: str
    retry_after: int
