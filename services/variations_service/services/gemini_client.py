"""Gemini image generation over the ``generateContent`` REST API.

The model receives the prompt text followed by the reference portrait and
the customer's pet photo as inline base64 parts, and answers with the
generated image as an inline part.
"""

import base64
import time
from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)

# Markers in provider error bodies that mean "try again later"
_CAPACITY_MARKERS = ("quota", "rate limit", "resource_exhausted", "overloaded")


class ImageGenerationError(Exception):
    """The provider failed or returned no image."""


class ProviderUnavailableError(ImageGenerationError):
    """The provider is out of quota or rate limiting us."""

    def __init__(self, message: str, retry_after_seconds: int = 60):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class InlineImage:
    """An image sent to or received from the model."""

    def __init__(self, data: bytes, mime_type: str = "image/png"):
        self.data = data
        self.mime_type = mime_type

    def to_part(self) -> dict:
        return {
            "inlineData": {
                "mimeType": self.mime_type,
                "data": base64.b64encode(self.data).decode("ascii"),
            }
        }

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


class GenerationResult:
    def __init__(self, image: InlineImage, model: str, latency_ms: int = 0):
        self.image = image
        self.model = model
        self.latency_ms = latency_ms


def _is_capacity_error(status_code: int, body: str) -> bool:
    if status_code in (429, 503):
        return True
    lowered = body.lower()
    return any(marker in lowered for marker in _CAPACITY_MARKERS)


def extract_image(payload: dict) -> Optional[InlineImage]:
    """Return the first inline image part of a ``generateContent`` response."""
    for candidate in payload.get("candidates") or []:
        for part in (candidate.get("content") or {}).get("parts") or []:
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                return InlineImage(
                    data=base64.b64decode(inline["data"]),
                    mime_type=inline.get("mimeType") or inline.get("mime_type") or "image/png",
                )
    return None


class GeminiImageClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.model = model or settings.GEMINI_MODEL
        self.base_url = (base_url or settings.GEMINI_API_URL).rstrip("/")
        self.timeout = timeout or settings.GEMINI_TIMEOUT_SECONDS
        self._transport = transport

    def _client(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport, **kwargs
        )

    async def download_image(self, url: str) -> InlineImage:
        """Fetch a catalog image so it can be sent inline."""
        try:
            async with self._client(follow_redirects=True) as client:
                response = await client.get(url)
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError(
                "Reference image download timed out"
            ) from exc
        except httpx.RequestError as exc:
            raise ImageGenerationError(
                f"Failed to download reference image: {exc}"
            ) from exc
        if response.status_code != 200:
            raise ImageGenerationError(
                f"Failed to download reference image ({response.status_code})"
            )
        mime_type = response.headers.get("content-type", "image/png").split(";")[0]
        return InlineImage(data=response.content, mime_type=mime_type)

    async def generate_variation(
        self, prompt: str, images: list[InlineImage]
    ) -> GenerationResult:
        if not self.api_key:
            raise ImageGenerationError("Image generation is not configured")

        url = f"{self.base_url}/models/{self.model}:generateContent"
        body = {
            "contents": [
                {"parts": [{"text": prompt}] + [image.to_part() for image in images]}
            ]
        }

        start = time.monotonic()
        try:
            async with self._client() as client:
                response = await client.post(url, params={"key": self.api_key}, json=body)
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError("Image generation timed out") from exc
        except httpx.RequestError as exc:
            raise ImageGenerationError(f"Image generation request failed: {exc}") from exc
        elapsed_ms = int((time.monotonic() - start) * 1000)

        if response.status_code != 200:
            logger.error(
                "Gemini generateContent failed (%d) after %dms",
                response.status_code,
                elapsed_ms,
            )
            if _is_capacity_error(response.status_code, response.text):
                raise ProviderUnavailableError(
                    "Image generation is temporarily unavailable"
                )
            raise ImageGenerationError(
                f"Image generation failed ({response.status_code})"
            )

        image = extract_image(response.json())
        if image is None:
            raise ImageGenerationError("No image data returned from Gemini")

        logger.info("Generated variation with %s in %dms", self.model, elapsed_ms)
        return GenerationResult(image=image, model=self.model, latency_ms=elapsed_ms)


def get_gemini_client() -> GeminiImageClient:
    return GeminiImageClient()
