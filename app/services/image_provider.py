"""
fal.ai image provider client.

Thin pass-through: forwards the request to the model endpoint, fetches the
first produced image and returns it inline as a data URL so the canvas can
use it without cross-origin fetches.
"""

import base64
from typing import Any, Protocol

import httpx
from structlog import get_logger

from app.exceptions import ImageProviderError
from app.models.api import EditImageRequest, GenerateImageRequest, ImageResponse, UploadedImage

logger = get_logger(__name__)


class ImageProvider(Protocol):
    """AI image generation capability."""

    async def generate_image(self, request: GenerateImageRequest) -> ImageResponse: ...

    async def edit_image(self, request: EditImageRequest) -> ImageResponse: ...


def as_image_url(image: str | UploadedImage) -> str:
    """Plain URLs and data URLs pass through; uploaded payloads become data URLs."""
    if isinstance(image, str):
        return image
    if image.data.startswith("data:"):
        return image.data
    return f"data:{image.type};base64,{image.data}"


class FalImageClient:
    """fal.ai synchronous-run HTTP client."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://fal.run",
        generate_model: str = "fal-ai/flux/krea",
        edit_model: str = "fal-ai/bytedance/seedream/v4/edit",
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.generate_model = generate_model
        self.edit_model = edit_model
        self.timeout = timeout
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def generate_image(self, request: GenerateImageRequest) -> ImageResponse:
        """Text-to-image."""
        result = await self._run(
            self.generate_model,
            request.model_dump(),
            failure_message="Failed to generate image",
        )
        return await self._to_response(result, "generation", include_timings=True)

    async def edit_image(self, request: EditImageRequest) -> ImageResponse:
        """Image-to-image edit over one or more source images."""
        payload = request.model_dump(exclude={"images"})
        payload["image_urls"] = [as_image_url(image) for image in request.images]

        result = await self._run(
            self.edit_model,
            payload,
            failure_message="Failed to edit image",
        )
        return await self._to_response(result, "editing", include_timings=False)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _run(self, model: str, payload: dict[str, Any], failure_message: str) -> dict[str, Any]:
        if not self.api_key:
            raise ImageProviderError(500, "fal.ai API key not configured")

        try:
            response = await self.http_client.post(
                f"{self.base_url}/{model}",
                json=payload,
                headers={"Authorization": f"Key {self.api_key}"},
            )
        except httpx.HTTPError as e:
            logger.error("fal_request_error", model=model, error=str(e))
            raise ImageProviderError(502, failure_message) from e

        if response.is_error:
            try:
                details: Any = response.json()
            except ValueError:
                details = {}
            logger.error("fal_request_failed", model=model, status=response.status_code)
            raise ImageProviderError(response.status_code, failure_message, details)

        data: dict[str, Any] = response.json()
        return data

    async def _to_response(
        self, result: dict[str, Any], operation: str, include_timings: bool
    ) -> ImageResponse:
        images = result.get("images") or []
        image_url = images[0].get("url") if images else None
        if not image_url:
            logger.error("fal_response_missing_image", keys=sorted(result))
            raise ImageProviderError(500, f"Image {operation} failed", result)

        try:
            image = await self.http_client.get(image_url)
            image.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("fal_image_fetch_failed", error=str(e))
            raise ImageProviderError(500, "Failed to fetch image") from e

        mime_type = image.headers.get("content-type") or "image/png"
        encoded = base64.b64encode(image.content).decode("ascii")

        return ImageResponse(
            success=True,
            image_data=f"data:{mime_type};base64,{encoded}",
            seed=result.get("seed"),
            timings=result.get("timings") if include_timings else None,
        )
