"""FAL.AI client for background removal and Seedream image edits."""

import logging
from typing import Any

import httpx

from ..config import FalConfig
from ..errors import CollaboratorError, ContentPolicyError, SchemaError, raise_for_collaborator_status

logger = logging.getLogger(__name__)


def parse_output_size(output_size: str | None, default: tuple[int, int] = (1024, 1024)) -> tuple[int, int]:
    """Parse ``"WIDTHxHEIGHT"``; anything unparseable gives ``default``."""
    if not output_size:
        return default
    width, sep, height = output_size.lower().partition("x")
    if not sep or not width.isdigit() or not height.isdigit():
        return default
    return int(width), int(height)


class FalClient:
    """Thin async client for FAL.AI synchronous model endpoints."""

    def __init__(self, config: FalConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.config.request_timeout)
        return self._client

    @property
    def configured(self) -> bool:
        return bool(self.config.api_key)

    async def run(self, model: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST ``payload`` to a model endpoint and return the JSON body."""
        if not self.configured:
            raise CollaboratorError("FAL.AI API key is not configured")

        response = await self.client.post(
            f"{self.config.base_url.rstrip('/')}/{model}",
            json=payload,
            headers={"Authorization": f"Key {self.config.api_key}"},
        )
        raise_for_collaborator_status(response, "FAL.AI")

        try:
            data = response.json()
        except ValueError as e:
            raise SchemaError(f"FAL.AI returned non-JSON body for {model}") from e
        if not isinstance(data, dict):
            raise SchemaError(f"FAL.AI returned unexpected body for {model}")
        return data

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


class FalBackgroundRemover:
    """Background removal on the BRIA model."""

    name = "fal-bria"

    def __init__(self, fal: FalClient):
        self.fal = fal

    async def remove_background(self, image_ref: str) -> str:
        data = await self.fal.run(
            self.fal.config.background_model,
            {"image_url": image_ref, "sync_mode": True},
        )
        image = data.get("image")
        url = image.get("url") if isinstance(image, dict) else None
        if not url:
            raise SchemaError("background removal returned no image")
        logger.info("🧹 Background removed")
        return url


class SeedreamRenderer:
    """Seedream v4 edit: fast renderer for simple garments."""

    name = "seedream"

    def __init__(self, fal: FalClient):
        self.fal = fal

    async def render(self, prompt: str, image_refs: list[str], output_size: str | None = None) -> str:
        width, height = parse_output_size(output_size)
        data = await self.fal.run(
            self.fal.config.seedream_model,
            {
                "prompt": prompt,
                "image_urls": image_refs,
                "num_images": 1,
                "image_size": {"width": width, "height": height},
                "sync_mode": True,
                "enable_safety_checker": True,
            },
        )

        if any(data.get("has_nsfw_concepts") or []):
            raise ContentPolicyError("Seedream safety checker flagged the output")

        images = data.get("images") or []
        url = images[0].get("url") if images and isinstance(images[0], dict) else None
        if not url:
            raise SchemaError("Seedream returned no images")
        return url
