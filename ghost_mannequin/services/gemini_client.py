"""Gemini image generation over the REST ``generateContent`` endpoint."""

import base64
import logging
from typing import Any

import httpx

from ..config import GeminiConfig
from ..errors import CollaboratorError, ContentPolicyError, SchemaError, raise_for_collaborator_status
from ..utils.images import load_image_bytes

logger = logging.getLogger(__name__)

_BLOCKED_FINISH_REASONS = {"SAFETY", "PROHIBITED_CONTENT", "IMAGE_SAFETY", "BLOCKLIST"}


class GeminiImageRenderer:
    """Complex renderer: handles many simultaneous constraints well."""

    name = "gemini"

    def __init__(self, config: GeminiConfig, client: httpx.AsyncClient | None = None):
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

    async def render(self, prompt: str, image_refs: list[str], output_size: str | None = None) -> str:
        """Generate an image and return it as a data URI."""
        if not self.configured:
            raise CollaboratorError("Gemini API key is not configured")

        parts: list[dict[str, Any]] = [{"text": prompt}]
        for ref in image_refs:
            image_bytes, mime_type = await load_image_bytes(ref, self.client)
            parts.append({
                "inline_data": {
                    "mime_type": mime_type,
                    "data": base64.b64encode(image_bytes).decode("ascii"),
                }
            })
        if output_size:
            # No size parameter on this model; aspect comes from the inputs
            logger.debug("Gemini ignores output size %s", output_size)

        response = await self.client.post(
            f"{self.config.base_url.rstrip('/')}/models/{self.config.image_model}:generateContent",
            json={
                "contents": [{"role": "user", "parts": parts}],
                "generationConfig": {"responseModalities": ["IMAGE", "TEXT"]},
            },
            headers={"x-goog-api-key": self.config.api_key},
        )
        raise_for_collaborator_status(response, "Gemini")

        try:
            data = response.json()
        except ValueError as e:
            raise SchemaError("Gemini returned a non-JSON body") from e
        return self._extract_image(data)

    @staticmethod
    def _extract_image(data: dict[str, Any]) -> str:
        feedback = data.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            raise ContentPolicyError(f"Gemini blocked the prompt: {feedback['blockReason']}")

        candidates = data.get("candidates") or []
        if not candidates:
            raise SchemaError("Gemini returned no candidates")

        candidate = candidates[0]
        finish_reason = candidate.get("finishReason")
        if finish_reason in _BLOCKED_FINISH_REASONS:
            raise ContentPolicyError(f"Gemini stopped generation: {finish_reason}")

        for part in (candidate.get("content") or {}).get("parts") or []:
            inline = part.get("inlineData") or part.get("inline_data")
            if not inline:
                continue
            mime_type = inline.get("mimeType") or inline.get("mime_type") or ""
            if mime_type.startswith("image/") and inline.get("data"):
                return f"data:{mime_type};base64,{inline['data']}"

        raise SchemaError("Gemini response contained no image part")

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
