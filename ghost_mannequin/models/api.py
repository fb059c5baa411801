"""Request and response bodies for the ghost mannequin API.

Field names are camelCase on the wire and snake_case in Python.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .analysis import normalize_hex


def is_image_ref(value: str) -> bool:
    """True for http(s) URLs and image data URIs."""
    return value.startswith(("http://", "https://", "data:image/"))


class _Wire(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GhostOptions(_Wire):
    """Per-request rendering options."""

    output_size: str | None = None  # e.g. "2048x2048"
    background_color: str | None = None
    preserve_labels: bool = True
    rendering_model: str = "auto"  # "auto" or a renderer name

    @field_validator("background_color")
    @classmethod
    def _background(cls, v: str | None) -> str | None:
        if v is None:
            return None
        hex_value = normalize_hex(v)
        if hex_value is None:
            raise ValueError("backgroundColor must be a #RRGGBB hex color")
        return hex_value

    @field_validator("output_size")
    @classmethod
    def _size(cls, v: str | None) -> str | None:
        if v is None:
            return None
        width, sep, height = v.lower().partition("x")
        if not sep or not width.isdigit() or not height.isdigit():
            raise ValueError("outputSize must look like WIDTHxHEIGHT")
        return v.lower()


class GhostRequest(_Wire):
    """Request body for a ghost mannequin render."""

    flatlay_image: str = Field(description="URL or data URI of the flat garment photo")
    on_model_image: str | None = Field(default=None, description="Optional on-model reference")
    options: GhostOptions = Field(default_factory=GhostOptions)

    @field_validator("flatlay_image")
    @classmethod
    def _flatlay(cls, v: str) -> str:
        v = v.strip()
        if not is_image_ref(v):
            raise ValueError("flatlayImage must be an http(s) URL or an image data URI")
        return v

    @field_validator("on_model_image")
    @classmethod
    def _on_model(cls, v: str | None) -> str | None:
        if v is not None and not is_image_ref(v.strip()):
            raise ValueError("onModelImage must be an http(s) URL or an image data URI")
        return v.strip() if v else None


class GhostMetrics(_Wire):
    processing_time_ms: int = 0
    stage_timings: dict[str, int] = Field(default_factory=dict)


class GhostError(_Wire):
    message: str
    code: str
    stage: str


class GhostResponse(_Wire):
    """Response body; ``error`` is set exactly when ``status`` is failed."""

    session_id: str
    status: str
    cleaned_image_url: str | None = None
    render_url: str | None = None
    renderer: str | None = None
    analysis: dict[str, Any] | None = None
    enrichment: dict[str, Any] | None = None
    consolidation: dict[str, Any] | None = None
    qa_report: dict[str, Any] | None = None
    warnings: list[str] = Field(default_factory=list)
    metrics: GhostMetrics = Field(default_factory=GhostMetrics)
    error: GhostError | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "completed"
