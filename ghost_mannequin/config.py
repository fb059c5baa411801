"""Configuration management for the ghost mannequin pipeline."""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class StageTimeouts(BaseModel):
    """Per-stage deadlines in milliseconds."""
    background_removal: int = 30_000
    analysis: int = 90_000
    enrichment: int = 120_000
    consolidation: int = 45_000
    rendering: int = 180_000
    qa: int = 60_000


class FalConfig(BaseModel):
    """FAL.AI connection settings (background removal + Seedream)."""
    api_key: str | None = None
    base_url: str = "https://fal.run"
    background_model: str = "fal-ai/bria/background/remove"
    seedream_model: str = "fal-ai/bytedance/seedream/v4/edit"
    request_timeout: float = 300.0


class GeminiConfig(BaseModel):
    """Gemini image generation settings."""
    api_key: str | None = None
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    image_model: str = "gemini-2.5-flash-image-preview"
    request_timeout: float = 300.0


class ConsolidationConfig(BaseModel):
    """Merge-assist and hard-lock settings."""
    merge_assist_enabled: bool = True
    canonical_background_hex: str = "#FFFFFF"
    label_legibility_min: float = 0.85


class RenderingConfig(BaseModel):
    """Renderer selection and fallback settings."""
    complex_renderer: str = "gemini"  # tuned for multi-constraint prompts
    fast_renderer: str = "seedream"
    # Auto mode picks the complex renderer when preserved labels + critical
    # details exceed this. Heuristic, tune per catalogue.
    complexity_threshold: int = 3
    max_attempts: int = 5
    default_output_size: str = "2048x2048"
    sanitize_terms: list[str] = Field(default_factory=lambda: [
        "mannequin", "human", "person", "body", "skin", "torso",
        "nude", "naked", "lingerie", "underwear", "bra", "sexy",
    ])


class CorrectionConfig(BaseModel):
    """Post-render quality correction loop."""
    enabled: bool = False
    max_iterations: int = 2
    verifier: str = "background"  # "background" or "critic"
    background_tolerance: float = 12.0  # mean RGB distance allowed on the border
    border_px: int = 16


class CacheConfig(BaseModel):
    """Content-hash analysis cache."""
    enabled: bool = True
    max_entries: int = 256
    ttl_seconds: int = 24 * 3600


class PipelineConfig(BaseSettings):
    """Main pipeline configuration."""

    # Sub-configs
    timeouts: StageTimeouts = Field(default_factory=StageTimeouts)
    fal: FalConfig = Field(default_factory=FalConfig)
    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    consolidation: ConsolidationConfig = Field(default_factory=ConsolidationConfig)
    rendering: RenderingConfig = Field(default_factory=RenderingConfig)
    correction: CorrectionConfig = Field(default_factory=CorrectionConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    # Scheduling
    parallel_analysis: bool = True
    batch_concurrency: int = 3

    # Azure OpenAI for the analysis agents (loaded from .env)
    azure_openai_endpoint: str | None = None
    azure_openai_deployment: str | None = None

    class Config:
        env_file = ".env"
        env_prefix = "GHOST_"
        env_nested_delimiter = "__"
        extra = "ignore"


def load_config() -> PipelineConfig:
    """Load configuration from environment and defaults."""
    return PipelineConfig()
