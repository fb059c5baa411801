"""Consolidated facts and the render directive derived from them."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .analysis import (
    ColorPrecision,
    ConstructionFeature,
    ConstructionPrecision,
    DetectedLabel,
    FabricBehavior,
    HollowRegion,
    InteriorSurface,
    PreserveDetail,
    RenderingGuidance,
)

NEUTRAL_GRAY = "#888888"


class Palette(BaseModel):
    """Resolved garment colors; every slot is always a valid hex."""

    model_config = ConfigDict(frozen=True)

    dominant_hex: str = NEUTRAL_GRAY
    accent_hex: str = NEUTRAL_GRAY
    trim_hex: str = NEUTRAL_GRAY
    pattern_hexes: list[str] = Field(default_factory=list)


class UnifiedFacts(BaseModel):
    """Superset of both analyses plus the derived fields renderers need.

    Every structural list and enrichment section is carried over verbatim;
    the remaining fields are resolved from a merge candidate, from the
    analyses, or from neutral defaults, in that order.
    """

    model_config = ConfigDict(frozen=True)

    # Identification
    category: str
    silhouette: str

    # Structural data
    labels_found: list[DetectedLabel] = Field(default_factory=list)
    preserved_labels: list[DetectedLabel] = Field(default_factory=list)
    preserve_details: list[PreserveDetail] = Field(default_factory=list)
    hollow_regions: list[HollowRegion] = Field(default_factory=list)
    interior_surfaces: list[InteriorSurface] = Field(default_factory=list)
    construction_features: list[ConstructionFeature] = Field(default_factory=list)
    interior_render: bool = False

    # Color
    palette: Palette
    color_temperature: str
    saturation: str

    # Material
    material: str
    drape: str
    sheen: str
    transparency: str
    seam_visibility: str
    edge_finish: str

    # Presentation
    lighting_preference: str
    shadow_preference: str
    background_hex: str
    view: str = "front"
    framing_margin_pct: int = 6
    label_visibility: Literal["required", "optional"] = "required"
    required_components: list[str] = Field(default_factory=list)
    forbidden_components: list[str] = Field(default_factory=list)

    # Enrichment sections, carried as produced
    color_precision: ColorPrecision | None = None
    fabric_behavior: FabricBehavior | None = None
    construction_precision: ConstructionPrecision | None = None
    rendering_guidance: RenderingGuidance | None = None

    # Provenance
    source: Literal["merge_assist", "local_fallback"] = "local_fallback"
    repaired_fields: list[str] = Field(default_factory=list)

    @property
    def primary_color(self) -> str:
        return self.palette.dominant_hex

    @property
    def critical_details(self) -> list[PreserveDetail]:
        return [d for d in self.preserve_details if d.priority == "critical"]


# Fields the renderer contract reads; consolidation guarantees each is set
REQUIRED_FACT_FIELDS: tuple[str, ...] = (
    "category", "silhouette", "palette", "color_temperature", "saturation",
    "material", "drape", "sheen", "transparency", "seam_visibility", "edge_finish",
    "lighting_preference", "shadow_preference", "background_hex", "view",
    "framing_margin_pct", "label_visibility", "preserved_labels", "hollow_regions",
    "interior_render",
)


def missing_required_fields(facts: UnifiedFacts) -> list[str]:
    """Names of renderer-contract fields that are absent or blank."""
    missing = []
    for name in REQUIRED_FACT_FIELDS:
        value = getattr(facts, name, None)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


class RenderDirective(BaseModel):
    """The compact set of hard constraints handed to an image renderer."""

    model_config = ConfigDict(frozen=True)

    must: list[str] = Field(default_factory=list)
    ban: list[str] = Field(default_factory=list)
    must_preserve_labels: list[str] = Field(default_factory=list)
    label_bbox_hints: list[tuple[float, float, float, float]] = Field(default_factory=list)
    label_legibility_min: float | None = None
    label_rule: Literal["required", "optional"] = "required"
    background_hex: str = "#FFFFFF"
    interior_render: bool = False
    hollow_regions: list[str] = Field(default_factory=list)
    critical_details: list[str] = Field(default_factory=list)

    category: str = "unknown"
    silhouette: str = "generic_silhouette"
    palette: Palette = Field(default_factory=Palette)
    material: str = "unknown"
    drape: str = "natural"
    sheen: str = "matte"
    transparency: str = "opaque"
    lighting: str = "soft_diffused"
    shadow: str = "soft"
    view: str = "front"
    framing_margin_pct: int = 6

    corrections: list[str] = Field(default_factory=list)
    sanitized: bool = False
    reduced: bool = False

    @property
    def complexity(self) -> int:
        """How many independent constraints the renderer has to honour."""
        return len(self.must_preserve_labels) + len(self.critical_details)


class ConsolidationOutput(BaseModel):
    """What the consolidation stage hands to rendering."""

    facts: UnifiedFacts
    directive: RenderDirective
    source: Literal["merge_assist", "local_fallback"]
    conflicts: list[str] = Field(default_factory=list)
    processing_time_ms: int = 0
