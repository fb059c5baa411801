"""Structural and enrichment analysis records.

Both records come from vision models, so parsing is tolerant: unknown enum
values fall back to a neutral value, malformed hex colors become ``None``
and single items are accepted where lists are expected. Once built, the
records are frozen.
"""

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

HEX_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")

GarmentCategory = Literal[
    "top", "bottom", "dress", "outerwear", "knitwear", "underwear", "accessory", "unknown"
]
DetailPriority = Literal["critical", "important", "nice_to_have"]

GARMENT_CATEGORIES: tuple[str, ...] = (
    "top", "bottom", "dress", "outerwear", "knitwear", "underwear", "accessory", "unknown",
)

# Categories whose openings show an inside surface in a ghost mannequin shot
HOLLOW_CATEGORIES = frozenset({"top", "dress", "outerwear", "knitwear", "bottom"})


def normalize_hex(value: Any) -> str | None:
    """Return an upper-case ``#RRGGBB`` string, or None if the value isn't one."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    if len(value) == 6 and not value.startswith("#"):
        value = f"#{value}"
    if not HEX_PATTERN.match(value):
        return None
    return value.upper()


def as_list(value: Any) -> list:
    """Accept None, a single item or a list where a list is expected."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    return [value]


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


# ---------------------------------------------------------------------------
# Structural analysis
# ---------------------------------------------------------------------------

class DetectedLabel(_Record):
    """A brand/care/size label or printed text found on the garment."""

    text: str = ""
    label_type: str = Field(default="brand", alias="type")
    location: str = "unknown"
    confidence: float = 1.0
    preserve: bool = True
    priority: str = "high"
    bbox_norm: tuple[float, float, float, float] | None = None

    @field_validator("text", mode="before")
    @classmethod
    def _trim_text(cls, v: Any) -> str:
        return str(v or "").strip()[:80]

    @field_validator("location", mode="before")
    @classmethod
    def _location(cls, v: Any) -> str:
        return str(v).strip() if v else "unknown"

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v: Any) -> float:
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 1.0
        return max(0.0, min(1.0, value))

    @field_validator("bbox_norm", mode="before")
    @classmethod
    def _bbox(cls, v: Any):
        if isinstance(v, (list, tuple)) and len(v) == 4:
            try:
                return tuple(float(x) for x in v)
            except (TypeError, ValueError):
                return None
        return None


class PreserveDetail(_Record):
    """A detail that must survive rendering (logo, trim, hardware...)."""

    element: str
    priority: DetailPriority = "important"
    location: str | None = None
    notes: str | None = None

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v: Any) -> str:
        return v if v in ("critical", "important", "nice_to_have") else "important"


class HollowRegion(_Record):
    """An opening (neckline, cuffs, hem) whose inside must stay visible."""

    region_type: str = "other"
    keep_hollow: bool = True
    inner_visible: bool = False
    inner_description: str | None = None


class InteriorSurface(_Record):
    """Lining, facing or reverse side seen through an opening."""

    surface_type: str = "other"
    location: str = "unknown"
    priority: DetailPriority = "important"
    material_description: str | None = None
    color_hex: str | None = None

    @field_validator("color_hex", mode="before")
    @classmethod
    def _hex(cls, v: Any) -> str | None:
        return normalize_hex(v)

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v: Any) -> str:
        return v if v in ("critical", "important", "nice_to_have") else "important"


class ConstructionFeature(_Record):
    feature: str
    silhouette_rule: str = ""
    critical_for_structure: bool = False


class StructuralAnalysis(_Record):
    """Output of the first analysis pass: what the garment is made of."""

    category: GarmentCategory = "unknown"
    silhouette: str | None = None
    labels: list[DetectedLabel] = Field(default_factory=list, alias="labels_found")
    preserve_details: list[PreserveDetail] = Field(default_factory=list)
    hollow_regions: list[HollowRegion] = Field(default_factory=list)
    interior_surfaces: list[InteriorSurface] = Field(default_factory=list, alias="interior_analysis")
    construction_features: list[ConstructionFeature] = Field(
        default_factory=list, alias="construction_details"
    )

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, v: Any) -> str:
        if isinstance(v, dict):
            v = v.get("main_category") or v.get("category_generic")
        v = str(v or "").strip().lower()
        return v if v in GARMENT_CATEGORIES else "unknown"

    @field_validator("labels", mode="before")
    @classmethod
    def _labels(cls, v: Any) -> list:
        labels = []
        for item in as_list(v):
            if isinstance(item, DetectedLabel):
                labels.append(item)
            elif isinstance(item, dict):
                text = item.get("text") or item.get("ocr_text")
                # Labels with no readable text carry nothing to preserve
                if text:
                    labels.append({**item, "text": text})
        return labels

    @field_validator("hollow_regions", "interior_surfaces", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> list:
        return [item for item in as_list(v) if isinstance(item, (dict, BaseModel))]

    @field_validator("preserve_details", mode="before")
    @classmethod
    def _details(cls, v: Any) -> list:
        return [
            item for item in as_list(v)
            if isinstance(item, PreserveDetail) or (isinstance(item, dict) and item.get("element"))
        ]

    @field_validator("construction_features", mode="before")
    @classmethod
    def _features(cls, v: Any) -> list:
        return [
            item for item in as_list(v)
            if isinstance(item, ConstructionFeature) or (isinstance(item, dict) and item.get("feature"))
        ]

    @property
    def preserved_labels(self) -> list[DetectedLabel]:
        return [label for label in self.labels if label.preserve]


# ---------------------------------------------------------------------------
# Enrichment analysis
# ---------------------------------------------------------------------------

class ColorPrecision(_Record):
    primary_hex: str | None = None
    secondary_hex: str | None = None
    trim_hex: str | None = None
    color_temperature: str | None = None
    saturation_level: str | None = None
    accuracy_score: float | None = None

    @field_validator("primary_hex", "secondary_hex", "trim_hex", mode="before")
    @classmethod
    def _hex(cls, v: Any) -> str | None:
        return normalize_hex(v)


class FabricBehavior(_Record):
    drape_quality: str | None = None
    surface_sheen: str | None = None
    transparency_level: str | None = None
    weight_class: str | None = None
    stretch_capability: str | None = None


class ConstructionPrecision(_Record):
    seam_visibility: str | None = None
    edge_finishing: str | None = None
    stitching_contrast: bool | None = None
    hardware_finish: str | None = None


class RenderingGuidance(_Record):
    lighting_preference: str | None = None
    shadow_behavior: str | None = None
    detail_sharpness: str | None = None


class EnrichmentAnalysis(_Record):
    """Output of the second, independent pass: rendering-critical attributes."""

    color_precision: ColorPrecision | None = None
    fabric_behavior: FabricBehavior | None = None
    construction_precision: ConstructionPrecision | None = None
    rendering_guidance: RenderingGuidance | None = None
    confidence: float | None = None

    @field_validator("color_precision", "fabric_behavior", "construction_precision",
                     "rendering_guidance", mode="before")
    @classmethod
    def _sections(cls, v: Any):
        # A section that isn't an object is treated as absent
        return v if isinstance(v, (dict, BaseModel)) else None

    @property
    def primary_hex(self) -> str | None:
        return self.color_precision.primary_hex if self.color_precision else None
