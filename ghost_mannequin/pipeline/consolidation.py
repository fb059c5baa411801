"""Consolidation: merge both analyses into one set of facts for rendering.

The engine never raises. With both analyses present it may ask a merge
assist for a candidate, which is parsed loosely and repaired field by
field. Every path, including the local fallback, ends in the same
hard-lock overlay so labels, hollow regions and the background survive no
matter what the candidate said.
"""

import logging
import time
from typing import Any, Callable

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..config import ConsolidationConfig
from ..errors import ErrorKind
from ..models.analysis import (
    GARMENT_CATEGORIES,
    HOLLOW_CATEGORIES,
    DetectedLabel,
    EnrichmentAnalysis,
    HollowRegion,
    StructuralAnalysis,
    as_list,
    normalize_hex,
)
from ..models.facts import NEUTRAL_GRAY, ConsolidationOutput, Palette, UnifiedFacts
from ..models.results import StageErr, StageOk, StageResult
from ..utils.json_extract import extract_json_object
from .directive import derive_directive
from .protocols import MergeAssist
from .stage_executor import StageExecutor

logger = logging.getLogger(__name__)

STAGE = "consolidation"

# Neutral values used when neither the candidate nor the analyses say anything
DEFAULTS: dict[str, Any] = {
    "category": "unknown",
    "silhouette": "generic_silhouette",
    "material": "unknown",
    "drape": "natural",
    "sheen": "matte",
    "transparency": "opaque",
    "seam_visibility": "standard",
    "edge_finish": "unknown",
    "color_temperature": "neutral",
    "saturation": "moderate",
    "lighting_preference": "soft_diffused",
    "shadow_preference": "soft",
    "view": "front",
    "framing_margin_pct": 6,
}


# ---------------------------------------------------------------------------
# Loose candidate schema
# ---------------------------------------------------------------------------

def _text_or_none(v: Any) -> str | None:
    if isinstance(v, bool) or not isinstance(v, (str, int, float)):
        return None
    text = str(v).strip()
    return text or None


class CandidatePalette(BaseModel):
    model_config = ConfigDict(extra="allow")

    dominant_hex: str | None = None
    accent_hex: str | None = None
    trim_hex: str | None = None
    pattern_hexes: list[str] = Field(default_factory=list)

    @field_validator("dominant_hex", "accent_hex", "trim_hex", mode="before")
    @classmethod
    def _hex(cls, v: Any) -> str | None:
        return normalize_hex(v)

    @field_validator("pattern_hexes", mode="before")
    @classmethod
    def _patterns(cls, v: Any) -> list[str]:
        return [h for h in (normalize_hex(item) for item in as_list(v)) if h]


class CandidateFacts(BaseModel):
    """Whatever the merge assist produced. Every field is optional and
    invalid values become None instead of failing the record."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    category: str | None = Field(default=None, validation_alias=AliasChoices("category", "category_generic"))
    silhouette: str | None = None
    palette: CandidatePalette | None = None
    material: str | None = None
    drape: str | None = Field(
        default=None, validation_alias=AliasChoices("drape", "drape_quality", "drape_stiffness")
    )
    sheen: str | None = Field(default=None, validation_alias=AliasChoices("sheen", "surface_sheen"))
    transparency: str | None = None
    seam_visibility: str | None = None
    edge_finish: str | None = Field(default=None, validation_alias=AliasChoices("edge_finish", "edge_finishing"))
    color_temperature: str | None = None
    saturation: str | None = Field(default=None, validation_alias=AliasChoices("saturation", "saturation_level"))
    lighting_preference: str | None = None
    shadow_preference: str | None = Field(
        default=None,
        validation_alias=AliasChoices("shadow_preference", "shadow_style", "shadow_behavior"),
    )
    view: str | None = None
    framing_margin_pct: int | None = None
    label_visibility: str | None = None
    required_components: list[str] | None = None
    forbidden_components: list[str] | None = None

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, v: Any) -> str | None:
        text = (_text_or_none(v) or "").lower()
        return text if text in GARMENT_CATEGORIES and text != "unknown" else None

    @field_validator(
        "silhouette", "material", "sheen", "transparency", "seam_visibility", "edge_finish",
        "color_temperature", "saturation", "lighting_preference", "shadow_preference", "view",
        mode="before",
    )
    @classmethod
    def _text(cls, v: Any) -> str | None:
        return _text_or_none(v)

    @field_validator("drape", mode="before")
    @classmethod
    def _drape(cls, v: Any) -> str | None:
        # Stiffness may come as a 0..1 number
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            if not 0 <= v <= 1:
                return None
            return "fluid" if v < 0.34 else "natural" if v < 0.67 else "structured"
        return _text_or_none(v)

    @field_validator("palette", mode="before")
    @classmethod
    def _palette(cls, v: Any):
        return v if isinstance(v, (dict, BaseModel)) else None

    @field_validator("framing_margin_pct", mode="before")
    @classmethod
    def _margin(cls, v: Any) -> int | None:
        if isinstance(v, bool):
            return None
        try:
            value = int(round(float(v)))
        except (TypeError, ValueError, OverflowError):
            return None
        return value if 2 <= value <= 12 else None

    @field_validator("label_visibility", mode="before")
    @classmethod
    def _visibility(cls, v: Any) -> str | None:
        return v if v in ("required", "optional") else None

    @field_validator("required_components", "forbidden_components", mode="before")
    @classmethod
    def _components(cls, v: Any) -> list[str] | None:
        if v is None:
            return None
        return [text for text in (_text_or_none(item) for item in as_list(v)) if text]


def parse_candidate(text: Any) -> tuple[CandidateFacts | None, list[str]]:
    """Parse merge-assist output into a candidate and its reported conflicts.

    Returns ``(None, [])`` when no usable object can be recovered.
    """
    if not isinstance(text, str):
        return None, []

    data = extract_json_object(text, recover=False)
    if data is None:
        logger.debug("Merge candidate is not plain JSON, recovering")
        data = extract_json_object(text, recover=True)
    if data is None:
        return None, []

    facts = data
    for key in ("facts_v3", "facts"):
        if isinstance(data.get(key), dict):
            facts = data[key]
            break

    conflicts = []
    for item in as_list(data.get("conflicts_found")):
        if isinstance(item, str) and item.strip():
            conflicts.append(item.strip())
        elif isinstance(item, dict) and _text_or_none(item.get("field")):
            conflicts.append(_text_or_none(item.get("field")))

    try:
        return CandidateFacts.model_validate(facts), conflicts
    except ValidationError as e:
        logger.debug("Merge candidate failed loose validation: %s", e)
        return None, []


# ---------------------------------------------------------------------------
# Field resolution
# ---------------------------------------------------------------------------

def _first(*values):
    for value in values:
        if value is not None and value != "":
            return value
    return None


def resolve_facts(
    candidate: CandidateFacts | None,
    structural: StructuralAnalysis | None,
    enrichment: EnrichmentAnalysis | None,
    *,
    background_hex: str = "#FFFFFF",
    preserve_labels: bool = True,
) -> tuple[UnifiedFacts, list[str]]:
    """Build facts from candidate, then originals, then defaults.

    Returns the facts (before hard locks) and the names of fields where the
    candidate disagreed with an original that was kept.
    """
    repaired: list[str] = []
    conflicts: list[str] = []
    color = enrichment.color_precision if enrichment else None
    fabric = enrichment.fabric_behavior if enrichment else None
    construction = enrichment.construction_precision if enrichment else None
    guidance = enrichment.rendering_guidance if enrichment else None

    def pick(name: str, original: Any = None, default: Any = None) -> Any:
        proposed = getattr(candidate, name, None) if candidate is not None else None
        if proposed is not None:
            return proposed
        if isinstance(original, str):
            original = original.strip() or None
        from_original = original is not None
        if candidate is not None or not from_original:
            repaired.append(name)
        return original if from_original else (default if default is not None else DEFAULTS.get(name))

    # Category comes from the structural pass whenever it is known
    structural_category = structural.category if structural and structural.category != "unknown" else None
    if structural_category:
        category = structural_category
        if candidate is not None and candidate.category and candidate.category != structural_category:
            conflicts.append("category")
    else:
        category = pick("category")

    candidate_palette = candidate.palette if candidate is not None and candidate.palette else None
    proposed_dominant = candidate_palette.dominant_hex if candidate_palette else None
    original_dominant = color.primary_hex if color else None
    if proposed_dominant is None and (candidate is not None or original_dominant is None):
        repaired.append("palette")
    dominant = _first(proposed_dominant, original_dominant) or NEUTRAL_GRAY
    accent = _first(
        candidate_palette.accent_hex if candidate_palette else None,
        color.secondary_hex if color else None,
        dominant,
    )
    trim = _first(
        candidate_palette.trim_hex if candidate_palette else None,
        color.trim_hex if color else None,
        accent,
    )
    palette = Palette(
        dominant_hex=dominant,
        accent_hex=accent,
        trim_hex=trim,
        pattern_hexes=candidate_palette.pattern_hexes if candidate_palette else [],
    )

    preserved = [label for label in structural.labels if label.preserve] if structural else []
    if not preserve_labels:
        label_visibility = "optional"
    elif preserved:
        label_visibility = "required"
        if candidate is not None and candidate.label_visibility == "optional":
            conflicts.append("label_visibility")
    else:
        label_visibility = "optional"

    facts = UnifiedFacts(
        category=category,
        silhouette=pick("silhouette", structural.silhouette if structural else None),
        labels_found=list(structural.labels) if structural else [],
        preserved_labels=preserved,
        preserve_details=list(structural.preserve_details) if structural else [],
        hollow_regions=list(structural.hollow_regions) if structural else [],
        interior_surfaces=list(structural.interior_surfaces) if structural else [],
        construction_features=list(structural.construction_features) if structural else [],
        palette=palette,
        color_temperature=pick("color_temperature", color.color_temperature if color else None),
        saturation=pick("saturation", color.saturation_level if color else None),
        material=pick("material"),
        drape=pick("drape", fabric.drape_quality if fabric else None),
        sheen=pick("sheen", fabric.surface_sheen if fabric else None),
        transparency=pick("transparency", fabric.transparency_level if fabric else None),
        seam_visibility=pick("seam_visibility", construction.seam_visibility if construction else None),
        edge_finish=pick("edge_finish", construction.edge_finishing if construction else None),
        lighting_preference=pick("lighting_preference", guidance.lighting_preference if guidance else None),
        shadow_preference=pick("shadow_preference", guidance.shadow_behavior if guidance else None),
        background_hex=background_hex,
        view=pick("view"),
        framing_margin_pct=pick("framing_margin_pct"),
        label_visibility=label_visibility,
        required_components=(candidate.required_components or []) if candidate is not None else [],
        forbidden_components=(candidate.forbidden_components or []) if candidate is not None else [],
        color_precision=color,
        fabric_behavior=fabric,
        construction_precision=construction,
        rendering_guidance=guidance,
        source="merge_assist" if candidate is not None else "local_fallback",
        repaired_fields=sorted(set(repaired)),
    )
    return facts, conflicts


def _label_key(label: DetectedLabel) -> tuple:
    # Same text at two places on the garment is two labels
    return (label.text.strip().casefold(), label.location.casefold(), label.bbox_norm)


def _union_labels(*groups: list[DetectedLabel]) -> list[DetectedLabel]:
    seen: set[tuple] = set()
    merged = []
    for group in groups:
        for label in group:
            key = _label_key(label)
            if key[0] and key not in seen:
                seen.add(key)
                merged.append(label)
    return merged


def _union_regions(*groups: list[HollowRegion]) -> list[HollowRegion]:
    seen: set[str] = set()
    merged = []
    for group in groups:
        for region in group:
            if region.region_type not in seen:
                seen.add(region.region_type)
                merged.append(region)
    return merged


def apply_hard_locks(
    facts: UnifiedFacts,
    structural: StructuralAnalysis | None,
    background_hex: str,
) -> UnifiedFacts:
    """Overlay the constraints no candidate may override. Idempotent."""
    input_labels = list(structural.labels) if structural else []
    input_regions = list(structural.hollow_regions) if structural else []

    preserved = _union_labels(
        facts.preserved_labels,
        [label for label in input_labels if label.preserve],
    )
    hollow_regions = _union_regions(facts.hollow_regions, input_regions)
    interior_render = facts.interior_render or facts.category in HOLLOW_CATEGORIES or any(
        region.keep_hollow for region in hollow_regions
    )
    if interior_render:
        hollow_regions = [
            region if region.keep_hollow else region.model_copy(update={"keep_hollow": True})
            for region in hollow_regions
        ]

    return facts.model_copy(update={
        "labels_found": _union_labels(facts.labels_found, input_labels),
        "preserved_labels": preserved,
        "hollow_regions": hollow_regions,
        "interior_render": interior_render,
        "background_hex": background_hex,
    })


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class ConsolidationEngine:
    """Produces ``UnifiedFacts`` and a ``RenderDirective`` from the analyses."""

    def __init__(
        self,
        config: ConsolidationConfig,
        timeout_ms: int,
        merge_assist: MergeAssist | None = None,
        executor: StageExecutor | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.config = config
        self.timeout_ms = timeout_ms
        self.merge_assist = merge_assist
        self.executor = executor or StageExecutor()
        self._clock = clock

    async def consolidate(
        self,
        structural: StructuralAnalysis | None,
        enrichment: EnrichmentAnalysis | None,
        session_id: str,
        *,
        background_hex: str | None = None,
        preserve_labels: bool = True,
    ) -> StageResult[ConsolidationOutput]:
        started = self._clock()
        if structural is None and enrichment is None:
            return StageErr(
                kind=ErrorKind.INSUFFICIENT_INPUT,
                message="no analysis available to consolidate",
                stage=STAGE,
            )

        background = normalize_hex(background_hex) or self.config.canonical_background_hex.upper()
        candidate, reported_conflicts = await self._candidate(structural, enrichment, session_id)

        facts, conflicts = resolve_facts(
            candidate,
            structural,
            enrichment,
            background_hex=background,
            preserve_labels=preserve_labels,
        )
        facts = apply_hard_locks(facts, structural, background)
        directive = derive_directive(facts, self.config.label_legibility_min)

        duration_ms = int((self._clock() - started) * 1000)
        output = ConsolidationOutput(
            facts=facts,
            directive=directive,
            source=facts.source,
            conflicts=sorted(set(conflicts + reported_conflicts)),
            processing_time_ms=duration_ms,
        )
        logger.info(
            "🧩 Consolidated via %s (%d repaired, %d labels locked)",
            facts.source, len(facts.repaired_fields), len(facts.preserved_labels),
        )
        return StageOk(value=output, duration_ms=duration_ms, stage=STAGE)

    async def _candidate(
        self,
        structural: StructuralAnalysis | None,
        enrichment: EnrichmentAnalysis | None,
        session_id: str,
    ) -> tuple[CandidateFacts | None, list[str]]:
        if (
            self.merge_assist is None
            or not self.config.merge_assist_enabled
            or structural is None
            or enrichment is None
        ):
            return None, []

        result = await self.executor.execute(
            STAGE,
            self.timeout_ms,
            lambda: self.merge_assist.merge(structural, enrichment, session_id),
        )
        if not result.ok:
            logger.warning("Merge assist failed (%s), using local fallback", result.kind.value)
            return None, []

        candidate, conflicts = parse_candidate(result.value)
        if candidate is None:
            logger.warning("Merge assist output unusable (%s), using local fallback",
                           ErrorKind.SCHEMA_INVALID.value)
        return candidate, conflicts
