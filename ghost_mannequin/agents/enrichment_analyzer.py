"""Enrichment analysis: exact colors, fabric behaviour, rendering guidance."""

from pydantic import ValidationError

from ..errors import SchemaError
from ..models.analysis import EnrichmentAnalysis
from .base import VisionAgent


ENRICHMENT_PROMPT = """You measure rendering-critical attributes of a garment photo.

Return ONLY a JSON object:
{
  "color_precision": {"primary_hex": "#RRGGBB", "secondary_hex": "#RRGGBB or null",
                      "trim_hex": "#RRGGBB or null", "color_temperature": "warm | cool | neutral",
                      "saturation_level": "muted | moderate | vibrant", "accuracy_score": 0.0},
  "fabric_behavior": {"drape_quality": "crisp | structured | fluid | clingy", "surface_sheen": "matte | subtle_sheen | glossy",
                      "transparency_level": "opaque | semi_opaque | sheer", "weight_class": "light | medium | heavy",
                      "stretch_capability": "none | low | high"},
  "construction_precision": {"seam_visibility": "hidden | subtle | visible", "edge_finishing": "",
                             "stitching_contrast": false, "hardware_finish": ""},
  "rendering_guidance": {"lighting_preference": "", "shadow_behavior": "", "detail_sharpness": ""},
  "confidence": 0.0
}"""


class GarmentEnrichmentAnalyzer(VisionAgent):
    """Second, independent analysis pass."""

    agent_name = "GarmentEnrichmentAnalyzer"
    instructions = ENRICHMENT_PROMPT

    async def analyze(self, image_ref: str) -> EnrichmentAnalysis:
        data = await self._ask_json("Measure this garment:", [image_ref])
        try:
            return EnrichmentAnalysis.model_validate(data)
        except ValidationError as e:
            raise SchemaError(f"enrichment analysis did not validate: {e.error_count()} errors") from e
