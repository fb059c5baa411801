"""Structural garment analysis: labels, details, hollow regions, construction."""

import logging

from pydantic import ValidationError

from ..errors import SchemaError
from ..models.analysis import StructuralAnalysis
from .base import VisionAgent

logger = logging.getLogger(__name__)


STRUCTURE_PROMPT = """You analyze flat-lay garment photos for a ghost mannequin product shoot.

Return ONLY a JSON object:
{
  "category": "top | bottom | dress | outerwear | knitwear | underwear | accessory | unknown",
  "silhouette": "short silhouette name, e.g. boxy_crew_tee",
  "labels_found": [
    {"text": "exact readable text", "type": "brand | size | care | composition | origin | other",
     "location": "where on the garment", "confidence": 0.0, "preserve": true,
     "bbox_norm": [x0, y0, x1, y1]}
  ],
  "preserve_details": [
    {"element": "what", "priority": "critical | important | nice_to_have", "location": "where", "notes": ""}
  ],
  "hollow_regions": [
    {"region_type": "neckline | sleeves | front_opening | armholes | waist | other",
     "keep_hollow": true, "inner_visible": true, "inner_description": ""}
  ],
  "interior_analysis": [
    {"surface_type": "lining | facing | reverse | other", "location": "", "priority": "important",
     "material_description": "", "color_hex": "#RRGGBB"}
  ],
  "construction_details": [
    {"feature": "", "silhouette_rule": "", "critical_for_structure": false}
  ]
}
Use empty lists when nothing applies."""


class GarmentStructureAnalyzer(VisionAgent):
    """First analysis pass over the cleaned garment image."""

    agent_name = "GarmentStructureAnalyzer"
    instructions = STRUCTURE_PROMPT

    async def analyze(self, image_ref: str) -> StructuralAnalysis:
        data = await self._ask_json("Analyze this garment:", [image_ref])
        try:
            analysis = StructuralAnalysis.model_validate(data)
        except ValidationError as e:
            raise SchemaError(f"structural analysis did not validate: {e.error_count()} errors") from e

        logger.info(
            "🔍 Structure: %s, %d labels, %d details",
            analysis.category, len(analysis.labels), len(analysis.preserve_details),
        )
        return analysis
