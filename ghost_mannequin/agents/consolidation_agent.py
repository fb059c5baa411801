"""Merge-assist agent: drafts unified facts from both analyses."""

import json

from ..models.analysis import EnrichmentAnalysis, StructuralAnalysis
from .base import VisionAgent


MERGE_PROMPT = """You merge two garment analyses into one fact sheet for an image renderer.

Prefer the structural analysis for what the garment is and what must be kept;
prefer the enrichment analysis for colors, fabric and lighting. Never drop a label
or a hollow region. List every field where the two disagreed in "conflicts_found".

Return ONLY a JSON object:
{
  "facts_v3": {
    "category_generic": "", "silhouette": "",
    "palette": {"dominant_hex": "#RRGGBB", "accent_hex": "#RRGGBB", "trim_hex": "#RRGGBB", "pattern_hexes": []},
    "material": "", "drape_stiffness": 0.4, "transparency": "opaque", "surface_sheen": "matte",
    "seam_visibility": "", "edge_finish": "", "color_temperature": "", "saturation": "",
    "lighting_preference": "", "shadow_preference": "", "view": "front", "framing_margin_pct": 6,
    "required_components": [], "forbidden_components": []
  },
  "conflicts_found": []
}"""


class ConsolidationAgent(VisionAgent):
    """Text-only merge assist. Returns the raw reply; parsing is the caller's job."""

    agent_name = "ConsolidationAgent"
    instructions = MERGE_PROMPT

    async def merge(
        self,
        structural: StructuralAnalysis,
        enrichment: EnrichmentAnalysis,
        session_id: str,
    ) -> str:
        payload = {
            "session_id": session_id,
            "structural": structural.model_dump(mode="json", exclude_none=True),
            "enrichment": enrichment.model_dump(mode="json", exclude_none=True),
        }
        return await self._ask(json.dumps(payload, indent=2))
