"""LLM agents for the ghost mannequin pipeline."""

from .consolidation_agent import ConsolidationAgent
from .enrichment_analyzer import GarmentEnrichmentAnalyzer
from .quality_critic import QualityCritic
from .structure_analyzer import GarmentStructureAnalyzer

__all__ = [
    "ConsolidationAgent",
    "GarmentEnrichmentAnalyzer",
    "GarmentStructureAnalyzer",
    "QualityCritic",
]
