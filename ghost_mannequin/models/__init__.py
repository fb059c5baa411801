"""Pydantic models for the ghost mannequin pipeline."""

from .analysis import (
    DetectedLabel,
    EnrichmentAnalysis,
    HollowRegion,
    PreserveDetail,
    StructuralAnalysis,
)
from .api import GhostOptions, GhostRequest, GhostResponse
from .facts import (
    REQUIRED_FACT_FIELDS,
    ConsolidationOutput,
    Palette,
    RenderDirective,
    UnifiedFacts,
    missing_required_fields,
)
from .quality import QualityReport, QualityViolation
from .results import RenderAttempt, RenderAttemptLog, RenderResult, StageErr, StageOk, StageResult
from .session import InvalidTransition, PipelineSession, PipelineStage

__all__ = [
    "DetectedLabel",
    "EnrichmentAnalysis",
    "HollowRegion",
    "PreserveDetail",
    "StructuralAnalysis",
    "GhostOptions",
    "GhostRequest",
    "GhostResponse",
    "REQUIRED_FACT_FIELDS",
    "ConsolidationOutput",
    "Palette",
    "RenderDirective",
    "UnifiedFacts",
    "missing_required_fields",
    "QualityReport",
    "QualityViolation",
    "RenderAttempt",
    "RenderAttemptLog",
    "RenderResult",
    "StageErr",
    "StageOk",
    "StageResult",
    "InvalidTransition",
    "PipelineSession",
    "PipelineStage",
]
