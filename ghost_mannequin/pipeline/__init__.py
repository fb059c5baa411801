"""Ghost mannequin pipeline stages."""

from .consolidation import ConsolidationEngine
from .correction import BackgroundVerifier, CorrectionLoop
from .orchestrator import GhostMannequinPipeline
from .rendering import RendererChain
from .stage_executor import StageExecutor

__all__ = [
    "BackgroundVerifier",
    "ConsolidationEngine",
    "CorrectionLoop",
    "GhostMannequinPipeline",
    "RendererChain",
    "StageExecutor",
]
