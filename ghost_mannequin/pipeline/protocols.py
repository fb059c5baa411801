"""Collaborator interfaces the orchestrator depends on."""

from typing import Protocol, runtime_checkable

from ..models.analysis import EnrichmentAnalysis, StructuralAnalysis
from ..models.facts import RenderDirective
from ..models.quality import QualityReport


@runtime_checkable
class BackgroundRemover(Protocol):
    async def remove_background(self, image_ref: str) -> str: ...


@runtime_checkable
class StructuralAnalyzer(Protocol):
    async def analyze(self, image_ref: str) -> StructuralAnalysis: ...


@runtime_checkable
class EnrichmentAnalyzer(Protocol):
    async def analyze(self, image_ref: str) -> EnrichmentAnalysis: ...


@runtime_checkable
class MergeAssist(Protocol):
    """Returns raw model text; the consolidation engine parses it."""

    async def merge(
        self,
        structural: StructuralAnalysis,
        enrichment: EnrichmentAnalysis,
        session_id: str,
    ) -> str: ...


@runtime_checkable
class ImageRenderer(Protocol):
    name: str

    async def render(self, prompt: str, image_refs: list[str], output_size: str | None = None) -> str: ...


@runtime_checkable
class QualityVerifier(Protocol):
    name: str

    async def verify(self, image_ref: str, directive: RenderDirective) -> QualityReport: ...
