"""Session state for a single ghost mannequin run."""

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from ..errors import ErrorKind
from .analysis import EnrichmentAnalysis, StructuralAnalysis
from .facts import ConsolidationOutput
from .quality import QualityReport
from .results import RenderResult


class PipelineStage(str, Enum):
    CREATED = "created"
    BACKGROUND_REMOVAL = "background_removal"
    ANALYSIS = "analysis"
    ENRICHMENT = "enrichment"
    CONSOLIDATION = "consolidation"
    RENDERING = "rendering"
    CORRECTION = "correction"
    COMPLETED = "completed"
    FAILED = "failed"


_ORDER = [
    PipelineStage.CREATED,
    PipelineStage.BACKGROUND_REMOVAL,
    PipelineStage.ANALYSIS,
    PipelineStage.ENRICHMENT,
    PipelineStage.CONSOLIDATION,
    PipelineStage.RENDERING,
    PipelineStage.CORRECTION,
    PipelineStage.COMPLETED,
]

TERMINAL_STAGES = frozenset({PipelineStage.COMPLETED, PipelineStage.FAILED})


class InvalidTransition(RuntimeError):
    """Raised when a session is moved backwards or out of a terminal state."""


class SessionError(BaseModel):
    """User-visible failure: what, which code, and where."""
    message: str
    code: str
    stage: str


class PipelineSession(BaseModel):
    """Mutable state of one run. Owned by the orchestrator, never persisted."""

    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = Field(default_factory=datetime.now)
    completed_at: datetime | None = None

    current_stage: PipelineStage = PipelineStage.CREATED
    status: str = "running"  # running, completed, failed
    stage_timings: dict[str, int] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)

    # Stage outputs
    cleaned_image_ref: str | None = None
    structural: StructuralAnalysis | None = None
    enrichment: EnrichmentAnalysis | None = None
    consolidation: ConsolidationOutput | None = None
    render: RenderResult | None = None
    quality_reports: list[QualityReport] = Field(default_factory=list)
    qa_report: QualityReport | None = None  # verdict on the returned render

    error: SessionError | None = None
    processing_time_ms: int = 0  # wall clock; analyses may overlap

    @property
    def is_terminal(self) -> bool:
        return self.current_stage in TERMINAL_STAGES

    def advance(self, stage: PipelineStage) -> None:
        """Move forward to ``stage``.

        Stages may be skipped but never revisited, except that the
        correction stage may re-enter itself once per loop iteration.
        """
        if self.is_terminal:
            raise InvalidTransition(f"session already {self.current_stage.value}")
        if stage is PipelineStage.FAILED:
            raise InvalidTransition("use fail() to fail a session")

        current = _ORDER.index(self.current_stage)
        target = _ORDER.index(stage)
        if target < current or (target == current and stage is not PipelineStage.CORRECTION):
            raise InvalidTransition(
                f"cannot move from {self.current_stage.value} to {stage.value}"
            )

        self.current_stage = stage
        if stage is PipelineStage.COMPLETED:
            self.status = "completed"
            self.completed_at = datetime.now()

    def fail(self, message: str, kind: ErrorKind, stage: str) -> None:
        """Mark the session failed; ``stage`` is where the failure happened."""
        if self.is_terminal:
            raise InvalidTransition(f"session already {self.current_stage.value}")
        self.error = SessionError(message=message or kind.value, code=kind.value, stage=stage)
        self.current_stage = PipelineStage.FAILED
        self.status = "failed"
        self.completed_at = datetime.now()

    def record_timing(self, stage: str, duration_ms: int) -> None:
        self.stage_timings[stage] = self.stage_timings.get(stage, 0) + duration_ms

    def warn(self, stage: str, kind: ErrorKind, message: str) -> None:
        self.warnings.append(f"{stage}: {kind.value}: {message}")
