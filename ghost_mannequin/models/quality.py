"""Quality verification models."""

from pydantic import BaseModel, Field, computed_field


class QualityViolation(BaseModel):
    """A hard constraint the render broke, with the fix to ask for."""

    constraint: str = Field(description="Constraint name, e.g. 'background', 'label', 'hollow'")
    detail: str = Field(default="", description="What was observed")
    correction: str = Field(description="Instruction appended to the next render")


class QualityReport(BaseModel):
    """Verdict of a quality verifier on one render."""

    passed: bool
    score: float = Field(default=1.0, ge=0.0, le=1.0)
    violations: list[QualityViolation] = Field(default_factory=list)
    verifier: str = "unknown"

    @computed_field
    @property
    def corrections(self) -> list[str]:
        return [v.correction for v in self.violations]
