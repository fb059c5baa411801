"""Stage outcomes and render results."""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

from pydantic import BaseModel, Field

from ..errors import ErrorKind

T = TypeVar("T")


@dataclass(frozen=True)
class StageOk(Generic[T]):
    """A stage that produced a value."""
    value: T
    duration_ms: int
    stage: str

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class StageErr:
    """A stage that failed; ``message`` is never empty."""
    kind: ErrorKind
    message: str
    stage: str
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return False


StageResult = Union[StageOk[T], StageErr]


class RenderAttempt(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"
    LAST_RESORT = "last_resort"
    INTERMEDIATE = "intermediate"


class RenderAttemptLog(BaseModel):
    """One call made by the renderer chain."""

    attempt_number: int
    renderer: str
    attempt: RenderAttempt
    sanitized: bool = False
    reduced: bool = False
    outcome: str = "ok"  # "ok" or an ErrorKind value
    message: str | None = None
    duration_ms: int = 0


class RenderResult(BaseModel):
    """The image a chain settled on, and how it got there."""

    image_ref: str
    renderer: str
    attempt: RenderAttempt
    attempt_number: int
    attempts: list[RenderAttemptLog] = Field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.attempt is not RenderAttempt.PRIMARY
