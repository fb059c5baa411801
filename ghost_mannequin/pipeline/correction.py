"""Post-render quality verification and the bounded correction loop."""

import io
import logging
from dataclasses import dataclass, field
from typing import Callable

import httpx
import numpy as np
from PIL import Image, UnidentifiedImageError

from ..config import CorrectionConfig
from ..errors import SchemaError
from ..models.facts import RenderDirective
from ..models.quality import QualityReport, QualityViolation
from ..models.results import RenderAttempt, RenderResult
from ..utils.images import load_image_bytes
from .directive import amend_directive
from .protocols import QualityVerifier
from .rendering import RendererChain
from .stage_executor import StageExecutor

logger = logging.getLogger(__name__)

STAGE = "correction"


def hex_to_rgb(hex_color: str) -> np.ndarray:
    value = hex_color.lstrip("#")
    return np.array([int(value[i:i + 2], 16) for i in (0, 2, 4)], dtype=np.float64)


def border_pixels(rgb: np.ndarray, border_px: int) -> np.ndarray:
    """Pixels of the outer frame of the image, shape (n, 3)."""
    h, w = rgb.shape[:2]
    b = max(1, min(border_px, h // 2, w // 2))
    frame = np.zeros((h, w), dtype=bool)
    frame[:b, :] = True
    frame[-b:, :] = True
    frame[:, :b] = True
    frame[:, -b:] = True
    return rgb[frame]


def background_deviation(image: Image.Image, background_hex: str, border_px: int) -> tuple[float, float]:
    """Mean RGB distance of the border from the background, and gray variance."""
    rgb = np.asarray(image.convert("RGB"), dtype=np.float64)
    pixels = border_pixels(rgb, border_px)
    distances = np.linalg.norm(pixels - hex_to_rgb(background_hex), axis=1)
    gray = pixels @ np.array([0.299, 0.587, 0.114])
    return float(np.mean(distances)), float(np.var(gray))


class BackgroundVerifier:
    """Local check that the render sits on a uniform background of the
    requested color. Only the image border is inspected, so the garment
    itself never counts against the score."""

    name = "background"

    def __init__(self, config: CorrectionConfig, http_client: httpx.AsyncClient | None = None):
        self.config = config
        self._http = http_client

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=60.0)
        return self._http

    async def verify(self, image_ref: str, directive: RenderDirective) -> QualityReport:
        image_bytes, _ = await load_image_bytes(image_ref, self.http)
        try:
            image = Image.open(io.BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise SchemaError(f"render is not a readable image: {e}") from e

        mean_distance, variance = background_deviation(
            image, directive.background_hex, self.config.border_px
        )
        purity = max(0.0, 1.0 - mean_distance / 50.0)
        uniformity = max(0.0, 1.0 - variance / 100.0)
        score = round(purity * 0.7 + uniformity * 0.3, 3)

        violations = []
        if mean_distance > self.config.background_tolerance:
            violations.append(QualityViolation(
                constraint="background",
                detail=f"border deviates {mean_distance:.1f} from {directive.background_hex}",
                correction=(
                    f"Make the background a perfectly uniform solid {directive.background_hex} "
                    "with no gradient, vignette or shadow band at the edges."
                ),
            ))
        return QualityReport(
            passed=not violations,
            score=score,
            violations=violations,
            verifier=self.name,
        )

    async def close(self):
        if self._http:
            await self._http.aclose()
            self._http = None


@dataclass
class CorrectionOutcome:
    render: RenderResult
    directive: RenderDirective
    reports: list[QualityReport] = field(default_factory=list)
    iterations: int = 0
    # Report on `render` itself; None when the latest render went unverified
    report: QualityReport | None = None


class CorrectionLoop:
    """Verify, amend the directive, re-render; at most ``max_iterations`` re-renders.

    A verifier failure ends the loop and keeps the render it was looking at.
    A re-render that fails, or only falls back to the intermediate image,
    also keeps the previous render.
    """

    def __init__(
        self,
        verifier: QualityVerifier,
        chain: RendererChain,
        config: CorrectionConfig,
        timeout_ms: int,
        executor: StageExecutor | None = None,
    ):
        self.verifier = verifier
        self.chain = chain
        self.config = config
        self.timeout_ms = timeout_ms
        self.executor = executor or StageExecutor()

    async def run(
        self,
        render: RenderResult,
        directive: RenderDirective,
        image_refs: list[str],
        *,
        preference: str = "auto",
        output_size: str | None = None,
        on_iteration: Callable[[int], None] | None = None,
    ) -> CorrectionOutcome:
        outcome = CorrectionOutcome(render=render, directive=directive)
        check = 0

        # Every re-render is verified before it is returned
        while True:
            check += 1
            if on_iteration:
                on_iteration(check)

            current_render, current_directive = outcome.render, outcome.directive
            verdict = await self.executor.execute(
                STAGE,
                self.timeout_ms,
                lambda: self.verifier.verify(current_render.image_ref, current_directive),
            )
            if not verdict.ok:
                logger.warning("Verifier %s failed (%s), keeping render", self.verifier.name, verdict.kind.value)
                break

            report = verdict.value
            outcome.reports.append(report)
            outcome.report = report
            if report.passed:
                logger.info("✅ Render passed %s check (score %.2f)", report.verifier, report.score)
                break
            if outcome.iterations >= self.config.max_iterations:
                logger.warning("Correction budget spent after %d re-renders, keeping last render", outcome.iterations)
                break

            outcome.iterations += 1
            amended = amend_directive(current_directive, report.corrections)
            logger.info("🔧 Correction %d: %s", outcome.iterations, "; ".join(report.corrections))
            rerender = await self.chain.render(
                amended, image_refs, preference=preference, output_size=output_size
            )
            if not rerender.ok or rerender.value.attempt is RenderAttempt.INTERMEDIATE:
                logger.warning("Correction render failed, keeping previous render")
                break
            outcome.render = rerender.value
            outcome.directive = amended
            outcome.report = None

        return outcome

    async def close(self):
        close = getattr(self.verifier, "close", None)
        if close:
            await close()
