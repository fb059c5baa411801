"""Renderer selection and the fallback chain.

This is the only component that retries. The plan is primary, then
secondary, then a last-resort attempt with a reduced directive, then the
intermediate (background-removed) image if the caller supplied one.
"""

import logging
import time

from ..config import RenderingConfig
from ..errors import ErrorKind
from ..models.facts import RenderDirective
from ..models.results import (
    RenderAttempt,
    RenderAttemptLog,
    RenderResult,
    StageErr,
    StageOk,
    StageResult,
)
from .directive import build_prompt, reduce_directive, sanitize_directive
from .protocols import ImageRenderer
from .stage_executor import StageExecutor

logger = logging.getLogger(__name__)

STAGE = "rendering"

# Failure kinds that move the chain to the next renderer
ADVANCE_KINDS = frozenset({
    ErrorKind.CONTENT_POLICY_BLOCKED,
    ErrorKind.TRANSIENT_NETWORK,
    ErrorKind.TIMEOUT,
    ErrorKind.QUOTA_EXCEEDED,
    ErrorKind.RATE_LIMITED,
    ErrorKind.SCHEMA_INVALID,
})
EXHAUSTING_KINDS = frozenset({ErrorKind.QUOTA_EXCEEDED, ErrorKind.RATE_LIMITED})


class RendererChain:
    """Picks a renderer for a directive and walks the fallback plan."""

    def __init__(
        self,
        renderers: list[ImageRenderer],
        config: RenderingConfig,
        timeout_ms: int,
        executor: StageExecutor | None = None,
    ):
        self.renderers: dict[str, ImageRenderer] = {r.name: r for r in renderers}
        self.config = config
        self.timeout_ms = timeout_ms
        self.executor = executor or StageExecutor()

    def select_primary(self, directive: RenderDirective, preference: str = "auto") -> str | None:
        """Renderer name for the first attempt, or None if none are registered."""
        if not self.renderers:
            return None
        if preference != "auto":
            if preference in self.renderers:
                return preference
            logger.warning("Unknown renderer %r requested, selecting automatically", preference)

        if directive.complexity > self.config.complexity_threshold:
            wanted = self.config.complex_renderer
        else:
            wanted = self.config.fast_renderer
        if wanted in self.renderers:
            return wanted
        return next(iter(self.renderers))

    def _secondary(self, primary: str) -> str | None:
        preferred = [self.config.complex_renderer, self.config.fast_renderer, *self.renderers]
        for name in preferred:
            if name != primary and name in self.renderers:
                return name
        return None

    async def render(
        self,
        directive: RenderDirective,
        image_refs: list[str],
        preference: str = "auto",
        intermediate_ref: str | None = None,
        output_size: str | None = None,
    ) -> StageResult[RenderResult]:
        started = time.perf_counter()
        output_size = output_size or self.config.default_output_size
        log: list[RenderAttemptLog] = []
        exhausted: set[str] = set()
        last_error: StageErr | None = None
        policy_blocked = False
        stopped = False

        primary = self.select_primary(directive, preference)
        secondary = self._secondary(primary) if primary else None
        plan: list[tuple[str | None, RenderAttempt]] = [
            (primary, RenderAttempt.PRIMARY),
            (secondary, RenderAttempt.FALLBACK),
            (None, RenderAttempt.LAST_RESORT),
        ]

        for name, attempt_kind in plan:
            if stopped or len(log) >= self.config.max_attempts:
                break

            current = directive
            if attempt_kind is RenderAttempt.LAST_RESORT:
                name = primary if primary not in exhausted else next(
                    (n for n in self.renderers if n not in exhausted), None
                )
                current = reduce_directive(directive)
                if policy_blocked:
                    current = sanitize_directive(current, self.config.sanitize_terms)
            if name is None or name in exhausted:
                continue

            retried_sanitized = False
            while len(log) < self.config.max_attempts:
                result = await self._attempt(name, attempt_kind, current, image_refs, output_size, log)
                if result.ok:
                    return StageOk(
                        value=RenderResult(
                            image_ref=result.value,
                            renderer=name,
                            attempt=attempt_kind,
                            attempt_number=len(log),
                            attempts=log,
                        ),
                        duration_ms=self._elapsed(started),
                        stage=STAGE,
                    )

                last_error = result
                if result.kind is ErrorKind.CONTENT_POLICY_BLOCKED:
                    policy_blocked = True
                    if not retried_sanitized and not current.sanitized:
                        current = sanitize_directive(current, self.config.sanitize_terms)
                        retried_sanitized = True
                        logger.info("🧼 %s blocked by content policy, retrying sanitized", name)
                        continue
                if result.kind in EXHAUSTING_KINDS:
                    exhausted.add(name)
                if result.kind not in ADVANCE_KINDS:
                    logger.warning("Renderer %s failed with %s, stopping chain", name, result.kind.value)
                    stopped = True
                break

        if intermediate_ref:
            logger.warning("⚠️ All renderers failed, returning intermediate image")
            return StageOk(
                value=RenderResult(
                    image_ref=intermediate_ref,
                    renderer="intermediate",
                    attempt=RenderAttempt.INTERMEDIATE,
                    attempt_number=len(log),
                    attempts=log,
                ),
                duration_ms=self._elapsed(started),
                stage=STAGE,
            )

        if last_error is None:
            return StageErr(
                kind=ErrorKind.UNKNOWN,
                message="no renderer available",
                stage=STAGE,
                duration_ms=self._elapsed(started),
            )
        return StageErr(
            kind=last_error.kind,
            message=f"all renderers failed after {len(log)} attempts: {last_error.message}",
            stage=STAGE,
            duration_ms=self._elapsed(started),
        )

    async def _attempt(
        self,
        name: str,
        attempt_kind: RenderAttempt,
        directive: RenderDirective,
        image_refs: list[str],
        output_size: str | None,
        log: list[RenderAttemptLog],
    ) -> StageResult[str]:
        renderer = self.renderers[name]
        prompt = build_prompt(directive)
        result = await self.executor.execute(
            STAGE,
            self.timeout_ms,
            lambda: renderer.render(prompt, image_refs, output_size),
        )
        log.append(RenderAttemptLog(
            attempt_number=len(log) + 1,
            renderer=name,
            attempt=attempt_kind,
            sanitized=directive.sanitized,
            reduced=directive.reduced,
            outcome="ok" if result.ok else result.kind.value,
            message=None if result.ok else result.message,
            duration_ms=result.duration_ms,
        ))
        if result.ok:
            logger.info("🎨 Rendered with %s (%s, attempt %d)", name, attempt_kind.value, len(log))
        return result

    @staticmethod
    def _elapsed(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)
