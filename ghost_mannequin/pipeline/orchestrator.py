"""Ghost mannequin pipeline orchestrator."""

import asyncio
import logging
import time

from ..agents import (
    ConsolidationAgent,
    GarmentEnrichmentAnalyzer,
    GarmentStructureAnalyzer,
    QualityCritic,
)
from ..config import PipelineConfig
from ..errors import ErrorKind, classify_error, describe_error
from ..models.api import GhostError, GhostMetrics, GhostRequest, GhostResponse
from ..models.results import RenderAttempt, StageOk, StageResult
from ..models.session import PipelineSession, PipelineStage
from ..services import FalBackgroundRemover, FalClient, GeminiImageRenderer, SeedreamRenderer
from ..utils.cache import AnalysisCache
from ..utils.images import content_hash
from .consolidation import ConsolidationEngine
from .correction import BackgroundVerifier, CorrectionLoop
from .protocols import (
    BackgroundRemover,
    EnrichmentAnalyzer,
    ImageRenderer,
    MergeAssist,
    QualityVerifier,
    StructuralAnalyzer,
)
from .rendering import RendererChain
from .stage_executor import StageExecutor

logger = logging.getLogger(__name__)


class GhostMannequinPipeline:
    """Turns a flat-lay garment photo into a ghost mannequin render.

    Flow:
    1. Remove the background
    2. Structural analysis, with enrichment analysis running alongside
    3. Consolidate both into facts and a render directive
    4. Render through the fallback chain
    5. Optionally verify and correct the render

    Collaborators not passed in are built from ``config``.
    """

    def __init__(
        self,
        config: PipelineConfig,
        background_remover: BackgroundRemover | None = None,
        structural_analyzer: StructuralAnalyzer | None = None,
        enrichment_analyzer: EnrichmentAnalyzer | None = None,
        merge_assist: MergeAssist | None = None,
        renderers: list[ImageRenderer] | None = None,
        verifier: QualityVerifier | None = None,
        cache: AnalysisCache | None = None,
    ):
        self.config = config
        self.executor = StageExecutor()

        # Initialize services
        self.fal = FalClient(config.fal)
        self.background_remover = background_remover or FalBackgroundRemover(self.fal)
        if renderers is None:
            renderers = [GeminiImageRenderer(config.gemini), SeedreamRenderer(self.fal)]
        self.renderers = renderers

        # Initialize agents
        agent_kwargs = {
            "endpoint": config.azure_openai_endpoint,
            "deployment_name": config.azure_openai_deployment,
        }
        self.structural_analyzer = structural_analyzer or GarmentStructureAnalyzer(**agent_kwargs)
        self.enrichment_analyzer = enrichment_analyzer or GarmentEnrichmentAnalyzer(**agent_kwargs)
        self.merge_assist = merge_assist or ConsolidationAgent(**agent_kwargs)
        if verifier is None:
            if config.correction.verifier == "critic":
                verifier = QualityCritic(**agent_kwargs)
            else:
                verifier = BackgroundVerifier(config.correction)
        self.verifier = verifier

        if cache is None and config.cache.enabled:
            cache = AnalysisCache(config.cache.max_entries, config.cache.ttl_seconds)
        self.cache = cache

        timeouts = config.timeouts
        self.consolidation = ConsolidationEngine(
            config.consolidation, timeouts.consolidation, self.merge_assist, self.executor
        )
        self.chain = RendererChain(renderers, config.rendering, timeouts.rendering, self.executor)
        self.correction = CorrectionLoop(
            self.verifier, self.chain, config.correction, timeouts.qa, self.executor
        )

    async def run(self, request: GhostRequest) -> GhostResponse:
        """Run one session.

        Stage failures end up in the response's ``error``; only cancellation
        propagates, after in-flight stage calls are cancelled and the session
        is marked failed.
        """
        session = PipelineSession()
        started = time.perf_counter()
        pending: list[asyncio.Future] = []
        logger.info("🧥 Session %s started", session.session_id)

        try:
            await self._run_stages(session, request, pending)
        except asyncio.CancelledError:
            if not session.is_terminal:
                session.fail("session cancelled", ErrorKind.UNKNOWN, session.current_stage.value)
            logger.warning("Session %s cancelled", session.session_id)
            raise
        except Exception as e:
            logger.exception("Session %s crashed", session.session_id)
            if not session.is_terminal:
                session.fail(describe_error(e), classify_error(e), session.current_stage.value)
        finally:
            for task in pending:
                if not task.done():
                    task.cancel()
            session.processing_time_ms = int((time.perf_counter() - started) * 1000)

        if session.status == "completed":
            logger.info("🎉 Session %s completed in %d ms", session.session_id, session.processing_time_ms)
        else:
            logger.warning(
                "Session %s failed at %s: %s",
                session.session_id, session.error.stage, session.error.code,
            )
        return self.build_response(session)

    async def _run_stages(
        self,
        session: PipelineSession,
        request: GhostRequest,
        pending: list[asyncio.Future],
    ) -> None:
        timeouts = self.config.timeouts
        options = request.options

        # Step 1: background removal
        session.advance(PipelineStage.BACKGROUND_REMOVAL)
        removed = await self.executor.execute(
            "background_removal",
            timeouts.background_removal,
            lambda: self.background_remover.remove_background(request.flatlay_image),
        )
        session.record_timing("background_removal", removed.duration_ms)
        if not removed.ok:
            session.fail(removed.message, removed.kind, removed.stage)
            return
        cleaned = removed.value
        session.cleaned_image_ref = cleaned

        # Step 2: analyses, keyed in the cache by the original image
        cache_key = content_hash(request.flatlay_image)
        enrichment_task = None
        if self.config.parallel_analysis:
            enrichment_task = asyncio.ensure_future(self._analyze(
                "enrichment", self.enrichment_analyzer, cleaned, cache_key, timeouts.enrichment
            ))
            pending.append(enrichment_task)

        session.advance(PipelineStage.ANALYSIS)
        structural = await self._analyze(
            "analysis", self.structural_analyzer, cleaned, cache_key, timeouts.analysis
        )
        session.record_timing("analysis", structural.duration_ms)
        if structural.ok:
            session.structural = structural.value
        else:
            session.warn("analysis", structural.kind, structural.message)

        session.advance(PipelineStage.ENRICHMENT)
        if enrichment_task is not None:
            enrichment = await enrichment_task
        else:
            enrichment = await self._analyze(
                "enrichment", self.enrichment_analyzer, cleaned, cache_key, timeouts.enrichment
            )
        session.record_timing("enrichment", enrichment.duration_ms)
        if enrichment.ok:
            session.enrichment = enrichment.value
        else:
            session.warn("enrichment", enrichment.kind, enrichment.message)

        # Step 3: consolidation
        session.advance(PipelineStage.CONSOLIDATION)
        consolidated = await self.consolidation.consolidate(
            session.structural,
            session.enrichment,
            session.session_id,
            background_hex=options.background_color,
            preserve_labels=options.preserve_labels,
        )
        session.record_timing("consolidation", consolidated.duration_ms)
        if not consolidated.ok:
            session.fail(consolidated.message, consolidated.kind, consolidated.stage)
            return
        session.consolidation = consolidated.value
        directive = consolidated.value.directive

        # Step 4: rendering
        session.advance(PipelineStage.RENDERING)
        image_refs = [cleaned]
        if request.on_model_image:
            image_refs.append(request.on_model_image)
        rendered = await self.chain.render(
            directive,
            image_refs,
            preference=options.rendering_model,
            intermediate_ref=cleaned,
            output_size=options.output_size,
        )
        session.record_timing("rendering", rendered.duration_ms)
        if not rendered.ok:
            session.fail(rendered.message, rendered.kind, rendered.stage)
            return
        session.render = rendered.value
        if rendered.value.attempt is RenderAttempt.INTERMEDIATE:
            session.warn("rendering", ErrorKind.UNKNOWN, "all renderers failed, returning intermediate image")

        # Step 5: optional correction loop
        if self.config.correction.enabled and rendered.value.attempt is not RenderAttempt.INTERMEDIATE:
            correction_started = time.perf_counter()
            outcome = await self.correction.run(
                rendered.value,
                directive,
                image_refs,
                preference=options.rendering_model,
                output_size=options.output_size,
                on_iteration=lambda _: session.advance(PipelineStage.CORRECTION),
            )
            session.render = outcome.render
            session.quality_reports = outcome.reports
            session.qa_report = outcome.report
            session.record_timing("correction", int((time.perf_counter() - correction_started) * 1000))

        session.advance(PipelineStage.COMPLETED)

    async def _analyze(self, kind: str, analyzer, image_ref: str, cache_key: str, timeout_ms: int) -> StageResult:
        if self.cache is not None:
            cached = self.cache.get(kind, cache_key)
            if cached is not None:
                logger.info("♻️ %s cache hit", kind)
                return StageOk(value=cached, duration_ms=0, stage=kind)

        result = await self.executor.execute(kind, timeout_ms, lambda: analyzer.analyze(image_ref))
        if result.ok and self.cache is not None:
            self.cache.put_if_absent(kind, cache_key, result.value)
        return result

    def build_response(self, session: PipelineSession) -> GhostResponse:
        consolidation = None
        if session.consolidation is not None:
            output = session.consolidation
            consolidation = {
                "source": output.source,
                "conflicts": output.conflicts,
                "repairedFields": output.facts.repaired_fields,
                "processingTimeMs": output.processing_time_ms,
                "facts": output.facts.model_dump(mode="json"),
                "directive": output.directive.model_dump(mode="json"),
            }

        return GhostResponse(
            session_id=session.session_id,
            status=session.status,
            cleaned_image_url=session.cleaned_image_ref,
            render_url=session.render.image_ref if session.render else None,
            renderer=session.render.renderer if session.render else None,
            analysis=session.structural.model_dump(mode="json") if session.structural else None,
            enrichment=session.enrichment.model_dump(mode="json") if session.enrichment else None,
            consolidation=consolidation,
            qa_report=session.qa_report.model_dump(mode="json") if session.qa_report else None,
            warnings=session.warnings,
            metrics=GhostMetrics(
                processing_time_ms=session.processing_time_ms,
                stage_timings=session.stage_timings,
            ),
            error=GhostError(**session.error.model_dump()) if session.error else None,
        )

    async def process_batch(
        self,
        requests: list[GhostRequest],
        concurrency: int | None = None,
    ) -> list[GhostResponse]:
        """Run several sessions, at most ``concurrency`` at a time, in order."""
        semaphore = asyncio.Semaphore(max(1, concurrency or self.config.batch_concurrency))

        async def _one(request: GhostRequest) -> GhostResponse:
            async with semaphore:
                return await self.run(request)

        logger.info("📦 Batch of %d requests", len(requests))
        return list(await asyncio.gather(*(_one(r) for r in requests)))

    async def health_check(self) -> dict:
        """Configuration/readiness of each external service."""
        services = {
            "fal": self.fal.configured,
            "gemini": bool(self.config.gemini.api_key),
            "azure_openai": bool(self.config.azure_openai_endpoint),
        }
        return {
            "status": "ok" if all(services.values()) else "degraded",
            "services": services,
            "renderers": [r.name for r in self.renderers],
            "correction": self.config.correction.enabled,
            "cache": {
                "entries": len(self.cache),
                "hits": self.cache.hits,
                "misses": self.cache.misses,
            } if self.cache is not None else None,
        }

    async def close(self):
        """Close HTTP clients held by services and agents."""
        seen = set()
        for component in (
            self.fal, *self.renderers, self.structural_analyzer,
            self.enrichment_analyzer, self.merge_assist, self.verifier,
        ):
            close = getattr(component, "close", None)
            if close is None or id(component) in seen:
                continue
            seen.add(id(component))
            await close()
