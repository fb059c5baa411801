"""Tests for the pipeline orchestrator, with every collaborator faked."""

import asyncio

import pytest

from conftest import FakeAnalyzer, FakeBackgroundRemover, FakeMergeAssist, FakeRenderer
from ghost_mannequin.errors import CollaboratorError, SchemaError, TransientServiceError
from ghost_mannequin.models.api import GhostOptions, GhostRequest
from ghost_mannequin.models.quality import QualityReport
from ghost_mannequin.pipeline import GhostMannequinPipeline

FLATLAY = "https://cdn.example.com/flatlay.jpg"


def make_pipeline(config, structural, enrichment, **overrides) -> GhostMannequinPipeline:
    components = {
        "background_remover": FakeBackgroundRemover(),
        "structural_analyzer": FakeAnalyzer(structural),
        "enrichment_analyzer": FakeAnalyzer(enrichment),
        "merge_assist": FakeMergeAssist("no json here"),
        "renderers": [
            FakeRenderer("gemini", ["https://cdn.example.com/gemini.png"]),
            FakeRenderer("seedream", ["https://fal.media/seedream.png"]),
        ],
    }
    components.update(overrides)
    return GhostMannequinPipeline(config, **components)


class PassingVerifier:
    name = "stub"

    async def verify(self, image_ref, directive):
        return QualityReport(passed=True, score=0.9, verifier=self.name)


class TestPipelineRun:
    """End-to-end session flow."""

    @pytest.mark.asyncio
    async def test_happy_path(self, config, structural_three_labels, enrichment_blue):
        pipeline = make_pipeline(config, structural_three_labels, enrichment_blue)

        response = await pipeline.run(GhostRequest(flatlay_image=FLATLAY))

        assert response.succeeded
        assert response.error is None
        assert response.cleaned_image_url == "https://cdn.example.com/cleaned.png"
        assert response.render_url == "https://fal.media/seedream.png"
        assert response.renderer == "seedream"
        assert response.analysis["category"] == "top"
        assert response.enrichment["color_precision"]["primary_hex"] == "#2E5BBA"
        assert response.consolidation["source"] == "local_fallback"
        assert response.consolidation["directive"]["must_preserve_labels"] == ["ACME", "Size M"]
        assert set(response.metrics.stage_timings) >= {
            "background_removal", "analysis", "enrichment", "consolidation", "rendering",
        }
        assert response.warnings == []
        assert len(response.session_id) == 32

    @pytest.mark.asyncio
    async def test_renderer_gets_cleaned_and_on_model_images(
        self, config, structural_three_labels, enrichment_blue
    ):
        seen = []

        class RecordingRenderer:
            name = "seedream"

            async def render(self, prompt, image_refs, output_size=None):
                seen.append((image_refs, output_size))
                return "https://fal.media/out.png"

        pipeline = make_pipeline(
            config, structural_three_labels, enrichment_blue, renderers=[RecordingRenderer()]
        )
        request = GhostRequest(
            flatlay_image=FLATLAY,
            on_model_image="https://cdn.example.com/model.jpg",
            options=GhostOptions(output_size="1024x1536"),
        )

        await pipeline.run(request)

        assert seen == [(
            ["https://cdn.example.com/cleaned.png", "https://cdn.example.com/model.jpg"],
            "1024x1536",
        )]

    @pytest.mark.asyncio
    async def test_background_removal_failure(self, config, structural_three_labels, enrichment_blue):
        structural = FakeAnalyzer(structural_three_labels)
        pipeline = make_pipeline(
            config, structural_three_labels, enrichment_blue,
            background_remover=FakeBackgroundRemover(error=TransientServiceError("502 from FAL")),
            structural_analyzer=structural,
        )

        response = await pipeline.run(GhostRequest(flatlay_image=FLATLAY))

        assert response.status == "failed"
        assert response.error.code == "TRANSIENT_NETWORK"
        assert response.error.stage == "background_removal"
        assert response.render_url is None
        assert structural.calls == 0

    @pytest.mark.asyncio
    async def test_failed_analysis_becomes_warning(self, config, enrichment_blue):
        pipeline = make_pipeline(
            config, None, enrichment_blue,
            structural_analyzer=FakeAnalyzer(error=SchemaError("not json")),
        )

        response = await pipeline.run(GhostRequest(flatlay_image=FLATLAY))

        assert response.succeeded
        assert response.analysis is None
        assert response.warnings == ["analysis: SCHEMA_INVALID: not json"]

    @pytest.mark.asyncio
    async def test_both_analyses_failing_is_insufficient_input(self, config):
        pipeline = make_pipeline(
            config, None, None,
            structural_analyzer=FakeAnalyzer(error=SchemaError("not json")),
            enrichment_analyzer=FakeAnalyzer(error=TransientServiceError("reset")),
        )

        response = await pipeline.run(GhostRequest(flatlay_image=FLATLAY))

        assert response.status == "failed"
        assert response.error.code == "INSUFFICIENT_INPUT"
        assert response.error.stage == "consolidation"
        assert len(response.warnings) == 2

    @pytest.mark.asyncio
    async def test_all_renderers_failing_returns_intermediate(
        self, config, structural_three_labels, enrichment_blue
    ):
        pipeline = make_pipeline(
            config, structural_three_labels, enrichment_blue,
            renderers=[FakeRenderer("seedream", [CollaboratorError("bad request")])],
        )

        response = await pipeline.run(GhostRequest(flatlay_image=FLATLAY))

        assert response.succeeded
        assert response.render_url == "https://cdn.example.com/cleaned.png"
        assert response.renderer == "intermediate"
        assert any(w.startswith("rendering:") for w in response.warnings)

    @pytest.mark.asyncio
    async def test_correction_report_is_returned(self, config, structural_three_labels, enrichment_blue):
        config.correction.enabled = True
        pipeline = make_pipeline(
            config, structural_three_labels, enrichment_blue, verifier=PassingVerifier()
        )

        response = await pipeline.run(GhostRequest(flatlay_image=FLATLAY))

        assert response.succeeded
        assert response.qa_report["passed"] is True
        assert "correction" in response.metrics.stage_timings


class TestAnalysisScheduling:
    @pytest.mark.asyncio
    async def test_analyses_run_in_parallel(self, config, structural_three_labels, enrichment_blue):
        enrichment_started = asyncio.Event()

        class WaitingStructural:
            async def analyze(self, image_ref):
                # Only finishes if enrichment is already running
                await enrichment_started.wait()
                return structural_three_labels

        class SignallingEnrichment:
            async def analyze(self, image_ref):
                enrichment_started.set()
                return enrichment_blue

        pipeline = make_pipeline(
            config, None, None,
            structural_analyzer=WaitingStructural(),
            enrichment_analyzer=SignallingEnrichment(),
        )

        response = await pipeline.run(GhostRequest(flatlay_image=FLATLAY))

        assert response.warnings == []
        assert response.analysis is not None

    @pytest.mark.asyncio
    async def test_sequential_when_disabled(self, config, structural_three_labels, enrichment_blue):
        config.parallel_analysis = False
        config.timeouts.analysis = 50
        enrichment_started = asyncio.Event()

        class WaitingStructural:
            async def analyze(self, image_ref):
                await enrichment_started.wait()
                return structural_three_labels

        class SignallingEnrichment:
            async def analyze(self, image_ref):
                enrichment_started.set()
                return enrichment_blue

        pipeline = make_pipeline(
            config, None, None,
            structural_analyzer=WaitingStructural(),
            enrichment_analyzer=SignallingEnrichment(),
        )

        response = await pipeline.run(GhostRequest(flatlay_image=FLATLAY))

        assert response.succeeded
        assert response.warnings[0].startswith("analysis: TIMEOUT")

    @pytest.mark.asyncio
    async def test_cache_reuses_analyses(self, config, structural_three_labels, enrichment_blue):
        structural = FakeAnalyzer(structural_three_labels)
        enrichment = FakeAnalyzer(enrichment_blue)
        pipeline = make_pipeline(
            config, None, None, structural_analyzer=structural, enrichment_analyzer=enrichment
        )

        await pipeline.run(GhostRequest(flatlay_image=FLATLAY))
        second = await pipeline.run(GhostRequest(flatlay_image=FLATLAY))

        assert second.succeeded
        assert structural.calls == 1
        assert enrichment.calls == 1
        assert pipeline.cache.hits == 2

    @pytest.mark.asyncio
    async def test_cache_disabled(self, config, structural_three_labels, enrichment_blue):
        config.cache.enabled = False
        structural = FakeAnalyzer(structural_three_labels)
        pipeline = make_pipeline(config, None, enrichment_blue, structural_analyzer=structural)

        await pipeline.run(GhostRequest(flatlay_image=FLATLAY))
        await pipeline.run(GhostRequest(flatlay_image=FLATLAY))

        assert pipeline.cache is None
        assert structural.calls == 2


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_propagates_and_stops_analyses(self, config, structural_three_labels):
        analysis_started = asyncio.Event()
        enrichment_cancelled = []

        class BlockingStructural:
            async def analyze(self, image_ref):
                analysis_started.set()
                await asyncio.Event().wait()

        class BlockingEnrichment:
            async def analyze(self, image_ref):
                try:
                    await asyncio.Event().wait()
                except asyncio.CancelledError:
                    enrichment_cancelled.append(True)
                    raise

        pipeline = make_pipeline(
            config, None, None,
            structural_analyzer=BlockingStructural(),
            enrichment_analyzer=BlockingEnrichment(),
        )

        task = asyncio.ensure_future(pipeline.run(GhostRequest(flatlay_image=FLATLAY)))
        await analysis_started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.01)

        assert enrichment_cancelled == [True]


class TestBatchAndHealth:
    @pytest.mark.asyncio
    async def test_batch_preserves_order(self, config, structural_three_labels, enrichment_blue):
        class EchoRemover:
            async def remove_background(self, image_ref):
                return image_ref.replace(".jpg", "-clean.png")

        pipeline = make_pipeline(
            config, structural_three_labels, enrichment_blue, background_remover=EchoRemover()
        )
        requests = [
            GhostRequest(flatlay_image=f"https://cdn.example.com/{n}.jpg") for n in ("a", "b", "c")
        ]

        responses = await pipeline.process_batch(requests, concurrency=2)

        assert [r.cleaned_image_url for r in responses] == [
            "https://cdn.example.com/a-clean.png",
            "https://cdn.example.com/b-clean.png",
            "https://cdn.example.com/c-clean.png",
        ]
        assert len({r.session_id for r in responses}) == 3

    @pytest.mark.asyncio
    async def test_health_without_credentials(self, config, structural_three_labels, enrichment_blue):
        config.fal.api_key = None
        config.gemini.api_key = None
        config.azure_openai_endpoint = None
        pipeline = make_pipeline(config, structural_three_labels, enrichment_blue)

        health = await pipeline.health_check()

        assert health["status"] == "degraded"
        assert health["services"] == {"fal": False, "gemini": False, "azure_openai": False}
        assert health["renderers"] == ["gemini", "seedream"]
        assert health["cache"]["entries"] == 0

    @pytest.mark.asyncio
    async def test_health_with_credentials(self, config, structural_three_labels, enrichment_blue):
        config.fal.api_key = "fal-key"
        config.gemini.api_key = "gemini-key"
        config.azure_openai_endpoint = "https://example.openai.azure.com"
        pipeline = make_pipeline(config, structural_three_labels, enrichment_blue)

        health = await pipeline.health_check()

        assert health["status"] == "ok"
