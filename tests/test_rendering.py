"""Tests for renderer selection and the fallback chain."""

import asyncio
import random

import pytest

from conftest import FakeRenderer
from ghost_mannequin.config import RenderingConfig
from ghost_mannequin.errors import (
    CollaboratorError,
    ContentPolicyError,
    ErrorKind,
    QuotaExceededError,
    RateLimitedError,
    SchemaError,
    TransientServiceError,
)
from ghost_mannequin.models.facts import RenderDirective
from ghost_mannequin.models.results import RenderAttempt
from ghost_mannequin.pipeline.rendering import RendererChain

SIMPLE = RenderDirective(must_preserve_labels=["ACME"])
COMPLEX = RenderDirective(
    must_preserve_labels=["ACME", "Size M", "Made in Portugal"],
    critical_details=["chest logo", "contrast piping"],
)
REFS = ["https://cdn.example.com/cleaned.png"]


def make_chain(*renderers, **config) -> RendererChain:
    return RendererChain(list(renderers), RenderingConfig(**config), 1000)


class TestSelection:
    def test_simple_directive_uses_fast_renderer(self):
        chain = make_chain(FakeRenderer("gemini", ["a"]), FakeRenderer("seedream", ["b"]))

        assert chain.select_primary(SIMPLE) == "seedream"

    def test_complex_directive_uses_complex_renderer(self):
        chain = make_chain(FakeRenderer("gemini", ["a"]), FakeRenderer("seedream", ["b"]))

        assert COMPLEX.complexity == 5
        assert chain.select_primary(COMPLEX) == "gemini"

    def test_explicit_preference(self):
        chain = make_chain(FakeRenderer("gemini", ["a"]), FakeRenderer("seedream", ["b"]))

        assert chain.select_primary(SIMPLE, "gemini") == "gemini"
        assert chain.select_primary(COMPLEX, "no-such-model") == "gemini"

    def test_missing_preferred_renderer(self):
        chain = make_chain(FakeRenderer("seedream", ["b"]))

        assert chain.select_primary(COMPLEX) == "seedream"
        assert make_chain().select_primary(COMPLEX) is None


class TestFallbackChain:
    """Walks primary, secondary, last resort, intermediate."""

    @pytest.mark.asyncio
    async def test_primary_success(self):
        seedream = FakeRenderer("seedream", ["https://fal.media/out.png"])
        chain = make_chain(FakeRenderer("gemini", ["x"]), seedream)

        result = await chain.render(SIMPLE, REFS)

        assert result.ok
        assert result.value.renderer == "seedream"
        assert result.value.attempt is RenderAttempt.PRIMARY
        assert not result.value.degraded
        assert result.value.attempt_number == 1

    @pytest.mark.asyncio
    async def test_policy_block_sanitizes_then_falls_back(self):
        seedream = FakeRenderer("seedream", [ContentPolicyError("blocked")])
        gemini = FakeRenderer("gemini", ["data:image/png;base64,AAAA"])
        chain = make_chain(gemini, seedream)

        result = await chain.render(SIMPLE, REFS)

        assert result.ok
        assert seedream.calls == 2
        assert gemini.calls == 1
        attempts = result.value.attempts
        assert [(a.renderer, a.sanitized) for a in attempts] == [
            ("seedream", False), ("seedream", True), ("gemini", False),
        ]
        assert attempts[0].outcome == "CONTENT_POLICY_BLOCKED"
        assert result.value.attempt is RenderAttempt.FALLBACK
        assert result.value.degraded

    @pytest.mark.asyncio
    async def test_sanitized_prompt_differs(self):
        seedream = FakeRenderer("seedream", [ContentPolicyError("blocked"), "ok.png"])
        chain = make_chain(seedream)

        result = await chain.render(SIMPLE, REFS)

        assert result.value.image_ref == "ok.png"
        assert "ghost mannequin" in seedream.prompts[0]
        assert "ghost mannequin" not in seedream.prompts[1]
        assert '"ACME"' in seedream.prompts[1]

    @pytest.mark.asyncio
    async def test_persistent_policy_block_is_bounded(self):
        seedream = FakeRenderer("seedream", [ContentPolicyError("blocked")])
        gemini = FakeRenderer("gemini", [ContentPolicyError("blocked")])
        chain = make_chain(gemini, seedream)

        result = await chain.render(SIMPLE, REFS)

        assert not result.ok
        assert result.kind is ErrorKind.CONTENT_POLICY_BLOCKED
        assert seedream.calls + gemini.calls == 5
        assert "5 attempts" in result.message

    @pytest.mark.asyncio
    async def test_quota_exhausts_renderer(self):
        seedream = FakeRenderer("seedream", [QuotaExceededError("out of credits")])
        gemini = FakeRenderer("gemini", [TransientServiceError("503"), "last.png"])
        chain = make_chain(gemini, seedream)

        result = await chain.render(SIMPLE, REFS)

        assert result.ok
        assert seedream.calls == 1
        assert result.value.renderer == "gemini"
        assert result.value.attempt is RenderAttempt.LAST_RESORT
        assert result.value.attempts[-1].reduced

    @pytest.mark.asyncio
    async def test_unclassified_error_stops_chain(self):
        seedream = FakeRenderer("seedream", [CollaboratorError("bad request", 400)])
        gemini = FakeRenderer("gemini", ["never.png"])
        chain = make_chain(gemini, seedream)

        result = await chain.render(SIMPLE, REFS)

        assert not result.ok
        assert result.kind is ErrorKind.UNKNOWN
        assert gemini.calls == 0

    @pytest.mark.asyncio
    async def test_intermediate_returned_when_all_fail(self):
        seedream = FakeRenderer("seedream", [RateLimitedError("slow down")])
        gemini = FakeRenderer("gemini", [RateLimitedError("slow down")])
        chain = make_chain(gemini, seedream)

        result = await chain.render(SIMPLE, REFS, intermediate_ref="cleaned.png")

        assert result.ok
        assert result.value.attempt is RenderAttempt.INTERMEDIATE
        assert result.value.image_ref == "cleaned.png"
        assert result.value.renderer == "intermediate"
        # Both renderers exhausted, so there is no last resort call
        assert len(result.value.attempts) == 2

    @pytest.mark.asyncio
    async def test_no_renderers(self):
        result = await make_chain().render(SIMPLE, REFS)

        assert not result.ok
        assert result.kind is ErrorKind.UNKNOWN
        assert result.message == "no renderer available"

    @pytest.mark.asyncio
    async def test_slow_renderer_times_out_and_advances(self):
        class StuckRenderer:
            name = "seedream"

            async def render(self, prompt, image_refs, output_size=None):
                await asyncio.Event().wait()

        gemini = FakeRenderer("gemini", ["fast.png"])
        chain = RendererChain([gemini, StuckRenderer()], RenderingConfig(), 20)

        result = await chain.render(SIMPLE, REFS)

        assert result.value.renderer == "gemini"
        assert result.value.attempts[0].outcome == "TIMEOUT"


_OUTCOMES = [
    lambda: ContentPolicyError("blocked"),
    lambda: TransientServiceError("503"),
    lambda: QuotaExceededError("quota"),
    lambda: RateLimitedError("429"),
    lambda: SchemaError("no image"),
    lambda: CollaboratorError("bad request"),
    lambda: "https://fal.media/ok.png",
]


class TestTermination:
    """The chain ends within max_attempts whatever the renderers do."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", range(30))
    async def test_random_outcomes(self, seed):
        rng = random.Random(seed)
        max_attempts = rng.randint(1, 6)
        renderers = [
            FakeRenderer(name, [rng.choice(_OUTCOMES)() for _ in range(8)])
            for name in ("gemini", "seedream")
        ]
        chain = make_chain(*renderers, max_attempts=max_attempts)
        directive = rng.choice([SIMPLE, COMPLEX])

        result = await chain.render(directive, REFS, intermediate_ref=rng.choice([None, "cleaned.png"]))

        assert sum(r.calls for r in renderers) <= max_attempts
        if result.ok:
            assert len(result.value.attempts) <= max_attempts
        else:
            assert result.message
