# Test fixtures and configuration
import asyncio
import base64
import io
import sys
from pathlib import Path

import pytest
from PIL import Image

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from ghost_mannequin.config import PipelineConfig  # noqa: E402
from ghost_mannequin.models.analysis import EnrichmentAnalysis, StructuralAnalysis  # noqa: E402


class FakeRenderer:
    """Renderer that plays back a script of outcomes.

    Each entry is either an image ref to return or an exception to raise.
    Once the script runs out the last entry repeats.
    """

    def __init__(self, name: str, outcomes: list):
        self.name = name
        self.outcomes = list(outcomes)
        self.prompts: list[str] = []

    async def render(self, prompt, image_refs, output_size=None):
        self.prompts.append(prompt)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    @property
    def calls(self) -> int:
        return len(self.prompts)


class FakeAnalyzer:
    def __init__(self, result=None, error: BaseException | None = None, delay: float = 0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = 0

    async def analyze(self, image_ref):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class FakeBackgroundRemover:
    def __init__(self, result="https://cdn.example.com/cleaned.png", error: BaseException | None = None):
        self.result = result
        self.error = error

    async def remove_background(self, image_ref):
        if self.error is not None:
            raise self.error
        return self.result


class FakeMergeAssist:
    def __init__(self, reply: str = "", error: BaseException | None = None):
        self.reply = reply
        self.error = error
        self.calls = 0

    async def merge(self, structural, enrichment, session_id):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def config():
    """Pipeline config with short timeouts and no .env influence."""
    cfg = PipelineConfig(_env_file=None)
    cfg.timeouts.background_removal = 1_000
    cfg.timeouts.analysis = 1_000
    cfg.timeouts.enrichment = 1_000
    cfg.timeouts.consolidation = 1_000
    cfg.timeouts.rendering = 1_000
    cfg.timeouts.qa = 1_000
    return cfg


@pytest.fixture
def structural_three_labels():
    """Structural analysis with 3 labels, 2 of them marked for preservation."""
    return StructuralAnalysis.model_validate({
        "category": "top",
        "silhouette": "boxy_crew_tee",
        "labels_found": [
            {"text": "ACME", "type": "brand", "location": "neck", "preserve": True,
             "bbox_norm": [0.4, 0.05, 0.6, 0.1]},
            {"text": "Size M", "type": "size", "location": "neck", "preserve": True},
            {"text": "Machine wash 30", "type": "care", "location": "side seam", "preserve": False},
        ],
        "preserve_details": [
            {"element": "chest logo", "priority": "critical"},
            {"element": "ribbed cuffs", "priority": "important"},
        ],
        "hollow_regions": [
            {"region_type": "neckline", "keep_hollow": True, "inner_visible": True},
        ],
        "construction_details": [
            {"feature": "drop shoulder", "silhouette_rule": "shoulder seam below edge"},
        ],
    })


@pytest.fixture
def enrichment_blue():
    return EnrichmentAnalysis.model_validate({
        "color_precision": {"primary_hex": "#2E5BBA", "color_temperature": "cool"},
        "fabric_behavior": {"drape_quality": "fluid", "surface_sheen": "matte"},
        "construction_precision": {"seam_visibility": "subtle"},
        "rendering_guidance": {"lighting_preference": "soft_diffused"},
        "confidence": 0.9,
    })


@pytest.fixture
def minimal_png_bytes():
    """Minimal valid PNG image bytes."""
    return bytes([
        0x89, 0x50, 0x4E, 0x47, 0x0D, 0x0A, 0x1A, 0x0A,  # PNG signature
        0x00, 0x00, 0x00, 0x0D, 0x49, 0x48, 0x44, 0x52,  # IHDR chunk
        0x00, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00, 0x01,  # 1x1 dimensions
        0x08, 0x02, 0x00, 0x00, 0x00, 0x90, 0x77, 0x53,
        0xDE, 0x00, 0x00, 0x00, 0x0C, 0x49, 0x44, 0x41,  # IDAT chunk
        0x54, 0x08, 0xD7, 0x63, 0xF8, 0xCF, 0xC0, 0x00,
        0x00, 0x00, 0x03, 0x00, 0x01, 0x00, 0x05, 0xFE,
        0xD4, 0xAA, 0x00, 0x00, 0x00, 0x00, 0x49, 0x45,  # IEND chunk
        0x4E, 0x44, 0xAE, 0x42, 0x60, 0x82
    ])


@pytest.fixture
def minimal_png_data_uri(minimal_png_bytes):
    return f"data:image/png;base64,{base64.b64encode(minimal_png_bytes).decode()}"


def png_data_uri(color: tuple[int, int, int], size: int = 64, center: tuple[int, int, int] | None = None) -> str:
    """Solid-color PNG, optionally with a differently colored center block."""
    image = Image.new("RGB", (size, size), color)
    if center is not None:
        quarter = size // 4
        image.paste(center, (quarter, quarter, size - quarter, size - quarter))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return f"data:image/png;base64,{base64.b64encode(buffer.getvalue()).decode()}"
