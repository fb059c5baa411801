"""External service clients."""

from .fal_client import FalBackgroundRemover, FalClient, SeedreamRenderer
from .gemini_client import GeminiImageRenderer

__all__ = [
    "FalBackgroundRemover",
    "FalClient",
    "SeedreamRenderer",
    "GeminiImageRenderer",
]
