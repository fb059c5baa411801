"""FastAPI server for ghost mannequin rendering.

Receives requests with:
- flatlayImage: URL or data URI of the flat garment photo
- onModelImage: optional on-model reference for proportions
- options: output size, background color, label preservation, renderer
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ghost_mannequin import __version__
from ghost_mannequin.config import load_config
from ghost_mannequin.errors import ErrorKind
from ghost_mannequin.models.api import GhostError, GhostRequest, GhostResponse
from ghost_mannequin.pipeline import GhostMannequinPipeline

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Ghost Mannequin API",
    description="Flat-lay garment photos to ghost mannequin product shots",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Initialize pipeline (will be done on first request)
_pipeline: GhostMannequinPipeline | None = None


def get_pipeline() -> GhostMannequinPipeline:
    """Get or create the pipeline instance."""
    global _pipeline
    if _pipeline is None:
        config = load_config()  # Loads from .env automatically via pydantic-settings
        _pipeline = GhostMannequinPipeline(config)
    return _pipeline


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Ghost Mannequin API", "version": __version__}


@app.get("/health")
async def health():
    """Detailed health check."""
    return await get_pipeline().health_check()


@app.post(
    "/api/ghost",
    response_model=GhostResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def generate_ghost(request: GhostRequest):
    """Render a ghost mannequin image from a flat-lay photo.

    Stage failures come back as ``status: failed`` with an ``error`` object
    carrying a stable code and the stage it happened in.
    """
    try:
        return await get_pipeline().run(request)
    except Exception as e:
        logger.exception("Pipeline setup failed")
        return GhostResponse(
            session_id="",
            status="failed",
            error=GhostError(message=str(e) or type(e).__name__, code=ErrorKind.UNKNOWN.value, stage="setup"),
        )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
