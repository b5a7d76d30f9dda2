"""FastAPI control surface for an Orchestrator.

Exposes the model lifecycle (load / prewarm / reload / unload) and its
telemetry over HTTP. It depends only on the Orchestrator, so tests can run
it against fake backends.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from asrkit.constants import SAMPLE_RATE
from asrkit.errors import Busy, ModelsUnavailable, PipelineError, ResolutionFailed
from asrkit.models import ComputeConfiguration, ComputeUnits, PrewarmMode
from asrkit.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


class ComputeRequest(BaseModel):
    mel_compute: ComputeUnits = ComputeUnits.CPU_AND_GPU
    audio_encoder_compute: ComputeUnits = ComputeUnits.ALL
    text_decoder_compute: ComputeUnits = ComputeUnits.ALL

    def to_configuration(self) -> ComputeConfiguration:
        return ComputeConfiguration(
            self.mel_compute, self.audio_encoder_compute, self.text_decoder_compute
        )


class LoadRequest(BaseModel):
    variant: str | None = None
    folder: str | None = None
    repo: str | None = None
    compute: ComputeRequest | None = None
    download: bool | None = None


class PrewarmRequest(BaseModel):
    mode: PrewarmMode = PrewarmMode.ALL


class ReloadRequest(BaseModel):
    compute: ComputeRequest | None = None
    prewarm_mode: PrewarmMode = PrewarmMode.NONE


def _status_code(error: Exception) -> int:
    if isinstance(error, Busy):
        return 409
    if isinstance(error, ResolutionFailed):
        return 502
    if isinstance(error, ModelsUnavailable):
        return 503
    if isinstance(error, ValueError):
        return 422
    return 500


def create_app(orchestrator: Orchestrator, initialize: bool = True) -> FastAPI:
    """Create a FastAPI application around ``orchestrator``.

    Args:
        orchestrator: Pipeline to control (real or fake backends).
        initialize: Run ``orchestrator.initialize()`` on startup.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if initialize and not orchestrator.is_initialized:
            await orchestrator.initialize()
        yield
        await orchestrator.aclose()

    app = FastAPI(title="asrkit", lifespan=lifespan)

    def models_status() -> dict:
        variant = orchestrator.model_variant
        folder = orchestrator.model_folder
        return {
            "state": orchestrator.model_state.value,
            "variant": variant.value if variant else None,
            "folder": str(folder.path) if folder else None,
            "compute": orchestrator.compute.to_dict(),
            "busy": orchestrator.lifecycle.is_busy,
            "timings": orchestrator.timings.as_dict(),
        }

    async def run(operation, *args, **kwargs) -> dict:
        try:
            await operation(*args, **kwargs)
        except (PipelineError, ValueError) as e:
            logger.warning("%s failed: %s", operation.__name__, e)
            raise HTTPException(status_code=_status_code(e), detail=str(e)) from e
        return models_status()

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "ok",
            "model_state": orchestrator.model_state.value,
            "ready": orchestrator.model_state.is_ready,
            "sample_rate": SAMPLE_RATE,
        }

    @app.get("/v1/models")
    async def get_models():
        return models_status()

    @app.get("/v1/models/recommended")
    async def get_recommended():
        support = orchestrator.recommended_models()
        return {
            "default": support.default.value,
            "disabled": sorted(v.value for v in support.disabled),
        }

    @app.post("/v1/models/load")
    async def load(request: LoadRequest):
        return await run(
            orchestrator.load_models,
            variant=request.variant,
            folder=request.folder,
            repo=request.repo,
            compute=request.compute.to_configuration() if request.compute else None,
            download=request.download,
        )

    @app.post("/v1/models/prewarm")
    async def prewarm(request: PrewarmRequest):
        return await run(orchestrator.prewarm_models, request.mode)

    @app.post("/v1/models/reload")
    async def reload(request: ReloadRequest):
        compute = request.compute.to_configuration() if request.compute else None
        return await run(orchestrator.reload_models, compute, request.prewarm_mode)

    @app.post("/v1/models/unload")
    async def unload():
        return await run(orchestrator.unload_models)

    return app
