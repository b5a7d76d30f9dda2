"""Modal deployment of the asrkit control surface.

Deploy with: uvx modal deploy src/asrkit/modal_app.py
Dev server: uvx modal serve src/asrkit/modal_app.py

Environment:
  ASRKIT_MODEL       variant to serve (default: recommendation for the GPU host)
  ASRKIT_MODEL_REPO  Hub repository holding the TorchScript artifacts
"""

import os
from pathlib import Path

import modal

MODEL = os.environ.get("ASRKIT_MODEL", "small")
MODEL_REPO = os.environ.get("ASRKIT_MODEL_REPO", "asrkit/whisper-torchscript")
MODEL_DIR = Path("/models")


def download_model():
    """Download artifacts during image build so containers start from disk."""
    import asyncio

    from asrkit.models import ModelVariant
    from asrkit.resolver import HubResolver

    os.environ["HF_HUB_ENABLE_HF_TRANSFER"] = "1"
    resolver = HubResolver(download_base=MODEL_DIR)
    asyncio.run(resolver.download(ModelVariant.parse(MODEL), MODEL_REPO))


image = (
    modal.Image.debian_slim(python_version="3.12")
    .pip_install(
        "torch==2.4.0",
        "transformers>=4.53.0",
        "huggingface-hub[hf_transfer]>=0.25.0",
        "fastapi>=0.115.0",
        "numpy<2",
    )
    .env(
        {
            "HF_HUB_ENABLE_HF_TRANSFER": "1",
            "PYTORCH_CUDA_ALLOC_CONF": "expandable_segments:True",
            "ASRKIT_MODEL": MODEL,
            "ASRKIT_MODEL_REPO": MODEL_REPO,
        }
    )
    .add_local_python_source("asrkit", copy=True)
    .run_function(download_model)
)

app = modal.App("asrkit", image=image)


@app.cls(
    gpu="A100",
    memory=32768,
    timeout=600,
    min_containers=0,
    scaledown_window=300,  # 5-minute idle timeout
)
@modal.concurrent(max_inputs=12, target_inputs=10)
class AsrkitService:
    """Hosts one Orchestrator per container.

    Models are prewarmed and loaded in the FastAPI lifespan, so a container
    only reports healthy-and-ready once the whole stage set is bound.
    """

    @modal.asgi_app(requires_proxy_auth=True)
    def serve(self):
        from asrkit.config import PipelineConfig
        from asrkit.orchestrator import Orchestrator
        from asrkit.server import create_app

        config = PipelineConfig.from_env(
            download_base=MODEL_DIR,
            prewarm=True,
            load=True,
        )
        return create_app(Orchestrator(config))
