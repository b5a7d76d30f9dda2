"""asrkit: model lifecycle and stage composition for speech-to-text pipelines."""

from asrkit.config import PipelineConfig
from asrkit.constants import (
    CHUNK_LENGTH,
    HOP_LENGTH,
    SAMPLE_RATE,
    SECONDS_PER_TIME_TOKEN,
    WINDOW_SAMPLES,
)
from asrkit.errors import (
    Busy,
    Cancelled,
    InvalidComputeConfiguration,
    ModelsUnavailable,
    PipelineError,
    ResolutionFailed,
)
from asrkit.lifecycle import ModelLifecycleManager
from asrkit.models import (
    ComputeConfiguration,
    ComputeUnits,
    ModelState,
    ModelVariant,
    PrewarmMode,
    StageSet,
)
from asrkit.orchestrator import Orchestrator
from asrkit.timings import TranscriptionTimings

__all__ = [
    "SAMPLE_RATE",
    "HOP_LENGTH",
    "CHUNK_LENGTH",
    "WINDOW_SAMPLES",
    "SECONDS_PER_TIME_TOKEN",
    "Busy",
    "Cancelled",
    "InvalidComputeConfiguration",
    "ModelsUnavailable",
    "PipelineError",
    "ResolutionFailed",
    "ComputeConfiguration",
    "ComputeUnits",
    "ModelState",
    "ModelVariant",
    "PrewarmMode",
    "StageSet",
    "ModelLifecycleManager",
    "Orchestrator",
    "PipelineConfig",
    "TranscriptionTimings",
]
