"""Protocols for pipeline stages and the collaborators that load them.

This is the boundary that isolates backend-dependent code (torch, the Hub,
transformers) from the lifecycle manager, the orchestrator and the tests.
Each concrete stage implements exactly one capability protocol.
"""

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import numpy as np

from asrkit.models import ComputeUnits, ModelVariant, StageKind


class ModelHandle(Protocol):
    """A model loaded by an inference backend."""

    def predict(self, *inputs: np.ndarray) -> np.ndarray:
        ...

    def unload(self) -> None:
        """Release the model's memory. Further predict calls are invalid."""
        ...


class InferenceBackend(Protocol):
    """Turns an artifact on disk into an invocable model."""

    def load(self, path: Path, compute_units: ComputeUnits) -> ModelHandle:
        """Load the artifact at ``path`` onto the units it should run on.

        Blocking; the lifecycle manager calls it from a worker thread.
        """
        ...


@runtime_checkable
class ModelBackedStage(Protocol):
    """Stage whose behavior comes from a loaded model artifact."""

    kind: StageKind

    def load_model(self, path: Path, compute_units: ComputeUnits, prewarm: bool = False) -> None:
        """Load the artifact; run a warmup pass first when ``prewarm`` is set."""
        ...

    def unload_model(self) -> None:
        ...

    @property
    def is_loaded(self) -> bool:
        ...


class AudioProcessing(Protocol):
    """Collects raw audio and cuts it into model-sized windows."""

    def append_pcm16(self, data: bytes) -> None:
        ...

    def flush(self) -> np.ndarray:
        ...

    def pad_or_trim(self, audio: np.ndarray, start: int = 0) -> np.ndarray:
        ...


class FeatureExtracting(ModelBackedStage, Protocol):
    def log_mel_spectrogram(self, audio: np.ndarray) -> np.ndarray:
        """Mel features for one window of 16kHz float32 audio."""
        ...


class AudioEncoding(ModelBackedStage, Protocol):
    def encode_features(self, features: np.ndarray) -> np.ndarray:
        ...


class TextDecoding(ModelBackedStage, Protocol):
    tokenizer: Any

    def predict_logits(self, tokens: Sequence[int], encoder_output: np.ndarray) -> np.ndarray:
        """Next-token logits given the tokens decoded so far."""
        ...

    def detokenize(self, tokens: Sequence[int]) -> str:
        ...


class LogitsFiltering(Protocol):
    def filter_logits(self, logits: np.ndarray, tokens: Sequence[int]) -> np.ndarray:
        ...


class SegmentSeeking(Protocol):
    def find_seek_point_and_segments(
        self,
        tokens: Sequence[int],
        seek: int,
        segment_size: int,
        time_offset: float | None = None,
    ) -> tuple[int, list[Any]]:
        """Split decoded tokens into segments and return the next seek position."""
        ...


class ArtifactResolver(Protocol):
    """Finds or downloads model folders. Retry policy lives here, not in the core."""

    async def download(
        self,
        variant: ModelVariant,
        repo: str | None = None,
        progress_callback: Callable[[int, int | None], None] | None = None,
    ) -> Path:
        ...

    async def list_files(self, repo: str, patterns: Sequence[str]) -> list[str]:
        ...


class TokenizerProvider(Protocol):
    def load(self, variant: ModelVariant, folder: Path | None = None) -> Any:
        """Return a tokenizer for ``variant``. Blocking."""
        ...


# factory(variant=..., tokenizer=...) -> stage
StageFactory = Callable[..., ModelBackedStage]
