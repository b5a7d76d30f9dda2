"""Default model-backed stages: mel feature extractor, audio encoder, text decoder.

Each stage holds at most one backend handle. A stage instance belongs to a
single load attempt; reloads build fresh instances rather than re-pointing
existing ones.
"""

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import numpy as np

from asrkit.constants import ENCODER_FRAMES, WINDOW_FRAMES, WINDOW_SAMPLES
from asrkit.engine.protocol import InferenceBackend, ModelHandle
from asrkit.errors import ModelsUnavailable
from asrkit.models import ComputeUnits, ModelVariant, StageKind

logger = logging.getLogger(__name__)


class MLModelStage:
    """Common load/unload handling for stages backed by one model artifact."""

    kind: StageKind

    def __init__(self, backend: InferenceBackend, variant: ModelVariant = ModelVariant.TINY, **_):
        self._backend = backend
        self.variant = variant
        self._model: ModelHandle | None = None
        self.compute_units: ComputeUnits | None = None
        self.model_path: Path | None = None

    def load_model(self, path: Path, compute_units: ComputeUnits, prewarm: bool = False) -> None:
        model = self._backend.load(path, compute_units)
        try:
            if prewarm:
                model.predict(*self.warmup_inputs())
        except BaseException:
            model.unload()
            raise
        self._model = model
        self.compute_units = compute_units
        self.model_path = Path(path)
        logger.debug("Loaded %s from %s on %s", self.kind.value, path, compute_units.value)

    def unload_model(self) -> None:
        if self._model is not None:
            self._model.unload()
            self._model = None

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def warmup_inputs(self) -> tuple[np.ndarray, ...]:
        raise NotImplementedError

    def _predict(self, *inputs: np.ndarray) -> np.ndarray:
        if self._model is None:
            raise ModelsUnavailable(f"{type(self).__name__} model is not loaded")
        return self._model.predict(*inputs)


class FeatureExtractor(MLModelStage):
    kind = StageKind.FEATURE_EXTRACTOR

    def log_mel_spectrogram(self, audio: np.ndarray) -> np.ndarray:
        if len(audio) != WINDOW_SAMPLES:
            raise ValueError(f"Expected {WINDOW_SAMPLES} samples, got {len(audio)}")
        return self._predict(np.asarray(audio, dtype=np.float32))

    def warmup_inputs(self) -> tuple[np.ndarray, ...]:
        return (np.zeros(WINDOW_SAMPLES, dtype=np.float32),)


class AudioEncoder(MLModelStage):
    kind = StageKind.AUDIO_ENCODER

    def encode_features(self, features: np.ndarray) -> np.ndarray:
        features = np.asarray(features, dtype=np.float32)
        if features.ndim == 2:
            features = features[np.newaxis]
        return self._predict(features)

    def warmup_inputs(self) -> tuple[np.ndarray, ...]:
        return (np.zeros((1, self.variant.n_mels, WINDOW_FRAMES), dtype=np.float32),)


class TextDecoder(MLModelStage):
    kind = StageKind.TEXT_DECODER

    def __init__(
        self,
        backend: InferenceBackend,
        variant: ModelVariant = ModelVariant.TINY,
        tokenizer: Any = None,
        **kwargs,
    ):
        super().__init__(backend, variant, **kwargs)
        self.tokenizer = tokenizer

    def predict_logits(self, tokens: Sequence[int], encoder_output: np.ndarray) -> np.ndarray:
        token_array = np.asarray([list(tokens)], dtype=np.int64)
        return self._predict(token_array, np.asarray(encoder_output, dtype=np.float32))

    def detokenize(self, tokens: Sequence[int]) -> str:
        if self.tokenizer is None:
            raise ModelsUnavailable("No tokenizer bound to the text decoder")
        return self.tokenizer.decode(list(tokens), skip_special_tokens=True)

    def warmup_inputs(self) -> tuple[np.ndarray, ...]:
        start = getattr(self.tokenizer, "bos_token_id", None) or 0
        return (
            np.asarray([[start]], dtype=np.int64),
            np.zeros((1, ENCODER_FRAMES, self.variant.d_model), dtype=np.float32),
        )
