"""Value types shared by the lifecycle manager, the orchestrator and the stages."""

from dataclasses import dataclass, field
from enum import Enum, unique
from pathlib import Path
from typing import TYPE_CHECKING

from asrkit.constants import DECODER_ARTIFACT, ENCODER_ARTIFACT, MEL_ARTIFACT
from asrkit.errors import InvalidComputeConfiguration, ModelsUnavailable

if TYPE_CHECKING:
    from asrkit.engine.protocol import (
        AudioEncoding,
        AudioProcessing,
        FeatureExtracting,
        LogitsFiltering,
        SegmentSeeking,
        TextDecoding,
    )


@unique
class ModelVariant(str, Enum):
    TINY = "tiny"
    TINY_EN = "tiny.en"
    BASE = "base"
    BASE_EN = "base.en"
    SMALL = "small"
    SMALL_EN = "small.en"
    MEDIUM = "medium"
    MEDIUM_EN = "medium.en"
    LARGE_V2 = "large-v2"
    LARGE_V3 = "large-v3"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, name: "str | ModelVariant") -> "ModelVariant":
        """Resolve a variant from its canonical name or a common alias.

        Accepts "large-v3", "largev3", "large_v3" and repo-style prefixes
        such as "openai_whisper-tiny".
        """
        if isinstance(name, cls):
            return name
        key = str(name).strip().lower()
        for prefix in ("openai_whisper-", "whisper-"):
            if key.startswith(prefix):
                key = key[len(prefix):]
        key = key.rstrip("/").replace("_", "-")
        if key.startswith("largev"):
            key = "large-v" + key[len("largev"):]
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown model variant: {name!r}") from None

    @property
    def is_multilingual(self) -> bool:
        return not self.value.endswith(".en")

    @property
    def size(self) -> str:
        """Model size without language suffix or revision ("tiny", "large")."""
        return self.value.split(".")[0].split("-")[0]

    @property
    def n_mels(self) -> int:
        return 128 if self is ModelVariant.LARGE_V3 else 80

    @property
    def d_model(self) -> int:
        return _D_MODEL[self.size]

    @property
    def tokenizer_id(self) -> str:
        """Hugging Face repository holding the tokenizer for this variant."""
        return f"openai/whisper-{self.value}"


_D_MODEL = {"tiny": 384, "base": 512, "small": 768, "medium": 1024, "large": 1280}


@unique
class ModelState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    PREWARMING = "prewarming"
    PREWARMED = "prewarmed"
    UNLOADING = "unloading"

    @property
    def is_ready(self) -> bool:
        """Stages may only be used for transcription in these states."""
        return self in (ModelState.LOADED, ModelState.PREWARMED)

    @property
    def is_transitional(self) -> bool:
        return self in (ModelState.LOADING, ModelState.PREWARMING, ModelState.UNLOADING)

    def can_transition_to(self, other: "ModelState") -> bool:
        return other in STATE_TRANSITIONS[self]


# Rollback edges (loading -> prewarmed, prewarming -> loaded) return a failed
# transition to the state it started from.
STATE_TRANSITIONS: dict[ModelState, frozenset[ModelState]] = {
    ModelState.UNLOADED: frozenset({ModelState.LOADING, ModelState.PREWARMING}),
    ModelState.LOADING: frozenset(
        {ModelState.LOADED, ModelState.PREWARMING, ModelState.UNLOADED, ModelState.PREWARMED}
    ),
    ModelState.PREWARMING: frozenset(
        {ModelState.PREWARMED, ModelState.UNLOADED, ModelState.LOADED}
    ),
    ModelState.LOADED: frozenset(
        {ModelState.LOADING, ModelState.PREWARMING, ModelState.UNLOADING}
    ),
    ModelState.PREWARMED: frozenset(
        {ModelState.LOADING, ModelState.PREWARMING, ModelState.UNLOADING}
    ),
    ModelState.UNLOADING: frozenset({ModelState.UNLOADED}),
}


@unique
class StageKind(str, Enum):
    FEATURE_EXTRACTOR = "feature_extractor"
    AUDIO_ENCODER = "audio_encoder"
    TEXT_DECODER = "text_decoder"


@unique
class PrewarmMode(str, Enum):
    """Which model-backed stages get a warmup pass while loading."""

    NONE = "none"
    ENCODER = "encoder"
    DECODER = "decoder"
    ALL = "all"

    def includes(self, kind: StageKind) -> bool:
        if self is PrewarmMode.ALL:
            return True
        if self is PrewarmMode.ENCODER:
            return kind in (StageKind.FEATURE_EXTRACTOR, StageKind.AUDIO_ENCODER)
        if self is PrewarmMode.DECODER:
            return kind is StageKind.TEXT_DECODER
        return False


@unique
class ComputeUnits(str, Enum):
    CPU_ONLY = "cpu_only"
    CPU_AND_GPU = "cpu_and_gpu"
    ALL = "all"


def _coerce_units(name: str, value) -> ComputeUnits:
    if isinstance(value, ComputeUnits):
        return value
    if isinstance(value, str):
        try:
            return ComputeUnits(value.lower())
        except ValueError:
            pass
    raise InvalidComputeConfiguration(
        f"{name} must be one of {[u.value for u in ComputeUnits]}, got {value!r}"
    )


@dataclass(frozen=True)
class ComputeConfiguration:
    """Execution unit preference for each model-backed stage."""

    mel_compute: ComputeUnits = ComputeUnits.CPU_AND_GPU
    audio_encoder_compute: ComputeUnits = ComputeUnits.ALL
    text_decoder_compute: ComputeUnits = ComputeUnits.ALL

    def __post_init__(self):
        # Frozen dataclass: coerce through object.__setattr__
        for name in ("mel_compute", "audio_encoder_compute", "text_decoder_compute"):
            object.__setattr__(self, name, _coerce_units(name, getattr(self, name)))

    @classmethod
    def uniform(cls, units: ComputeUnits | str) -> "ComputeConfiguration":
        return cls(units, units, units)

    def for_stage(self, kind: StageKind) -> ComputeUnits:
        if kind is StageKind.FEATURE_EXTRACTOR:
            return self.mel_compute
        if kind is StageKind.AUDIO_ENCODER:
            return self.audio_encoder_compute
        return self.text_decoder_compute

    def to_dict(self) -> dict[str, str]:
        return {
            "mel_compute": self.mel_compute.value,
            "audio_encoder_compute": self.audio_encoder_compute.value,
            "text_decoder_compute": self.text_decoder_compute.value,
        }


ARTIFACT_NAMES: dict[StageKind, str] = {
    StageKind.FEATURE_EXTRACTOR: MEL_ARTIFACT,
    StageKind.AUDIO_ENCODER: ENCODER_ARTIFACT,
    StageKind.TEXT_DECODER: DECODER_ARTIFACT,
}


@dataclass(frozen=True)
class ModelFolder:
    """A resolved local folder holding the three model artifacts."""

    path: Path

    def __post_init__(self):
        object.__setattr__(self, "path", Path(self.path))

    def artifact(self, kind: StageKind) -> Path:
        return self.path / ARTIFACT_NAMES[kind]

    @property
    def artifacts(self) -> dict[StageKind, Path]:
        return {kind: self.artifact(kind) for kind in StageKind}

    def missing_artifacts(self) -> list[Path]:
        return [path for path in self.artifacts.values() if not path.exists()]

    def verify(self) -> None:
        """Raise ModelsUnavailable unless every artifact is present."""
        if not self.path.is_dir():
            raise ModelsUnavailable(f"Model folder not found at {self.path}")
        missing = self.missing_artifacts()
        if missing:
            raise ModelsUnavailable(f"{missing[0].name} model file not found at {missing[0]}")


@dataclass(frozen=True)
class ModelStages:
    """The model-backed stages of one successful load, swapped as a unit."""

    feature_extractor: "FeatureExtracting"
    audio_encoder: "AudioEncoding"
    text_decoder: "TextDecoding"

    def __iter__(self):
        return iter((self.feature_extractor, self.audio_encoder, self.text_decoder))


@dataclass(frozen=True)
class StageSet:
    """Every stage a transcription run needs, captured at one instant."""

    audio_processor: "AudioProcessing"
    feature_extractor: "FeatureExtracting"
    audio_encoder: "AudioEncoding"
    text_decoder: "TextDecoding"
    logits_filters: tuple["LogitsFiltering", ...] = field(default_factory=tuple)
    segment_seeker: "SegmentSeeking | None" = None
