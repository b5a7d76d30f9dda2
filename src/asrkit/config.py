"""Configuration: environment defaults and the orchestrator's config bundle."""

import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from asrkit.constants import DEFAULT_MODEL_REPO
from asrkit.models import ComputeConfiguration


class Settings:
    # --- Model source ---
    MODEL: str | None = os.getenv("ASRKIT_MODEL") or None
    MODEL_REPO: str = os.getenv("ASRKIT_MODEL_REPO", DEFAULT_MODEL_REPO)
    DOWNLOAD_BASE: Path | None = (
        Path(os.environ["ASRKIT_DOWNLOAD_BASE"]) if os.getenv("ASRKIT_DOWNLOAD_BASE") else None
    )
    MODEL_FOLDER: str | None = os.getenv("ASRKIT_MODEL_FOLDER") or None
    HF_TOKEN: str | None = os.getenv("HF_TOKEN") or None

    # --- Runtime ---
    LOG_LEVEL: str = os.getenv("ASRKIT_LOG_LEVEL", "INFO")
    PREWARM: bool = os.getenv("ASRKIT_PREWARM", "false").lower() == "true"


settings = Settings()


@dataclass
class PipelineConfig:
    """Everything an Orchestrator can be told at construction.

    Stage implementations for the model-backed slots are factories (usually
    classes) because every load builds fresh instances. Non-model stages are
    instances, kept for the orchestrator's lifetime.
    """

    model: str | None = None
    download_base: Path | None = None
    model_repo: str | None = None
    model_folder: str | Path | None = None
    tokenizer_folder: Path | None = None
    compute: ComputeConfiguration | None = None

    audio_processor: Any = None
    feature_extractor: Callable[..., Any] | None = None
    audio_encoder: Callable[..., Any] | None = None
    text_decoder: Callable[..., Any] | None = None
    logits_filters: Sequence[Any] | None = None
    segment_seeker: Any = None

    backend: Any = None
    resolver: Any = None
    tokenizer_provider: Any = None

    verbose: bool = True
    log_level: int | str = "INFO"
    prewarm: bool | None = None
    load: bool | None = None
    download: bool = True
    use_background_download_session: bool = False

    @classmethod
    def from_env(cls, **overrides) -> "PipelineConfig":
        values = dict(
            model=settings.MODEL,
            download_base=settings.DOWNLOAD_BASE,
            model_repo=settings.MODEL_REPO,
            model_folder=settings.MODEL_FOLDER,
            log_level=settings.LOG_LEVEL,
            prewarm=settings.PREWARM or None,
        )
        values.update(overrides)
        return cls(**values)

    @property
    def should_load(self) -> bool:
        """Explicit ``load`` wins; otherwise load when a folder was given."""
        if self.load is not None:
            return self.load
        return self.model_folder is not None

