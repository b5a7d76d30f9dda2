"""Top-level facade composing the stages with the lifecycle manager.

Construction is inert: it builds the non-model stages and wires the
collaborators but performs no I/O. ``initialize()`` then resolves the model
folder and prewarms and/or loads as configured, failing with exactly the
error the corresponding lifecycle call raises.

    orchestrator = await Orchestrator.create(PipelineConfig(model="tiny", load=True))
    async with orchestrator.acquire_stages() as stages:
        ...
"""

import functools
import logging
from collections.abc import Callable, Iterable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from asrkit.config import PipelineConfig, settings
from asrkit.constants import DEFAULT_MODEL_PATTERNS
from asrkit.engine.stages import AudioProcessor, SegmentSeeker
from asrkit.engine.torchscript import TorchScriptBackend
from asrkit.engine.whisper import AudioEncoder, FeatureExtractor, TextDecoder
from asrkit.errors import ModelsUnavailable
from asrkit.lifecycle import ModelLifecycleManager, StateListener
from asrkit.logs import configure_logging
from asrkit.models import (
    ComputeConfiguration,
    ModelFolder,
    ModelState,
    ModelVariant,
    PrewarmMode,
    StageKind,
    StageSet,
)
from asrkit.resolver import HubResolver
from asrkit.timings import TranscriptionTimings
from asrkit.tokenizer import HFTokenizerProvider
from asrkit.variants import ModelSupport, fetch_available_models, recommended_models

logger = logging.getLogger(__name__)

_DEFAULT_STAGES = {
    StageKind.FEATURE_EXTRACTOR: FeatureExtractor,
    StageKind.AUDIO_ENCODER: AudioEncoder,
    StageKind.TEXT_DECODER: TextDecoder,
}


class Orchestrator:
    """Single entry point for building and driving a transcription pipeline."""

    def __init__(self, config: PipelineConfig | None = None):
        self.config = config or PipelineConfig()
        c = self.config

        # Non-model stages: built once, never touched by reloads
        self.audio_processor = c.audio_processor or AudioProcessor()
        self.logits_filters = tuple(c.logits_filters or ())
        self.segment_seeker = c.segment_seeker or SegmentSeeker()

        self.backend = c.backend or TorchScriptBackend()
        self.resolver = c.resolver or HubResolver(
            download_base=c.download_base,
            token=settings.HF_TOKEN,
            background=c.use_background_download_session,
        )
        self.tokenizer_provider = c.tokenizer_provider or HFTokenizerProvider(
            cache_dir=c.download_base
        )
        self.timings = TranscriptionTimings()
        # Listing, download and load all resolve against this repository
        self.model_repo = c.model_repo or settings.MODEL_REPO

        overrides = {
            StageKind.FEATURE_EXTRACTOR: c.feature_extractor,
            StageKind.AUDIO_ENCODER: c.audio_encoder,
            StageKind.TEXT_DECODER: c.text_decoder,
        }
        factories = {}
        for kind, default in _DEFAULT_STAGES.items():
            factory = overrides[kind] or default
            if factory is default:
                factory = functools.partial(default, backend=self.backend)
            factories[kind] = factory

        self._manager = ModelLifecycleManager(
            factories,
            resolver=self.resolver,
            tokenizer_provider=self.tokenizer_provider,
            timings=self.timings,
            compute=c.compute,
            model_repo=self.model_repo,
            tokenizer_folder=c.tokenizer_folder,
        )
        self._initialized = False

    @classmethod
    async def create(cls, config: PipelineConfig | None = None) -> "Orchestrator":
        orchestrator = cls(config)
        await orchestrator.initialize()
        return orchestrator

    async def initialize(self) -> "Orchestrator":
        """Resolve the model folder, then prewarm and/or load as configured."""
        c = self.config
        configure_logging(c.verbose, c.log_level)

        folder = await self._manager.setup(
            variant=c.model,
            folder=c.model_folder,
            repo=self.model_repo,
            download=c.download,
        )
        if folder is not None:
            logger.info("Using model folder %s", folder.path)

        if c.prewarm:
            logger.info("Prewarming models...")
            await self._manager.prewarm(PrewarmMode.ALL, download=c.download)

        if c.should_load:
            logger.info("Loading models...")
            await self._manager.load(download=c.download)

        self._initialized = True
        return self

    async def __aenter__(self) -> "Orchestrator":
        return await self.initialize()

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._manager.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load_models(
        self,
        variant: ModelVariant | str | None = None,
        folder: Path | str | None = None,
        repo: str | None = None,
        compute: ComputeConfiguration | None = None,
        download: bool | None = None,
    ) -> None:
        await self._manager.load(
            variant=variant,
            folder=folder,
            repo=repo,
            compute=compute,
            download=self.config.download if download is None else download,
        )

    async def prewarm_models(self, mode: PrewarmMode = PrewarmMode.ALL) -> None:
        await self._manager.prewarm(mode, download=self.config.download)

    async def reload_models(
        self,
        compute: ComputeConfiguration | None = None,
        prewarm_mode: PrewarmMode = PrewarmMode.NONE,
    ) -> None:
        await self._manager.reload(compute, prewarm_mode)

    async def unload_models(self) -> None:
        await self._manager.unload()

    def add_state_listener(self, listener: StateListener) -> None:
        self._manager.add_listener(listener)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _stage_set(self, stages) -> StageSet:
        return StageSet(
            audio_processor=self.audio_processor,
            feature_extractor=stages.feature_extractor,
            audio_encoder=stages.audio_encoder,
            text_decoder=stages.text_decoder,
            logits_filters=self.logits_filters,
            segment_seeker=self.segment_seeker,
        )

    @property
    def stage_set(self) -> StageSet:
        """Snapshot of all stages. Use ``acquire_stages`` to hold them across awaits."""
        stages = self._manager.stages
        if not self.model_state.is_ready or stages is None:
            raise ModelsUnavailable(f"Models are not loaded (state: {self.model_state.value})")
        return self._stage_set(stages)

    @asynccontextmanager
    async def acquire_stages(self, wait: bool = True) -> AsyncIterator[StageSet]:
        async with self._manager.acquire(wait=wait) as stages:
            yield self._stage_set(stages)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def lifecycle(self) -> ModelLifecycleManager:
        return self._manager

    @property
    def model_state(self) -> ModelState:
        return self._manager.state

    @property
    def model_variant(self) -> ModelVariant | None:
        return self._manager.variant

    @property
    def model_folder(self) -> ModelFolder | None:
        return self._manager.folder

    @property
    def compute(self) -> ComputeConfiguration:
        return self._manager.compute

    @property
    def tokenizer(self):
        return self._manager.tokenizer

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @staticmethod
    def recommended_models(device: str | None = None) -> ModelSupport:
        return recommended_models(device)

    async def fetch_available_models(
        self,
        repo: str | None = None,
        patterns: Iterable[str] = DEFAULT_MODEL_PATTERNS,
    ) -> list[str]:
        return await fetch_available_models(
            self.resolver, repo or self.model_repo, patterns
        )

    async def download(
        self,
        variant: ModelVariant | str,
        repo: str | None = None,
        progress_callback: Callable[[int, int | None], None] | None = None,
    ) -> Path:
        """Fetch a variant's artifacts without touching the loaded pipeline."""
        return await self.resolver.download(
            ModelVariant.parse(variant), repo or self.model_repo, progress_callback
        )
