"""Model lifecycle manager.

Owns the model state and the three model-backed stages. Every mutation goes
through one of load / prewarm / reload / unload, and at most one of those
runs at a time. New stages are built completely off to the side and
published with a single reference swap, so readers see either the old
triple or the new one, never a mix.

Readers lease the current stages with ``acquire()``. Stages retired by a
reload or unload are torn down once every lease on them has been returned.
"""

import asyncio
import logging
import time
from collections import Counter
from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

from asrkit.engine.protocol import (
    ArtifactResolver,
    ModelBackedStage,
    StageFactory,
    TokenizerProvider,
)
from asrkit.errors import (
    Busy,
    Cancelled,
    IllegalTransition,
    InvalidComputeConfiguration,
    ModelsUnavailable,
    PipelineError,
    ResolutionFailed,
)
from asrkit.models import (
    ComputeConfiguration,
    ModelFolder,
    ModelStages,
    ModelState,
    ModelVariant,
    PrewarmMode,
    StageKind,
)
from asrkit.timings import TranscriptionTimings
from asrkit.variants import recommended_models

logger = logging.getLogger(__name__)

StateListener = Callable[[ModelState, ModelState], None]
ProgressCallback = Callable[[int, "int | None"], None]


def coerce_compute(compute: Any) -> ComputeConfiguration | None:
    """Validate a compute configuration before any state is touched."""
    if compute is None or isinstance(compute, ComputeConfiguration):
        return compute
    if isinstance(compute, Mapping):
        try:
            return ComputeConfiguration(**compute)
        except TypeError as e:
            raise InvalidComputeConfiguration(str(e)) from e
    raise InvalidComputeConfiguration(
        f"Expected ComputeConfiguration or mapping, got {type(compute).__name__}"
    )


def _unload_when_done(stage: ModelBackedStage, future: Future) -> None:
    # A load thread that outlived its cancelled caller
    if future.cancelled() or future.exception() is not None:
        return
    logger.debug("Discarding %s loaded after cancellation", type(stage).__name__)
    stage.unload_model()


class ModelLifecycleManager:
    """Single authority over model state and the model-backed stages."""

    def __init__(
        self,
        stage_factories: Mapping[StageKind, StageFactory],
        resolver: ArtifactResolver | None = None,
        tokenizer_provider: TokenizerProvider | None = None,
        timings: TranscriptionTimings | None = None,
        compute: ComputeConfiguration | None = None,
        model_repo: str | None = None,
        tokenizer_folder: Path | None = None,
    ):
        missing = [kind.value for kind in StageKind if kind not in stage_factories]
        if missing:
            raise ValueError(f"Missing stage factories: {', '.join(missing)}")

        self._factories = dict(stage_factories)
        self._resolver = resolver
        self._tokenizer_provider = tokenizer_provider
        self._tokenizer_folder = Path(tokenizer_folder) if tokenizer_folder else None
        self.timings = timings or TranscriptionTimings()

        self._state = ModelState.UNLOADED
        self._stages: ModelStages | None = None
        self._variant: ModelVariant | None = None
        self._compute = coerce_compute(compute) or ComputeConfiguration()
        self._repo = model_repo
        self._folder: ModelFolder | None = None
        self._folder_variant: ModelVariant | None = None
        self._bound_folder: ModelFolder | None = None
        self._tokenizer: Any = None
        self._tokenizer_variant: ModelVariant | None = None

        self._lock = asyncio.Lock()
        self._operation: str | None = None
        self._settled = asyncio.Event()
        self._settled.set()
        self._generation = 0
        self._leases: Counter[int] = Counter()
        self._holders: Counter[asyncio.Task | None] = Counter()
        self._released = asyncio.Condition()
        self._retiring: set[asyncio.Task] = set()
        self._listeners: list[StateListener] = []
        self._executor: ThreadPoolExecutor | None = None

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> ModelState:
        return self._state

    @property
    def stages(self) -> ModelStages | None:
        """Currently published stages; None unless a load has succeeded."""
        return self._stages

    @property
    def variant(self) -> ModelVariant | None:
        return self._variant

    @property
    def folder(self) -> ModelFolder | None:
        return self._folder

    @property
    def compute(self) -> ComputeConfiguration:
        return self._compute

    @property
    def tokenizer(self) -> Any:
        return self._tokenizer

    @property
    def generation(self) -> int:
        """Incremented every time the published stages change."""
        return self._generation

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        self._listeners.remove(listener)

    def _set_state(self, new: ModelState) -> None:
        old = self._state
        if new is old:
            return
        if not old.can_transition_to(new):
            raise IllegalTransition(f"Illegal model state transition {old.value} -> {new.value}")
        self._state = new
        if new.is_transitional:
            self._settled.clear()
        else:
            self._settled.set()
        logger.debug("Model state %s -> %s", old.value, new.value)
        for listener in list(self._listeners):
            try:
                listener(old, new)
            except Exception:
                logger.exception("Model state listener %r failed", listener)

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def acquire(self, wait: bool = True) -> AsyncIterator[ModelStages]:
        """Lease the published stages for the duration of a transcription.

        Stages retired by a reload are torn down once their last lease is
        returned. A task holding a lease must not call ``unload()``, which
        waits for that teardown; it raises RuntimeError instead of hanging.
        ``reload()`` from a lease holder is fine, the old stages stay loaded
        until the lease is returned.

        Args:
            wait: If a transition is in progress, wait for it to settle
                instead of failing immediately.

        Raises:
            ModelsUnavailable: No loaded stages once the state has settled.
        """
        # Back-to-back operations can clear the event again before we wake
        while wait and self._state.is_transitional:
            await self._settled.wait()
        if not self._state.is_ready or self._stages is None:
            raise ModelsUnavailable(f"Models are not loaded (state: {self._state.value})")

        stages, generation = self._stages, self._generation
        holder = asyncio.current_task()
        self._leases[generation] += 1
        self._holders[holder] += 1
        try:
            yield stages
        finally:
            self._holders[holder] -= 1
            if self._holders[holder] <= 0:
                del self._holders[holder]
            self._leases[generation] -= 1
            if self._leases[generation] <= 0:
                del self._leases[generation]
                async with self._released:
                    self._released.notify_all()

    def active_leases(self, generation: int | None = None) -> int:
        if generation is None:
            return sum(self._leases.values())
        return self._leases[generation]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _exclusive(self, operation: str) -> AsyncIterator[None]:
        if self._lock.locked():
            raise Busy(operation, self._operation)
        async with self._lock:
            self._operation = operation
            try:
                yield
            finally:
                self._operation = None

    def _pick_variant(self, variant: "ModelVariant | str | None") -> ModelVariant:
        if variant is not None:
            return ModelVariant.parse(variant)
        return self._variant or self._folder_variant or recommended_models().default

    async def setup(
        self,
        variant: "ModelVariant | str | None" = None,
        folder: "Path | str | None" = None,
        repo: str | None = None,
        download: bool = True,
        progress_callback: ProgressCallback | None = None,
    ) -> ModelFolder | None:
        """Resolve and remember a model folder without loading anything.

        Returns None when no folder was given and downloading is disabled.
        """
        variant = self._pick_variant(variant)
        async with self._exclusive("setup"):
            if repo is not None:
                self._repo = repo
            if folder is None and not download:
                self._folder_variant = variant
                return None
            resolved = await self._resolve_folder(variant, folder, download, progress_callback)
            self._folder, self._folder_variant = resolved, variant
            logger.info("Model folder for %s: %s", variant.value, resolved.path)
            return resolved

    async def load(
        self,
        variant: "ModelVariant | str | None" = None,
        folder: "Path | str | None" = None,
        repo: str | None = None,
        compute: ComputeConfiguration | None = None,
        download: bool = True,
        progress_callback: ProgressCallback | None = None,
    ) -> ModelStages:
        """Load the three model-backed stages and publish them as one unit.

        Raises:
            ModelsUnavailable: Folder not set or absent, or an artifact missing.
            ResolutionFailed: The resolver could not download the variant.
            Busy: Another lifecycle operation is running.
            Cancelled: The caller was cancelled; nothing was published.
        """
        return await self._transition(
            "load",
            ModelState.LOADING,
            ModelState.LOADED,
            variant=self._pick_variant(variant),
            folder=folder,
            repo=repo,
            compute=coerce_compute(compute),
            download=download,
            prewarm_mode=PrewarmMode.NONE,
            progress_callback=progress_callback,
        )

    async def prewarm(
        self,
        mode: PrewarmMode = PrewarmMode.ALL,
        variant: "ModelVariant | str | None" = None,
        folder: "Path | str | None" = None,
        repo: str | None = None,
        compute: ComputeConfiguration | None = None,
        download: bool = True,
        progress_callback: ProgressCallback | None = None,
    ) -> ModelStages:
        """Same as load, but runs warmup passes and reports prewarming/prewarmed."""
        return await self._transition(
            "prewarm",
            ModelState.PREWARMING,
            ModelState.PREWARMED,
            variant=self._pick_variant(variant),
            folder=folder,
            repo=repo,
            compute=coerce_compute(compute),
            download=download,
            prewarm_mode=PrewarmMode(mode),
            progress_callback=progress_callback,
        )

    async def reload(
        self,
        compute: ComputeConfiguration | None = None,
        prewarm_mode: PrewarmMode = PrewarmMode.NONE,
    ) -> ModelStages:
        """Rebuild the stages for the current variant and folder.

        Used when the compute configuration changes after a load. Keeps the
        prewarmed tag if the pipeline is currently prewarmed.
        """
        compute = coerce_compute(compute)
        if self.is_busy:
            raise Busy("reload", self._operation)
        variant = self._variant or self._folder_variant
        folder = self._bound_folder
        if folder is None and self._folder is not None and self._folder_variant == variant:
            folder = self._folder
        if variant is None or folder is None:
            raise ModelsUnavailable("Model folder is not set.")

        if self._state is ModelState.PREWARMED:
            working, terminal = ModelState.PREWARMING, ModelState.PREWARMED
        else:
            working, terminal = ModelState.LOADING, ModelState.LOADED
        return await self._transition(
            "reload",
            working,
            terminal,
            variant=variant,
            folder=folder.path,
            repo=self._repo,
            compute=compute,
            download=False,
            prewarm_mode=PrewarmMode(prewarm_mode),
        )

    async def unload(self) -> None:
        """Tear down the model-backed stages. No-op when already unloaded.

        Waits until every lease on the current stages has been returned.

        Raises:
            RuntimeError: The calling task itself holds a lease.
        """
        if self._holders[asyncio.current_task()]:
            raise RuntimeError("unload() called while holding a stage lease")
        async with self._exclusive("unload"):
            if self._state is ModelState.UNLOADED and self._stages is None:
                return
            self._set_state(ModelState.UNLOADING)
            retired, generation = self._stages, self._generation
            self._stages = None
            self._generation += 1
            self._bound_folder = None
            try:
                if retired is not None:
                    with self.timings.measure(TranscriptionTimings.MODEL_UNLOADING):
                        await asyncio.shield(self._retire(retired, generation))
            finally:
                self._set_state(ModelState.UNLOADED)
            logger.info("Unloaded models")

    async def close(self) -> None:
        """Unload and release the loader thread."""
        await self.unload()
        await self.wait_for_teardown()
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    async def wait_for_teardown(self) -> None:
        """Wait until every retired or discarded stage has been unloaded."""
        while self._retiring:
            await asyncio.gather(*list(self._retiring), return_exceptions=True)

    # ------------------------------------------------------------------
    # Transition internals
    # ------------------------------------------------------------------

    async def _transition(
        self,
        operation: str,
        working: ModelState,
        terminal: ModelState,
        *,
        variant: ModelVariant,
        folder: "Path | str | None",
        repo: str | None,
        compute: ComputeConfiguration | None,
        download: bool,
        prewarm_mode: PrewarmMode,
        progress_callback: ProgressCallback | None = None,
    ) -> ModelStages:
        compute = compute or self._compute
        async with self._exclusive(operation):
            if repo is not None:
                self._repo = repo
            previous = self._state
            self._set_state(working)
            started = time.perf_counter()
            built: list[ModelBackedStage] = []
            try:
                model_folder = await self._resolve_folder(
                    variant, folder, download, progress_callback
                )
                model_folder.verify()
                tokenizer = await self._tokenizer_for(variant)
                stages = await self._build_stages(
                    model_folder, variant, tokenizer, compute, prewarm_mode, built
                )
            except asyncio.CancelledError as e:
                self._set_state(previous)
                self._spawn(self._discard(built))
                logger.info("%s of %s cancelled", operation.capitalize(), variant.value)
                if isinstance(e, Cancelled):
                    raise
                raise Cancelled(f"{operation} cancelled") from e
            except BaseException:
                self._set_state(previous)
                await asyncio.shield(self._spawn(self._discard(built)))
                raise

            retired, retired_generation = self._stages, self._generation
            self._stages = stages
            self._generation += 1
            self._variant = variant
            self._folder, self._folder_variant = model_folder, variant
            self._bound_folder = model_folder
            self._compute = compute
            self._tokenizer, self._tokenizer_variant = tokenizer, variant
            self._set_state(terminal)

            name = (
                TranscriptionTimings.PREWARM_LOADING
                if terminal is ModelState.PREWARMED
                else TranscriptionTimings.MODEL_LOADING
            )
            elapsed = time.perf_counter() - started
            self.timings.add(name, elapsed)
            logger.info("Loaded models for whisper size: %s in %.2fs", variant.value, elapsed)

            if retired is not None:
                # Torn down in the background once readers let go
                self._retire(retired, retired_generation)
            return stages

    async def _resolve_folder(
        self,
        variant: ModelVariant,
        folder: "Path | str | None",
        download: bool,
        progress_callback: ProgressCallback | None,
    ) -> ModelFolder:
        if folder is not None:
            return ModelFolder(Path(folder))
        if self._folder is not None and self._folder_variant == variant:
            return self._folder
        if not download:
            raise ModelsUnavailable("Model folder is not set.")
        if self._resolver is None:
            raise ModelsUnavailable("Model folder is not set and no resolver is configured.")

        logger.info("Resolving model %s", variant.value)
        try:
            with self.timings.measure(TranscriptionTimings.MODEL_DOWNLOAD):
                path = await self._resolver.download(variant, self._repo, progress_callback)
        except PipelineError:
            raise
        except Exception as e:
            raise ResolutionFailed(variant.value, self._repo, e) from e
        return ModelFolder(Path(path))

    async def _tokenizer_for(self, variant: ModelVariant) -> Any:
        if self._tokenizer is not None and self._tokenizer_variant == variant:
            return self._tokenizer
        if self._tokenizer_provider is None:
            return None
        return await asyncio.to_thread(
            self._tokenizer_provider.load, variant, self._tokenizer_folder
        )

    def _loader(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="asrkit-load")
        return self._executor

    async def _build_stages(
        self,
        folder: ModelFolder,
        variant: ModelVariant,
        tokenizer: Any,
        compute: ComputeConfiguration,
        prewarm_mode: PrewarmMode,
        built: list[ModelBackedStage],
    ) -> ModelStages:
        for kind in StageKind:
            stage = self._factories[kind](variant=variant, tokenizer=tokenizer)
            future = self._loader().submit(
                stage.load_model,
                folder.artifact(kind),
                compute.for_stage(kind),
                prewarm_mode.includes(kind),
            )
            try:
                await asyncio.wrap_future(future)
            except asyncio.CancelledError:
                future.add_done_callback(lambda f, s=stage: _unload_when_done(s, f))
                raise
            built.append(stage)
        return ModelStages(*built)

    async def _discard(self, stages) -> None:
        for stage in stages:
            try:
                await asyncio.to_thread(stage.unload_model)
            except Exception:
                logger.exception("Failed to unload %s", type(stage).__name__)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._retiring.add(task)
        task.add_done_callback(self._retiring.discard)
        return task

    def _retire(self, stages: ModelStages, generation: int) -> asyncio.Task:
        return self._spawn(self._teardown_when_released(stages, generation))

    async def _teardown_when_released(self, stages: ModelStages, generation: int) -> None:
        async with self._released:
            await self._released.wait_for(lambda: self._leases[generation] == 0)
        await self._discard(stages)
