"""Model artifact resolution against the Hugging Face Hub.

Repositories hold one folder per variant (``openai_whisper-tiny/``,
``openai_whisper-large-v3_turbo/``), each containing the three TorchScript
artifacts.
"""

import asyncio
import fnmatch
import logging
from collections.abc import Callable, Sequence
from pathlib import Path

from huggingface_hub import HfApi, snapshot_download
from tqdm import tqdm

from asrkit.constants import DEFAULT_FOLDER_PREFIX, DEFAULT_MODEL_REPO
from asrkit.models import ModelVariant

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, "int | None"], None]


def progress_tqdm(callback: ProgressCallback) -> type[tqdm]:
    """Build a tqdm class that forwards (completed, total) to ``callback``."""

    class CallbackTqdm(tqdm):
        def __init__(self, *args, **kwargs):
            kwargs.pop("name", None)
            kwargs["disable"] = True
            super().__init__(*args, **kwargs)
            self.completed = 0

        def update(self, n=1):
            # Disabled bars never advance self.n
            self.completed += n
            callback(self.completed, self.total)
            return super().update(n)

    return CallbackTqdm


def find_variant_folder(
    root: Path, variant: ModelVariant, prefix: str | None = DEFAULT_FOLDER_PREFIX
) -> Path:
    """Pick the variant's folder inside a downloaded snapshot.

    ``prefix + variant`` is matched exactly first, so ``large-v3`` never
    resolves to ``distil-whisper_distil-large-v3`` when both are present.
    Then any folder ending with the variant name, then any folder containing
    it. Falls back to ``root`` for repositories that hold a single variant
    at the top level.
    """
    if prefix is not None and (root / f"{prefix}{variant.value}").is_dir():
        return root / f"{prefix}{variant.value}"
    candidates = sorted(
        p for p in root.iterdir() if p.is_dir() and p.name.endswith(variant.value)
    )
    if not candidates:
        candidates = sorted(
            p for p in root.iterdir() if p.is_dir() and variant.value in p.name
        )
    return candidates[0] if candidates else root


class HubResolver:
    """Downloads and lists model artifacts with huggingface_hub.

    With ``background=True`` a download keeps running when the awaiting
    caller is cancelled, and later requests for the same variant join it.
    Only the ``folder_prefix + variant`` folder is fetched; pass
    ``folder_prefix=None`` to fetch any folder ending with the variant name.
    """

    def __init__(
        self,
        download_base: Path | None = None,
        token: str | None = None,
        background: bool = False,
        folder_prefix: str | None = DEFAULT_FOLDER_PREFIX,
    ):
        self._download_base = Path(download_base) if download_base else None
        self._token = token
        self._background = background
        self._folder_prefix = folder_prefix
        self._pending: dict[tuple[str, str], asyncio.Task] = {}

    def _snapshot(
        self,
        variant: ModelVariant,
        repo: str,
        progress_callback: ProgressCallback | None,
    ) -> Path:
        kwargs = {}
        if self._download_base is not None:
            kwargs["local_dir"] = str(self._download_base / repo)
        if progress_callback is not None:
            kwargs["tqdm_class"] = progress_tqdm(progress_callback)

        if self._folder_prefix is None:
            pattern = f"*{variant.value}/*"
        else:
            pattern = f"{self._folder_prefix}{variant.value}/*"

        logger.info("Downloading %s from %s", variant.value, repo)
        root = snapshot_download(
            repo_id=repo,
            allow_patterns=[pattern],
            token=self._token,
            **kwargs,
        )
        return find_variant_folder(Path(root), variant, self._folder_prefix)

    async def download(
        self,
        variant: ModelVariant,
        repo: str | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> Path:
        repo = repo or DEFAULT_MODEL_REPO
        if not self._background:
            return await asyncio.to_thread(self._snapshot, variant, repo, progress_callback)

        key = (repo, variant.value)
        task = self._pending.get(key)
        if task is None:
            task = asyncio.create_task(
                asyncio.to_thread(self._snapshot, variant, repo, progress_callback)
            )
            self._pending[key] = task
            task.add_done_callback(lambda _: self._pending.pop(key, None))
        return await asyncio.shield(task)

    async def list_files(self, repo: str, patterns: Sequence[str]) -> list[str]:
        files = await asyncio.to_thread(HfApi(token=self._token).list_repo_files, repo)
        if not patterns:
            return list(files)
        return [f for f in files if any(fnmatch.fnmatch(f, p) for p in patterns)]
