"""Fake collaborators for CPU-based testing.

The fake backend returns deterministic output derived from input shapes,
allowing the full lifecycle to be exercised without torch or network access.
"""

import asyncio
import hashlib
import threading
import time
from collections.abc import Iterable, Sequence
from pathlib import Path

import numpy as np

from asrkit.models import ComputeUnits, ModelVariant


class FakeModel:
    """Handle returned by FakeBackend."""

    def __init__(self, path: Path, compute_units: ComputeUnits):
        self.path = Path(path)
        self.compute_units = compute_units
        self.unloaded = False
        self.unloaded_on: int | None = None
        self.predict_count = 0

    def predict(self, *inputs: np.ndarray) -> np.ndarray:
        if self.unloaded:
            raise RuntimeError(f"{self.path.name} has been unloaded")
        self.predict_count += 1
        first = np.asarray(inputs[0])
        return np.full(first.shape, self._seed(first), dtype=np.float32)

    def unload(self) -> None:
        self.unloaded = True
        self.unloaded_on = threading.get_ident()

    def _seed(self, data: np.ndarray) -> float:
        digest = hashlib.sha256(data.ravel()[:100].tobytes()).digest()
        return digest[0] / 255.0


class FakeBackend:
    """Deterministic in-memory inference backend.

    Args:
        latency_ms: Simulated load time per artifact.
        fail_on: Artifact filenames whose load raises RuntimeError.
    """

    def __init__(self, latency_ms: float = 0.0, fail_on: Iterable[str] = ()):
        self.latency_ms = latency_ms
        self.fail_on = set(fail_on)
        self.loaded: list[FakeModel] = []
        self._lock = threading.Lock()

    def load(self, path: Path, compute_units: ComputeUnits) -> FakeModel:
        if self.latency_ms > 0:
            time.sleep(self.latency_ms / 1000.0)
        if Path(path).name in self.fail_on:
            raise RuntimeError(f"Failed to load {Path(path).name}")
        model = FakeModel(path, compute_units)
        with self._lock:
            self.loaded.append(model)
        return model

    @property
    def load_count(self) -> int:
        return len(self.loaded)

    @property
    def live_models(self) -> list[FakeModel]:
        return [m for m in self.loaded if not m.unloaded]


class FakeTokenizer:
    bos_token_id = 50258

    def __init__(self, variant: ModelVariant):
        self.variant = variant

    def decode(self, tokens: Sequence[int], skip_special_tokens: bool = True) -> str:
        return " ".join(f"<{t}>" for t in tokens)


class FakeTokenizerProvider:
    def __init__(self):
        self.calls: list[tuple[ModelVariant, Path | None]] = []

    def load(self, variant: ModelVariant, folder: Path | None = None) -> FakeTokenizer:
        self.calls.append((variant, folder))
        return FakeTokenizer(variant)


class FakeResolver:
    """Resolver that hands out a fixed folder, optionally after a delay.

    Args:
        folder: Folder returned by every download, or None to fail.
        files: Listing returned by list_files.
        delay: Seconds to wait before answering a download.
    """

    def __init__(
        self,
        folder: Path | None = None,
        files: Iterable[str] = (),
        delay: float = 0.0,
    ):
        self.folder = Path(folder) if folder else None
        self.files = list(files)
        self.delay = delay
        self.downloads: list[tuple[ModelVariant, str | None]] = []
        self.listings: list[str] = []

    async def download(self, variant, repo=None, progress_callback=None) -> Path:
        self.downloads.append((variant, repo))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.folder is None:
            raise ConnectionError(f"Repository {repo} unreachable")
        if progress_callback is not None:
            progress_callback(3, 3)
        return self.folder

    async def list_files(self, repo: str, patterns: Sequence[str]) -> list[str]:
        self.listings.append(repo)
        return list(self.files)
