"""Running aggregate of named latency samples."""

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator


@dataclass
class Measurement:
    """Aggregate of every sample recorded under one name."""

    count: int = 0
    total: float = 0.0
    min: float = float("inf")
    max: float = 0.0
    last: float = 0.0

    @property
    def average(self) -> float:
        return self.total / self.count if self.count else 0.0

    def add(self, seconds: float) -> None:
        self.count += 1
        self.total += seconds
        self.last = seconds
        self.min = min(self.min, seconds)
        self.max = max(self.max, seconds)

    def to_dict(self) -> dict[str, float]:
        return {
            "count": self.count,
            "total": self.total,
            "min": self.min if self.count else 0.0,
            "max": self.max,
            "average": self.average,
            "last": self.last,
        }


class TranscriptionTimings:
    """Accumulates duration samples across calls.

    Telemetry only: nothing in the lifecycle reads these values back.
    """

    MODEL_LOADING = "model_loading"
    PREWARM_LOADING = "prewarm_loading"
    MODEL_UNLOADING = "model_unloading"
    MODEL_DOWNLOAD = "model_download"

    def __init__(self):
        self._measurements: dict[str, Measurement] = {}

    def add(self, name: str, seconds: float) -> None:
        if seconds < 0:
            raise ValueError(f"Duration must be non-negative, got {seconds}")
        self._measurements.setdefault(name, Measurement()).add(seconds)

    @contextmanager
    def measure(self, name: str) -> Iterator[None]:
        """Record the wall time of the enclosed block, even if it raises."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.add(name, time.perf_counter() - start)

    def get(self, name: str) -> Measurement | None:
        return self._measurements.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._measurements

    def as_dict(self) -> dict[str, dict[str, float]]:
        return {name: m.to_dict() for name, m in sorted(self._measurements.items())}

    def reset(self) -> None:
        self._measurements.clear()
