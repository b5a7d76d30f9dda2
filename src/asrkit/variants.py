"""Model variant recommendations and repository listing filters.

Everything here except ``fetch_available_models`` is a pure function of its
arguments.
"""

import logging
import platform
from collections.abc import Iterable
from dataclasses import dataclass, field

from asrkit.constants import DEFAULT_MODEL_PATTERNS, DEFAULT_MODEL_REPO
from asrkit.engine.protocol import ArtifactResolver
from asrkit.models import ModelVariant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelSupport:
    """Recommended default and known-incompatible variants for a device class."""

    default: ModelVariant
    disabled: frozenset[ModelVariant] = field(default_factory=frozenset)

    def is_supported(self, variant: ModelVariant) -> bool:
        return variant not in self.disabled


_LARGE = frozenset({ModelVariant.LARGE_V2, ModelVariant.LARGE_V3})
_MEDIUM_UP = _LARGE | {ModelVariant.MEDIUM, ModelVariant.MEDIUM_EN}
_SMALL_UP = _MEDIUM_UP | {ModelVariant.SMALL, ModelVariant.SMALL_EN}

# Keyed by platform.machine(), lowercased
_SUPPORT_TABLE: dict[str, ModelSupport] = {
    "armv6l": ModelSupport(ModelVariant.TINY, _SMALL_UP),
    "armv7l": ModelSupport(ModelVariant.TINY, _SMALL_UP),
    "aarch64": ModelSupport(ModelVariant.BASE, _MEDIUM_UP),
    "arm64": ModelSupport(ModelVariant.SMALL),
    "x86_64": ModelSupport(ModelVariant.BASE),
    "amd64": ModelSupport(ModelVariant.BASE),
}
_FALLBACK = ModelSupport(ModelVariant.TINY, _LARGE)


def device_name() -> str:
    """Hardware identifier of the current machine (e.g. "x86_64", "arm64")."""
    return platform.machine()


def model_support(device: str) -> ModelSupport:
    return _SUPPORT_TABLE.get(device.strip().lower(), _FALLBACK)


def recommended_models(device: str | None = None) -> ModelSupport:
    """Default and disabled variants for ``device`` (the current machine if None)."""
    device = device or device_name()
    logger.debug("Running on %s", device)
    return model_support(device)


def _variant_filters() -> list[str]:
    # Large variants have suffixed folders ("large-v3_turbo"), so no trailing slash
    return [v.value if "large" in v.value else f"{v.value}/" for v in ModelVariant]


def format_model_files(model_files: Iterable[str]) -> list[str]:
    """Reduce a flat repository listing to installable variant folders.

    Each filename contributes its first path component; components that
    mention a known variant are kept, deduplicated and sorted.

    >>> format_model_files(["openai_whisper-tiny/AudioEncoder.pt", "README.md"])
    ['openai_whisper-tiny/']
    """
    filters = _variant_filters()
    prefixes = {name.split("/")[0] + "/" for name in model_files if name}
    return sorted(p for p in prefixes if any(f in p for f in filters))


async def fetch_available_models(
    resolver: ArtifactResolver,
    repo: str = DEFAULT_MODEL_REPO,
    patterns: Iterable[str] = DEFAULT_MODEL_PATTERNS,
) -> list[str]:
    """List the variant folders published in ``repo``."""
    files = await resolver.list_files(repo, list(patterns))
    return format_model_files(files)
