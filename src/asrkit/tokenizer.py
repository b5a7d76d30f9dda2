"""Tokenizer provider backed by transformers."""

import logging
from pathlib import Path

from asrkit.models import ModelVariant

logger = logging.getLogger(__name__)


class HFTokenizerProvider:
    """Loads Whisper tokenizers with ``AutoTokenizer``.

    A local ``tokenizer_folder`` takes precedence over the variant's Hub
    repository. Loaded tokenizers are cached per source.
    """

    def __init__(self, cache_dir: Path | None = None):
        self._cache_dir = cache_dir
        self._tokenizers: dict[str, object] = {}

    def load(self, variant: ModelVariant, folder: Path | None = None):
        from transformers import AutoTokenizer

        source = str(folder) if folder else variant.tokenizer_id
        if source not in self._tokenizers:
            logger.debug("Loading tokenizer from %s", source)
            self._tokenizers[source] = AutoTokenizer.from_pretrained(
                source,
                cache_dir=str(self._cache_dir) if self._cache_dir else None,
            )
        return self._tokenizers[source]
