"""Shared fixtures: model folders on disk and managers wired to fakes."""

import functools

import pytest

from asrkit.constants import DECODER_ARTIFACT, ENCODER_ARTIFACT, MEL_ARTIFACT
from asrkit.engine.fake import FakeBackend, FakeTokenizerProvider
from asrkit.engine.whisper import AudioEncoder, FeatureExtractor, TextDecoder
from asrkit.lifecycle import ModelLifecycleManager
from asrkit.models import StageKind

ARTIFACTS = (MEL_ARTIFACT, ENCODER_ARTIFACT, DECODER_ARTIFACT)


@pytest.fixture
def make_folder(tmp_path):
    """Create a model folder, optionally leaving some artifacts out."""

    def factory(name: str = "openai_whisper-tiny", missing=()):
        folder = tmp_path / name
        folder.mkdir(parents=True, exist_ok=True)
        for artifact in ARTIFACTS:
            if artifact not in missing:
                (folder / artifact).write_bytes(b"torchscript")
        return folder

    return factory


@pytest.fixture
def model_folder(make_folder):
    return make_folder()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def tokenizer_provider():
    return FakeTokenizerProvider()


@pytest.fixture
def make_manager(backend, tokenizer_provider):
    def factory(**kwargs):
        stage_factories = {
            StageKind.FEATURE_EXTRACTOR: functools.partial(FeatureExtractor, backend=backend),
            StageKind.AUDIO_ENCODER: functools.partial(AudioEncoder, backend=backend),
            StageKind.TEXT_DECODER: functools.partial(TextDecoder, backend=backend),
        }
        kwargs.setdefault("tokenizer_provider", tokenizer_provider)
        return ModelLifecycleManager(stage_factories, **kwargs)

    return factory
