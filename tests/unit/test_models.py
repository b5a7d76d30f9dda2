"""Unit tests for variants, states, prewarm modes and compute configuration."""

import pytest

from asrkit.errors import InvalidComputeConfiguration, ModelsUnavailable
from asrkit.models import (
    STATE_TRANSITIONS,
    ComputeConfiguration,
    ComputeUnits,
    ModelFolder,
    ModelState,
    ModelVariant,
    PrewarmMode,
    StageKind,
)


class TestModelVariant:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("tiny", ModelVariant.TINY),
            ("tiny.en", ModelVariant.TINY_EN),
            ("largev3", ModelVariant.LARGE_V3),
            ("large_v2", ModelVariant.LARGE_V2),
            ("openai_whisper-base", ModelVariant.BASE),
            ("openai_whisper-small.en/", ModelVariant.SMALL_EN),
            (" Medium ", ModelVariant.MEDIUM),
        ],
    )
    def test_parse_aliases(self, name, expected):
        assert ModelVariant.parse(name) is expected

    def test_parse_unknown(self):
        with pytest.raises(ValueError, match="Unknown model variant"):
            ModelVariant.parse("huge")

    def test_dimensions(self):
        """Warmup shapes come from the variant's dimensions."""
        assert ModelVariant.TINY.d_model == 384
        assert ModelVariant.MEDIUM_EN.d_model == 1024
        assert ModelVariant.LARGE_V2.d_model == 1280
        assert ModelVariant.LARGE_V2.n_mels == 80
        assert ModelVariant.LARGE_V3.n_mels == 128

    def test_language_and_tokenizer(self):
        assert ModelVariant.BASE.is_multilingual
        assert not ModelVariant.BASE_EN.is_multilingual
        assert ModelVariant.SMALL_EN.tokenizer_id == "openai/whisper-small.en"


class TestModelState:
    def test_ready_states(self):
        ready = {s for s in ModelState if s.is_ready}
        assert ready == {ModelState.LOADED, ModelState.PREWARMED}

    def test_unloaded_cannot_jump_to_ready(self):
        assert not ModelState.UNLOADED.can_transition_to(ModelState.LOADED)
        assert not ModelState.UNLOADED.can_transition_to(ModelState.PREWARMED)

    def test_every_state_has_edges(self):
        assert set(STATE_TRANSITIONS) == set(ModelState)

    def test_unloading_only_ends_unloaded(self):
        assert STATE_TRANSITIONS[ModelState.UNLOADING] == {ModelState.UNLOADED}

    def test_reload_edge(self):
        assert ModelState.LOADED.can_transition_to(ModelState.LOADING)


class TestPrewarmMode:
    def test_all_and_none(self):
        assert all(PrewarmMode.ALL.includes(k) for k in StageKind)
        assert not any(PrewarmMode.NONE.includes(k) for k in StageKind)

    def test_encoder_subset(self):
        assert PrewarmMode.ENCODER.includes(StageKind.FEATURE_EXTRACTOR)
        assert PrewarmMode.ENCODER.includes(StageKind.AUDIO_ENCODER)
        assert not PrewarmMode.ENCODER.includes(StageKind.TEXT_DECODER)

    def test_decoder_subset(self):
        assert PrewarmMode.DECODER.includes(StageKind.TEXT_DECODER)
        assert not PrewarmMode.DECODER.includes(StageKind.AUDIO_ENCODER)


class TestComputeConfiguration:
    def test_defaults(self):
        config = ComputeConfiguration()
        assert config.mel_compute is ComputeUnits.CPU_AND_GPU
        assert config.for_stage(StageKind.AUDIO_ENCODER) is ComputeUnits.ALL
        assert config.for_stage(StageKind.TEXT_DECODER) is ComputeUnits.ALL

    def test_strings_are_coerced(self):
        config = ComputeConfiguration("CPU_ONLY", "cpu_and_gpu", "all")
        assert config.mel_compute is ComputeUnits.CPU_ONLY
        assert config.audio_encoder_compute is ComputeUnits.CPU_AND_GPU

    def test_uniform(self):
        config = ComputeConfiguration.uniform(ComputeUnits.CPU_ONLY)
        assert {config.for_stage(k) for k in StageKind} == {ComputeUnits.CPU_ONLY}

    @pytest.mark.parametrize("bad", ["neural_engine", 3, None])
    def test_malformed_rejected(self, bad):
        with pytest.raises(InvalidComputeConfiguration):
            ComputeConfiguration(audio_encoder_compute=bad)

    def test_invalid_is_value_error(self):
        with pytest.raises(ValueError):
            ComputeConfiguration(mel_compute="gpu_only")

    def test_frozen(self):
        config = ComputeConfiguration()
        with pytest.raises(AttributeError):
            config.mel_compute = ComputeUnits.ALL


class TestModelFolder:
    def test_artifact_paths(self, model_folder):
        folder = ModelFolder(model_folder)
        assert folder.artifact(StageKind.TEXT_DECODER).name == "TextDecoder.pt"
        assert folder.missing_artifacts() == []
        folder.verify()

    def test_missing_artifact(self, make_folder):
        folder = ModelFolder(make_folder(missing=("AudioEncoder.pt",)))
        with pytest.raises(ModelsUnavailable, match="AudioEncoder.pt model file not found"):
            folder.verify()

    def test_missing_folder(self, tmp_path):
        with pytest.raises(ModelsUnavailable, match="Model folder not found"):
            ModelFolder(tmp_path / "nope").verify()
