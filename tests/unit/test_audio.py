"""Unit tests for audio conversion utilities."""

import numpy as np
import pytest

from asrkit.audio import (
    bytes_to_samples,
    float32_to_pcm16,
    pad_or_trim,
    pcm16_to_float32,
    samples_to_seconds,
    validate_audio_format,
)
from asrkit.constants import HOP_LENGTH, SAMPLE_RATE, WINDOW_FRAMES, WINDOW_SAMPLES


class TestPCM16Conversion:
    """Tests for PCM16 <-> float32 conversion."""

    def test_pcm16_to_float32_zeros(self):
        """Zero bytes should produce zero array."""
        result = pcm16_to_float32(bytes(100))
        assert result.dtype == np.float32
        assert len(result) == 50
        np.testing.assert_array_equal(result, np.zeros(50, dtype=np.float32))

    def test_pcm16_to_float32_extremes(self):
        """Int16 extremes should map to about +/-1.0."""
        result = pcm16_to_float32(np.array([32767, -32768], dtype=np.int16).tobytes())
        np.testing.assert_allclose(result, [1.0, -1.0], atol=0.0001)

    def test_float32_to_pcm16_clipping(self):
        """Values outside [-1, 1] should be clipped."""
        pcm_bytes = float32_to_pcm16(np.array([2.0, -2.0], dtype=np.float32))
        np.testing.assert_allclose(pcm16_to_float32(pcm_bytes), [1.0, -1.0], atol=0.0001)


class TestPadOrTrim:
    """Tests for fixed-size window extraction."""

    def test_short_audio_is_zero_padded(self):
        audio = np.ones(SAMPLE_RATE, dtype=np.float32)
        window = pad_or_trim(audio)
        assert len(window) == WINDOW_SAMPLES
        assert window[:SAMPLE_RATE].sum() == SAMPLE_RATE
        assert not window[SAMPLE_RATE:].any()

    def test_long_audio_is_trimmed(self):
        audio = np.arange(WINDOW_SAMPLES + 500, dtype=np.float32)
        window = pad_or_trim(audio, start=500)
        assert len(window) == WINDOW_SAMPLES
        assert window[0] == 500

    def test_start_past_end_gives_silence(self):
        window = pad_or_trim(np.ones(10, dtype=np.float32), start=20, length=5)
        np.testing.assert_array_equal(window, np.zeros(5, dtype=np.float32))

    def test_negative_start_rejected(self):
        with pytest.raises(ValueError):
            pad_or_trim(np.ones(10, dtype=np.float32), start=-1)


class TestValidationAndHelpers:
    def test_validate_audio_format(self):
        """Odd byte count is invalid PCM16."""
        assert validate_audio_format(bytes(100)) is True
        assert validate_audio_format(bytes(0)) is True
        assert validate_audio_format(bytes(101)) is False

    def test_sample_byte_conversions(self):
        assert bytes_to_samples(200) == 100

    def test_durations(self):
        assert samples_to_seconds(SAMPLE_RATE * 3) == 3.0

    def test_window_constants(self):
        """30 seconds at 16kHz, framed with a 10ms hop."""
        assert WINDOW_SAMPLES == 480000
        assert WINDOW_FRAMES == WINDOW_SAMPLES // HOP_LENGTH == 3000
