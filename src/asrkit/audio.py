"""Audio conversion and windowing helpers for 16kHz mono PCM16 input."""

import numpy as np

from asrkit.constants import BYTES_PER_SAMPLE, SAMPLE_RATE, WINDOW_SAMPLES


def pcm16_to_float32(data: bytes) -> np.ndarray:
    """Decode little-endian PCM16 bytes into float32 samples in [-1, 1)."""
    return np.frombuffer(data, dtype=np.int16).astype(np.float32) / 32768.0


def float32_to_pcm16(audio: np.ndarray) -> bytes:
    clipped = np.clip(audio, -1.0, 1.0)
    return (clipped * 32767.0).astype(np.int16).tobytes()


def validate_audio_format(data: bytes) -> bool:
    """True if data length is a whole number of PCM16 samples."""
    return len(data) % BYTES_PER_SAMPLE == 0


def pad_or_trim(
    audio: np.ndarray, start: int = 0, length: int = WINDOW_SAMPLES
) -> np.ndarray:
    """Cut a fixed-length window out of audio, zero-padding past the end.

    Args:
        audio: Float32 mono samples.
        start: First sample of the window.
        length: Window size in samples (30 seconds by default).

    Returns:
        Float32 array of exactly ``length`` samples.
    """
    if start < 0:
        raise ValueError(f"start must be non-negative, got {start}")
    window = np.asarray(audio[start : start + length], dtype=np.float32)
    if len(window) < length:
        window = np.pad(window, (0, length - len(window)))
    return window


def bytes_to_samples(num_bytes: int) -> int:
    return num_bytes // BYTES_PER_SAMPLE


def samples_to_seconds(num_samples: int) -> float:
    return num_samples / SAMPLE_RATE
