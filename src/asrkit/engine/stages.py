"""Default stages that carry no model artifact.

These are built once per orchestrator and survive every reload, so they
hold no per-load state and are safe to share between concurrent runs
(except AudioProcessor's buffer, which belongs to a single stream).
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from asrkit.audio import (
    bytes_to_samples,
    pad_or_trim,
    pcm16_to_float32,
    samples_to_seconds,
    validate_audio_format,
)
from asrkit.constants import SAMPLE_RATE, SECONDS_PER_TIME_TOKEN, WINDOW_SAMPLES

# Whisper multilingual vocabulary: first timestamp token <|0.00|>
DEFAULT_TIMESTAMP_BEGIN: int = 50364
SAMPLES_PER_TIME_TOKEN: int = int(SAMPLE_RATE * SECONDS_PER_TIME_TOKEN)  # 320


class AudioProcessor:
    """Buffers PCM16 audio and cuts it into encoder windows."""

    def __init__(self, window_samples: int = WINDOW_SAMPLES):
        self.window_samples = window_samples
        self._buffer = bytearray()

    @property
    def buffer_samples(self) -> int:
        return bytes_to_samples(len(self._buffer))

    @property
    def buffer_seconds(self) -> float:
        return samples_to_seconds(self.buffer_samples)

    def append_pcm16(self, data: bytes) -> None:
        if not validate_audio_format(data):
            raise ValueError("Invalid audio format (must be PCM16)")
        self._buffer.extend(data)

    def flush(self) -> np.ndarray:
        """Return buffer as float32 array and clear."""
        audio = pcm16_to_float32(bytes(self._buffer))
        self._buffer.clear()
        return audio

    def pad_or_trim(self, audio: np.ndarray, start: int = 0) -> np.ndarray:
        return pad_or_trim(audio, start, self.window_samples)


class SuppressTokensFilter:
    """Masks a fixed set of token ids at every decoding step."""

    def __init__(self, suppress_tokens: Iterable[int]):
        self.suppress_tokens = sorted(set(suppress_tokens))

    def filter_logits(self, logits: np.ndarray, tokens: Sequence[int]) -> np.ndarray:
        if not self.suppress_tokens:
            return logits
        logits = np.array(logits, dtype=np.float32, copy=True)
        logits[..., self.suppress_tokens] = -np.inf
        return logits


class SuppressBlankFilter:
    """Masks blank/end-of-text tokens on the first sampled position only."""

    def __init__(self, blank_tokens: Iterable[int], sample_begin: int):
        self.blank_tokens = sorted(set(blank_tokens))
        self.sample_begin = sample_begin

    def filter_logits(self, logits: np.ndarray, tokens: Sequence[int]) -> np.ndarray:
        if len(tokens) != self.sample_begin:
            return logits
        logits = np.array(logits, dtype=np.float32, copy=True)
        logits[..., self.blank_tokens] = -np.inf
        return logits


@dataclass(frozen=True)
class Segment:
    id: int
    seek: int
    start: float
    end: float
    tokens: list[int] = field(default_factory=list)
    text: str = ""


class SegmentSeeker:
    """Splits a decoded window into timestamped segments.

    Seek positions are in samples. A pair of consecutive timestamp tokens
    closes a segment; the last closed timestamp decides where the next
    window starts, unless the window ended on a lone timestamp, in which
    case the whole window was consumed.
    """

    def __init__(self, timestamp_begin: int = DEFAULT_TIMESTAMP_BEGIN, tokenizer: Any = None):
        self.timestamp_begin = timestamp_begin
        self.tokenizer = tokenizer

    def _is_timestamp(self, token: int) -> bool:
        return token >= self.timestamp_begin

    def _seconds(self, token: int) -> float:
        return (token - self.timestamp_begin) * SECONDS_PER_TIME_TOKEN

    def _segment(self, index: int, seek: int, start: float, end: float, tokens: list[int]) -> Segment:
        text_tokens = [t for t in tokens if not self._is_timestamp(t)]
        text = ""
        if self.tokenizer is not None:
            text = self.tokenizer.decode(text_tokens, skip_special_tokens=True).strip()
        return Segment(index, seek, round(start, 3), round(end, 3), list(tokens), text)

    def find_seek_point_and_segments(
        self,
        tokens: Sequence[int],
        seek: int,
        segment_size: int,
        time_offset: float | None = None,
    ) -> tuple[int, list[Segment]]:
        """Return the next seek position and the segments found in ``tokens``.

        Args:
            tokens: Decoded tokens of one window, prompt excluded.
            seek: Sample offset at which the window started.
            segment_size: Number of samples the window covered.
            time_offset: Start time of the window in seconds; derived from
                ``seek`` when omitted.
        """
        tokens = list(tokens)
        if time_offset is None:
            time_offset = seek / SAMPLE_RATE

        is_ts = [self._is_timestamp(t) for t in tokens]
        single_timestamp_ending = len(tokens) >= 2 and not is_ts[-2] and is_ts[-1]
        consecutive = [i for i in range(1, len(tokens)) if is_ts[i] and is_ts[i - 1]]

        segments: list[Segment] = []
        if consecutive:
            slices = consecutive + ([len(tokens)] if single_timestamp_ending else [])
            last_slice = 0
            for current in slices:
                sliced = tokens[last_slice:current]
                start = time_offset + self._seconds(sliced[0])
                end = time_offset + self._seconds(sliced[-1])
                segments.append(self._segment(len(segments), seek, start, end, sliced))
                last_slice = current

            if single_timestamp_ending:
                next_seek = seek + segment_size
            else:
                last_timestamp = tokens[last_slice - 1] - self.timestamp_begin
                next_seek = seek + last_timestamp * SAMPLES_PER_TIME_TOKEN
            return next_seek, segments

        duration = segment_size / SAMPLE_RATE
        timestamps = [t for t in tokens if self._is_timestamp(t)]
        if timestamps and timestamps[-1] != self.timestamp_begin:
            duration = self._seconds(timestamps[-1])
        if tokens:
            segments.append(self._segment(0, seek, time_offset, time_offset + duration, tokens))
        return seek + segment_size, segments
