"""Core constants for the asrkit pipeline.

Whisper-family models consume 16kHz mono audio in 30 second windows.
Audio is framed with a 160-sample hop (10ms), giving 3000 mel frames per window.
"""

# Audio format requirements
SAMPLE_RATE: int = 16000  # Hz
BYTES_PER_SAMPLE: int = 2  # 16-bit PCM
HOP_LENGTH: int = 160

# Window: 30 seconds of audio per encoder pass
CHUNK_LENGTH: int = 30  # seconds
WINDOW_SAMPLES: int = SAMPLE_RATE * CHUNK_LENGTH  # 480000
WINDOW_FRAMES: int = WINDOW_SAMPLES // HOP_LENGTH  # 3000
ENCODER_FRAMES: int = WINDOW_FRAMES // 2  # 1500
SECONDS_PER_TIME_TOKEN: float = 0.02

# Model artifacts expected directly inside a model folder
MEL_ARTIFACT: str = "MelSpectrogram.pt"
ENCODER_ARTIFACT: str = "AudioEncoder.pt"
DECODER_ARTIFACT: str = "TextDecoder.pt"

# Model repository
DEFAULT_MODEL_REPO: str = "asrkit/whisper-torchscript"
DEFAULT_MODEL_PATTERNS: tuple[str, ...] = ("openai_*", "distil-whisper_*")
DEFAULT_FOLDER_PREFIX: str = "openai_whisper-"
