"""Application configuration. Loads from env vars."""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """App settings. Override via environment variables."""

    # Audio: float32 mono, 16kHz (PCM 16-bit on the wire)
    SAMPLE_RATE: int = 16000

    # Segmentation: "fixed" = progressive 20s/40s/120s/180s schedule, "vad" = split at silence
    SEGMENTATION_METHOD: Literal["fixed", "vad"] = "fixed"
    VAD_BATCH_SECONDS: float = 120.0  # audio appended to the bank per iteration
    VAD_MIN_SILENCE_SECONDS: float = 0.4
    VAD_SILENCE_THRESHOLD: float = 0.02  # RMS, float32 scale
    VAD_FILTER_ENABLED: bool = True  # band-pass copy of the bank before the energy scan
    VAD_WINDOW_SECONDS: float = 0.05
    VAD_FORCE_SPLIT_MULTIPLIER: float = 3.0  # force a cut when carry-over exceeds N x batch
    MIN_CHUNK_SECONDS: float = 0.2
    VOCAL_FILTER_HIGHPASS_HZ: float = 60.0
    VOCAL_FILTER_LOWPASS_HZ: float = 6000.0
    LIMIT_SECONDS: float | None = None  # only transcribe the first N seconds

    # Worker pool
    PIPELINE_CONCURRENCY: int = 2
    PIPELINE_MAX_RETRIES: int = 3
    PIPELINE_RETRY_BASE_DELAY: float = 1.0  # 1s, 2s, 4s

    # ASR backend: "cloudflare" | "local_server" | "in_process"
    ASR_BACKEND: Literal["cloudflare", "local_server", "in_process"] = "local_server"

    # Cloudflare Workers AI (when ASR_BACKEND=cloudflare)
    CLOUDFLARE_ACCOUNT_ID: str = ""
    CLOUDFLARE_API_TOKEN: str = ""
    CLOUDFLARE_WHISPER_MODEL: str = "@cf/openai/whisper-large-v3-turbo"
    CLOUD_TIMEOUT_SECONDS: float = 120.0

    # OpenAI-compatible local server (LocalAI, whisper.cpp server, faster-whisper-server)
    LOCAL_ASR_ENDPOINT: str = "http://127.0.0.1:8080/v1/audio/transcriptions"
    LOCAL_ASR_MODEL: str = "whisper-large"
    LOCAL_ASR_LANGUAGE: str = ""  # empty = let the server detect
    LOCAL_ASR_TIMEOUT_SECONDS: float = 300.0

    # In-process Whisper (when ASR_BACKEND=in_process), model loaded once at startup
    LOCAL_WHISPER_MODEL: str = "base"  # base | small | medium | large-v3
    LOCAL_WHISPER_DEVICE: Literal["cpu", "cuda", "auto"] = "cpu"
    LOCAL_WHISPER_COMPUTE_TYPE: Literal["int8", "float16", "float32", "default"] = "int8"
    LOCAL_WHISPER_BEAM_SIZE: int = 5

    # Overlap tolerated at a chunk seam before the later segment is clamped (seconds)
    NETWORK_OVERLAP_TOLERANCE: float = 1.0
    IN_PROCESS_OVERLAP_TOLERANCE: float = 0.5

    # Debug export: WAV bytes sent per chunk, zipped at job end. Always on in test mode.
    DEBUG_EXPORT_ENABLED: bool = False
    DEBUG_EXPORT_DIR: str = "./debug_chunks"

    # Subtitle file per job, rewritten after every snapshot
    TRANSCRIPT_SAVE_ENABLED: bool = False
    TRANSCRIPT_DIR: str = "./transcripts"
    TRANSCRIPT_FORMAT: Literal["srt", "vtt"] = "srt"

    # Server bind address for `python -m lingosub`
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Logging: level (DEBUG, INFO, WARNING, ERROR); file path = also log to file (empty = console only)
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    class Config:
        env_file = ".env"
        extra = "ignore"


def get_settings() -> Settings:
    return Settings()


class SegmentationConfig(BaseModel):
    """How the waveform is cut into chunks. Passive input to the segmenter."""

    method: Literal["fixed", "vad"] = "fixed"
    batch_size_seconds: float = Field(default=120.0, gt=0.0)
    min_silence_seconds: float = Field(default=0.4, gt=0.0)
    silence_threshold: float = Field(default=0.02, ge=0.0)
    vocal_filter_enabled: bool = True
    limit_seconds: float | None = Field(default=None, gt=0.0)

    window_seconds: float = Field(default=0.05, gt=0.0)
    force_split_multiplier: float = Field(default=3.0, ge=1.0)
    min_chunk_seconds: float = Field(default=0.2, ge=0.0)
    highpass_hz: float = Field(default=60.0, gt=0.0)
    lowpass_hz: float = Field(default=6000.0, gt=0.0)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SegmentationConfig":
        s = settings or get_settings()
        return cls(
            method=s.SEGMENTATION_METHOD,
            batch_size_seconds=s.VAD_BATCH_SECONDS,
            min_silence_seconds=s.VAD_MIN_SILENCE_SECONDS,
            silence_threshold=s.VAD_SILENCE_THRESHOLD,
            vocal_filter_enabled=s.VAD_FILTER_ENABLED,
            limit_seconds=s.LIMIT_SECONDS,
            window_seconds=s.VAD_WINDOW_SECONDS,
            force_split_multiplier=s.VAD_FORCE_SPLIT_MULTIPLIER,
            min_chunk_seconds=s.MIN_CHUNK_SECONDS,
            highpass_hz=s.VOCAL_FILTER_HIGHPASS_HZ,
            lowpass_hz=s.VOCAL_FILTER_LOWPASS_HZ,
        )

    def for_test_run(self) -> "SegmentationConfig":
        """Test mode: only the first batch is transcribed unless a limit is already set."""
        if self.limit_seconds is not None:
            return self
        return self.model_copy(update={"limit_seconds": self.batch_size_seconds})
