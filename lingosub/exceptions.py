"""
Exception types. Everything raised on purpose derives from LingoSubError.

- WaveformError: fatal setup error, the job is aborted before any chunk is sent.
- TranscriptionError: one chunk failed. Transient errors are retried with
  backoff, fatal ones are not; neither aborts the job.
"""
from __future__ import annotations


class LingoSubError(Exception):
    """Base exception for all lingosub errors."""


class ConfigError(LingoSubError):
    """Missing or invalid configuration."""


class WaveformError(LingoSubError):
    """Waveform is empty, malformed or could not be decoded."""


class TranscriptionError(LingoSubError):
    """Backend failed to transcribe one chunk."""

    def __init__(self, message: str, backend: str | None = None) -> None:
        self.backend = backend
        super().__init__(f"{backend}: {message}" if backend else message)


class TransientTranscriptionError(TranscriptionError):
    """Network failure, rate limit, timeout or malformed response. Worth retrying."""


class FatalTranscriptionError(TranscriptionError):
    """Backend rejected the chunk. Retrying would not help."""
