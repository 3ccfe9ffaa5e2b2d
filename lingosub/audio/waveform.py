"""
Waveform helpers at the WaveformSource boundary.

The pipeline works on one float32 mono buffer in [-1, 1] at a fixed sample
rate. Decoding video containers is someone else's job; here we only convert
between that buffer, PCM 16-bit bytes and 16-bit mono WAV.
"""
from __future__ import annotations

import io
import wave

import numpy as np

from lingosub.exceptions import WaveformError

SAMPLE_WIDTH = 2  # 16-bit
NCHANNELS = 1


def pcm_bytes_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """Convert PCM 16-bit mono bytes to float32 [-1.0, 1.0]."""
    samples = np.frombuffer(pcm_bytes, dtype=np.int16)
    return samples.astype(np.float32) / 32768.0


def float32_to_pcm_bytes(audio: np.ndarray) -> bytes:
    """Convert float32 [-1, 1] to PCM 16-bit mono bytes."""
    samples = (np.asarray(audio, dtype=np.float32) * 32767).clip(-32768, 32767).astype(np.int16)
    return samples.tobytes()


def encode_wav(audio: np.ndarray, sample_rate: int) -> bytes:
    """Wrap samples in a 16-bit mono WAV container. This is what backends receive."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(NCHANNELS)
        wav.setsampwidth(SAMPLE_WIDTH)
        wav.setframerate(sample_rate)
        wav.writeframes(float32_to_pcm_bytes(audio))
    return buf.getvalue()


def decode_wav(data: bytes, sample_rate: int) -> np.ndarray:
    """
    Decode 16-bit mono WAV bytes at the expected sample rate.
    Resampling and channel mixing are out of scope: anything else is a WaveformError.
    """
    try:
        with wave.open(io.BytesIO(data), "rb") as wav:
            channels = wav.getnchannels()
            width = wav.getsampwidth()
            rate = wav.getframerate()
            frames = wav.readframes(wav.getnframes())
    except (wave.Error, EOFError) as e:
        raise WaveformError(f"Could not decode WAV data: {e}") from e
    if channels != NCHANNELS or width != SAMPLE_WIDTH:
        raise WaveformError(
            f"Expected 16-bit mono WAV, got {channels} channel(s) of {width * 8}-bit samples"
        )
    if rate != sample_rate:
        raise WaveformError(f"Expected {sample_rate} Hz audio, got {rate} Hz")
    return pcm_bytes_to_float32(frames)


def validate_waveform(audio) -> np.ndarray:
    """
    Return the waveform as a 1-D float32 array or raise WaveformError.
    float32 input is returned without copying; workers share it read-only.
    """
    try:
        arr = np.asarray(audio, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise WaveformError(f"Waveform is not numeric: {e}") from e
    if arr.ndim != 1:
        raise WaveformError(f"Waveform must be mono (1-D), got shape {arr.shape}")
    if arr.size == 0:
        raise WaveformError("Waveform is empty")
    if not np.all(np.isfinite(arr)):
        raise WaveformError("Waveform contains NaN or infinite samples")
    return arr
