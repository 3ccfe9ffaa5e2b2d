"""
VocalFilter: band-pass used only to make silence detection more reliable.

Two cascaded single-pole IIR stages: a high-pass (default 60 Hz) drops rumble
and DC offset, a low-pass (default 6 kHz) drops hiss. The result is only ever
fed to the energy scan; the audio sent to the backend is never filtered.
"""
from __future__ import annotations

import math

import numpy as np
from scipy.signal import lfilter


class VocalFilter:
    """
    Single-pole RC filters, applied in one pass each.

    high-pass: y[n] = a * (y[n-1] + x[n] - x[n-1]),  a = RC / (RC + dt)
    low-pass:  y[n] = y[n-1] + b * (x[n] - y[n-1]),  b = dt / (RC + dt)
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        highpass_hz: float = 60.0,
        lowpass_hz: float = 6000.0,
    ) -> None:
        if sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {sample_rate}")
        if highpass_hz <= 0 or lowpass_hz <= 0:
            raise ValueError("cutoff frequencies must be positive")
        if highpass_hz >= lowpass_hz:
            raise ValueError(
                f"highpass_hz ({highpass_hz}) must be below lowpass_hz ({lowpass_hz})"
            )
        self.sample_rate = sample_rate
        self.highpass_hz = highpass_hz
        self.lowpass_hz = lowpass_hz

        dt = 1.0 / sample_rate
        rc_high = 1.0 / (2 * math.pi * highpass_hz)
        rc_low = 1.0 / (2 * math.pi * lowpass_hz)
        self._alpha_high = rc_high / (rc_high + dt)
        self._alpha_low = dt / (rc_low + dt)

    def apply(self, audio: np.ndarray) -> np.ndarray:
        """Return a filtered float32 copy. Input is not modified."""
        if len(audio) == 0:
            return np.zeros(0, dtype=np.float32)
        x = np.asarray(audio, dtype=np.float64)
        a = self._alpha_high
        high = lfilter([a, -a], [1.0, -a], x)
        b = self._alpha_low
        band = lfilter([b], [1.0, -(1.0 - b)], high)
        return band.astype(np.float32)

    __call__ = apply
