"""Calibrated test signals and an offline provider that replays them tick by tick."""

from __future__ import annotations

import numpy as np

from meter_engine.level import dbfs_to_amplitude
from meter_engine.provider import ProviderUnavailable

SQRT2 = float(np.sqrt(2.0))


def sine(rms_dbfs: float, *, seconds: float, fs: int, freq: float = 1000.0) -> np.ndarray:
    """Sine whose RMS level is rms_dbfs (peak = rms * sqrt(2))."""
    t = np.arange(int(seconds * fs)) / fs
    amp = dbfs_to_amplitude(rms_dbfs) * SQRT2
    return (amp * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def silence(*, seconds: float, fs: int) -> np.ndarray:
    return np.zeros(int(seconds * fs), dtype=np.float32)


def square_bursts(*, fs: int, freq: float = 220.0, bursts: int = 5, interval: float = 0.7,
                  attack: float = 0.02, decay: float = 0.5, peak: float = 0.8) -> np.ndarray:
    """Square wave gated by repeating attack/exponential-decay envelopes."""
    total = bursts * interval + decay
    n = int(total * fs)
    t = np.arange(n) / fs
    carrier = np.sign(np.sin(2 * np.pi * freq * t))
    env = np.zeros(n, dtype=np.float64)
    floor = 1e-4
    for i in range(bursts):
        t0 = i * interval
        rel = t - t0
        rising = (rel >= 0) & (rel < attack)
        env[rising] = floor + (peak - floor) * rel[rising] / attack
        falling = (rel >= attack) & (rel < attack + decay)
        env[falling] = peak * (floor / peak) ** ((rel[falling] - attack) / decay)
    return (carrier * env).astype(np.float32)


def stereo(left: np.ndarray, right: np.ndarray | None = None) -> np.ndarray:
    right = left if right is None else right
    n = min(left.size, right.size)
    return np.column_stack([left[:n], right[:n]]).astype(np.float32)


class BufferProvider:
    """
    Replays a pre-generated signal as if it were captured live:
    - every read advances `hop` frames and returns the latest `window_length` frames
    - returns None while paused or before a full window exists
    - raises ProviderUnavailable once the signal is exhausted
    """
    def __init__(self, signal: np.ndarray, *, sample_rate: int, window_length: int, hop: int):
        x = np.asarray(signal, dtype=np.float32)
        self.signal = x if x.ndim == 2 else x[:, None]
        self.sample_rate = int(sample_rate)
        self.channels = self.signal.shape[1]
        self.window_length = int(window_length)
        self.hop = max(1, int(hop))
        self.overflows = 0
        self.paused = False
        self._pos = 0
        self._running = False

    def start(self):
        self._pos = 0
        self._running = True

    def stop(self):
        self._running = False

    @property
    def active(self) -> bool:
        return self._running and self._pos < self.signal.shape[0]

    def read_block(self) -> np.ndarray | None:
        if not self.active:
            raise ProviderUnavailable("signal exhausted" if self._running else "provider stopped")
        if self.paused:
            return None
        self._pos = min(self._pos + self.hop, self.signal.shape[0])
        if self._pos < self.window_length:
            return None
        return self.signal[self._pos - self.window_length:self._pos].copy()
