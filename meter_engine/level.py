from __future__ import annotations

import math

import numpy as np

RMS_FLOOR = 1e-5  # ~ -100 dBFS
FLOOR_DBFS = 20.0 * math.log10(RMS_FLOOR)
MONO_SUM_CORRECTION_DB = 3.8

MIN_WINDOW_SAMPLES = 32
MAX_WINDOW_SAMPLES = 32768


def window_length_for(sample_rate: float, window_duration_sec: float) -> int:
    """Power-of-two analysis window closest to the requested duration, in [32, 32768]."""
    desired = max(MIN_WINDOW_SAMPLES, min(MAX_WINDOW_SAMPLES, sample_rate * window_duration_sec))
    nearest = 2 ** round(math.log2(desired))
    return int(max(MIN_WINDOW_SAMPLES, min(MAX_WINDOW_SAMPLES, nearest)))


def rms(window: np.ndarray) -> float:
    x = np.asarray(window, dtype=np.float64)
    if x.size == 0:
        raise ValueError("sample window must hold at least one sample")
    return float(np.sqrt(np.mean(x * x)))


def rms_dbfs(window: np.ndarray) -> float:
    r = rms(window)
    if not math.isfinite(r):
        r = RMS_FLOOR
    return 20.0 * math.log10(max(r, RMS_FLOOR))


def dbfs_to_amplitude(dbfs: float) -> float:
    return 10.0 ** (dbfs / 20.0)


def estimate_dbfs(window: np.ndarray, config) -> float:
    """
    Instantaneous loudness of one window in dBFS.
    - RMS over the whole window, floored at 1e-5 so silence stays finite
    - +3.8 dB when a 2-channel source is metered as its mono fold-down
    """
    db = rms_dbfs(window)
    if config.channel_mode == "mono" and config.source_channels == 2:
        db += MONO_SUM_CORRECTION_DB
    return db
