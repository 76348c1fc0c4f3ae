"""Shared fixtures for the metering test suite."""

import sys
from pathlib import Path

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from meter_engine.config import MeterOptions, SamplingConfig  # noqa: E402
from meter_engine.engine import MeterSession  # noqa: E402
from meter_engine.level import dbfs_to_amplitude  # noqa: E402
from meter_engine.signals import BufferProvider  # noqa: E402

FS = 48000
WINDOW = 2048
FPS = 60.0


def periodic_sine(rms_dbfs: float, n: int = WINDOW, period: int = 64) -> np.ndarray:
    """Sine over a whole number of periods, so its RMS is exact."""
    amp = dbfs_to_amplitude(rms_dbfs) * np.sqrt(2.0)
    return (amp * np.sin(2 * np.pi * np.arange(n) / period)).astype(np.float64)


def run_ticks(session, window, seconds: float, start: float = 0.0, fps: float = FPS):
    """Tick a session with the same window at a fixed rate; returns the readings."""
    frames = int(round(seconds * fps))
    return [session.tick(window, start + i / fps) for i in range(frames)]


@pytest.fixture
def options() -> MeterOptions:
    return MeterOptions(reference_level=-18.0)


@pytest.fixture
def mono_config(options) -> SamplingConfig:
    return SamplingConfig.build(FS, options, source_channels=1)


@pytest.fixture
def session(mono_config, options) -> MeterSession:
    s = MeterSession(mono_config, options)
    s.start()
    return s


@pytest.fixture
def buffer_factory():
    """Provider factory for MeterEngine that replays a given stereo signal."""
    def make(signal):
        def factory(cfg, window_length):
            fs = int(cfg.get("sample_rate", FS))
            return BufferProvider(signal, sample_rate=fs, window_length=window_length,
                                  hop=round(fs / float(cfg.get("fps", FPS))))
        return factory
    return make
