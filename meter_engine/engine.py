from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Optional

import numpy as np
import psutil
from loguru import logger

from meter_engine.config import (
    DEFAULT_SAMPLE_RATE,
    MeterOptions,
    SamplingConfig,
    STEREO_REFERENCE_LEVEL_DBFS,
    validate_config,
)
from meter_engine.dsp import Ballistics, PeakIndicator
from meter_engine.level import estimate_dbfs
from meter_engine.provider import ProviderUnavailable, select_channel
from meter_engine.scale import ANGLE_MIN, clamp_angle, denormalize_level, normalize_angle, to_angle
from meter_engine.signals import BufferProvider, silence, sine


@dataclass(frozen=True)
class MeterReading:
    angle: float = ANGLE_MIN
    peak_active: bool = False
    peak_intensity: float = 0.0
    dbfs: Optional[float] = None
    vu: Optional[float] = None
    timestamp: Optional[float] = None

    def as_dict(self) -> dict:
        return asdict(self)


REST_READING = MeterReading()


class MeterSession:
    """
    One needle: level estimate -> VU scale -> ballistics -> clip lamp.
    Owns its ballistics, clip and tick timing state; a tick runs entirely under the session lock.
    """
    def __init__(self, config: SamplingConfig, options: MeterOptions, name: str = "VU"):
        self.name = name
        self.config = config
        self.options = options
        self.ballistics = Ballistics(options.attack_time, options.release_time)
        self.peak = PeakIndicator(options.clip_threshold_deg, options.peak_hold_ms, options.peak_fade_ms)
        self.ticks = 0
        self._lock = threading.RLock()
        self._last_time: Optional[float] = None
        self._running = False
        self._reading = REST_READING

    @property
    def running(self) -> bool:
        return self._running

    @property
    def reading(self) -> MeterReading:
        return self._reading

    def start(self):
        with self._lock:
            self.ballistics.reset()
            self.peak.reset()
            self._last_time = None
            self._reading = REST_READING
            self.ticks = 0
            self._running = True

    def stop(self):
        with self._lock:
            self._running = False

    def reconfigure(self, config: SamplingConfig, options: Optional[MeterOptions] = None):
        with self._lock:
            options = options or self.options
            rebuild = self.config.requires_rebuild(config) or options != self.options
            self.config = config
            if not rebuild:
                return
            self.options = options
            self.ballistics = Ballistics(options.attack_time, options.release_time)
            self.peak = PeakIndicator(options.clip_threshold_deg, options.peak_hold_ms, options.peak_fade_ms)
            if self._running:
                self.start()
            logger.debug(f"{self.name}: rebuilt for sr={config.sample_rate} channel={config.channel_mode}")

    def tick(self, window: Optional[np.ndarray], timestamp: float) -> Optional[MeterReading]:
        """Advance one frame. `timestamp` is monotonic seconds; a None window holds the last reading."""
        with self._lock:
            if not self._running:
                return None
            if window is None:
                return self._reading

            if self._last_time is None:
                dt = 0.0
            else:
                dt = max(0.0, timestamp - self._last_time)
            self._last_time = timestamp

            dbfs = estimate_dbfs(window, self.config)
            vu = dbfs - self.config.reference_level
            target = to_angle(vu)
            level = self.ballistics.process(normalize_angle(target), dt)
            angle = clamp_angle(denormalize_level(level))
            active, intensity = self.peak.update(angle, timestamp * 1000.0)

            self._reading = MeterReading(
                angle=angle,
                peak_active=active,
                peak_intensity=intensity,
                dbfs=dbfs,
                vu=vu,
                timestamp=timestamp,
            )
            self.ticks += 1
            return self._reading


class StereoMeter:
    """Left/right needle pair (or a single mono needle) fed from one multichannel block."""

    def __init__(self, sample_rate: float, options: MeterOptions, *, mono: bool = False, source_channels: int = 2):
        modes = {"MONO": "mono"} if mono else {"L": "left", "R": "right"}
        self.mono = mono
        self.sessions: Dict[str, MeterSession] = {}
        for label, mode in modes.items():
            opts = options.with_channel(mode)
            cfg = SamplingConfig.build(sample_rate, opts, source_channels=source_channels)
            self.sessions[label] = MeterSession(cfg, opts, name=label)

    @property
    def window_length(self) -> int:
        return next(iter(self.sessions.values())).config.window_length

    def start(self):
        for s in self.sessions.values():
            s.start()

    def stop(self):
        for s in self.sessions.values():
            s.stop()

    def tick(self, block: Optional[np.ndarray], timestamp: float) -> Dict[str, MeterReading]:
        out = {}
        for label, s in self.sessions.items():
            window = None if block is None else select_channel(block, s.config.channel_mode)
            reading = s.tick(window, timestamp)
            if reading is not None:
                out[label] = reading
        return out

    def readings(self) -> Dict[str, MeterReading]:
        return {label: s.reading for label, s in self.sessions.items()}


def simulate(meter: StereoMeter, signal: np.ndarray, *, fs: int, fps: float, start_time: float = 0.0):
    """Run a meter over a recorded signal at a fixed frame rate; yields (timestamp, readings)."""
    provider = BufferProvider(signal, sample_rate=fs, window_length=meter.window_length, hop=round(fs / fps))
    provider.start()
    meter.start()
    frame = 0
    try:
        while True:
            try:
                block = provider.read_block()
            except ProviderUnavailable:
                break
            now = start_time + frame / fps
            yield now, meter.tick(block, now)
            frame += 1
    finally:
        provider.stop()


def _default_provider(cfg: dict, window_length: int):
    from meter_engine.audio_device import SoundDeviceProvider
    return SoundDeviceProvider(
        device=cfg.get("device"),
        sample_rate=int(cfg.get("sample_rate", DEFAULT_SAMPLE_RATE)),
        channels=int(cfg.get("channels", 2)),
        window_length=window_length,
        blocksize=int(cfg.get("blocksize", 0)),
    )


class MeterEngine:
    def __init__(self, cfg: dict, provider_factory: Optional[Callable] = None):
        validate_config(cfg)
        self.cfg = cfg
        self.fs = int(cfg.get("sample_rate", DEFAULT_SAMPLE_RATE))
        self.channels = int(cfg.get("channels", 2))
        self.fps = float(cfg.get("fps", 60))
        self.layout = str(cfg.get("layout", "stereo"))
        self.options = MeterOptions.from_dict(cfg.get("meter", {}), reference_level=STEREO_REFERENCE_LEVEL_DBFS)
        self.meter = StereoMeter(self.fs, self.options, mono=self.layout == "mono", source_channels=self.channels)

        self._provider_factory = provider_factory or _default_provider
        self.provider = self._provider_factory(cfg, self.meter.window_length)
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._provider_ok = True
        self.start_time = None
        self.ticks = 0

    # ---- validation (no side effects) ----
    def validate_config(self, cfg: dict) -> bool:
        return validate_config(cfg)

    # ---- lifecycle ----
    def start(self, threaded: bool = True):
        """Open the provider and reset the needles; threaded=False leaves ticking to the caller."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self.meter.start()
            try:
                self.provider.start()
            except ProviderUnavailable as e:
                self._provider_unavailable(e)
            self._stop.clear()
            if threaded:
                self._thread = threading.Thread(target=self._run, name="meter-ticks", daemon=True)
                self._thread.start()
            self.start_time = time.time()
            logger.info(f"Metering {self.layout} at {self.fps:g} fps, window {self.meter.window_length} samples")

    def stop(self):
        with self._lock:
            self._stop.set()
            if self._thread is not None:
                self._thread.join()
                self._thread = None
            try:
                self.provider.stop()
            finally:
                self.meter.stop()

    def reload_config(self, new_cfg: dict):
        # validate before touching streams
        self.validate_config(new_cfg)
        with self._lock:
            threaded = self._thread is not None
            self.stop()
            self.__init__(new_cfg, provider_factory=self._provider_factory)
            self.start(threaded=threaded)

    def _run(self):
        interval = 1.0 / self.fps
        while not self._stop.is_set():
            t0 = time.monotonic()
            self.tick_once(t0)
            elapsed = time.monotonic() - t0
            self._stop.wait(max(0.0, interval - elapsed))

    def tick_once(self, now: Optional[float] = None) -> Optional[Dict[str, MeterReading]]:
        now = time.monotonic() if now is None else now
        try:
            block = self.provider.read_block()
        except ProviderUnavailable as e:
            self._provider_unavailable(e)
            return None
        if not self._provider_ok:
            logger.info("Sample provider available again")
            self._provider_ok = True
        readings = self.meter.tick(block, now)
        self.ticks += 1
        return readings

    def _provider_unavailable(self, err: Exception):
        if self._provider_ok:
            logger.warning(f"Sample provider unavailable, holding last readings: {err}")
            self._provider_ok = False

    # ---- monitoring ----
    def get_readings(self) -> dict:
        return {k: v.as_dict() for k, v in self.meter.readings().items()}

    def get_status(self) -> dict:
        uptime = 0.0 if not self.start_time else time.time() - self.start_time
        return {
            "sample_rate": self.fs,
            "channels": self.channels,
            "layout": self.layout,
            "fps": self.fps,
            "window_length": self.meter.window_length,
            "window_ms": round(1000.0 * self.meter.window_length / self.fs, 2),
            "reference_level": self.options.reference_level,
            "provider_active": bool(getattr(self.provider, "active", False)),
            "overflows": getattr(self.provider, "overflows", 0),
            "ticks": self.ticks,
            "cpu_percent": psutil.cpu_percent(interval=None),
            "uptime_s": round(uptime, 2),
        }

    # ---- metering sanity check ----
    def self_check(self) -> dict:
        return self_check_metering(self.fs, self.options, fps=self.fps)


def self_check_metering(fs: int, options: MeterOptions, fps: float = 60.0) -> dict:
    """Run calibrated signals through a fresh mono meter and compare against the dial."""
    ref = options.reference_level
    opts = options.with_channel("mono")

    def run(signal):
        meter = StereoMeter(fs, opts, mono=True, source_channels=1)
        return [(t, r["MONO"]) for t, r in simulate(meter, signal, fs=fs, fps=fps) if "MONO" in r]

    # 0 VU sine: needle settles on the 0 VU mark (8 deg) after ballistics
    ref_run = run(sine(ref, seconds=3.0, fs=fs))
    settled = ref_run[-1][1].angle
    first = ref_run[0][1].angle
    settle_time = next((t - ref_run[0][0] for t, r in ref_run if abs(r.angle - 8.0) <= 0.5), None)
    reference_ok = abs(settled - 8.0) <= 0.5 and first < 0.0

    # silence: needle rests, lamp dark
    quiet = run(silence(seconds=1.0, fs=fs))[-1][1]
    silence_ok = quiet.angle <= -24.5 and not quiet.peak_active

    # +6 VU burst followed by silence: lamp lights, holds, then fades out
    hot = np.concatenate([
        sine(ref + 6.0, seconds=2.0, fs=fs),
        silence(seconds=(options.peak_hold_ms + options.peak_fade_ms) / 1000.0 + 2.0, fs=fs),
    ])
    hot_run = run(hot)
    lit = any(r.peak_active for _, r in hot_run)
    clip_ok = lit and not hot_run[-1][1].peak_active

    return {
        "reference_angle_deg": round(settled, 3),
        "reference_expected_deg": 8.0,
        "reference_settle_s": None if settle_time is None else round(settle_time, 3),
        "reference_ok": reference_ok,
        "silence_angle_deg": round(quiet.angle, 3),
        "silence_ok": silence_ok,
        "clip_lamp_lit": lit,
        "clip_ok": clip_ok,
    }
