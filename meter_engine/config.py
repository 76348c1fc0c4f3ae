from __future__ import annotations

import math
from dataclasses import dataclass, replace

from meter_engine.level import MIN_WINDOW_SAMPLES, window_length_for

CHANNEL_MODES = ("mono", "left", "right")

DEFAULT_SAMPLE_RATE = 48000

DEFAULT_REFERENCE_LEVEL_DBFS = -20.0
STEREO_REFERENCE_LEVEL_DBFS = -18.0
DEFAULT_PEAK_HOLD_MS = 1000.0
DEFAULT_PEAK_FADE_MS = 5000.0
DEFAULT_CLIP_THRESHOLD_DEG = 23.0
DEFAULT_WINDOW_DURATION_S = 0.05
DEFAULT_ATTACK_TIME_S = 0.3
DEFAULT_RELEASE_TIME_S = 0.3


class ConfigurationError(ValueError):
    """Rejected meter or engine parameter. Only raised at session setup."""


@dataclass(frozen=True)
class MeterOptions:
    reference_level: float = DEFAULT_REFERENCE_LEVEL_DBFS
    channel_mode: str = "mono"
    peak_hold_ms: float = DEFAULT_PEAK_HOLD_MS
    peak_fade_ms: float = DEFAULT_PEAK_FADE_MS
    clip_threshold_deg: float = DEFAULT_CLIP_THRESHOLD_DEG
    window_duration_sec: float = DEFAULT_WINDOW_DURATION_S
    attack_time: float = DEFAULT_ATTACK_TIME_S
    release_time: float = DEFAULT_RELEASE_TIME_S

    @classmethod
    def from_dict(cls, cfg: dict | None, reference_level: float = DEFAULT_REFERENCE_LEVEL_DBFS) -> "MeterOptions":
        c = cfg or {}
        try:
            opts = cls(
                reference_level=float(c.get("reference_level", reference_level)),
                channel_mode=str(c.get("channel_mode", "mono")),
                peak_hold_ms=float(c.get("peak_hold_ms", DEFAULT_PEAK_HOLD_MS)),
                peak_fade_ms=float(c.get("peak_fade_ms", DEFAULT_PEAK_FADE_MS)),
                clip_threshold_deg=float(c.get("clip_threshold_deg", DEFAULT_CLIP_THRESHOLD_DEG)),
                window_duration_sec=float(c.get("window_duration_sec", DEFAULT_WINDOW_DURATION_S)),
                attack_time=float(c.get("attack_time", DEFAULT_ATTACK_TIME_S)),
                release_time=float(c.get("release_time", DEFAULT_RELEASE_TIME_S)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"invalid meter option: {e}")
        opts.validate()
        return opts

    def with_channel(self, channel_mode: str) -> "MeterOptions":
        return replace(self, channel_mode=channel_mode)

    def validate(self) -> None:
        if not math.isfinite(self.reference_level):
            raise ConfigurationError("reference_level must be a finite dBFS value")
        if self.channel_mode not in CHANNEL_MODES:
            raise ConfigurationError(f"channel_mode must be one of {', '.join(CHANNEL_MODES)}")
        if not self.peak_hold_ms > 0:
            raise ConfigurationError("peak_hold_ms must be > 0")
        if not self.peak_fade_ms > 0:
            raise ConfigurationError("peak_fade_ms must be > 0")
        if not -25.0 <= self.clip_threshold_deg <= 25.0:
            raise ConfigurationError("clip_threshold_deg must lie on the dial (-25..25)")
        if not self.window_duration_sec > 0:
            raise ConfigurationError("window_duration_sec must be > 0")
        if not self.attack_time > 0:
            raise ConfigurationError("attack_time must be > 0")
        if not self.release_time > 0:
            raise ConfigurationError("release_time must be > 0")


@dataclass(frozen=True)
class SamplingConfig:
    """Per-session sampling parameters, rebuilt when rate or channel mode changes."""

    sample_rate: float
    window_length: int
    channel_mode: str = "mono"
    reference_level: float = DEFAULT_REFERENCE_LEVEL_DBFS
    source_channels: int = 1

    @classmethod
    def build(cls, sample_rate: float, options: MeterOptions, source_channels: int = 1) -> "SamplingConfig":
        options.validate()
        if not sample_rate > 0:
            raise ConfigurationError("sample_rate must be > 0")
        if int(source_channels) < 1:
            raise ConfigurationError("source_channels must be >= 1")
        if options.channel_mode == "right" and int(source_channels) < 2:
            raise ConfigurationError("right channel requested from a single-channel source")
        if sample_rate * options.window_duration_sec < MIN_WINDOW_SAMPLES:
            raise ConfigurationError(
                f"window_duration_sec {options.window_duration_sec} is shorter than "
                f"{MIN_WINDOW_SAMPLES} samples at {sample_rate} Hz"
            )
        return cls(
            sample_rate=float(sample_rate),
            window_length=window_length_for(sample_rate, options.window_duration_sec),
            channel_mode=options.channel_mode,
            reference_level=options.reference_level,
            source_channels=int(source_channels),
        )

    def requires_rebuild(self, other: "SamplingConfig") -> bool:
        return self.sample_rate != other.sample_rate or self.channel_mode != other.channel_mode


def validate_config(cfg: dict) -> bool:
    """Check an engine config dict without side effects; raises ConfigurationError."""
    try:
        sr = float(cfg.get("sample_rate", DEFAULT_SAMPLE_RATE))
        chs = int(cfg.get("channels", 2))
        fps = float(cfg.get("fps", 60))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"invalid engine setting: {e}")

    if sr <= 0:
        raise ConfigurationError("sample_rate must be > 0")
    if chs not in (1, 2):
        raise ConfigurationError("channels must be 1 or 2")
    if fps <= 0:
        raise ConfigurationError("fps must be > 0")

    layout = str(cfg.get("layout", "stereo"))
    if layout not in ("stereo", "mono"):
        raise ConfigurationError("layout must be 'stereo' or 'mono'")
    if layout == "stereo" and chs != 2:
        raise ConfigurationError("stereo layout needs a 2-channel source")

    options = MeterOptions.from_dict(cfg.get("meter", {}), reference_level=STEREO_REFERENCE_LEVEL_DBFS)
    SamplingConfig.build(sr, options.with_channel("right" if layout == "stereo" else "mono"), chs)
    return True
