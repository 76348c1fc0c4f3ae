import math

from meter_engine.config import (
    DEFAULT_ATTACK_TIME_S,
    DEFAULT_CLIP_THRESHOLD_DEG,
    DEFAULT_PEAK_FADE_MS,
    DEFAULT_PEAK_HOLD_MS,
    DEFAULT_RELEASE_TIME_S,
)

REST_LEVEL = 0.0
SNAP_OFF_INTENSITY = 0.001


class Ballistics:
    """
    Needle movement inertia on a normalized [0, 1] deflection:
    - attack_time / release_time in seconds (VU standard: 0.3 s each)
    - level starts at rest (needle fully left)
    """
    def __init__(self, attack_time=DEFAULT_ATTACK_TIME_S, release_time=DEFAULT_RELEASE_TIME_S, level=REST_LEVEL):
        self.attack_time = float(attack_time)
        self.release_time = float(release_time)
        self._initial = float(level)
        self.level = float(level)

    def process(self, input_level: float, delta_time: float) -> float:
        x = min(1.0, max(0.0, float(input_level)))
        dt = max(0.0, float(delta_time))
        attack_coeff = 1.0 - math.exp(-dt / self.attack_time)
        release_coeff = 1.0 - math.exp(-dt / self.release_time)

        if x > self.level:
            self.level += (x - self.level) * attack_coeff
        else:
            self.level += (x - self.level) * release_coeff
        return self.level

    def reset(self, level=None):
        self.level = self._initial if level is None else float(level)


class PeakIndicator:
    """
    Clip lamp with hold-then-linear-fade:
    - lit at full intensity for hold_ms after the latest crossing of clip_threshold_deg
    - fades to dark over fade_ms, snapping off at <= 0.001
    """
    def __init__(self, clip_threshold_deg=DEFAULT_CLIP_THRESHOLD_DEG, hold_ms=DEFAULT_PEAK_HOLD_MS,
                 fade_ms=DEFAULT_PEAK_FADE_MS):
        self.clip_threshold_deg = float(clip_threshold_deg)
        self.hold_ms = float(hold_ms)
        self.fade_ms = float(fade_ms)
        self.last_clip_ms = None

    def intensity(self, now_ms: float) -> float:
        if self.last_clip_ms is None:
            return 0.0
        since = now_ms - self.last_clip_ms
        if since <= self.hold_ms:
            return 1.0
        t = min(1.0, max(0.0, (since - self.hold_ms) / self.fade_ms))
        return 1.0 - t

    def update(self, angle: float, now_ms: float):
        if angle >= self.clip_threshold_deg:
            self.last_clip_ms = now_ms

        intensity = self.intensity(now_ms)
        if intensity <= SNAP_OFF_INTENSITY:
            return False, 0.0
        return True, intensity

    def reset(self):
        self.last_clip_ms = None
