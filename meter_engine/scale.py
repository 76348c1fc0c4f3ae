"""VU dial calibration: loudness relative to the 0 VU reference -> needle angle."""

from __future__ import annotations

from bisect import bisect_left
from typing import NamedTuple, Sequence, Tuple

ANGLE_MIN = -25.0
ANGLE_MAX = 25.0
ANGLE_SPAN = ANGLE_MAX - ANGLE_MIN

VU_MIN = -20.0
VU_MAX = 3.0

# (vu, angle) anchors of the measured meter response, sorted by vu
VU_SCALE: Tuple[Tuple[float, float], ...] = (
    (-20.0, -23.0),
    (-10.0, -16.0),
    (-7.0, -12.0),
    (-5.0, -8.0),
    (-3.0, -3.0),
    (-2.0, 0.0),
    (-1.0, 3.5),
    (0.0, 8.0),
    (1.0, 13.0),
    (2.0, 18.0),
    (3.0, 25.0),
)


class ScaleMark(NamedTuple):
    vu: float
    angle: float
    major: bool


SCALE_MARKS: Tuple[ScaleMark, ...] = (
    ScaleMark(-25.0, -25.0, True),
    *(ScaleMark(vu, angle, vu == 0.0 or vu == 3.0) for vu, angle in VU_SCALE),
)

_LABELLED_MAJOR = (-20.0, -10.0, -2.0, 0.0, 3.0)
SCALE_LABELS: Tuple[ScaleMark, ...] = tuple(
    ScaleMark(vu, angle, vu in _LABELLED_MAJOR) for vu, angle in VU_SCALE
)


def interpolate(x: float, table: Sequence[Tuple[float, float]]) -> float:
    """Piecewise-linear lookup over breakpoints sorted ascending.

    A value equal to a breakpoint belongs to the segment ending there.
    Values outside the table hold the end values.
    """
    xs = [p[0] for p in table]
    if x <= xs[0]:
        return float(table[0][1])
    if x >= xs[-1]:
        return float(table[-1][1])
    i = bisect_left(xs, x)
    x0, y0 = table[i - 1]
    x1, y1 = table[i]
    return y0 + (x - x0) / (x1 - x0) * (y1 - y0)


def to_angle(vu_value: float) -> float:
    if vu_value < VU_MIN:
        return ANGLE_MIN
    if vu_value >= VU_MAX:
        return ANGLE_MAX
    return interpolate(vu_value, VU_SCALE)


def normalize_angle(angle: float) -> float:
    return (angle - ANGLE_MIN) / ANGLE_SPAN


def denormalize_level(level: float) -> float:
    return level * ANGLE_SPAN + ANGLE_MIN


def clamp_angle(angle: float) -> float:
    return max(ANGLE_MIN, min(ANGLE_MAX, angle))


def scale_description() -> dict:
    return {
        "angle_range": [ANGLE_MIN, ANGLE_MAX],
        "marks": [m._asdict() for m in SCALE_MARKS],
        "labels": [m._asdict() for m in SCALE_LABELS],
    }
