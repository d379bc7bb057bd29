"""Rate curves for flight-controller stick tuning.

Each firmware rates type maps stick deflection and three raw per-axis
integers (center rate, max rate, expo) to a commanded angular velocity in
degrees per second. The functions here are pure and are called on every
parameter edit to drive the curve preview, so repeated calls with the same
inputs must return identical floats.

Every curve reaches the same value at full deflection whatever the expo,
so ``max_rate`` is defined as ``abs(rate(1.0, ...))``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, Callable, Dict, List, Tuple

if TYPE_CHECKING:
    from .tuning import UnifiedTuningRecord


class RateAlgorithm(IntEnum):
    """Firmware ``rates_type`` codes."""

    CLASSIC = 0
    POLYNOMIAL = 1
    LINEAR = 2
    ACTUAL = 3
    QUICK = 4

    @classmethod
    def from_name(cls, name: str) -> "RateAlgorithm":
        """Resolve a case-insensitive member name or numeric code."""
        text = name.strip()
        if text.isdigit():
            return cls(int(text))
        try:
            return cls[text.upper()]
        except KeyError:
            raise ValueError(f"Unknown rate algorithm: {name}") from None


@dataclass(slots=True)
class AxisRateParams:
    """Raw per-axis tuning integers as transmitted by the firmware."""

    center_rate: int = 100
    max_rate: int = 70
    expo: int = 0


def _classic(stick: float, params: AxisRateParams) -> float:
    rc_rate = params.center_rate / 100
    if rc_rate > 2.0:
        rc_rate += (rc_rate - 2.0) * 14.54
    rate_factor = params.max_rate / 100
    expo = params.expo / 100

    if expo == 0:
        command = stick
    else:
        command = stick * abs(stick) ** 3 * expo + stick * (1 - expo)

    angle_rate = 200.0 * rc_rate * command
    if rate_factor > 0:
        angle_rate /= max(0.01, 1 - abs(stick) * rate_factor)
    return angle_rate


def _polynomial(stick: float, params: AxisRateParams) -> float:
    # Inputs are already x100 relative to the classic scaling.
    rate_factor = float(params.max_rate)
    rc_rate = params.center_rate * 10.0
    expo = float(params.expo)

    ang_vel = (1 + 0.01 * expo * (stick * stick - 1.0)) * stick
    return ang_vel * (rc_rate + abs(ang_vel) * rc_rate * rate_factor * 0.01)


def _linear(stick: float, params: AxisRateParams) -> float:
    rate_factor = params.max_rate / 100
    rc_rate = params.center_rate / 100
    expo = params.expo / 100

    denominator = max(0.01, 1 - abs(stick) * rate_factor)
    curve = stick * stick
    command = (stick * curve * expo + stick * (1 - expo)) * (rc_rate / 10)
    return 2000.0 * command / denominator


def _actual(stick: float, params: AxisRateParams) -> float:
    max_rate = params.max_rate * 10.0
    center_rate = params.center_rate * 10.0
    expo = params.expo / 100

    expof = abs(stick) * (stick**5 * expo + stick * (1 - expo))
    delta = max(0.0, max_rate - center_rate)
    return stick * center_rate + delta * expof


def _quick(stick: float, params: AxisRateParams) -> float:
    rate_factor = params.max_rate * 10.0
    rc_rate = (params.center_rate / 100) * 200
    expo = params.expo / 100

    # super expo ratio is undefined without a center rate
    if rc_rate <= 0:
        return 0.0

    rate_clamped = max(rate_factor, rc_rate)
    ratio = rate_clamped / rc_rate
    super_expo = (ratio - 1) / ratio
    curve = abs(stick) ** 3 * expo + abs(stick) * (1 - expo)
    ang_vel = 1 / (1 - curve * super_expo)
    return stick * rc_rate * ang_vel


_CURVES: Dict[RateAlgorithm, Callable[[float, AxisRateParams], float]] = {
    RateAlgorithm.CLASSIC: _classic,
    RateAlgorithm.POLYNOMIAL: _polynomial,
    RateAlgorithm.LINEAR: _linear,
    RateAlgorithm.ACTUAL: _actual,
    RateAlgorithm.QUICK: _quick,
}


def rate(stick: float, params: AxisRateParams, algorithm: RateAlgorithm) -> float:
    """Return the commanded rate in deg/s for a stick position in [-1, 1]."""
    stick = max(-1.0, min(1.0, float(stick)))
    try:
        curve = _CURVES[RateAlgorithm(algorithm)]
    except ValueError:
        raise ValueError(f"Unknown rate algorithm: {algorithm!r}") from None
    return curve(stick, params)


def max_rate(params: AxisRateParams, algorithm: RateAlgorithm) -> float:
    """Return the rate at full stick deflection."""
    return abs(rate(1.0, params, algorithm))


def sample_curve(
    params: AxisRateParams, algorithm: RateAlgorithm, points: int = 51
) -> List[Tuple[float, float]]:
    """Sample the positive half of a curve at evenly spaced stick positions."""
    if points < 2:
        raise ValueError("points must be at least 2")
    samples: List[Tuple[float, float]] = []
    for index in range(points):
        stick = index / (points - 1)
        samples.append((stick, rate(stick, params, algorithm)))
    return samples


@dataclass(frozen=True)
class RatePreset:
    name: str
    description: str
    roll: Tuple[int, int, int]
    pitch: Tuple[int, int, int]
    yaw: Tuple[int, int, int]


# (center_rate, max_rate, expo) per axis
RATE_PRESETS: Dict[str, RatePreset] = {
    "beginner": RatePreset(
        name="Beginner",
        description="Slow and predictable",
        roll=(80, 40, 20),
        pitch=(80, 40, 20),
        yaw=(80, 40, 20),
    ),
    "freestyle": RatePreset(
        name="Freestyle",
        description="Balanced for tricks and flow",
        roll=(100, 70, 15),
        pitch=(100, 70, 15),
        yaw=(100, 65, 10),
    ),
    "racing": RatePreset(
        name="Racing",
        description="Fast and responsive",
        roll=(120, 80, 5),
        pitch=(120, 80, 5),
        yaw=(110, 70, 0),
    ),
    "cinematic": RatePreset(
        name="Cinematic",
        description="Smooth for filming",
        roll=(70, 30, 40),
        pitch=(70, 30, 40),
        yaw=(60, 25, 30),
    ),
}


def apply_preset(record: "UnifiedTuningRecord", key: str) -> None:
    """Overwrite the per-axis params of ``record`` with a named preset."""
    try:
        preset = RATE_PRESETS[key]
    except KeyError:
        raise ValueError(f"Unknown rate preset: {key}") from None

    for axis_params, values in (
        (record.roll, preset.roll),
        (record.pitch, preset.pitch),
        (record.yaw, preset.yaw),
    ):
        axis_params.center_rate, axis_params.max_rate, axis_params.expo = values
