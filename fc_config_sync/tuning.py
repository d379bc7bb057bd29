"""Unified tuning record and the legacy field layout mapping.

Older firmware revisions expose one combined roll/pitch max-rate field and
one expo/center pair shared by roll and pitch instead of per-axis fields.
The functions here convert between that raw layout and a single per-axis
record so the rest of the package never has to know which layout the
connected firmware uses.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping

from .rates import AxisRateParams, RateAlgorithm

# Raw attribute -> firmware setting name
SETTING_NAMES: Dict[str, str] = {
    "rc_rate": "rc_rate",
    "rc_expo": "rc_expo",
    "rc_pitch_rate": "rc_pitch_rate",
    "rc_pitch_expo": "rc_pitch_expo",
    "rc_yaw_rate": "rc_yaw_rate",
    "rc_yaw_expo": "rc_yaw_expo",
    "roll_rate": "roll_rate",
    "pitch_rate": "pitch_rate",
    "yaw_rate": "yaw_rate",
    "roll_pitch_rate": "roll_pitch_rate",
    "rates_type": "rates_type",
}

# Fields that legacy firmware does not expose.
PER_AXIS_ONLY = frozenset({"rc_pitch_rate", "rc_pitch_expo", "roll_rate", "pitch_rate"})

COMBINED_FIELD = "roll_pitch_rate"


@dataclass(slots=True)
class RawRcTuning:
    """Tuning fields in the layout the firmware reports them."""

    rc_rate: int = 100
    rc_expo: int = 0
    rc_pitch_rate: int = 100
    rc_pitch_expo: int = 0
    rc_yaw_rate: int = 100
    rc_yaw_expo: int = 0
    roll_rate: int = 0
    pitch_rate: int = 0
    yaw_rate: int = 0
    roll_pitch_rate: int = 0
    rates_type: int = int(RateAlgorithm.CLASSIC)

    @classmethod
    def from_settings(cls, values: Mapping[str, Any]) -> "RawRcTuning":
        """Build from firmware setting values; missing or empty values keep defaults.

        A setting that came back as ``None`` is treated like an absent field,
        which for the per-axis rates means zero.
        """
        raw = cls()
        for attribute, name in SETTING_NAMES.items():
            value = values.get(name)
            if value is None or value == "":
                continue
            setattr(raw, attribute, int(float(value)))
        return raw

    def to_settings(
        self, *, legacy: bool = False, combined: bool = True
    ) -> Dict[str, int]:
        """Return setting name -> value for the fields the firmware exposes.

        Legacy firmware has no per-axis roll/pitch fields. Per-axis firmware
        may not expose the combined ``roll_pitch_rate``; pass
        ``combined=False`` to leave it out.
        """
        result: Dict[str, int] = {}
        for attribute, name in SETTING_NAMES.items():
            if legacy and attribute in PER_AXIS_ONLY:
                continue
            if not combined and attribute == COMBINED_FIELD:
                continue
            result[name] = getattr(self, attribute)
        return result


@dataclass(slots=True)
class UnifiedTuningRecord:
    roll: AxisRateParams = field(default_factory=AxisRateParams)
    pitch: AxisRateParams = field(default_factory=AxisRateParams)
    yaw: AxisRateParams = field(default_factory=AxisRateParams)
    algorithm: RateAlgorithm = RateAlgorithm.CLASSIC
    combined_roll_pitch_max_rate: int = 0

    def snapshot(self) -> "UnifiedTuningRecord":
        return copy.deepcopy(self)


def reports_combined(values: Mapping[str, Any]) -> bool:
    """Return True when a settings read included the combined roll/pitch field."""
    value = values.get(SETTING_NAMES[COMBINED_FIELD])
    return value is not None and value != ""


def detect_legacy(raw: RawRcTuning) -> bool:
    """Return True when the firmware reports no per-axis roll/pitch rates.

    Firmware leaves both per-axis fields at zero when only the combined
    field exists. This is a heuristic: a user who genuinely set both axes to
    zero is indistinguishable from legacy firmware.
    """
    return raw.roll_rate == 0 and raw.pitch_rate == 0


def expand(raw: RawRcTuning) -> UnifiedTuningRecord:
    """Build a unified per-axis record from either raw layout."""
    if detect_legacy(raw):
        roll = AxisRateParams(raw.rc_rate, raw.roll_pitch_rate, raw.rc_expo)
        pitch = AxisRateParams(raw.rc_rate, raw.roll_pitch_rate, raw.rc_expo)
    else:
        roll = AxisRateParams(raw.rc_rate, raw.roll_rate, raw.rc_expo)
        pitch = AxisRateParams(raw.rc_pitch_rate, raw.pitch_rate, raw.rc_pitch_expo)

    yaw = AxisRateParams(raw.rc_yaw_rate, raw.yaw_rate, raw.rc_yaw_expo)

    try:
        algorithm = RateAlgorithm(raw.rates_type)
    except ValueError:
        algorithm = RateAlgorithm.CLASSIC

    return UnifiedTuningRecord(
        roll=roll,
        pitch=pitch,
        yaw=yaw,
        algorithm=algorithm,
        combined_roll_pitch_max_rate=raw.roll_pitch_rate,
    )


def collapse(record: UnifiedTuningRecord) -> RawRcTuning:
    """Write a unified record back into the raw layout.

    The combined field always mirrors the roll max rate, never pitch, so a
    write-back stays usable on legacy firmware.
    """
    return RawRcTuning(
        rc_rate=record.roll.center_rate,
        rc_expo=record.roll.expo,
        rc_pitch_rate=record.pitch.center_rate,
        rc_pitch_expo=record.pitch.expo,
        rc_yaw_rate=record.yaw.center_rate,
        rc_yaw_expo=record.yaw.expo,
        roll_rate=record.roll.max_rate,
        pitch_rate=record.pitch.max_rate,
        yaw_rate=record.yaw.max_rate,
        roll_pitch_rate=record.roll.max_rate,
        rates_type=int(record.algorithm),
    )


def changed_settings(
    original: UnifiedTuningRecord,
    current: UnifiedTuningRecord,
    *,
    legacy: bool = False,
    combined: bool = True,
) -> Dict[str, int]:
    """Return only the setting values that differ between two records."""
    before = collapse(original).to_settings(legacy=legacy, combined=combined)
    after = collapse(current).to_settings(legacy=legacy, combined=combined)
    return {name: value for name, value in after.items() if before.get(name) != value}


__all__ = [
    "COMBINED_FIELD",
    "PER_AXIS_ONLY",
    "RawRcTuning",
    "SETTING_NAMES",
    "UnifiedTuningRecord",
    "changed_settings",
    "collapse",
    "detect_legacy",
    "expand",
    "reports_combined",
]

