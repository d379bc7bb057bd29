"""Core primitives for fc-config-sync."""

from .models import (
    UNSUPPORTED,
    CommitSettings,
    GetSetting,
    Reboot,
    SetSetting,
    is_unsupported,
)
from .protocols import DeviceChannel, TelemetryControl

__all__ = [
    "CommitSettings",
    "DeviceChannel",
    "GetSetting",
    "Reboot",
    "SetSetting",
    "TelemetryControl",
    "UNSUPPORTED",
    "is_unsupported",
]
