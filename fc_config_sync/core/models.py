"""Request types understood by the structured settings protocol."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class GetSetting:
    name: str


@dataclass(frozen=True, slots=True)
class SetSetting:
    name: str
    value: Any


@dataclass(frozen=True, slots=True)
class CommitSettings:
    """Write the in-memory firmware configuration to persistent storage."""


@dataclass(frozen=True, slots=True)
class Reboot:
    """Restart the firmware. The device drops the link once it accepts this."""


class _Unsupported:
    """Sentinel response for requests the firmware does not implement."""

    _instance = None

    def __new__(cls) -> "_Unsupported":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSUPPORTED"

    def __bool__(self) -> bool:
        return False


UNSUPPORTED = _Unsupported()


def is_unsupported(response: Any) -> bool:
    return response is UNSUPPORTED
