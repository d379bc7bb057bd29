"""Constants used across the fc-config-sync package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "fc-config-sync"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_LOG_PATH = Path.home() / ".local" / "state" / APP_NAME / f"{APP_NAME}.log"

DEFAULT_DEVICE_TARGET = "/dev/ttyACM0"

# Text console vocabulary shared by iNav/Betaflight style firmware.
CLI_ENTER = "#"
CLI_SAVE = "save"
CLI_EXIT = "exit"
CLI_ERROR_MARKERS = ("Invalid", "error")
