"""Configuration loader for fc-config-sync."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import constants


@dataclass(slots=True)
class DeviceConfig:
    target: str = constants.DEFAULT_DEVICE_TARGET
    simulated: bool = False  # SITL targets reboot on certain safety changes


@dataclass(slots=True)
class TimingConfig:
    """Fixed inter-step delays. These follow firmware timing, they are not tuned at runtime."""

    cli_entry_seconds: float = 1.0
    cli_settle_seconds: float = 0.3
    cli_exit_seconds: float = 0.5
    telemetry_pause_seconds: float = 0.1
    commit_settle_seconds: float = 0.2
    reboot_grace_seconds: float = 4.0
    reconnect_attempts: int = 5
    reconnect_interval_seconds: float = 2.0
    reconnect_attempt_timeout_seconds: float = 5.0


@dataclass(slots=True)
class TelemetryConfig:
    interval_seconds: float = 0.1


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = constants.DEFAULT_LOG_PATH
    log_network: bool = False


@dataclass(slots=True)
class HealthConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 0


@dataclass(slots=True)
class SyncConfig:
    device: DeviceConfig
    timing: TimingConfig
    telemetry: TelemetryConfig
    logging: LoggingConfig
    health: HealthConfig
    raw: ConfigParser
    path: Path


def load_config(path: Optional[Path] = None) -> SyncConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    timing_defaults = TimingConfig()
    parser = ConfigParser()
    parser.read_dict(
        {
            "device": {
                "target": constants.DEFAULT_DEVICE_TARGET,
                "simulated": "false",
            },
            "timing": {
                "cli_entry_seconds": str(timing_defaults.cli_entry_seconds),
                "cli_settle_seconds": str(timing_defaults.cli_settle_seconds),
                "cli_exit_seconds": str(timing_defaults.cli_exit_seconds),
                "telemetry_pause_seconds": str(timing_defaults.telemetry_pause_seconds),
                "commit_settle_seconds": str(timing_defaults.commit_settle_seconds),
                "reboot_grace_seconds": str(timing_defaults.reboot_grace_seconds),
                "reconnect_attempts": str(timing_defaults.reconnect_attempts),
                "reconnect_interval_seconds": str(
                    timing_defaults.reconnect_interval_seconds
                ),
                "reconnect_attempt_timeout_seconds": str(
                    timing_defaults.reconnect_attempt_timeout_seconds
                ),
            },
            "telemetry": {
                "interval_seconds": "0.1",
            },
            "logging": {
                "level": "INFO",
                "path": str(constants.DEFAULT_LOG_PATH),
                "log_network": "false",
            },
            "health": {
                "enabled": "false",
                "host": "127.0.0.1",
                "port": "0",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    device = DeviceConfig(
        target=parser.get("device", "target"),
        simulated=parser.getboolean("device", "simulated", fallback=False),
    )

    timing = TimingConfig(
        cli_entry_seconds=max(
            0.0,
            parser.getfloat(
                "timing", "cli_entry_seconds", fallback=timing_defaults.cli_entry_seconds
            ),
        ),
        cli_settle_seconds=max(
            0.0,
            parser.getfloat(
                "timing",
                "cli_settle_seconds",
                fallback=timing_defaults.cli_settle_seconds,
            ),
        ),
        cli_exit_seconds=max(
            0.0,
            parser.getfloat(
                "timing", "cli_exit_seconds", fallback=timing_defaults.cli_exit_seconds
            ),
        ),
        telemetry_pause_seconds=max(
            0.0,
            parser.getfloat(
                "timing",
                "telemetry_pause_seconds",
                fallback=timing_defaults.telemetry_pause_seconds,
            ),
        ),
        commit_settle_seconds=max(
            0.0,
            parser.getfloat(
                "timing",
                "commit_settle_seconds",
                fallback=timing_defaults.commit_settle_seconds,
            ),
        ),
        reboot_grace_seconds=max(
            0.0,
            parser.getfloat(
                "timing",
                "reboot_grace_seconds",
                fallback=timing_defaults.reboot_grace_seconds,
            ),
        ),
        reconnect_attempts=max(
            1,
            parser.getint(
                "timing",
                "reconnect_attempts",
                fallback=timing_defaults.reconnect_attempts,
            ),
        ),
        reconnect_interval_seconds=max(
            0.0,
            parser.getfloat(
                "timing",
                "reconnect_interval_seconds",
                fallback=timing_defaults.reconnect_interval_seconds,
            ),
        ),
        reconnect_attempt_timeout_seconds=max(
            0.1,
            parser.getfloat(
                "timing",
                "reconnect_attempt_timeout_seconds",
                fallback=timing_defaults.reconnect_attempt_timeout_seconds,
            ),
        ),
    )

    default_interval = TelemetryConfig().interval_seconds
    try:
        interval_value = parser.getfloat(
            "telemetry", "interval_seconds", fallback=default_interval
        )
    except ValueError:
        interval_value = default_interval

    telemetry = TelemetryConfig(interval_seconds=max(0.01, interval_value))

    log_path = parser.get(
        "logging", "path", fallback=str(constants.DEFAULT_LOG_PATH)
    ).strip()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path).expanduser() if log_path else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    health = HealthConfig(
        enabled=parser.getboolean("health", "enabled", fallback=False),
        host=parser.get("health", "host", fallback="127.0.0.1"),
        port=parser.getint("health", "port", fallback=0),
    )

    return SyncConfig(
        device=device,
        timing=timing,
        telemetry=telemetry,
        logging=logging_config,
        health=health,
        raw=parser,
        path=config_path,
    )


def save_config(config: SyncConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
