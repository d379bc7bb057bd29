from pathlib import Path

from fc_config_sync import constants
from fc_config_sync.config import load_config, save_config


def test_load_config_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "fc-config-sync.cfg"
    config = load_config(config_path)

    assert config.path == config_path
    assert config.device.target == constants.DEFAULT_DEVICE_TARGET
    assert config.device.simulated is False
    assert config.timing.cli_entry_seconds == 1.0
    assert config.timing.cli_settle_seconds == 0.3
    assert config.timing.cli_exit_seconds == 0.5
    assert config.timing.commit_settle_seconds == 0.2
    assert config.timing.reboot_grace_seconds == 4.0
    assert config.timing.reconnect_attempts == 5
    assert config.timing.reconnect_interval_seconds == 2.0
    assert config.telemetry.interval_seconds == 0.1
    assert config.health.enabled is False
    assert config.health.port == 0
    assert config.logging.log_network is False
    assert config.logging.path == constants.DEFAULT_LOG_PATH


def test_load_config_overrides_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "fc-config-sync.cfg"
    config_path.write_text(
        """
[device]
target = tcp://127.0.0.1:5760
simulated = true

[timing]
reboot_grace_seconds = 6.5
reconnect_attempts = 8

[health]
enabled = true
port = 8123
        """.strip()
        + "\n",
        encoding="utf-8",
    )

    config = load_config(config_path)

    assert config.device.target == "tcp://127.0.0.1:5760"
    assert config.device.simulated is True
    assert config.timing.reboot_grace_seconds == 6.5
    assert config.timing.reconnect_attempts == 8
    assert config.timing.cli_settle_seconds == 0.3
    assert config.health.enabled is True
    assert config.health.port == 8123


def test_load_config_clamps_values(tmp_path: Path) -> None:
    config_path = tmp_path / "fc-config-sync.cfg"
    config_path.write_text(
        """
[timing]
cli_settle_seconds = -1
cli_exit_seconds = -0.5
reconnect_attempts = 0
reconnect_attempt_timeout_seconds = 0

[telemetry]
interval_seconds = not-a-number
        """.strip()
        + "\n",
        encoding="utf-8",
    )

    config = load_config(config_path)

    assert config.timing.cli_settle_seconds == 0.0
    assert config.timing.cli_exit_seconds == 0.0
    assert config.timing.reconnect_attempts == 1
    assert config.timing.reconnect_attempt_timeout_seconds == 0.1
    assert config.telemetry.interval_seconds == 0.1


def test_empty_log_path_disables_file_logging(tmp_path: Path) -> None:
    config_path = tmp_path / "fc-config-sync.cfg"
    config_path.write_text("[logging]\npath =\n", encoding="utf-8")

    assert load_config(config_path).logging.path is None


def test_save_config_round_trips(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "fc-config-sync.cfg"
    config = load_config(config_path)
    config.raw.set("device", "target", "/dev/ttyUSB1")

    save_config(config)

    assert config_path.exists()
    assert load_config(config_path).device.target == "/dev/ttyUSB1"
