from pathlib import Path

import pytest

from bond_fan_bridge.config import (
    CONFIG_VERSION,
    MIN_SUPPORTED_CONFIG_VERSION,
    Config,
    is_valid_address,
)


def test_default_config_passes_validation() -> None:
    config = Config()
    assert config.config_version == CONFIG_VERSION
    assert config.poll_interval == 10.0
    assert config.bridge_address is None


@pytest.mark.parametrize(
    "field,value,error",
    [
        ("poll_interval", 0.0, "poll_interval"),
        ("request_timeout", 120.0, "request_timeout"),
        ("metrics_port", 0, "metrics_port"),
        ("log_format", "xml", "log_format"),
        ("log_level", "LOUD", "log_level"),
        ("bridge_address", "bridge.local", "bridge_address"),
    ],
)
def test_bounds_enforced(field: str, value: object, error: str) -> None:
    with pytest.raises(ValueError, match=error):
        Config(**{field: value})


def test_future_config_version_rejected() -> None:
    with pytest.raises(ValueError, match="newer than supported"):
        Config(config_version=CONFIG_VERSION + 1)


def test_ancient_config_version_rejected() -> None:
    with pytest.raises(ValueError, match="too old"):
        Config(config_version=MIN_SUPPORTED_CONFIG_VERSION - 1)


def test_logging_dict_masks_token() -> None:
    config = Config(bridge_address="192.168.1.50", bridge_token="a1b2c3d4e5f6")
    logged = config.logging_dict()
    assert logged["bridge_token"] == "***REDACTED***"
    assert logged["bridge_address"] == "192.168.1.50"


@pytest.mark.parametrize(
    "address,valid",
    [
        ("192.168.1.50", True),
        ("0.0.0.0", True),
        ("255.255.255.255", True),
        ("256.1.1.1", False),
        ("192.168.1", False),
        ("192.168.1.50 ", False),
        ("bridge.local", False),
        ("", False),
        (None, False),
    ],
)
def test_address_syntax(address, valid: bool) -> None:
    assert is_valid_address(address) is valid


def test_cli_overrides_env_and_file(tmp_path: Path, monkeypatch) -> None:
    config_file = tmp_path / "bridge.toml"
    config_file.write_text(
        'bridge_address = "192.168.1.10"\n'
        'bridge_token = "from-file"\n'
        "poll_interval = 30\n"
        'device_ids = ["abc", "def"]\n'
    )
    monkeypatch.setenv("BOND_FAN_BRIDGE_TOKEN", "from-env")
    monkeypatch.setenv("BOND_FAN_LOG_LEVEL", "debug")

    config = Config.from_sources(
        ["--config", str(config_file), "--poll-interval", "2.5", "--device-id", "xyz"]
    )

    assert config.bridge_address == "192.168.1.10"
    assert config.bridge_token == "from-env"
    assert config.poll_interval == 2.5
    assert config.device_ids == ("xyz",)
    assert config.log_level == "DEBUG"


def test_env_device_ids_are_comma_separated(monkeypatch) -> None:
    monkeypatch.setenv("BOND_FAN_DEVICE_IDS", "abc, def,,xyz")
    config = Config.from_sources([])
    assert config.device_ids == ("abc", "def", "xyz")


def test_missing_config_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        Config.from_sources(["--config", str(tmp_path / "absent.toml")])
