"""Configuration loading for the Bond fan bridge."""

from __future__ import annotations

import argparse
import os
import re
import sys
import tomllib
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence


CONFIG_ENV_PREFIX = "BOND_FAN_"
CONFIG_VERSION = 1
MIN_SUPPORTED_CONFIG_VERSION = 1

_IPV4_OCTET = r"(25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)"
IPV4_PATTERN = re.compile(rf"^{_IPV4_OCTET}\.{_IPV4_OCTET}\.{_IPV4_OCTET}\.{_IPV4_OCTET}$")


def is_valid_address(address: Any) -> bool:
    """Return True when `address` is a dotted-quad IPv4 string."""

    if not isinstance(address, str):
        return False
    return IPV4_PATTERN.match(address) is not None


def is_empty(value: Any) -> bool:
    return value is None or value == ""


@dataclass(frozen=True)
class Config:
    """Application configuration."""

    bridge_address: Optional[str] = None
    bridge_token: Optional[str] = None
    device_ids: Sequence[str] = ()
    poll_interval: float = 10.0
    request_timeout: float = 5.0
    metrics_port: Optional[int] = None
    log_format: str = "plain"
    log_level: str = "INFO"
    client_log_level: Optional[str] = None
    poller_log_level: Optional[str] = None
    config_version: int = CONFIG_VERSION

    def __post_init__(self) -> None:
        _validate_config(self)

    def logging_dict(self) -> Dict[str, Any]:
        """Return a sanitized mapping suitable for structured logging."""

        return {
            "config_version": self.config_version,
            "bridge_address": self.bridge_address,
            "bridge_token": "***REDACTED***" if self.bridge_token else None,
            "device_ids": list(self.device_ids),
            "poll_interval": self.poll_interval,
            "request_timeout": self.request_timeout,
            "metrics_port": self.metrics_port,
            "log_format": self.log_format,
            "log_level": self.log_level,
            "client_log_level": self.client_log_level,
            "poller_log_level": self.poller_log_level,
        }

    @classmethod
    def from_sources(cls, cli_args: Optional[Iterable[str]] = None) -> "Config":
        """Load configuration from defaults, file, env, and CLI (in that order)."""

        args = _parse_cli(cli_args)
        file_config = _load_file_config(
            args.config
            or _coerce_path(os.environ.get(f"{CONFIG_ENV_PREFIX}CONFIG"))
            or None
        )
        env_config = _load_env_config(CONFIG_ENV_PREFIX)
        cli_config = _cli_overrides(args)

        config = cls()
        config = _apply_mapping(config, file_config)
        config = _apply_mapping(config, env_config)
        config = _apply_mapping(config, cli_config)
        return config


def _validate_config(config: Config) -> None:
    _validate_version(config.config_version)
    if config.bridge_address is not None and not is_valid_address(config.bridge_address):
        raise ValueError(f"bridge_address must be an IPv4 address; got {config.bridge_address!r}.")
    _validate_range("poll_interval", config.poll_interval, 0.1, 86400.0)
    _validate_range("request_timeout", config.request_timeout, 0.1, 60.0)
    if config.metrics_port is not None:
        _validate_range("metrics_port", config.metrics_port, 1, 65535)
    if config.log_format not in {"plain", "json"}:
        raise ValueError(f"log_format must be 'plain' or 'json'; got {config.log_format}.")
    for field_name, value in (
        ("log_level", config.log_level),
        ("client_log_level", config.client_log_level),
        ("poller_log_level", config.poller_log_level),
    ):
        _validate_log_level_value(value, field_name)


def _validate_version(version: int) -> None:
    if version < MIN_SUPPORTED_CONFIG_VERSION:
        raise ValueError(
            f"Config version {version} is too old; minimum supported is {MIN_SUPPORTED_CONFIG_VERSION}."
        )
    if version > CONFIG_VERSION:
        raise ValueError(
            f"Config version {version} is newer than supported ({CONFIG_VERSION}); please upgrade the bridge."
        )


def _validate_range(name: str, value: float, minimum: float, maximum: float) -> None:
    if value < minimum or value > maximum:
        raise ValueError(f"{name} must be between {minimum} and {maximum}; got {value}.")


def _validate_log_level_value(value: Optional[str], name: str) -> None:
    if value is None:
        return
    allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if value.upper() not in allowed:
        raise ValueError(f"{name} must be one of {sorted(allowed)}; got {value}.")


def _parse_cli(cli_args: Optional[Iterable[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="bond-fan-bridge",
        description="Poll and control ceiling fans behind a Bond bridge.",
    )
    parser.add_argument("--config", type=Path, help="Path to TOML config file.")
    parser.add_argument("--bridge-address", type=str, help="IPv4 address of the bridge.")
    parser.add_argument("--bridge-token", type=str, help="Local access token of the bridge.")
    parser.add_argument(
        "--device-id",
        action="append",
        dest="device_ids",
        help="Device id to manage; repeat for several. Defaults to every device on the bridge.",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        help="Seconds between state polls for each device.",
    )
    parser.add_argument(
        "--request-timeout",
        type=float,
        help="Seconds to wait for a bridge response.",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        help="Serve Prometheus metrics on this TCP port.",
    )
    parser.add_argument(
        "--log-format",
        choices=["plain", "json"],
        help="Structured logging format.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log verbosity level.",
    )
    parser.add_argument(
        "--client-log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log verbosity for bridge HTTP traffic.",
    )
    parser.add_argument(
        "--poller-log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log verbosity for the state poller.",
    )
    parser.add_argument(
        "--config-version",
        type=int,
        help="Version of the configuration schema being supplied.",
    )
    return parser.parse_args(args=cli_args)


def _load_file_config(path: Optional[Path]) -> Dict[str, Any]:
    if path is None:
        return {}
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("rb") as f:
        parsed = tomllib.load(f)
    if not isinstance(parsed, Mapping):
        raise ValueError("Configuration file must contain a TOML table.")
    return {k.replace("-", "_"): v for k, v in parsed.items()}


def _load_env_config(prefix: str) -> Dict[str, Any]:
    mapping: Dict[str, Any] = {}
    for field in Config.__dataclass_fields__:
        env_key = f"{prefix}{field}".upper()
        if env_key in os.environ:
            mapping[field] = os.environ[env_key]
    return mapping


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {k: v for k, v in vars(args).items() if k != "config" and v is not None}


def _apply_mapping(config: Config, overrides: Mapping[str, Any]) -> Config:
    data: MutableMapping[str, Any] = {}
    for key, value in overrides.items():
        if value is None:
            continue
        if key in {"metrics_port", "config_version"}:
            data[key] = int(value)
        elif key in {"poll_interval", "request_timeout"}:
            data[key] = float(value)
        elif key == "log_format":
            data[key] = str(value).lower()
        elif key in {"log_level", "client_log_level", "poller_log_level"}:
            data[key] = str(value).upper()
        elif key == "device_ids":
            data[key] = _coerce_device_ids(value)
        elif key in {"bridge_address", "bridge_token"}:
            data[key] = str(value).strip()
        else:
            data[key] = value
    return replace(config, **data)


def _coerce_path(value: Any) -> Optional[Path]:
    if value is None:
        return None
    return value if isinstance(value, Path) else Path(str(value)).expanduser()


def _coerce_device_ids(value: Any) -> Sequence[str]:
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    if isinstance(value, Iterable):
        ids = []
        for item in value:
            ids.extend(_coerce_device_ids(str(item)))
        return tuple(ids)
    raise ValueError("Unsupported device_ids configuration")


def load_config(cli_args: Optional[Iterable[str]] = None) -> Config:
    """Load the service configuration or exit with status 2.

    The service cannot start without both bridge credentials, so their
    absence is reported here alongside malformed values and unreadable files.
    """

    try:
        config = Config.from_sources(cli_args)
    except (ValueError, OSError) as exc:
        print(f"Failed to load configuration: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc
    missing = [
        name
        for name in ("bridge_address", "bridge_token")
        if is_empty(getattr(config, name))
    ]
    if missing:
        print(f"Failed to load configuration: {', '.join(missing)} must be set", file=sys.stderr)
        raise SystemExit(2)
    return config
