"""Command-line client for inspecting and controlling fans on a bridge."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional

import yaml

from .client import BridgeClient, BridgeError, TransportResult, check_credentials
from .device import DeviceIdentity, DeviceInitError, FanDevice
from .mapper import UnsupportedCapability
from .pairing import PairingError, PairingSession
from .validator import CredentialValidator


ENV_PREFIX = "BOND_FAN_"


class CliError(Exception):
    """Raised when the CLI encounters an expected error condition."""


@dataclass(frozen=True)
class ClientConfig:
    """Connection settings for the bridge."""

    address: Optional[str]
    token: Optional[str]
    output: str
    timeout: float = 5.0


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(f"{ENV_PREFIX}{name}", default)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bond-fan",
        description=(
            "Inspect and control ceiling fans behind a Bond bridge. Uses BOND_FAN_* env vars "
            "for defaults and prints JSON (default) or YAML. Examples: "
            "`bond-fan validate`, `bond-fan set <id> fan_mode medium`."
        ),
    )
    parser.add_argument(
        "--address",
        default=_env("BRIDGE_ADDRESS"),
        help=f"Bridge IPv4 address (env: {ENV_PREFIX}BRIDGE_ADDRESS).",
    )
    parser.add_argument(
        "--token",
        default=_env("BRIDGE_TOKEN"),
        help=f"Bridge local token (env: {ENV_PREFIX}BRIDGE_TOKEN).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=float(_env("REQUEST_TIMEOUT", "5.0") or 5.0),
        help="Seconds to wait for each bridge response.",
    )
    parser.add_argument(
        "--output",
        choices=["json", "yaml"],
        default=_env("OUTPUT", "json"),
        help=f"Output format (env: {ENV_PREFIX}OUTPUT). Defaults to 'json'.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser(
        "validate",
        help="Check the address and token against the bridge",
        description="Runs the firmware and device listing checks used during pairing.",
    )
    validate.set_defaults(func=_cmd_validate)

    devices = subparsers.add_parser(
        "devices",
        help="List devices available for pairing",
        description="Prints one {name, data: {id}} entry per bridge device.",
    )
    devices.set_defaults(func=_cmd_devices)

    profile = subparsers.add_parser(
        "profile",
        help="Show the capability profile of a device",
        description="Fetches the device properties and prints the derived capabilities.",
    )
    profile.add_argument("device_id", help="Bridge device identifier")
    profile.set_defaults(func=_cmd_profile)

    state = subparsers.add_parser(
        "state",
        help="Show the current capability values of a device",
        description="Polls the device state once and prints the reconciled capability values.",
    )
    state.add_argument("device_id", help="Bridge device identifier")
    state.set_defaults(func=_cmd_state)

    set_cmd = subparsers.add_parser(
        "set",
        help="Write a capability value (onoff, dim, fan_speed, fan_mode, fan_direction)",
        description="Translates the capability write into bridge actions and sends them.",
    )
    set_cmd.add_argument("device_id", help="Bridge device identifier")
    set_cmd.add_argument("capability", help="Capability name")
    set_cmd.add_argument("value", help="New value; JSON literals such as true or 0.5 are decoded")
    set_cmd.set_defaults(func=_cmd_set)

    return parser


def _load_config(args: argparse.Namespace) -> ClientConfig:
    output = args.output or "json"
    if output not in {"json", "yaml"}:
        raise CliError("Output format must be 'json' or 'yaml'")
    return ClientConfig(address=args.address, token=args.token, output=output, timeout=args.timeout)


def _require_credentials(config: ClientConfig) -> None:
    try:
        check_credentials(config.address, config.token)
    except BridgeError as exc:
        raise CliError(str(exc)) from exc


def _print_output(data: Any, output: str) -> None:
    if output == "yaml":
        yaml.safe_dump(data, sys.stdout, sort_keys=False)
    else:
        json.dump(data, sys.stdout, indent=2)
        sys.stdout.write("\n")


def _parse_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _result_dict(result: TransportResult) -> dict:
    return {"status": result.status.value, "http_status": result.http_status, "error": result.error}


async def _open_device(config: ClientConfig, client: BridgeClient, device_id: str) -> FanDevice:
    _require_credentials(config)
    device = FanDevice(DeviceIdentity(id=device_id, address=config.address, token=config.token), client)
    try:
        await device.initialize()
    except DeviceInitError as exc:
        await device.close()
        raise CliError(str(exc)) from exc
    return device


async def _cmd_validate(config: ClientConfig, client: BridgeClient, args: argparse.Namespace) -> None:
    result = await CredentialValidator(client).validate(config.address, config.token)
    _print_output(result.as_dict(), config.output)
    if not result.ok:
        raise CliError(result.message)


async def _cmd_devices(config: ClientConfig, client: BridgeClient, args: argparse.Namespace) -> None:
    session = PairingSession(client)
    result = await session.login(config.address, config.token)
    if not result.ok:
        raise CliError(result.message)
    try:
        candidates = await session.list_devices()
    except PairingError as exc:
        raise CliError(str(exc)) from exc
    _print_output([candidate.as_dict() for candidate in candidates], config.output)


async def _cmd_profile(config: ClientConfig, client: BridgeClient, args: argparse.Namespace) -> None:
    device = await _open_device(config, client, args.device_id)
    try:
        _print_output({"id": device.id, "profile": device.profile.as_dict()}, config.output)
    finally:
        await device.close()


async def _cmd_state(config: ClientConfig, client: BridgeClient, args: argparse.Namespace) -> None:
    device = await _open_device(config, client, args.device_id)
    try:
        result = await client.device_state(config.address, config.token, device.id)
        if not result.ok:
            raise CliError(f"State poll failed: {result.status.value}")
        device.apply_state(result.payload)
        _print_output(
            {"id": device.id, "state": result.payload, "capabilities": device.capability_values},
            config.output,
        )
    finally:
        await device.close()


async def _cmd_set(config: ClientConfig, client: BridgeClient, args: argparse.Namespace) -> None:
    device = await _open_device(config, client, args.device_id)
    try:
        try:
            write = await device.set_capability(args.capability, _parse_value(args.value))
        except UnsupportedCapability as exc:
            raise CliError(str(exc)) from exc
        _print_output(
            {
                "id": device.id,
                "capability": write.capability,
                "value": write.value,
                "actions": [action.as_dict() for action in write.actions],
                "results": [_result_dict(result) for result in write.results],
                "ok": write.ok,
            },
            config.output,
        )
        if not write.ok:
            raise CliError("One or more bridge actions failed")
    finally:
        await device.close()


async def _dispatch(config: ClientConfig, args: argparse.Namespace) -> None:
    func: Callable[[ClientConfig, BridgeClient, argparse.Namespace], Awaitable[None]] = args.func
    async with BridgeClient(timeout=config.timeout) as client:
        await func(config, client, args)


def main(argv: Optional[Iterable[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(args=argv)

    try:
        config = _load_config(args)
        asyncio.run(_dispatch(config, args))
    except CliError as exc:  # pragma: no cover - CLI feedback path
        sys.stderr.write(f"Error: {exc}\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
