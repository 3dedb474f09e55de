import argparse
import json

import pytest
import yaml

from bond_fan_bridge import cli
from bond_fan_bridge.cli import CliError, ClientConfig

ADDRESS = "192.168.1.50"
TOKEN = "a1b2c3d4e5f6"


def _config(output: str = "json") -> ClientConfig:
    return ClientConfig(address=ADDRESS, token=TOKEN, output=output)


def test_parse_value_decodes_json_literals() -> None:
    assert cli._parse_value("true") is True
    assert cli._parse_value("0.5") == 0.5
    assert cli._parse_value("-1") == -1
    assert cli._parse_value("medium") == "medium"


def test_parser_reads_env_defaults(monkeypatch) -> None:
    monkeypatch.setenv("BOND_FAN_BRIDGE_ADDRESS", ADDRESS)
    monkeypatch.setenv("BOND_FAN_BRIDGE_TOKEN", TOKEN)
    monkeypatch.setenv("BOND_FAN_OUTPUT", "yaml")

    args = cli._build_parser().parse_args(["set", "abc", "fan_mode", "high"])
    config = cli._load_config(args)

    assert config == ClientConfig(address=ADDRESS, token=TOKEN, output="yaml", timeout=5.0)
    assert (args.device_id, args.capability, args.value) == ("abc", "fan_mode", "high")


@pytest.mark.asyncio
async def test_validate_prints_outcome(bridge, capsys) -> None:
    bridge.add("GET", "/v2/sys/version", {"fw_ver": "v3.1.2"})
    bridge.add("GET", "/v2/devices", {"abc": {"_": "1"}})
    bridge.add("GET", "/v2/devices/abc", {"name": "Fan"})

    async with bridge.client() as client:
        await cli._cmd_validate(_config(), client, argparse.Namespace())

    payload = json.loads(capsys.readouterr().out)
    assert payload["outcome"] == "valid"
    assert payload["message"] == "Valid Token :-)"
    assert payload["device"] == {"name": "Fan", "id": "abc"}


@pytest.mark.asyncio
async def test_validate_failure_raises_cli_error(bridge, capsys) -> None:
    bridge.add("GET", "/v2/sys/version", {}, status=500)

    async with bridge.client() as client:
        with pytest.raises(CliError, match="could not be contacted"):
            await cli._cmd_validate(_config(), client, argparse.Namespace())

    assert json.loads(capsys.readouterr().out)["outcome"] == "unreachable"


@pytest.mark.asyncio
async def test_devices_lists_candidates_as_yaml(bridge, capsys) -> None:
    bridge.add("GET", "/v2/sys/version", {"fw_ver": "v3.1.2"})
    bridge.add("GET", "/v2/devices", {"abc": {"_": "1"}})
    bridge.add("GET", "/v2/devices/abc", {"name": "Fan", "location": "Porch"})

    async with bridge.client() as client:
        await cli._cmd_devices(_config("yaml"), client, argparse.Namespace())

    assert yaml.safe_load(capsys.readouterr().out) == [{"name": "Porch Fan", "data": {"id": "abc"}}]


@pytest.mark.asyncio
async def test_profile_prints_capabilities(speed_fan, capsys) -> None:
    async with speed_fan.client() as client:
        await cli._cmd_profile(_config(), client, argparse.Namespace(device_id="xyz"))

    payload = json.loads(capsys.readouterr().out)
    assert payload["profile"]["capabilities"] == ["onoff", "fan_speed", "fan_direction"]
    assert payload["profile"]["max_speed"] == 6


@pytest.mark.asyncio
async def test_state_prints_reconciled_values(light_fan, capsys) -> None:
    light_fan.add("GET", "/v2/devices/abc/state", {"light": 1, "brightness": 40, "speed": 100})

    async with light_fan.client() as client:
        await cli._cmd_state(_config(), client, argparse.Namespace(device_id="abc"))

    payload = json.loads(capsys.readouterr().out)
    assert payload["capabilities"] == {"onoff": True, "dim": 0.4, "fan_mode": "high"}


@pytest.mark.asyncio
async def test_set_sends_actions(speed_fan, capsys) -> None:
    args = argparse.Namespace(device_id="xyz", capability="fan_speed", value="3")

    async with speed_fan.client() as client:
        await cli._cmd_set(_config(), client, args)

    payload = json.loads(capsys.readouterr().out)
    assert payload["ok"] is True
    assert payload["actions"] == [{"action": "TurnOn"}, {"action": "SetSpeed", "argument": 3}]
    assert speed_fan.bodies("/v2/devices/xyz/actions/SetSpeed") == [{"argument": 3}]


@pytest.mark.asyncio
async def test_set_unsupported_capability_raises(speed_fan) -> None:
    args = argparse.Namespace(device_id="xyz", capability="dim", value="0.5")

    async with speed_fan.client() as client:
        with pytest.raises(CliError):
            await cli._cmd_set(_config(), client, args)

    assert speed_fan.calls("PUT") == []


@pytest.mark.asyncio
async def test_device_commands_need_credentials(bridge) -> None:
    config = ClientConfig(address=None, token=TOKEN, output="json")

    async with bridge.client() as client:
        with pytest.raises(CliError):
            await cli._cmd_profile(config, client, argparse.Namespace(device_id="xyz"))

    assert bridge.requests == []
