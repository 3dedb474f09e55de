"""Translate between capability values and bridge actions/state."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Mapping, MutableMapping, Optional, Tuple

from .profile import CapabilityProfile, PowerControl, SpeedControl

TURN_ON = "TurnOn"
TURN_OFF = "TurnOff"
TURN_LIGHT_ON = "TurnLightOn"
TURN_LIGHT_OFF = "TurnLightOff"
SET_BRIGHTNESS = "SetBrightness"
SET_SPEED = "SetSpeed"
SET_DIRECTION = "SetDirection"

FAN_MODE_SPEEDS: Mapping[str, int] = {"low": 1, "medium": 50, "high": 100}
FAN_MODES = ("off", "low", "medium", "high")


class UnsupportedCapability(ValueError):
    """A write targets a capability or value the device profile cannot express."""


@dataclass(frozen=True)
class BridgeAction:
    """A single `PUT /v2/devices/{id}/actions/{name}` call."""

    name: str
    argument: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"action": self.name}
        if self.argument is not None:
            body["argument"] = self.argument
        return body


@dataclass(frozen=True)
class WritePlan:
    """Local capability updates followed by the actions to send, in order."""

    capability: str
    value: Any
    local_updates: Tuple[Tuple[str, Any], ...] = ()
    actions: Tuple[BridgeAction, ...] = ()


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: int, minimum: int, maximum: int) -> int:
    return max(minimum, min(maximum, value))


def _coerce_number(capability: str, value: Any) -> float:
    if isinstance(value, bool):
        raise UnsupportedCapability(f"{capability} expects a number; got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise UnsupportedCapability(f"{capability} expects a number; got {value!r}") from exc
    if not math.isfinite(number):
        raise UnsupportedCapability(f"{capability} expects a number; got {value!r}")
    return number


def _coerce_onoff(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "on", "1", "yes"}:
            return True
        if lowered in {"false", "off", "0", "no"}:
            return False
    raise UnsupportedCapability(f"onoff expects a boolean; got {value!r}")


_Plan = Tuple[Tuple[Tuple[str, Any], ...], Tuple[BridgeAction, ...]]


def _plan_onoff(profile: CapabilityProfile, value: Any) -> _Plan:
    on = _coerce_onoff(value)
    if profile.power is PowerControl.LIGHT_ONOFF:
        action = BridgeAction(TURN_LIGHT_ON if on else TURN_LIGHT_OFF)
    else:
        action = BridgeAction(TURN_ON if on else TURN_OFF)
    return (("onoff", on),), (action,)


def _plan_dim(value: Any) -> _Plan:
    level = _coerce_number("dim", value)
    brightness = _clamp(_round_half_up(level * 100), 0, 100)
    return (("dim", brightness / 100),), (BridgeAction(SET_BRIGHTNESS, brightness),)


def _plan_fan_speed(profile: CapabilityProfile, value: Any) -> _Plan:
    maximum = profile.max_speed or 0
    speed = _clamp(_round_half_up(_coerce_number("fan_speed", value)), 0, maximum)
    if speed == 0:
        return (("fan_speed", 0),), (BridgeAction(TURN_OFF),)
    return (("fan_speed", speed),), (BridgeAction(TURN_ON), BridgeAction(SET_SPEED, speed))


def _plan_fan_mode(value: Any) -> _Plan:
    mode = value.strip().lower() if isinstance(value, str) else None
    if mode == "off":
        return (("onoff", False), ("fan_mode", mode)), (BridgeAction(TURN_OFF),)
    if mode in FAN_MODE_SPEEDS:
        return (
            (("onoff", True), ("fan_mode", mode)),
            (BridgeAction(SET_SPEED, FAN_MODE_SPEEDS[mode]),),
        )
    raise UnsupportedCapability(f"fan_mode must be one of {list(FAN_MODES)}; got {value!r}")


def _plan_direction(value: Any) -> _Plan:
    direction = int(_coerce_number("fan_direction", value))
    return (("fan_direction", str(direction)),), (BridgeAction(SET_DIRECTION, direction),)


def plan_capability_write(profile: CapabilityProfile, capability: str, value: Any) -> WritePlan:
    """Map a capability write onto local updates and bridge actions.

    `local_updates` holds the values to show before the bridge confirms
    anything, ending with the written capability itself in normalized form.
    Raises `UnsupportedCapability` when the profile does not register the
    capability or the value cannot be interpreted; no actions are produced
    in that case.
    """

    if not profile.supports(capability):
        raise UnsupportedCapability(
            f"{capability} is not available for this device "
            f"(capabilities: {', '.join(profile.capabilities)})"
        )

    if capability == "onoff":
        local_updates, actions = _plan_onoff(profile, value)
    elif capability == "dim":
        local_updates, actions = _plan_dim(value)
    elif capability == "fan_speed":
        local_updates, actions = _plan_fan_speed(profile, value)
    elif capability == "fan_mode":
        local_updates, actions = _plan_fan_mode(value)
    elif capability == "fan_direction":
        local_updates, actions = _plan_direction(value)
    else:  # pragma: no cover - guarded by profile.supports
        raise UnsupportedCapability(f"Unknown capability {capability}")
    return WritePlan(
        capability=capability,
        value=value,
        local_updates=local_updates,
        actions=actions,
    )


def quantize_fan_mode(speed: Any) -> str:
    """Collapse a reported speed onto the three-level fan modes.

    Only 100 and 50 have dedicated modes; every other value, including 0,
    reads back as "low".
    """

    if speed == 100:
        return "high"
    if speed == 50:
        return "medium"
    return "low"


def reconcile(profile: CapabilityProfile, state: Any) -> Dict[str, Any]:
    """Return capability values implied by a polled state payload.

    Only keys present in `state` contribute; anything missing is left for
    the caller to keep as-is.
    """

    if not isinstance(state, Mapping) or not state:
        return {}

    updates: Dict[str, Any] = {}
    if profile.power is PowerControl.LIGHT_ONOFF:
        if state.get("light") is not None:
            updates["onoff"] = state["light"] == 1
        if profile.dimmer and isinstance(state.get("brightness"), (int, float)):
            updates["dim"] = state["brightness"] / 100
    elif state.get("power") is not None:
        updates["onoff"] = state["power"] == 1

    if profile.direction and state.get("direction") is not None:
        updates["fan_direction"] = str(state["direction"])

    if state.get("speed") is not None:
        if profile.speed is SpeedControl.CONTINUOUS:
            updates["fan_speed"] = state["speed"]
        else:
            updates["fan_mode"] = quantize_fan_mode(state["speed"])
    return updates


def apply_updates(values: MutableMapping[str, Any], updates: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge `updates` into `values`, returning only the entries that changed."""

    changed: Dict[str, Any] = {}
    for name, value in updates.items():
        if name in values and values[name] == value and type(values[name]) is type(value):
            continue
        values[name] = value
        changed[name] = value
    return changed
