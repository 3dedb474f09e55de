"""Derive a device's capability profile from its declared properties."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple, Union


class PowerControl(str, enum.Enum):
    PLAIN_ONOFF = "plain_onoff"
    LIGHT_ONOFF = "light_onoff"


class SpeedControl(str, enum.Enum):
    CONTINUOUS = "continuous"
    DISCRETE = "discrete"


def _coerce_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1", "on"}
    return False


def _coerce_max_speed(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return None
    if isinstance(value, int) and value > 0:
        return value
    return None


@dataclass(frozen=True)
class DeviceProperties:
    """Static feature flags reported by `/v2/devices/{id}/properties`."""

    feature_light: bool = False
    feature_brightness: bool = False
    max_speed: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "DeviceProperties":
        """Build properties from a raw payload; malformed flags mean "absent"."""

        if not isinstance(payload, Mapping):
            return cls()
        return cls(
            feature_light=_coerce_flag(payload.get("feature_light")),
            feature_brightness=_coerce_flag(payload.get("feature_brightness")),
            max_speed=_coerce_max_speed(payload.get("max_speed")),
        )


@dataclass(frozen=True)
class CapabilityProfile:
    """Capability axes that apply to one accessory."""

    power: PowerControl
    speed: SpeedControl
    max_speed: Optional[int]
    dimmer: bool
    direction: bool = True

    @property
    def capabilities(self) -> Tuple[str, ...]:
        """Capability names registered for this profile, in display order."""

        names = ["onoff"]
        if self.dimmer:
            names.append("dim")
        names.append("fan_speed" if self.speed is SpeedControl.CONTINUOUS else "fan_mode")
        if self.direction:
            names.append("fan_direction")
        return tuple(names)

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities

    def as_dict(self) -> dict:
        return {
            "power": self.power.value,
            "speed": self.speed.value,
            "max_speed": self.max_speed,
            "dimmer": self.dimmer,
            "direction": self.direction,
            "capabilities": list(self.capabilities),
        }


def derive_profile(
    properties: Union[DeviceProperties, Mapping[str, Any], None],
) -> CapabilityProfile:
    """Choose the capability profile for a device.

    Light-equipped devices route `onoff` to the light rather than the motor.
    A dimmer is only offered when the light also reports brightness support.
    Speed is continuous up to `max_speed` when the device declares a positive
    maximum and falls back to the three-level low/medium/high scheme
    otherwise. Direction is always offered.
    """

    if not isinstance(properties, DeviceProperties):
        properties = DeviceProperties.from_payload(properties)

    power = PowerControl.LIGHT_ONOFF if properties.feature_light else PowerControl.PLAIN_ONOFF
    dimmer = bool(properties.feature_light and properties.feature_brightness)
    max_speed = _coerce_max_speed(properties.max_speed)
    speed = SpeedControl.CONTINUOUS if max_speed is not None else SpeedControl.DISCRETE
    return CapabilityProfile(
        power=power,
        speed=speed,
        max_speed=max_speed,
        dimmer=dimmer,
        direction=True,
    )
