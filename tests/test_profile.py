import pytest

from bond_fan_bridge.profile import (
    CapabilityProfile,
    DeviceProperties,
    PowerControl,
    SpeedControl,
    derive_profile,
)


def test_light_with_brightness_gets_light_onoff_and_dimmer() -> None:
    profile = derive_profile(DeviceProperties(feature_light=True, feature_brightness=True))

    assert profile.power is PowerControl.LIGHT_ONOFF
    assert profile.dimmer is True
    assert profile.direction is True
    assert profile.capabilities == ("onoff", "dim", "fan_mode", "fan_direction")


@pytest.mark.parametrize("brightness", [True, False])
def test_no_dimmer_without_light(brightness: bool) -> None:
    profile = derive_profile(DeviceProperties(feature_light=False, feature_brightness=brightness))

    assert profile.power is PowerControl.PLAIN_ONOFF
    assert profile.dimmer is False
    assert "dim" not in profile.capabilities


def test_light_without_brightness_has_no_dimmer() -> None:
    profile = derive_profile({"feature_light": True})
    assert profile.power is PowerControl.LIGHT_ONOFF
    assert profile.dimmer is False


@pytest.mark.parametrize("max_speed", [None, 0, -3, "fast", 2.5, True])
def test_discrete_speed_without_positive_max_speed(max_speed) -> None:
    profile = derive_profile({"max_speed": max_speed})

    assert profile.speed is SpeedControl.DISCRETE
    assert profile.max_speed is None
    assert "fan_mode" in profile.capabilities
    assert "fan_speed" not in profile.capabilities


def test_continuous_speed_with_max_speed() -> None:
    profile = derive_profile({"max_speed": 6})

    assert profile.speed is SpeedControl.CONTINUOUS
    assert profile.max_speed == 6
    assert profile.capabilities == ("onoff", "fan_speed", "fan_direction")


@pytest.mark.parametrize("payload", [None, {}, [], "garbage", {"feature_light": "maybe"}])
def test_malformed_properties_mean_no_features(payload) -> None:
    profile = derive_profile(payload)

    assert profile == CapabilityProfile(
        power=PowerControl.PLAIN_ONOFF,
        speed=SpeedControl.DISCRETE,
        max_speed=None,
        dimmer=False,
        direction=True,
    )


def test_properties_coerce_bridge_flag_encodings() -> None:
    properties = DeviceProperties.from_payload(
        {"feature_light": 1, "feature_brightness": "true", "max_speed": "8", "trust_state": False}
    )

    assert properties == DeviceProperties(feature_light=True, feature_brightness=True, max_speed=8)


def test_profile_is_stable_for_same_properties() -> None:
    properties = DeviceProperties(feature_light=True, feature_brightness=False, max_speed=4)
    assert derive_profile(properties) == derive_profile(properties)
