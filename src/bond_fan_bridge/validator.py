"""Credential and connectivity checks used by pairing and settings changes."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .client import BridgeClient, TransportResult, TransportStatus, device_ids_from_listing
from .config import is_empty, is_valid_address
from .logging import get_logger

VALID_TOKEN_MESSAGE = "Valid Token :-)"
UNREACHABLE_MESSAGE = "Device could not be contacted !?"
INVALID_TOKEN_MESSAGE = "Token Invalid !!"
INVALID_ADDRESS_MESSAGE = "IP Address Invalid !?"
NO_DEVICES_MESSAGE = "No devices found on bridge"


class ValidationOutcome(str, enum.Enum):
    VALID = "valid"
    INVALID_ADDRESS = "invalid_address"
    INVALID_TOKEN = "invalid_token"
    UNREACHABLE = "unreachable"
    NO_DEVICES = "no_devices"


_MESSAGES = {
    ValidationOutcome.VALID: VALID_TOKEN_MESSAGE,
    ValidationOutcome.INVALID_ADDRESS: INVALID_ADDRESS_MESSAGE,
    ValidationOutcome.INVALID_TOKEN: INVALID_TOKEN_MESSAGE,
    ValidationOutcome.UNREACHABLE: UNREACHABLE_MESSAGE,
    ValidationOutcome.NO_DEVICES: NO_DEVICES_MESSAGE,
}


@dataclass(frozen=True)
class ValidationResult:
    outcome: ValidationOutcome
    firmware: Optional[str] = None
    device: Optional[Mapping[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.outcome is ValidationOutcome.VALID

    @property
    def message(self) -> str:
        return _MESSAGES[self.outcome]

    def as_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "message": self.message,
            "firmware": self.firmware,
            "device": dict(self.device) if self.device is not None else None,
        }


def _failure(result: TransportResult) -> ValidationOutcome:
    if result.status is TransportStatus.UNAUTHORIZED:
        return ValidationOutcome.INVALID_TOKEN
    return ValidationOutcome.UNREACHABLE


class CredentialValidator:
    """Check an address/token pair against a live bridge.

    Steps run in order and stop at the first failure: address syntax, token
    presence, the unauthenticated firmware check, then the device listing
    and the detail of its first device.
    """

    def __init__(self, client: BridgeClient) -> None:
        self.client = client
        self.logger = get_logger("bond.validator")

    async def validate(self, address: Any, token: Any) -> ValidationResult:
        result = await self._validate(address, token)
        log = self.logger.info if result.ok else self.logger.warning
        log(
            "Credential validation finished",
            extra={"address": address, "outcome": result.outcome.value, "firmware": result.firmware},
        )
        return result

    async def _validate(self, address: Any, token: Any) -> ValidationResult:
        if not is_valid_address(address):
            return ValidationResult(ValidationOutcome.INVALID_ADDRESS)
        if is_empty(token) or not isinstance(token, str):
            return ValidationResult(ValidationOutcome.INVALID_TOKEN)

        version = await self.client.firmware_version(address, token)
        if not version.ok:
            return ValidationResult(_failure(version))
        firmware = None
        if isinstance(version.payload, Mapping) and version.payload.get("fw_ver") is not None:
            firmware = str(version.payload["fw_ver"])

        listing = await self.client.list_devices(address, token)
        if not listing.ok:
            return ValidationResult(_failure(listing), firmware=firmware)
        device_ids = device_ids_from_listing(listing.payload)
        if not device_ids:
            return ValidationResult(ValidationOutcome.NO_DEVICES, firmware=firmware)

        detail = await self.client.device_detail(address, token, device_ids[0])
        if not detail.ok:
            return ValidationResult(_failure(detail), firmware=firmware)
        return ValidationResult(ValidationOutcome.VALID, firmware=firmware, device=detail.payload)
