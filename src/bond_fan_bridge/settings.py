"""Bridge settings storage and validated settings changes."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional, Protocol

from .device import FanDevice
from .logging import get_logger, redact_mapping
from .validator import CredentialValidator, ValidationResult

ADDRESS_KEY = "address"
TOKEN_KEY = "token"


class SettingsStore(Protocol):
    """Where the host keeps the bridge address and token."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def update(self, values: Mapping[str, Any]) -> None: ...

    def snapshot(self) -> Dict[str, Any]: ...


class MemorySettingsStore:
    def __init__(self, initial: Optional[Mapping[str, Any]] = None) -> None:
        self._values: Dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def update(self, values: Mapping[str, Any]) -> None:
        self._values.update(values)

    def snapshot(self) -> Dict[str, Any]:
        return dict(self._values)


class SettingsRejected(Exception):
    """New settings failed validation; the previous ones remain in effect."""

    def __init__(self, result: ValidationResult) -> None:
        super().__init__(result.message)
        self.result = result


async def apply_settings_change(
    store: SettingsStore,
    validator: CredentialValidator,
    address: Any,
    token: Any,
    *,
    devices: Iterable[FanDevice] = (),
    poller: Any = None,
) -> ValidationResult:
    """Validate new credentials and commit them only when they pass.

    On success the address and token are written together, every device
    session picks up the new credentials, and polling resumes for devices
    that were halted by an unauthorized response.
    """

    logger = get_logger("bond.settings")
    result = await validator.validate(address, token)
    if not result.ok:
        logger.warning(
            "Settings change rejected",
            extra={
                "outcome": result.outcome.value,
                "settings": redact_mapping({ADDRESS_KEY: address, TOKEN_KEY: token}),
            },
        )
        raise SettingsRejected(result)

    store.update({ADDRESS_KEY: address, TOKEN_KEY: token})
    for device in devices:
        device.update_credentials(address, token)
        # Devices the poller no longer holds only take the new credentials.
        if poller is not None and poller.has_device(device.id):
            poller.resume(device.id)
    logger.info(
        "Settings change committed",
        extra={"settings": redact_mapping(store.snapshot())},
    )
    return result
