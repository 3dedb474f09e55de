"""Pairing handshake: collect credentials, validate, list pairable fans."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from .client import BridgeClient, TransportStatus, device_ids_from_listing
from .logging import get_logger
from .settings import ADDRESS_KEY, TOKEN_KEY, MemorySettingsStore, SettingsStore
from .validator import CredentialValidator, ValidationResult


class PairingError(RuntimeError):
    """Raised when device listing is attempted without a validated login."""


@dataclass(frozen=True)
class PairingCandidate:
    id: str
    name: str

    def as_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "data": {"id": self.id}}


def _candidate_name(device_id: str, detail: Any) -> str:
    if isinstance(detail, Mapping):
        name = detail.get("name")
        location = detail.get("location")
        if isinstance(name, str) and name.strip():
            if isinstance(location, str) and location.strip():
                return f"{location.strip()} {name.strip()}"
            return name.strip()
    return device_id


class PairingSession:
    """One user's pairing attempt.

    `login` surfaces the validator's outcome and message; only a valid
    outcome stores the credentials, after which `list_devices` can offer
    the bridge's fans for pairing.
    """

    def __init__(
        self,
        client: BridgeClient,
        validator: Optional[CredentialValidator] = None,
        store: Optional[SettingsStore] = None,
    ) -> None:
        self.client = client
        self.validator = validator or CredentialValidator(client)
        self.store = store or MemorySettingsStore()
        self.logger = get_logger("bond.pairing")
        self.last_result: Optional[ValidationResult] = None

    @property
    def logged_in(self) -> bool:
        return self.last_result is not None and self.last_result.ok

    async def login(self, address: Any, token: Any) -> ValidationResult:
        result = await self.validator.validate(address, token)
        self.last_result = result
        if result.ok:
            self.store.update({ADDRESS_KEY: address, TOKEN_KEY: token})
        self.logger.info(
            "Pairing login attempted",
            extra={"address": address, "outcome": result.outcome.value},
        )
        return result

    async def list_devices(self) -> List[PairingCandidate]:
        if not self.logged_in:
            raise PairingError("Log in with valid bridge settings before listing devices")
        address = self.store.get(ADDRESS_KEY)
        token = self.store.get(TOKEN_KEY)

        listing = await self.client.list_devices(address, token)
        if not listing.ok:
            raise PairingError(f"Could not list bridge devices: {listing.status.value}")

        candidates: List[PairingCandidate] = []
        for device_id in device_ids_from_listing(listing.payload):
            detail = await self.client.device_detail(address, token, device_id)
            if detail.status is TransportStatus.UNAUTHORIZED:
                raise PairingError(f"Could not list bridge devices: {detail.status.value}")
            candidates.append(
                PairingCandidate(id=device_id, name=_candidate_name(device_id, detail.payload))
            )
        self.logger.info("Pairing candidates listed", extra={"count": len(candidates)})
        return candidates
