"""Async HTTP client for the Bond bridge local API."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

import httpx

from .config import is_empty, is_valid_address
from .logging import get_logger
from .metrics import observe_bridge_request

TOKEN_HEADER = "BOND-Token"
DEFAULT_TIMEOUT = 5.0
INTERNAL_LISTING_KEYS = frozenset({"_", "__"})


class BridgeError(Exception):
    """Base class for errors raised before a bridge request is sent."""


class InvalidAddress(BridgeError, ValueError):
    """The bridge address is not a syntactically valid IPv4 address."""


class InvalidToken(BridgeError, ValueError):
    """The bridge token is missing or empty."""


class TransportStatus(str, enum.Enum):
    OK = "ok"
    UNAUTHORIZED = "unauthorized"
    UNREACHABLE = "unreachable"
    CLIENT_ERROR = "client_error"


@dataclass(frozen=True)
class TransportResult:
    """Outcome of a single bridge request."""

    status: TransportStatus
    payload: Any = None
    http_status: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is TransportStatus.OK


def check_credentials(address: Any, token: Any) -> None:
    """Raise `InvalidAddress` or `InvalidToken` for unusable credentials."""

    if not is_valid_address(address):
        raise InvalidAddress(f"Invalid bridge address: {address!r}")
    if is_empty(token) or not isinstance(token, str):
        raise InvalidToken("Bridge token must be a non-empty string")


def device_ids_from_listing(payload: Any) -> List[str]:
    """Return device ids from a `/v2/devices` listing, skipping internal keys."""

    if not isinstance(payload, Mapping):
        return []
    return [str(key) for key in payload if key not in INTERNAL_LISTING_KEYS]


class BridgeClient:
    """Issue requests against a bridge and classify each response.

    The address and token are passed on every call rather than held by the
    client, so one client can serve several bridges and settings changes
    take effect on the next request. A request never retries; the caller
    decides what a failed `TransportResult` means.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout = timeout
        self.logger = get_logger("bond.client")
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def __aenter__(self) -> "BridgeClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def request(
        self,
        address: str,
        token: str,
        method: str,
        path: str,
        body: Optional[Mapping[str, Any]] = None,
        *,
        auth: bool = True,
    ) -> TransportResult:
        check_credentials(address, token)
        url = f"http://{address}{path}"
        headers = {TOKEN_HEADER: token} if auth else {}
        method = method.upper()
        started = time.perf_counter()
        result = await self._send(method, url, headers, body)
        duration = time.perf_counter() - started
        observe_bridge_request(method, result.status.value, duration)
        log = self.logger.debug if result.ok else self.logger.warning
        log(
            "Bridge request completed",
            extra={
                "method": method,
                "path": path,
                "address": address,
                "status": result.status.value,
                "http_status": result.http_status,
                "error": result.error,
                "duration_ms": round(duration * 1000, 1),
            },
        )
        return result

    async def _send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Optional[Mapping[str, Any]],
    ) -> TransportResult:
        try:
            response = await self._http.request(
                method,
                url,
                headers=headers,
                json=dict(body) if body is not None else None,
            )
        except httpx.TimeoutException as exc:
            return TransportResult(TransportStatus.UNREACHABLE, error=f"timeout: {exc}")
        except httpx.HTTPError as exc:
            return TransportResult(TransportStatus.UNREACHABLE, error=str(exc) or type(exc).__name__)

        if response.status_code == 401:
            return TransportResult(TransportStatus.UNAUTHORIZED, http_status=401)
        if response.status_code != 200:
            return TransportResult(
                TransportStatus.CLIENT_ERROR,
                http_status=response.status_code,
                error=response.text[:200] or None,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            return TransportResult(
                TransportStatus.UNREACHABLE,
                http_status=response.status_code,
                error=f"invalid JSON: {exc}",
            )
        return TransportResult(TransportStatus.OK, payload=payload, http_status=200)

    async def firmware_version(self, address: str, token: str) -> TransportResult:
        return await self.request(address, token, "GET", "/v2/sys/version", auth=False)

    async def list_devices(self, address: str, token: str) -> TransportResult:
        return await self.request(address, token, "GET", "/v2/devices")

    async def device_detail(self, address: str, token: str, device_id: str) -> TransportResult:
        result = await self.request(address, token, "GET", f"/v2/devices/{device_id}")
        if result.ok:
            detail = dict(result.payload) if isinstance(result.payload, Mapping) else {}
            detail["id"] = device_id
            return TransportResult(TransportStatus.OK, payload=detail, http_status=result.http_status)
        return result

    async def device_properties(self, address: str, token: str, device_id: str) -> TransportResult:
        return await self.request(address, token, "GET", f"/v2/devices/{device_id}/properties")

    async def device_state(self, address: str, token: str, device_id: str) -> TransportResult:
        return await self.request(address, token, "GET", f"/v2/devices/{device_id}/state")

    async def send_action(
        self,
        address: str,
        token: str,
        device_id: str,
        action: str,
        argument: Any = None,
    ) -> TransportResult:
        body = {"argument": argument} if argument is not None else {}
        return await self.request(
            address, token, "PUT", f"/v2/devices/{device_id}/actions/{action}", body
        )
