"""Per-device session: capability state, write queue and reconciliation."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, Union

from .client import BridgeClient, TransportResult, TransportStatus, check_credentials
from .logging import get_logger
from .mapper import BridgeAction, WritePlan, apply_updates, plan_capability_write, reconcile
from .metrics import record_capability_update, record_capability_write
from .profile import CapabilityProfile, DeviceProperties, derive_profile


@dataclass(frozen=True)
class DeviceIdentity:
    """Bridge-assigned device id plus the credentials used to reach it."""

    id: str
    address: str
    token: str

    def with_credentials(self, address: str, token: str) -> "DeviceIdentity":
        return replace(self, address=address, token=token)


@dataclass(frozen=True)
class WriteResult:
    """Outcome of one capability write."""

    capability: str
    value: Any
    actions: Tuple[BridgeAction, ...]
    results: Tuple[TransportResult, ...]

    @property
    def ok(self) -> bool:
        return len(self.results) == len(self.actions) and all(r.ok for r in self.results)


class DeviceInitError(RuntimeError):
    """Device properties could not be fetched."""

    def __init__(self, device_id: str, result: TransportResult) -> None:
        super().__init__(
            f"Failed to load properties for device {device_id}: {result.status.value}"
            + (f" ({result.error})" if result.error else "")
        )
        self.device_id = device_id
        self.result = result


class DeviceNotReady(RuntimeError):
    """The device has not been initialized yet."""


class DeviceClosed(RuntimeError):
    """The device session has been torn down."""


ReconcileCallback = Callable[["FanDevice", Mapping[str, Any]], Union[None, Awaitable[None]]]


@dataclass
class _QueuedWrite:
    plan: WritePlan
    future: "asyncio.Future[WriteResult]"


class FanDevice:
    """Own the capability values of one fan and funnel writes through a queue.

    Values change in exactly two places: the write worker, which applies a
    plan's local updates before sending its actions, and `apply_state`,
    which the poller calls with each freshly fetched state. Both run on the
    event loop, so neither needs a lock; a poll may briefly overwrite an
    optimistic write until the bridge reports the new state.
    """

    def __init__(
        self,
        identity: DeviceIdentity,
        client: BridgeClient,
        *,
        name: Optional[str] = None,
        on_reconcile: Optional[ReconcileCallback] = None,
    ) -> None:
        self._identity = identity
        self.client = client
        self.name = name or identity.id
        self.on_reconcile = on_reconcile
        self.logger = get_logger("bond.devices")
        self.properties: Optional[DeviceProperties] = None
        self.profile: Optional[CapabilityProfile] = None
        self.unauthorized = asyncio.Event()
        self._values: Dict[str, Any] = {}
        self._queue: "asyncio.Queue[_QueuedWrite]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task[None]] = None
        self._closed = False

    @property
    def id(self) -> str:
        return self._identity.id

    @property
    def identity(self) -> DeviceIdentity:
        return self._identity

    @property
    def capability_values(self) -> Dict[str, Any]:
        return dict(self._values)

    @property
    def closed(self) -> bool:
        return self._closed

    async def initialize(self) -> CapabilityProfile:
        """Fetch the device properties once and derive its profile."""

        if self._closed:
            raise DeviceClosed(f"Device {self.id} is closed")
        result = await self.client.device_properties(
            self._identity.address, self._identity.token, self.id
        )
        if result.status is TransportStatus.UNAUTHORIZED:
            self._mark_unauthorized("properties")
        if not result.ok:
            raise DeviceInitError(self.id, result)
        self.properties = DeviceProperties.from_payload(result.payload)
        self.profile = derive_profile(self.properties)
        if self._worker is None:
            self._worker = asyncio.create_task(self._run_writes())
        self.logger.info(
            "Device initialized",
            extra={"device_id": self.id, "device_name": self.name, "profile": self.profile.as_dict()},
        )
        return self.profile

    def update_credentials(self, address: str, token: str) -> None:
        """Swap in validated credentials and clear any unauthorized flag."""

        check_credentials(address, token)
        self._identity = self._identity.with_credentials(address, token)
        self.unauthorized.clear()
        self.logger.info("Device credentials updated", extra={"device_id": self.id, "address": address})

    async def set_capability(self, capability: str, value: Any) -> WriteResult:
        """Queue a capability write and wait until its actions have been sent.

        Raises `UnsupportedCapability` immediately for writes the profile
        cannot express.
        """

        if self._closed:
            raise DeviceClosed(f"Device {self.id} is closed")
        if self.profile is None or self._worker is None:
            raise DeviceNotReady(f"Device {self.id} is not initialized")
        plan = plan_capability_write(self.profile, capability, value)
        future: asyncio.Future[WriteResult] = asyncio.get_running_loop().create_future()
        await self._queue.put(_QueuedWrite(plan=plan, future=future))
        return await future

    def apply_state(self, state: Any) -> Dict[str, Any]:
        """Reconcile a polled state payload and return the values that changed."""

        if self.profile is None:
            return {}
        changed = apply_updates(self._values, reconcile(self.profile, state))
        for capability in changed:
            record_capability_update(capability)
        if changed:
            self.logger.debug(
                "Capabilities reconciled",
                extra={"device_id": self.id, "changed": changed},
            )
        return changed

    async def notify_reconciled(self, changed: Mapping[str, Any]) -> None:
        if self.on_reconcile is None:
            return
        outcome = self.on_reconcile(self, changed)
        if asyncio.iscoroutine(outcome):
            await outcome

    async def close(self) -> None:
        """Stop the write worker and fail any writes still queued."""

        self._closed = True
        if self._worker:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
        self._worker = None
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if not item.future.done():
                item.future.set_exception(DeviceClosed(f"Device {self.id} is closed"))
        self.logger.info("Device closed", extra={"device_id": self.id})

    async def _run_writes(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                result = await self._execute(item.plan)
            except asyncio.CancelledError:
                if not item.future.done():
                    item.future.set_exception(DeviceClosed(f"Device {self.id} is closed"))
                raise
            except Exception as exc:
                self.logger.exception(
                    "Capability write failed",
                    extra={"device_id": self.id, "capability": item.plan.capability},
                )
                record_capability_write(item.plan.capability, "error")
                if not item.future.done():
                    item.future.set_exception(exc)
                continue
            if not item.future.done():
                item.future.set_result(result)

    async def _execute(self, plan: WritePlan) -> WriteResult:
        for name, value in plan.local_updates:
            self._values[name] = value

        identity = self._identity
        results = []
        for action in plan.actions:
            result = await self.client.send_action(
                identity.address, identity.token, self.id, action.name, action.argument
            )
            results.append(result)
            if result.ok:
                continue
            if result.status is TransportStatus.UNAUTHORIZED:
                self._mark_unauthorized(action.name)
            self.logger.warning(
                "Bridge action failed; remaining actions skipped",
                extra={
                    "device_id": self.id,
                    "capability": plan.capability,
                    "action": action.name,
                    "argument": action.argument,
                    "status": result.status.value,
                },
            )
            break

        write = WriteResult(
            capability=plan.capability,
            value=plan.value,
            actions=plan.actions,
            results=tuple(results),
        )
        record_capability_write(plan.capability, "success" if write.ok else "failure")
        self.logger.info(
            "Capability written",
            extra={
                "device_id": self.id,
                "capability": plan.capability,
                "value": plan.value,
                "actions": [action.as_dict() for action in plan.actions],
                "ok": write.ok,
            },
        )
        return write

    def _mark_unauthorized(self, during: str) -> None:
        if not self.unauthorized.is_set():
            self.logger.error(
                "Bridge rejected the device token",
                extra={"device_id": self.id, "during": during},
            )
        self.unauthorized.set()
