"""Background device state polling."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import time
from typing import Dict, Optional

from .client import BridgeClient, TransportStatus
from .config import Config
from .device import FanDevice
from .logging import get_logger
from .metrics import record_device_poll, set_device_polling_active


class PollState(str, enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    RECONCILED = "reconciled"
    SKIPPED = "skipped"
    HALTED = "halted"


class DevicePollerService:
    """Poll every registered device on a fixed interval.

    Each device gets its own task, so one slow bridge response never delays
    another device, and a device's cycles run strictly one after another.
    Transient failures skip the cycle; an unauthorized response halts the
    device until `resume()` is called with fresh credentials in place.
    """

    def __init__(self, config: Config, client: BridgeClient) -> None:
        self.config = config
        self.client = client
        self.logger = get_logger("bond.poller")
        self._devices: Dict[str, FanDevice] = {}
        self._tasks: Dict[str, asyncio.Task[None]] = {}
        self._states: Dict[str, PollState] = {}
        self._stopped = False

    @property
    def interval(self) -> float:
        return self.config.poll_interval

    def state(self, device_id: str) -> Optional[PollState]:
        return self._states.get(device_id)

    def has_device(self, device_id: str) -> bool:
        return device_id in self._devices

    def is_polling(self, device_id: str) -> bool:
        task = self._tasks.get(device_id)
        return task is not None and not task.done()

    def add_device(self, device: FanDevice) -> None:
        """Register a device and start its poll task."""

        if device.id in self._devices:
            raise ValueError(f"Device {device.id} is already registered with the poller")
        self._devices[device.id] = device
        self._states[device.id] = PollState.IDLE
        self._start(device)

    async def remove_device(self, device_id: str) -> None:
        """Stop polling a device and forget it."""

        self._devices.pop(device_id, None)
        self._states.pop(device_id, None)
        await self._cancel(device_id)
        self.logger.info("Device removed from poller", extra={"device_id": device_id})

    def resume(self, device_id: str) -> None:
        """Restart polling for a device, typically after a settings change."""

        device = self._devices.get(device_id)
        if device is None:
            raise KeyError(device_id)
        if self.is_polling(device_id):
            return
        device.unauthorized.clear()
        self._states[device_id] = PollState.IDLE
        self._start(device)
        self.logger.info("Device polling resumed", extra={"device_id": device_id})

    async def stop(self) -> None:
        self._stopped = True
        for device_id in list(self._tasks):
            await self._cancel(device_id)
        self.logger.info("Device poller stopped")

    async def poll_once(self, device: FanDevice) -> PollState:
        """Run one poll cycle for `device` and return the resulting state."""

        self._states[device.id] = PollState.POLLING
        started = time.perf_counter()
        identity = device.identity
        result = await self.client.device_state(identity.address, identity.token, device.id)
        duration_ms = round((time.perf_counter() - started) * 1000, 1)

        if result.ok:
            changed = device.apply_state(result.payload)
            state = PollState.RECONCILED
            try:
                await device.notify_reconciled(changed)
            except Exception:
                self.logger.exception("Reconcile callback failed", extra={"device_id": device.id})
            self.logger.debug(
                "Poll reconciled",
                extra={"device_id": device.id, "changed": changed, "duration_ms": duration_ms},
            )
        elif result.status is TransportStatus.UNAUTHORIZED:
            state = PollState.HALTED
            device.unauthorized.set()
            self.logger.error(
                "Poll unauthorized; halting device until settings are revalidated",
                extra={"device_id": device.id, "address": identity.address},
            )
        else:
            state = PollState.SKIPPED
            self.logger.warning(
                "Poll skipped",
                extra={
                    "device_id": device.id,
                    "status": result.status.value,
                    "http_status": result.http_status,
                    "error": result.error,
                    "duration_ms": duration_ms,
                },
            )
        self._states[device.id] = state
        record_device_poll(state.value)
        return state

    def _start(self, device: FanDevice) -> None:
        self._stopped = False
        self._tasks[device.id] = asyncio.create_task(self._run(device))
        set_device_polling_active(device.id, True)
        self.logger.info(
            "Device polling started",
            extra={"device_id": device.id, "interval_seconds": self.interval},
        )

    async def _cancel(self, device_id: str) -> None:
        task = self._tasks.pop(device_id, None)
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        set_device_polling_active(device_id, False)

    async def _run(self, device: FanDevice) -> None:
        while not self._stopped and not device.closed:
            if device.unauthorized.is_set():
                self._states[device.id] = PollState.HALTED
                break
            try:
                state = await self.poll_once(device)
            except Exception:
                self.logger.exception("Poll cycle failed", extra={"device_id": device.id})
                state = PollState.SKIPPED
                self._states[device.id] = state
            if state is PollState.HALTED:
                break
            await self._sleep_or_halt(device)
        set_device_polling_active(device.id, False)

    async def _sleep_or_halt(self, device: FanDevice) -> None:
        # Wakes early when a write sees the token rejected.
        try:
            await asyncio.wait_for(device.unauthorized.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            return
