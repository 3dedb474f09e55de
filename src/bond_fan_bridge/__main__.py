"""Entrypoint for the Bond fan bridge."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from typing import Any, Iterable, List, Mapping, Optional

from .client import BridgeClient, device_ids_from_listing
from .config import Config, load_config
from .device import DeviceIdentity, DeviceInitError, FanDevice
from .logging import configure_logging, get_logger
from .metrics import serve_metrics
from .poller import DevicePollerService
from .validator import CredentialValidator


def _log_reconciled(device: FanDevice, changed: Mapping[str, Any]) -> None:
    if changed:
        get_logger("bond.devices").info(
            "Device state changed",
            extra={"device_id": device.id, "device_name": device.name, "changed": dict(changed)},
        )


async def _load_devices(
    config: Config, client: BridgeClient, address: str, token: str, logger: logging.Logger
) -> List[FanDevice]:
    device_ids = list(config.device_ids)
    if not device_ids:
        listing = await client.list_devices(address, token)
        device_ids = device_ids_from_listing(listing.payload) if listing.ok else []

    devices: List[FanDevice] = []
    for device_id in device_ids:
        detail = await client.device_detail(address, token, device_id)
        name = None
        if detail.ok and isinstance(detail.payload, Mapping):
            if isinstance(detail.payload.get("name"), str):
                name = detail.payload["name"]
        device = FanDevice(
            DeviceIdentity(id=device_id, address=address, token=token),
            client,
            name=name,
            on_reconcile=_log_reconciled,
        )
        try:
            await device.initialize()
        except DeviceInitError as exc:
            logger.error("Skipping device", extra={"device_id": device_id, "error": str(exc)})
            await device.close()
            continue
        devices.append(device)
    return devices


async def _run_async(config: Config) -> int:
    logger = get_logger("bond")
    stop_event = asyncio.Event()

    def _request_shutdown(sig: Optional[str] = None) -> None:
        if not stop_event.is_set():
            logger.warning("Shutdown requested", extra={"signal": sig})
            stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, _request_shutdown, sig.name)

    # Credentials are fixed for the life of the process; a device halted by a
    # rejected token stays halted until the service restarts with new settings.
    address = config.bridge_address
    token = config.bridge_token
    async with BridgeClient(timeout=config.request_timeout) as client:
        result = await CredentialValidator(client).validate(address, token)
        if not result.ok:
            logger.error(
                "Bridge settings rejected",
                extra={"outcome": result.outcome.value, "reason": result.message},
            )
            return 2

        devices = await _load_devices(config, client, address, token, logger)
        if not devices:
            logger.error("No usable devices on bridge", extra={"address": address})
            return 3

        poller = DevicePollerService(config, client)
        for device in devices:
            poller.add_device(device)
        logger.info(
            "Bridge services started",
            extra={
                "address": address,
                "firmware": result.firmware,
                "devices": [device.id for device in devices],
                "poll_interval": config.poll_interval,
            },
        )
        try:
            await stop_event.wait()
        finally:
            await poller.stop()
            for device in devices:
                await device.close()
            logger.info("Bridge shutdown complete")
    return 0


def run(cli_args: Optional[Iterable[str]] = None) -> None:
    """Console-script entrypoint."""

    config = load_config(cli_args)
    configure_logging(config)
    logger = get_logger("bond")
    logger.info("Loaded configuration", extra={"config": config.logging_dict()})

    if config.metrics_port:
        serve_metrics(config.metrics_port)
        logger.info("Metrics endpoint listening", extra={"port": config.metrics_port})
    try:
        exit_code = asyncio.run(_run_async(config))
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return
    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    run()
