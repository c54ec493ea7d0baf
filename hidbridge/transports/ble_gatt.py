"""BLE GATT transport implementation backed by bleak."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from hidbridge.core.errors import ConnectError, DiscoveryError, ResolveError, SendError, TransportError
from hidbridge.core.model import Capabilities, DiscoveryEvent, Endpoint, PeripheralIdentity, ScanFilter

LOGGER = logging.getLogger(__name__)


class BLEGATTTransport:
    """Radio adapter over bleak.

    bleak does not expose adapter power state portably, so subscribers are told
    the radio is powered on as soon as they subscribe. Platform integrations can
    forward real adapter changes through `notify_power`.
    """

    def __init__(self) -> None:
        self._scanner: BleakScanner | None = None
        self._seen: dict[str, BLEDevice] = {}
        self._power_callbacks: list[Callable[[bool], None]] = []

    def subscribe_power(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        self._power_callbacks.append(callback)
        asyncio.get_running_loop().call_soon(callback, True)

        def _unsubscribe() -> None:
            if callback in self._power_callbacks:
                self._power_callbacks.remove(callback)

        return _unsubscribe

    def notify_power(self, powered: bool) -> None:
        for callback in list(self._power_callbacks):
            callback(powered)

    async def scan(self, scan_filter: ScanFilter) -> AsyncIterator[DiscoveryEvent]:
        queue: asyncio.Queue[DiscoveryEvent] = asyncio.Queue()

        def _on_detect(device: BLEDevice, advertisement: AdvertisementData) -> None:
            self._seen[device.address] = device
            name = advertisement.local_name or device.name
            queue.put_nowait(
                DiscoveryEvent(identity=PeripheralIdentity(name=name, address=device.address))
            )

        await self.stop_scan()
        self._seen.clear()
        try:
            scanner = BleakScanner(
                detection_callback=_on_detect,
                service_uuids=list(scan_filter.service_uuids) or None,
            )
            await scanner.start()
        except (BleakError, OSError) as exc:
            raise DiscoveryError(f"BLE scan could not start: {exc}") from exc
        self._scanner = scanner
        LOGGER.debug("BLE scan started (filter=%s)", scan_filter)

        try:
            while True:
                yield await queue.get()
        finally:
            if self._scanner is scanner:
                await self.stop_scan()

    async def stop_scan(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        try:
            await scanner.stop()
        except (BleakError, OSError) as exc:
            LOGGER.debug("Ignoring BLE scan stop failure: %s", exc)
        LOGGER.debug("BLE scan stopped")

    async def connect(
        self,
        identity: PeripheralIdentity,
        *,
        timeout_s: float,
        on_link_lost: Callable[[], None],
    ) -> BleakClient:
        target: BLEDevice | str = self._seen.get(identity.address, identity.address)
        client = BleakClient(
            target,
            timeout=timeout_s,
            disconnected_callback=lambda _client: on_link_lost(),
        )
        try:
            await client.connect()
        except asyncio.CancelledError:
            await self._quiet_disconnect(client)
            raise
        except (BleakError, asyncio.TimeoutError, OSError) as exc:
            raise ConnectError(f"BLE connect failed for {identity.address}: {exc}") from exc

        if not client.is_connected:
            raise ConnectError(f"BLE connect failed for {identity.address}")
        return client

    async def resolve_capabilities(
        self,
        handle: Any,
        *,
        service_uuid: str,
        keyboard_char_uuid: str,
        mouse_char_uuid: str,
    ) -> Capabilities:
        service = handle.services.get_service(service_uuid)
        if service is None:
            raise ResolveError(f"Service {service_uuid} not found on {handle.address}")

        keyboard = service.get_characteristic(keyboard_char_uuid)
        if keyboard is None:
            raise ResolveError(f"Keyboard characteristic {keyboard_char_uuid} not found")
        mouse = service.get_characteristic(mouse_char_uuid)
        if mouse is None:
            raise ResolveError(f"Mouse characteristic {mouse_char_uuid} not found")
        return Capabilities(keyboard=keyboard, mouse=mouse)

    async def write(self, endpoint: Endpoint, payload: bytes, *, response: bool = True) -> None:
        try:
            await endpoint.connection.write_gatt_char(
                endpoint.characteristic,
                payload,
                response=response,
            )
        except (BleakError, OSError) as exc:
            raise SendError(f"BLE write to {endpoint.kind.value} endpoint failed: {exc}") from exc

    async def disconnect(self, handle: Any) -> None:
        try:
            await handle.disconnect()
        except (BleakError, OSError) as exc:
            raise TransportError(f"BLE disconnect failed: {exc}") from exc

    async def _quiet_disconnect(self, client: BleakClient) -> None:
        try:
            await client.disconnect()
        except (BleakError, OSError) as exc:
            LOGGER.debug("Ignoring disconnect failure after cancelled connect: %s", exc)
