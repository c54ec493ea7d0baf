from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from hidbridge.core.model import (
    Capabilities,
    DiscoveryEvent,
    DispatchSpec,
    Endpoint,
    MatchRules,
    PeripheralIdentity,
    Profile,
    ScanFilter,
    TransportSpec,
)

TARGET_NAME = "ESP32-HID-Controller"


class FakeConnection:
    def __init__(self, identity: PeripheralIdentity) -> None:
        self.identity = identity
        self.closed = False


class FakeTransport:
    """In-memory radio: tests drive power, advertisements and write outcomes."""

    def __init__(self) -> None:
        self.power_callbacks: list[Callable[[bool], None]] = []
        self.advertisements: asyncio.Queue[DiscoveryEvent] = asyncio.Queue()
        self.scans_started = 0
        self.scan_stops = 0
        self.scanning = False
        self.scan_error: Exception | None = None

        self.connect_calls: list[PeripheralIdentity] = []
        self.connect_error: Exception | None = None
        self.connect_gate: asyncio.Event | None = None
        self.link_lost: Callable[[], None] | None = None

        self.resolve_error: Exception | None = None
        self.disconnected: list[Any] = []

        self.writes: list[tuple[str, str]] = []
        self.write_gate: asyncio.Event | None = None
        self.write_errors: list[Exception | None] = []

    def subscribe_power(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        self.power_callbacks.append(callback)
        return lambda: self.power_callbacks.remove(callback)

    def set_power(self, powered: bool) -> None:
        for callback in list(self.power_callbacks):
            callback(powered)

    def advertise(self, name: str | None, address: str = "AA:BB:CC:00:11:22") -> None:
        self.advertisements.put_nowait(
            DiscoveryEvent(identity=PeripheralIdentity(name=name, address=address))
        )

    def report_scan_error(self, error: Exception) -> None:
        self.advertisements.put_nowait(DiscoveryEvent(error=error))

    async def scan(self, scan_filter: ScanFilter) -> AsyncIterator[DiscoveryEvent]:
        self.scans_started += 1
        if self.scan_error is not None:
            raise self.scan_error
        self.scanning = True
        try:
            while True:
                yield await self.advertisements.get()
        finally:
            self.scanning = False

    async def stop_scan(self) -> None:
        self.scan_stops += 1

    async def connect(
        self,
        identity: PeripheralIdentity,
        *,
        timeout_s: float,
        on_link_lost: Callable[[], None],
    ) -> FakeConnection:
        self.connect_calls.append(identity)
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        self.link_lost = on_link_lost
        return FakeConnection(identity)

    async def resolve_capabilities(
        self,
        handle: FakeConnection,
        *,
        service_uuid: str,
        keyboard_char_uuid: str,
        mouse_char_uuid: str,
    ) -> Capabilities:
        if self.resolve_error is not None:
            raise self.resolve_error
        return Capabilities(keyboard=f"char:{keyboard_char_uuid}", mouse=f"char:{mouse_char_uuid}")

    async def write(self, endpoint: Endpoint, payload: bytes, *, response: bool = True) -> None:
        self.writes.append((endpoint.kind.value, payload.decode("utf-8")))
        if self.write_gate is not None:
            await self.write_gate.wait()
        if self.write_errors:
            error = self.write_errors.pop(0)
            if error is not None:
                raise error

    async def disconnect(self, handle: FakeConnection) -> None:
        handle.closed = True
        self.disconnected.append(handle)


async def spin(times: int = 20) -> None:
    """Let background tasks run a few scheduling rounds."""
    for _ in range(times):
        await asyncio.sleep(0)


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout)


def make_profile(**dispatch: Any) -> Profile:
    return Profile(
        id="esp32_hid_controller",
        name="ESP32 HID Controller",
        match=MatchRules(name=TARGET_NAME),
        transport=TransportSpec(
            type="ble",
            service_uuid="4fafc201-1fb5-459e-8fcc-c5c9c331914b",
            keyboard_char_uuid="beb5483e-36e1-4688-b7f5-ea07361b26a8",
            mouse_char_uuid="beb5483f-36e1-4688-b7f5-ea07361b26a8",
            connect_timeout_s=1.0,
            write_timeout_s=0.5,
        ),
        dispatch=DispatchSpec(restart_delay_s=0.0, **dispatch),
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def profile() -> Profile:
    return make_profile()


@pytest.fixture
def isolated_profiles(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
