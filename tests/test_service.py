from __future__ import annotations

import asyncio

import pytest
from conftest import TARGET_NAME, FakeTransport

from hidbridge.core.errors import HidBridgeError, SendError, SessionNotReadyError
from hidbridge.core.model import MousePolicy, SessionStatus
from hidbridge.core.service import BridgeService

pytestmark = pytest.mark.usefixtures("isolated_profiles")


async def _ready_service(service: BridgeService, transport: FakeTransport) -> None:
    await service.start()
    transport.set_power(True)
    transport.advertise(TARGET_NAME)
    await service.wait_until_ready(1)


def test_power_on_connect_and_send_key(transport: FakeTransport) -> None:
    async def scenario() -> None:
        service = BridgeService(transport=transport)
        assert service.status_label == "Disconnected"

        await _ready_service(service, transport)
        assert service.status is SessionStatus.READY
        assert service.status_label == "Connected"

        assert service.send_key("Q") is True
        await service.drain()
        assert transport.writes == [("keyboard", "key:Q")]
        assert service.stats.sent == 1

        await service.stop()
        assert service.status is SessionStatus.IDLE
        assert service.status_label == "Disconnected"

    asyncio.run(scenario())


def test_commands_before_start_are_refused(transport: FakeTransport) -> None:
    service = BridgeService(transport=transport)
    assert service.send_key("A") is False
    assert service.move(1, 1) is False
    assert transport.writes == []


def test_commands_after_disconnect_are_dropped(transport: FakeTransport) -> None:
    async def scenario() -> None:
        service = BridgeService(transport=transport)
        await _ready_service(service, transport)

        service.disconnect()
        await service.manager.wait_for(SessionStatus.IDLE, timeout=1)
        assert service.status_label == "Disconnected"
        assert service.click() is False
        assert service.stats.dropped == 1
        assert transport.writes == []

        service.reconnect()
        transport.advertise(TARGET_NAME)
        await service.wait_until_ready(1)
        assert service.click("right") is True
        await service.drain()
        assert transport.writes == [("mouse", "right")]
        await service.stop()

    asyncio.run(scenario())


def test_pointer_gesture_and_typing_reach_their_endpoints(transport: FakeTransport) -> None:
    async def scenario() -> None:
        service = BridgeService(transport=transport)
        await _ready_service(service, transport)

        tracker = service.pointer()
        tracker.begin(10, 10)
        tracker.sample(12.5, 9)
        tracker.end()
        service.type_text("a b")
        service.scroll(-1)
        await service.drain()

        assert [w for w in transport.writes if w[0] == "mouse"] == [
            ("mouse", "move:3,-1"),
            ("mouse", "scroll:-1"),
        ]
        assert [w for w in transport.writes if w[0] == "keyboard"] == [
            ("keyboard", "key:a"),
            ("keyboard", "key:space"),
            ("keyboard", "key:b"),
        ]
        await service.stop()

    asyncio.run(scenario())


def test_send_errors_reach_handler(transport: FakeTransport) -> None:
    async def scenario() -> None:
        failures: list[str] = []
        transport.write_errors = [SendError("write not permitted")]
        service = BridgeService(
            transport=transport,
            on_send_error=lambda command, exc: failures.append(command.payload),
        )
        await _ready_service(service, transport)

        service.send_key("A")
        service.send_key("B")
        await service.drain()

        assert failures == ["key:A"]
        assert service.stats.failed == 1
        assert service.stats.sent == 1
        await service.stop()

    asyncio.run(scenario())


def test_mouse_policy_override(transport: FakeTransport) -> None:
    async def scenario() -> None:
        service = BridgeService(transport=transport, mouse_policy=MousePolicy.UNBOUNDED)
        await service.start()
        assert service.dispatcher.mouse_policy is MousePolicy.UNBOUNDED
        await service.stop()

    asyncio.run(scenario())


def test_wait_until_ready_times_out(transport: FakeTransport) -> None:
    async def scenario() -> None:
        service = BridgeService(transport=transport)
        with pytest.raises(SessionNotReadyError, match="not been started"):
            await service.wait_until_ready(0.01)

        await service.start()
        with pytest.raises(SessionNotReadyError, match=TARGET_NAME):
            await service.wait_until_ready(0.05)
        await service.stop()

    asyncio.run(scenario())


def test_discover_lists_named_peripherals(transport: FakeTransport) -> None:
    async def scenario() -> None:
        service = BridgeService(transport=transport)
        transport.advertise(TARGET_NAME, address="AA:BB:CC:00:11:22")
        transport.advertise("Keyboard K380", address="11:22:33:44:55:66")
        transport.advertise(None, address="00:00:00:00:00:01")
        transport.advertise(TARGET_NAME, address="AA:BB:CC:00:11:22")

        devices = await service.discover(0.05)

        assert [(d.name, d.address) for d in devices] == [
            (TARGET_NAME, "AA:BB:CC:00:11:22"),
            ("Keyboard K380", "11:22:33:44:55:66"),
        ]
        assert service.match_profile(devices[0]).id == "esp32_hid_controller"
        assert service.match_profile(devices[1]) is None
        assert transport.scan_stops == 1

    asyncio.run(scenario())


def test_discover_refused_while_session_active(transport: FakeTransport) -> None:
    async def scenario() -> None:
        service = BridgeService(transport=transport)
        await _ready_service(service, transport)
        with pytest.raises(HidBridgeError, match="session is active"):
            await service.discover(0.01)
        await service.stop()

    asyncio.run(scenario())
