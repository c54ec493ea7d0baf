"""Stable public API for building tooling on top of hidbridge.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from types import TracebackType

from hidbridge.core.commands import (
    CommandMessage,
    Key,
    MouseClick,
    MouseDoubleClick,
    MouseMove,
    MousePress,
    MouseRelease,
    MouseScroll,
)
from hidbridge.core.dispatcher import SendErrorHandler
from hidbridge.core.encoder import encode, parse_command, round_half_away
from hidbridge.core.errors import (
    CommandError,
    ConnectError,
    DiscoveryError,
    HidBridgeError,
    ProfileLoadError,
    ProfileSelectionError,
    ProfileValidationError,
    ResolveError,
    SendError,
    SessionNotReadyError,
    TransportError,
    TransportTimeoutError,
)
from hidbridge.core.model import (
    DispatchSpec,
    DispatchStats,
    MatchRules,
    MousePolicy,
    PeripheralIdentity,
    Profile,
    SessionStatus,
    TransportSpec,
)
from hidbridge.core.service import BridgeService
from hidbridge.core.sources import KeySource, PointerGestureTracker
from hidbridge.transports.base import Transport
from hidbridge.transports.ble_gatt import BLEGATTTransport

__all__ = [
    "HidBridgeError",
    "CommandError",
    "ProfileLoadError",
    "ProfileSelectionError",
    "ProfileValidationError",
    "SessionNotReadyError",
    "TransportError",
    "DiscoveryError",
    "ConnectError",
    "ResolveError",
    "SendError",
    "TransportTimeoutError",
    "CommandMessage",
    "Key",
    "MouseMove",
    "MouseClick",
    "MouseDoubleClick",
    "MouseScroll",
    "MousePress",
    "MouseRelease",
    "DispatchSpec",
    "DispatchStats",
    "MatchRules",
    "MousePolicy",
    "PeripheralIdentity",
    "Profile",
    "SessionStatus",
    "TransportSpec",
    "KeySource",
    "PointerGestureTracker",
    "Transport",
    "BLEGATTTransport",
    "encode",
    "parse_command",
    "round_half_away",
    "Client",
]


class Client:
    """Public client for driving a remote HID peripheral.

    A `Client` wraps profile loading, discovery, the connection lifecycle, and
    command dispatch behind a stable async API intended for third-party tools
    (GUI/TUI/services/scripts)::

        async with Client() as client:
            await client.wait_until_ready(15)
            client.send_key("Q")
            await client.drain()
    """

    def __init__(
        self,
        *,
        profile_id: str | None = None,
        transport: Transport | None = None,
        mouse_policy: MousePolicy | None = None,
        on_send_error: SendErrorHandler | None = None,
    ) -> None:
        self._service = BridgeService(
            profile_id=profile_id,
            transport=transport,
            mouse_policy=mouse_policy,
            on_send_error=on_send_error,
        )

    async def __aenter__(self) -> Client:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    @property
    def status(self) -> SessionStatus:
        return self._service.status

    @property
    def status_label(self) -> str:
        return self._service.status_label

    @property
    def stats(self) -> DispatchStats:
        return self._service.stats

    def list_profiles(self) -> list[Profile]:
        return self._service.list_profiles()

    async def discover(self, timeout_s: float = 5.0) -> list[PeripheralIdentity]:
        return await self._service.discover(timeout_s)

    async def start(self) -> None:
        await self._service.start()

    async def stop(self) -> None:
        await self._service.stop()

    async def wait_until_ready(self, timeout_s: float) -> None:
        await self._service.wait_until_ready(timeout_s)

    def disconnect(self) -> None:
        self._service.disconnect()

    def reconnect(self) -> None:
        self._service.reconnect()

    def submit(self, message: CommandMessage) -> bool:
        return self._service.submit(message)

    def send_key(self, code: str) -> bool:
        return self._service.send_key(code)

    def type_text(self, text: str) -> None:
        self._service.type_text(text)

    def move(self, dx: float, dy: float) -> bool:
        return self._service.move(dx, dy)

    def click(self, button: str = "left") -> bool:
        return self._service.click(button)

    def scroll(self, amount: float) -> bool:
        return self._service.scroll(amount)

    def pointer(self, *, sensitivity: float = 1.0) -> PointerGestureTracker:
        return self._service.pointer(sensitivity=sensitivity)

    async def drain(self) -> None:
        await self._service.drain()
