"""Service layer used by the CLI, the public API, and future UI frontends."""

from __future__ import annotations

import asyncio
import logging

from hidbridge.core.commands import CommandMessage, Key, MouseClick, MouseMove, MouseScroll
from hidbridge.core.device_match import profile_for_identity
from hidbridge.core.dispatcher import Dispatcher, SendErrorHandler
from hidbridge.core.errors import HidBridgeError, SessionNotReadyError, TransportError
from hidbridge.core.manager import ConnectionManager
from hidbridge.core.model import (
    DispatchStats,
    MousePolicy,
    PeripheralIdentity,
    Profile,
    ScanFilter,
    SessionStatus,
)
from hidbridge.core.profile_loader import load_profiles, select_profile
from hidbridge.core.sources import KeySource, PointerGestureTracker
from hidbridge.transports.base import Transport
from hidbridge.transports.ble_gatt import BLEGATTTransport

LOGGER = logging.getLogger(__name__)


class BridgeService:
    def __init__(
        self,
        *,
        profile_id: str | None = None,
        transport: Transport | None = None,
        mouse_policy: MousePolicy | None = None,
        on_send_error: SendErrorHandler | None = None,
    ) -> None:
        loaded = load_profiles()
        self.profiles = loaded.profiles
        self.load_warnings = loaded.warnings
        self.transport = transport or BLEGATTTransport()
        self._profile_id = profile_id
        self._mouse_policy = mouse_policy
        self._on_send_error = on_send_error
        self.manager: ConnectionManager | None = None
        self.dispatcher: Dispatcher | None = None

    @property
    def profile(self) -> Profile:
        return select_profile(self.profiles, self._profile_id)

    @property
    def status(self) -> SessionStatus:
        if self.manager is None:
            return SessionStatus.IDLE
        return self.manager.status

    @property
    def status_label(self) -> str:
        if self.manager is not None and self.manager.is_connected:
            return "Connected"
        return "Disconnected"

    @property
    def stats(self) -> DispatchStats:
        if self.dispatcher is None:
            return DispatchStats()
        return self.dispatcher.stats

    def list_profiles(self) -> list[Profile]:
        return sorted(self.profiles.values(), key=lambda p: p.id)

    def match_profile(self, identity: PeripheralIdentity) -> Profile | None:
        return profile_for_identity(identity, self.list_profiles())

    async def discover(self, timeout_s: float = 5.0) -> list[PeripheralIdentity]:
        """Scan for ``timeout_s`` seconds and return every named peripheral seen."""
        if self.manager is not None and self.manager.status is not SessionStatus.IDLE:
            raise HidBridgeError("Discovery is unavailable while a session is active")

        found: dict[str, PeripheralIdentity] = {}

        async def _collect() -> None:
            async for event in self.transport.scan(ScanFilter()):
                if event.error is not None:
                    LOGGER.warning("Discovery error: %s", event.error)
                elif event.identity is not None and event.identity.name:
                    found.setdefault(event.identity.address, event.identity)

        try:
            await asyncio.wait_for(_collect(), timeout_s)
        except asyncio.TimeoutError:
            pass
        finally:
            try:
                await self.transport.stop_scan()
            except TransportError as exc:
                LOGGER.warning("Stopping scan failed: %s", exc)

        return sorted(found.values(), key=lambda identity: (identity.name or "", identity.address))

    async def start(self) -> None:
        if self.manager is not None:
            return
        profile = self.profile
        policy = self._mouse_policy or profile.dispatch.mouse_policy
        self.manager = ConnectionManager(self.transport, profile)
        self.dispatcher = Dispatcher(
            lambda: self.manager.session if self.manager is not None else None,
            self.transport,
            mouse_policy=policy,
            max_move_step=profile.dispatch.max_move_step,
            write_timeout_s=profile.transport.write_timeout_s,
            with_response=profile.transport.write_with_response,
            on_send_error=self._on_send_error,
        )
        self.manager.add_listener(self.dispatcher.on_status_change)
        self.manager.add_listener(self._log_status)
        LOGGER.info("Using profile '%s' (mouse policy: %s)", profile.id, policy.value)
        await self.manager.start()

    async def stop(self) -> None:
        manager, dispatcher = self.manager, self.dispatcher
        self.manager = self.dispatcher = None
        if dispatcher is not None:
            await dispatcher.close()
        if manager is not None:
            await manager.stop()

    async def wait_until_ready(self, timeout_s: float) -> None:
        if self.manager is None:
            raise SessionNotReadyError("Bridge has not been started")
        try:
            await self.manager.wait_for(SessionStatus.READY, timeout=timeout_s)
        except asyncio.TimeoutError:
            raise SessionNotReadyError(
                f"No '{self.manager.profile.match.name}' peripheral became ready within {timeout_s}s"
            ) from None

    def disconnect(self) -> None:
        if self.manager is not None:
            self.manager.request_disconnect()

    def reconnect(self) -> None:
        if self.manager is not None:
            self.manager.request_scan()

    def submit(self, message: CommandMessage) -> bool:
        if self.dispatcher is None:
            return False
        return self.dispatcher.submit(message)

    def send_key(self, code: str) -> bool:
        return self.submit(Key(code))

    def type_text(self, text: str) -> None:
        KeySource(self.submit).type_text(text)

    def move(self, dx: float, dy: float) -> bool:
        return self.submit(MouseMove(dx, dy))

    def click(self, button: str = "left") -> bool:
        return self.submit(MouseClick(button))

    def scroll(self, amount: float) -> bool:
        return self.submit(MouseScroll(amount))

    def pointer(self, *, sensitivity: float = 1.0) -> PointerGestureTracker:
        return PointerGestureTracker(self.submit, sensitivity=sensitivity)

    def keys(self) -> KeySource:
        return KeySource(self.submit)

    async def drain(self) -> None:
        if self.dispatcher is not None:
            await self.dispatcher.drain()

    def _log_status(self, old: SessionStatus, new: SessionStatus) -> None:
        if new is SessionStatus.READY:
            LOGGER.info("Status: Connected")
        elif old is SessionStatus.READY:
            LOGGER.info("Status: Disconnected")
