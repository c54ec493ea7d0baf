"""Discovery and connection lifecycle for the single peripheral session.

All radio callbacks (power changes, discovery results, connect and resolve
outcomes, link loss) are turned into typed events on one queue. A single actor
task consumes that queue and is the only code that mutates the session status
or the `Session` object, so transitions are totally ordered even though the
radio operations themselves run concurrently in helper tasks.

Long-running operations carry the attempt number they were started for. When a
teardown or power loss supersedes an attempt, late results are recognised as
stale and any connection they carry is released immediately.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from hidbridge.core.device_match import matches_profile
from hidbridge.core.errors import ConnectError, ResolveError, TransportError
from hidbridge.core.model import (
    Capabilities,
    Endpoint,
    EndpointKind,
    PeripheralIdentity,
    Profile,
    ScanFilter,
    Session,
    SessionStatus,
)
from hidbridge.transports.base import Transport

LOGGER = logging.getLogger(__name__)

StatusListener = Callable[[SessionStatus, SessionStatus], None]


@dataclass(frozen=True)
class _PowerChanged:
    powered: bool


@dataclass(frozen=True)
class _Discovered:
    identity: PeripheralIdentity


@dataclass(frozen=True)
class _DiscoveryFailed:
    error: Exception


@dataclass(frozen=True)
class _ScanAborted:
    generation: int
    error: Exception | None


@dataclass(frozen=True)
class _Connected:
    attempt: int
    identity: PeripheralIdentity
    handle: Any


@dataclass(frozen=True)
class _ConnectFailed:
    attempt: int
    error: Exception


@dataclass(frozen=True)
class _Resolved:
    attempt: int
    capabilities: Capabilities


@dataclass(frozen=True)
class _ResolveFailed:
    attempt: int
    error: Exception


@dataclass(frozen=True)
class _LinkLost:
    attempt: int


@dataclass(frozen=True)
class _Restart:
    pass


@dataclass(frozen=True)
class _Rescan:
    pass


@dataclass(frozen=True)
class _Teardown:
    reason: str
    done: asyncio.Future[None] | None = field(default=None, compare=False)


class ConnectionManager:
    VALID_TRANSITIONS: frozenset[tuple[SessionStatus, SessionStatus]] = frozenset(
        {
            (SessionStatus.IDLE, SessionStatus.SCANNING),
            (SessionStatus.SCANNING, SessionStatus.CONNECTING),
            (SessionStatus.SCANNING, SessionStatus.IDLE),
            (SessionStatus.SCANNING, SessionStatus.FAILED),
            (SessionStatus.CONNECTING, SessionStatus.RESOLVING_CAPABILITIES),
            (SessionStatus.CONNECTING, SessionStatus.FAILED),
            (SessionStatus.CONNECTING, SessionStatus.DISCONNECTING),
            (SessionStatus.RESOLVING_CAPABILITIES, SessionStatus.READY),
            (SessionStatus.RESOLVING_CAPABILITIES, SessionStatus.FAILED),
            (SessionStatus.RESOLVING_CAPABILITIES, SessionStatus.DISCONNECTING),
            (SessionStatus.READY, SessionStatus.DISCONNECTING),
            (SessionStatus.READY, SessionStatus.FAILED),
            (SessionStatus.DISCONNECTING, SessionStatus.IDLE),
            (SessionStatus.FAILED, SessionStatus.SCANNING),
            (SessionStatus.FAILED, SessionStatus.IDLE),
        }
    )

    def __init__(
        self,
        transport: Transport,
        profile: Profile,
        *,
        restart_delay_s: float | None = None,
    ) -> None:
        self._transport = transport
        self._profile = profile
        self._restart_delay_s = (
            profile.dispatch.restart_delay_s if restart_delay_s is None else restart_delay_s
        )

        self._status = SessionStatus.IDLE
        self._session: Session | None = None
        self._pending: tuple[PeripheralIdentity, Any] | None = None
        self._powered = False
        self._attempt = 0
        self._scan_generation = 0

        self._events: asyncio.Queue[Any] = asyncio.Queue()
        self._changed = asyncio.Event()
        self._listeners: list[StatusListener] = []
        self._actor: asyncio.Task[None] | None = None
        self._scan_task: asyncio.Task[None] | None = None
        self._op_task: asyncio.Task[None] | None = None
        self._restart_task: asyncio.Task[None] | None = None
        self._unsubscribe_power: Callable[[], None] | None = None

        self._handlers: dict[type, Callable[[Any], Any]] = {
            _PowerChanged: self._on_power_changed,
            _Discovered: self._on_discovered,
            _DiscoveryFailed: self._on_discovery_failed,
            _ScanAborted: self._on_scan_aborted,
            _Connected: self._on_connected,
            _ConnectFailed: self._on_connect_failed,
            _Resolved: self._on_resolved,
            _ResolveFailed: self._on_resolve_failed,
            _LinkLost: self._on_link_lost,
            _Restart: self._on_restart,
            _Rescan: self._on_rescan,
            _Teardown: self._on_teardown,
        }

    @property
    def profile(self) -> Profile:
        return self._profile

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def session(self) -> Session | None:
        """The current session, only while it is ready for writes."""
        if self._status is not SessionStatus.READY:
            return None
        return self._session

    @property
    def is_connected(self) -> bool:
        return self.session is not None

    @property
    def powered(self) -> bool:
        return self._powered

    def add_listener(self, callback: StatusListener) -> None:
        """Add a status listener, called with (old_status, new_status)."""
        self._listeners.append(callback)

    def remove_listener(self, callback: StatusListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    async def start(self) -> None:
        if self._actor is not None:
            return
        self._actor = asyncio.create_task(self._run(), name="hidbridge-connection-manager")
        self._unsubscribe_power = self._transport.subscribe_power(self.radio_state_changed)

    async def stop(self) -> None:
        """Tear the session down for process shutdown and stop the actor."""
        actor = self._actor
        if actor is None:
            return
        if self._unsubscribe_power is not None:
            self._unsubscribe_power()
            self._unsubscribe_power = None

        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._post(_Teardown("shutdown", done))
        await asyncio.wait({done, actor}, return_when=asyncio.FIRST_COMPLETED)

        self._actor = None
        actor.cancel()
        await asyncio.wait({actor})

    def radio_state_changed(self, powered: bool) -> None:
        self._post(_PowerChanged(powered))

    def request_disconnect(self) -> None:
        self._post(_Teardown("disconnect requested"))

    def request_scan(self) -> None:
        self._post(_Rescan())

    async def settle(self) -> None:
        """Wait until every event posted so far has been handled."""
        await self._events.join()

    async def wait_for(self, *states: SessionStatus, timeout: float | None = None) -> SessionStatus:
        """Wait until the status is one of ``states``.

        Raises asyncio.TimeoutError if ``timeout`` expires first.
        """

        async def _wait() -> SessionStatus:
            while self._status not in states:
                await self._changed.wait()
            return self._status

        return await asyncio.wait_for(_wait(), timeout)

    def _post(self, event: Any) -> None:
        self._events.put_nowait(event)

    async def _run(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self._handlers[type(event)](event)
            finally:
                self._events.task_done()

    def _transition(self, new_status: SessionStatus) -> bool:
        old_status = self._status
        if old_status is new_status:
            return True
        if (old_status, new_status) not in self.VALID_TRANSITIONS:
            LOGGER.warning("Invalid session transition: %s -> %s", old_status.name, new_status.name)
            return False

        self._status = new_status
        LOGGER.debug("Session: %s -> %s", old_status.name, new_status.name)
        for listener in list(self._listeners):
            try:
                listener(old_status, new_status)
            except Exception:
                LOGGER.exception("Session status listener failed")

        changed, self._changed = self._changed, asyncio.Event()
        changed.set()
        return True

    async def _on_power_changed(self, event: _PowerChanged) -> None:
        self._powered = event.powered
        if event.powered:
            LOGGER.info("Radio powered on")
            if self._status in (SessionStatus.IDLE, SessionStatus.FAILED):
                await self._cancel(self._restart_task)
                self._begin_scan()
            return

        LOGGER.warning("Radio powered off")
        await self._teardown("radio powered off")

    def _begin_scan(self) -> None:
        if not self._transition(SessionStatus.SCANNING):
            return
        self._scan_generation += 1
        self._scan_task = asyncio.create_task(
            self._scan_loop(self._scan_generation),
            name="hidbridge-scan",
        )
        LOGGER.info("Scanning for '%s'", self._profile.match.name)

    async def _scan_loop(self, generation: int) -> None:
        scan_filter = ScanFilter(name=self._profile.match.name)
        try:
            async for event in self._transport.scan(scan_filter):
                if event.error is not None:
                    self._post(_DiscoveryFailed(event.error))
                elif event.identity is not None:
                    self._post(_Discovered(event.identity))
        except TransportError as exc:
            self._post(_ScanAborted(generation, exc))
            return
        except Exception as exc:
            LOGGER.exception("Scan failed unexpectedly")
            self._post(_ScanAborted(generation, exc))
            return
        self._post(_ScanAborted(generation, None))

    async def _stop_scan(self) -> None:
        self._scan_generation += 1
        task, self._scan_task = self._scan_task, None
        await self._cancel(task)
        try:
            await self._transport.stop_scan()
        except TransportError as exc:
            LOGGER.warning("Stopping scan failed: %s", exc)

    async def _on_discovered(self, event: _Discovered) -> None:
        identity = event.identity
        if self._status is not SessionStatus.SCANNING:
            LOGGER.debug("Ignoring discovery of %s while %s", identity.address, self._status.name)
            return
        if not matches_profile(identity, self._profile):
            return

        LOGGER.info("Found '%s' at %s", identity.name, identity.address)
        await self._stop_scan()
        self._attempt += 1
        self._transition(SessionStatus.CONNECTING)
        self._op_task = asyncio.create_task(
            self._connect(self._attempt, identity),
            name="hidbridge-connect",
        )

    async def _on_discovery_failed(self, event: _DiscoveryFailed) -> None:
        LOGGER.warning("Discovery error: %s", event.error)

    async def _on_scan_aborted(self, event: _ScanAborted) -> None:
        if event.generation != self._scan_generation or self._status is not SessionStatus.SCANNING:
            return
        LOGGER.warning("Scan stopped unexpectedly: %s", event.error or "stream ended")
        self._scan_task = None
        self._transition(SessionStatus.FAILED)
        self._schedule_restart()

    async def _connect(self, attempt: int, identity: PeripheralIdentity) -> None:
        timeout_s = self._profile.transport.connect_timeout_s
        try:
            handle = await asyncio.wait_for(
                self._transport.connect(
                    identity,
                    timeout_s=timeout_s,
                    on_link_lost=lambda: self._post(_LinkLost(attempt)),
                ),
                timeout_s,
            )
        except asyncio.TimeoutError:
            self._post(_ConnectFailed(attempt, ConnectError(f"Connect to {identity.address} timed out")))
            return
        except TransportError as exc:
            self._post(_ConnectFailed(attempt, exc))
            return
        except Exception as exc:
            LOGGER.exception("Connect to %s failed unexpectedly", identity.address)
            self._post(_ConnectFailed(attempt, ConnectError(str(exc))))
            return
        self._post(_Connected(attempt, identity, handle))

    async def _on_connected(self, event: _Connected) -> None:
        if event.attempt != self._attempt or self._status is not SessionStatus.CONNECTING:
            LOGGER.debug("Releasing connection from superseded attempt %d", event.attempt)
            await self._release(event.handle)
            return

        self._pending = (event.identity, event.handle)
        self._transition(SessionStatus.RESOLVING_CAPABILITIES)
        self._op_task = asyncio.create_task(
            self._resolve(event.attempt, event.handle),
            name="hidbridge-resolve",
        )

    async def _on_connect_failed(self, event: _ConnectFailed) -> None:
        if event.attempt != self._attempt or self._status is not SessionStatus.CONNECTING:
            return
        LOGGER.warning("Connection failed: %s", event.error)
        await self._fail()

    async def _resolve(self, attempt: int, handle: Any) -> None:
        spec = self._profile.transport
        try:
            capabilities = await asyncio.wait_for(
                self._transport.resolve_capabilities(
                    handle,
                    service_uuid=spec.service_uuid,
                    keyboard_char_uuid=spec.keyboard_char_uuid,
                    mouse_char_uuid=spec.mouse_char_uuid,
                ),
                spec.connect_timeout_s,
            )
        except asyncio.TimeoutError:
            self._post(_ResolveFailed(attempt, ResolveError("Capability resolution timed out")))
            return
        except TransportError as exc:
            self._post(_ResolveFailed(attempt, exc))
            return
        except Exception as exc:
            LOGGER.exception("Capability resolution failed unexpectedly")
            self._post(_ResolveFailed(attempt, ResolveError(str(exc))))
            return
        self._post(_Resolved(attempt, capabilities))

    async def _on_resolved(self, event: _Resolved) -> None:
        if (
            event.attempt != self._attempt
            or self._status is not SessionStatus.RESOLVING_CAPABILITIES
            or self._pending is None
        ):
            return

        identity, handle = self._pending
        self._pending = None
        spec = self._profile.transport
        self._session = Session(
            identity,
            handle,
            keyboard=Endpoint(
                kind=EndpointKind.KEYBOARD,
                uuid=spec.keyboard_char_uuid,
                connection=handle,
                characteristic=event.capabilities.keyboard,
            ),
            mouse=Endpoint(
                kind=EndpointKind.MOUSE,
                uuid=spec.mouse_char_uuid,
                connection=handle,
                characteristic=event.capabilities.mouse,
            ),
        )
        self._op_task = None
        self._transition(SessionStatus.READY)
        LOGGER.info("Connected to '%s' at %s", identity.name, identity.address)

    async def _on_resolve_failed(self, event: _ResolveFailed) -> None:
        if event.attempt != self._attempt or self._status is not SessionStatus.RESOLVING_CAPABILITIES:
            return
        LOGGER.warning("Peripheral is missing required capabilities: %s", event.error)
        await self._fail()

    async def _on_link_lost(self, event: _LinkLost) -> None:
        if event.attempt != self._attempt:
            return
        if self._status not in (SessionStatus.RESOLVING_CAPABILITIES, SessionStatus.READY):
            return
        LOGGER.warning("Link to peripheral lost")
        await self._fail()

    async def _fail(self) -> None:
        """Drop the current attempt or session and restart discovery."""
        self._attempt += 1
        await self._cancel(self._op_task)
        self._op_task = None

        handle = self._detach_handle()
        if handle is not None:
            await self._release(handle)
        self._transition(SessionStatus.FAILED)
        self._schedule_restart()

    def _schedule_restart(self) -> None:
        if not self._powered:
            LOGGER.info("Radio is off; waiting for power before scanning again")
            return
        self._restart_task = asyncio.create_task(
            self._restart_after(self._restart_delay_s),
            name="hidbridge-restart",
        )

    async def _restart_after(self, delay_s: float) -> None:
        await asyncio.sleep(delay_s)
        self._post(_Restart())

    async def _on_restart(self, event: _Restart) -> None:
        self._restart_task = None
        if self._status is SessionStatus.FAILED and self._powered:
            self._begin_scan()

    async def _on_rescan(self, event: _Rescan) -> None:
        if self._status not in (SessionStatus.IDLE, SessionStatus.FAILED):
            LOGGER.debug("Rescan ignored while %s", self._status.name)
            return
        if not self._powered:
            LOGGER.info("Rescan requested but the radio is off")
            return
        await self._cancel(self._restart_task)
        self._restart_task = None
        self._begin_scan()

    async def _on_teardown(self, event: _Teardown) -> None:
        try:
            await self._teardown(event.reason)
        finally:
            if event.done is not None and not event.done.done():
                event.done.set_result(None)

    async def _teardown(self, reason: str) -> None:
        LOGGER.info("Tearing down session: %s", reason)
        self._attempt += 1
        await self._cancel(self._restart_task)
        self._restart_task = None
        await self._stop_scan()
        await self._cancel(self._op_task)
        self._op_task = None

        handle = self._detach_handle()
        if self._status in (
            SessionStatus.CONNECTING,
            SessionStatus.RESOLVING_CAPABILITIES,
            SessionStatus.READY,
        ):
            self._transition(SessionStatus.DISCONNECTING)
        if handle is not None:
            await self._release(handle)
        self._transition(SessionStatus.IDLE)

    def _detach_handle(self) -> Any:
        """Invalidate the session (or pending connection) and return its handle."""
        handle = None
        if self._session is not None:
            self._session.invalidate()
            handle = self._session.handle
            self._session = None
        elif self._pending is not None:
            handle = self._pending[1]
        self._pending = None
        return handle

    async def _release(self, handle: Any) -> None:
        try:
            await asyncio.wait_for(
                self._transport.disconnect(handle),
                self._profile.transport.connect_timeout_s,
            )
        except asyncio.TimeoutError:
            LOGGER.warning("Disconnect timed out")
        except TransportError as exc:
            LOGGER.warning("Disconnect failed: %s", exc)

    @staticmethod
    async def _cancel(task: asyncio.Task[None] | None) -> None:
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.wait({task})
