"""Delivery of encoded commands to the keyboard and mouse endpoints."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable

from hidbridge.core.commands import CommandMessage, MouseMove
from hidbridge.core.encoder import encode, split_move
from hidbridge.core.errors import SendError, TransportTimeoutError
from hidbridge.core.model import (
    DispatchStats,
    EncodedCommand,
    EndpointKind,
    MousePolicy,
    Session,
    SessionStatus,
)
from hidbridge.transports.base import Transport

LOGGER = logging.getLogger(__name__)

SendErrorHandler = Callable[[EncodedCommand, SendError], None]


class _Lane:
    """FIFO of pending messages for one endpoint, drained by one worker."""

    def __init__(self, kind: EndpointKind, *, coalesce: bool) -> None:
        self.kind = kind
        self.coalesce = coalesce
        self.pending: deque[CommandMessage] = deque()
        self.in_flight = False
        self.wakeup = asyncio.Event()
        self.idle = asyncio.Event()
        self.idle.set()
        self.worker: asyncio.Task[None] | None = None

    def push(self, message: CommandMessage) -> bool:
        """Queue ``message``; returns True when it was merged into a queued move."""
        if (
            self.coalesce
            and self.in_flight
            and isinstance(message, MouseMove)
            and self.pending
            and isinstance(self.pending[-1], MouseMove)
        ):
            self.pending[-1] = self.pending[-1].merged(message)
            return True
        self.pending.append(message)
        self.idle.clear()
        self.wakeup.set()
        return False

    def clear(self) -> int:
        dropped = len(self.pending)
        self.pending.clear()
        if not self.in_flight:
            self.idle.set()
        return dropped


class Dispatcher:
    """Routes command messages to their endpoint lanes.

    Keyboard and mouse each get an independent FIFO lane, so a slow mouse write
    never delays a key press and per-endpoint ordering is kept. With the
    ``coalesce`` mouse policy, moves arriving while a mouse write is still
    awaiting its acknowledgment are summed into one queued move. The
    ``unbounded`` policy queues every move, which lets latency grow without
    limit during fast gestures.
    """

    def __init__(
        self,
        session_provider: Callable[[], Session | None],
        transport: Transport,
        *,
        mouse_policy: MousePolicy = MousePolicy.COALESCE,
        max_move_step: int | None = 127,
        write_timeout_s: float = 2.0,
        with_response: bool = True,
        on_send_error: SendErrorHandler | None = None,
    ) -> None:
        self._session_provider = session_provider
        self._transport = transport
        self._max_move_step = max_move_step
        self._write_timeout_s = write_timeout_s
        self._with_response = with_response
        self._on_send_error = on_send_error
        self.mouse_policy = mouse_policy
        self.stats = DispatchStats()
        self._lanes = {
            EndpointKind.KEYBOARD: _Lane(EndpointKind.KEYBOARD, coalesce=False),
            EndpointKind.MOUSE: _Lane(
                EndpointKind.MOUSE,
                coalesce=mouse_policy is MousePolicy.COALESCE,
            ),
        }

    def submit(self, message: CommandMessage) -> bool:
        """Queue ``message`` for delivery.

        Returns False when no session is ready; the event is dropped.
        """
        session = self._session_provider()
        if session is None or not session.ready:
            self.stats.dropped += 1
            LOGGER.debug("Dropping %r: no ready session", message)
            return False

        lane = self._lanes[message.endpoint]
        if lane.push(message):
            self.stats.coalesced += 1
        self._ensure_worker(lane)
        return True

    async def drain(self) -> None:
        """Wait until every queued message has been written or dropped."""
        for lane in self._lanes.values():
            await lane.idle.wait()

    async def close(self) -> None:
        for lane in self._lanes.values():
            lane.clear()
            worker, lane.worker = lane.worker, None
            if worker is not None and not worker.done():
                worker.cancel()
                await asyncio.wait({worker})
            lane.in_flight = False
            lane.idle.set()

    def on_status_change(self, old: SessionStatus, new: SessionStatus) -> None:
        if old is SessionStatus.READY and new is not SessionStatus.READY:
            dropped = sum(lane.clear() for lane in self._lanes.values())
            if dropped:
                self.stats.dropped += dropped
                LOGGER.info("Session left ready; dropped %d queued command(s)", dropped)

    def _ensure_worker(self, lane: _Lane) -> None:
        if lane.worker is None or lane.worker.done():
            lane.worker = asyncio.create_task(
                self._drain_lane(lane),
                name=f"hidbridge-{lane.kind.value}-lane",
            )

    async def _drain_lane(self, lane: _Lane) -> None:
        while True:
            while not lane.pending:
                lane.in_flight = False
                lane.idle.set()
                lane.wakeup.clear()
                await lane.wakeup.wait()

            message = lane.pending.popleft()
            lane.in_flight = True
            try:
                await self._deliver(message)
            except Exception:
                self.stats.failed += 1
                LOGGER.exception("Delivery of %r to %s endpoint failed", message, lane.kind.value)

    async def _deliver(self, message: CommandMessage) -> None:
        parts: list[CommandMessage] = [message]
        if isinstance(message, MouseMove):
            parts = list(split_move(message, self._max_move_step))

        for part in parts:
            command = encode(part, self._session_provider())
            if command is None:
                self.stats.dropped += 1
                LOGGER.debug("Dropping %r: session no longer ready", part)
                return
            await self._send(command)

    async def _send(self, command: EncodedCommand) -> None:
        if not command.endpoint.valid:
            self.stats.dropped += 1
            LOGGER.debug("Refusing write to invalidated %s endpoint", command.endpoint.kind.value)
            return

        try:
            try:
                await asyncio.wait_for(
                    self._transport.write(
                        command.endpoint,
                        command.data,
                        response=self._with_response,
                    ),
                    self._write_timeout_s,
                )
            except asyncio.TimeoutError as exc:
                raise TransportTimeoutError(
                    f"No acknowledgment for '{command.payload}' within {self._write_timeout_s}s"
                ) from exc
        except SendError as exc:
            self.stats.failed += 1
            LOGGER.warning("Send to %s endpoint failed: %s", command.endpoint.kind.value, exc)
            if self._on_send_error is not None:
                self._on_send_error(command, exc)
            return

        self.stats.sent += 1
        LOGGER.debug("Sent %s -> %s", command.payload, command.endpoint.kind.value)
