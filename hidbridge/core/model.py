"""Core data models used across loader, manager, dispatcher, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EndpointKind(str, Enum):
    KEYBOARD = "keyboard"
    MOUSE = "mouse"


class MousePolicy(str, Enum):
    COALESCE = "coalesce"
    UNBOUNDED = "unbounded"


class SessionStatus(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    RESOLVING_CAPABILITIES = "resolving_capabilities"
    READY = "ready"
    DISCONNECTING = "disconnecting"
    FAILED = "failed"


@dataclass(frozen=True)
class MatchRules:
    name: str


@dataclass(frozen=True)
class TransportSpec:
    type: str
    service_uuid: str
    keyboard_char_uuid: str
    mouse_char_uuid: str
    write_with_response: bool = True
    connect_timeout_s: float = 10.0
    write_timeout_s: float = 2.0


@dataclass(frozen=True)
class DispatchSpec:
    mouse_policy: MousePolicy = MousePolicy.COALESCE
    max_move_step: int | None = 127
    restart_delay_s: float = 1.0


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    match: MatchRules
    transport: TransportSpec
    dispatch: DispatchSpec = field(default_factory=DispatchSpec)


@dataclass(frozen=True)
class PeripheralIdentity:
    name: str | None
    address: str


@dataclass(frozen=True)
class ScanFilter:
    name: str | None = None
    service_uuids: tuple[str, ...] = ()


@dataclass(frozen=True)
class DiscoveryEvent:
    identity: PeripheralIdentity | None = None
    error: Exception | None = None


@dataclass(frozen=True)
class Capabilities:
    """Raw transport handles for the resolved characteristics."""

    keyboard: Any
    mouse: Any


@dataclass(eq=False)
class Endpoint:
    """A writable channel on the peripheral, valid only while its session lives."""

    kind: EndpointKind
    uuid: str
    connection: Any
    characteristic: Any
    valid: bool = True

    def invalidate(self) -> None:
        self.valid = False


class Session:
    """The single active connection and its resolved endpoints."""

    def __init__(
        self,
        identity: PeripheralIdentity,
        handle: Any,
        *,
        keyboard: Endpoint,
        mouse: Endpoint,
    ) -> None:
        self.identity = identity
        self.handle = handle
        self.keyboard = keyboard
        self.mouse = mouse
        self._alive = True

    @property
    def ready(self) -> bool:
        return self._alive

    def endpoint(self, kind: EndpointKind) -> Endpoint:
        return self.keyboard if kind is EndpointKind.KEYBOARD else self.mouse

    def invalidate(self) -> None:
        self._alive = False
        self.keyboard.invalidate()
        self.mouse.invalidate()

    def __repr__(self) -> str:
        state = "ready" if self._alive else "invalidated"
        return f"Session({self.identity.name!r} @ {self.identity.address}, {state})"


@dataclass(frozen=True)
class EncodedCommand:
    endpoint: Endpoint
    payload: str

    @property
    def data(self) -> bytes:
        return self.payload.encode("utf-8")


@dataclass
class DispatchStats:
    sent: int = 0
    failed: int = 0
    dropped: int = 0
    coalesced: int = 0
