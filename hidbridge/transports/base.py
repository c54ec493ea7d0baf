"""Transport interfaces."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any, Protocol

from hidbridge.core.model import Capabilities, DiscoveryEvent, Endpoint, PeripheralIdentity, ScanFilter


class Transport(Protocol):
    def subscribe_power(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """Register for radio power changes; returns an unsubscribe callable."""

    def scan(self, scan_filter: ScanFilter) -> AsyncIterator[DiscoveryEvent]:
        """Stream discovery events until the scan is stopped."""

    async def stop_scan(self) -> None:
        """Stop the process-wide scan. Safe to call when not scanning."""

    async def connect(
        self,
        identity: PeripheralIdentity,
        *,
        timeout_s: float,
        on_link_lost: Callable[[], None],
    ) -> Any:
        """Connect and return an opaque connection handle."""

    async def resolve_capabilities(
        self,
        handle: Any,
        *,
        service_uuid: str,
        keyboard_char_uuid: str,
        mouse_char_uuid: str,
    ) -> Capabilities:
        """Locate the keyboard and mouse characteristics on a connection."""

    async def write(self, endpoint: Endpoint, payload: bytes, *, response: bool = True) -> None:
        """Write a payload, returning once the peripheral acknowledged it."""

    async def disconnect(self, handle: Any) -> None:
        """Release a connection handle."""
