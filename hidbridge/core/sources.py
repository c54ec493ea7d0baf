"""Input event sources feeding semantic events into a sink."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from hidbridge.core.commands import CommandMessage, Key, MouseMove

Sink = Callable[[CommandMessage], Any]


class PointerGestureTracker:
    """Turns absolute pointer positions of a gesture into relative moves."""

    def __init__(self, sink: Sink, *, sensitivity: float = 1.0) -> None:
        self._sink = sink
        self._sensitivity = sensitivity
        self._last: tuple[float, float] | None = None

    @property
    def active(self) -> bool:
        return self._last is not None

    def begin(self, x: float, y: float) -> None:
        self._last = (x, y)

    def sample(self, x: float, y: float) -> None:
        if self._last is None:
            return
        last_x, last_y = self._last
        self._last = (x, y)
        self.sample_delta(x - last_x, y - last_y)

    def sample_delta(self, dx: float, dy: float) -> None:
        if dx == 0 and dy == 0:
            return
        self._sink(MouseMove(dx * self._sensitivity, dy * self._sensitivity))

    def end(self) -> None:
        self._last = None


class KeySource:
    def __init__(self, sink: Sink) -> None:
        self._sink = sink

    def press(self, code: str) -> None:
        self._sink(Key(code))

    def combo(self, modifier: str, key: str) -> None:
        self._sink(Key.combo(modifier, key))

    def type_text(self, text: str) -> None:
        for char in text:
            if char == "\r":
                continue
            if char == "\n":
                self._sink(Key("enter"))
            elif char == " ":
                self._sink(Key("space"))
            else:
                self._sink(Key(char))
