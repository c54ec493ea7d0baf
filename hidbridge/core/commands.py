"""Semantic input events understood by the peripheral.

The peripheral splits a key code at its first ``+`` into a modifier part and
a key part, and it only tracks the left button for press/release drags, so
combos carry a single modifier and drags are limited to the left button.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import ClassVar, Union

from hidbridge.core.errors import CommandError
from hidbridge.core.model import EndpointKind

MODIFIERS = ("ctrl", "shift", "alt", "win")
SPECIAL_KEYS = frozenset(
    {
        "enter",
        "space",
        "tab",
        "esc",
        "backspace",
        "delete",
        "insert",
        "home",
        "end",
        "pageup",
        "pagedown",
    }
)
MOUSE_BUTTONS = ("left", "right", "middle")
DRAG_BUTTONS = ("left",)


def _check_button(button: str, allowed: tuple[str, ...] = MOUSE_BUTTONS) -> None:
    if button not in allowed:
        raise CommandError(
            f"Unknown mouse button '{button}'. Allowed: {', '.join(allowed)}"
        )


def _check_finite(value: float, *, context: str) -> None:
    if not math.isfinite(value):
        raise CommandError(f"{context} must be finite, got {value!r}")


@dataclass(frozen=True)
class Key:
    code: str
    endpoint: ClassVar[EndpointKind] = EndpointKind.KEYBOARD

    def __post_init__(self) -> None:
        if not self.code:
            raise CommandError("Key code must not be empty")
        if "\n" in self.code or "\r" in self.code:
            raise CommandError("Key code must not contain line breaks")
        modifier, sep, rest = self.code.partition("+")
        if sep and modifier in MODIFIERS and rest.partition("+")[0] in MODIFIERS:
            raise CommandError(f"Key code '{self.code}' chains modifiers; only one is supported")

    @classmethod
    def combo(cls, modifier: str, key: str) -> Key:
        """Build a modifier chord such as ``Key.combo("ctrl", "c")`` -> ``ctrl+c``.

        Only one modifier is supported, and the key must be a single
        character; the peripheral drops modifiers on named keys.
        """
        if modifier not in MODIFIERS:
            raise CommandError(
                f"Unknown modifier '{modifier}'. Allowed: {', '.join(MODIFIERS)}"
            )
        if len(key) != 1 or key == "+":
            raise CommandError(f"A key combo needs a single-character key, got '{key}'")
        return cls(f"{modifier}+{key}")


@dataclass(frozen=True)
class MouseMove:
    dx: float
    dy: float
    endpoint: ClassVar[EndpointKind] = EndpointKind.MOUSE

    def __post_init__(self) -> None:
        _check_finite(self.dx, context="dx")
        _check_finite(self.dy, context="dy")

    def merged(self, other: MouseMove) -> MouseMove:
        return MouseMove(self.dx + other.dx, self.dy + other.dy)


@dataclass(frozen=True)
class MouseClick:
    button: str = "left"
    endpoint: ClassVar[EndpointKind] = EndpointKind.MOUSE

    def __post_init__(self) -> None:
        _check_button(self.button)


@dataclass(frozen=True)
class MouseDoubleClick:
    endpoint: ClassVar[EndpointKind] = EndpointKind.MOUSE


@dataclass(frozen=True)
class MouseScroll:
    amount: float
    endpoint: ClassVar[EndpointKind] = EndpointKind.MOUSE

    def __post_init__(self) -> None:
        _check_finite(self.amount, context="Scroll amount")


@dataclass(frozen=True)
class MousePress:
    button: str = "left"
    endpoint: ClassVar[EndpointKind] = EndpointKind.MOUSE

    def __post_init__(self) -> None:
        _check_button(self.button, DRAG_BUTTONS)


@dataclass(frozen=True)
class MouseRelease:
    button: str = "left"
    endpoint: ClassVar[EndpointKind] = EndpointKind.MOUSE

    def __post_init__(self) -> None:
        _check_button(self.button, DRAG_BUTTONS)


CommandMessage = Union[
    Key,
    MouseMove,
    MouseClick,
    MouseDoubleClick,
    MouseScroll,
    MousePress,
    MouseRelease,
]
