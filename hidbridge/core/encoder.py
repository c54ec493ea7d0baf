"""Command encoding between semantic input events and the peripheral wire format.

Every message maps to exactly one endpoint and one text payload:

    Key("A")            -> keyboard  "key:A"
    MouseMove(3.5, -2.4) -> mouse     "move:4,-2"

Floating-point deltas are rounded to the nearest integer with ties going away
from zero, so ``2.5`` becomes ``3`` and ``-2.5`` becomes ``-3``.
"""

from __future__ import annotations

import math

from hidbridge.core.commands import (
    MOUSE_BUTTONS,
    CommandMessage,
    Key,
    MouseClick,
    MouseDoubleClick,
    MouseMove,
    MousePress,
    MouseRelease,
    MouseScroll,
)
from hidbridge.core.errors import CommandError
from hidbridge.core.model import EncodedCommand, Session


def round_half_away(value: float) -> int:
    magnitude = abs(value)
    whole = math.floor(magnitude)
    if magnitude - whole >= 0.5:
        whole += 1
    return whole if value >= 0 else -whole


def wire_payload(message: CommandMessage) -> str:
    if isinstance(message, Key):
        return f"key:{message.code}"
    if isinstance(message, MouseMove):
        return f"move:{round_half_away(message.dx)},{round_half_away(message.dy)}"
    if isinstance(message, MouseClick):
        return message.button
    if isinstance(message, MouseDoubleClick):
        return "doubleclick"
    if isinstance(message, MouseScroll):
        return f"scroll:{round_half_away(message.amount)}"
    if isinstance(message, MousePress):
        return f"press:{message.button}"
    if isinstance(message, MouseRelease):
        return f"release:{message.button}"
    raise CommandError(f"Unsupported command {message!r}")


def encode(message: CommandMessage, session: Session | None) -> EncodedCommand | None:
    """Encode ``message`` for the current session.

    Returns None when there is no ready session; events arriving before a
    connection or after a disconnect are dropped rather than treated as errors.
    """
    if session is None or not session.ready:
        return None
    return EncodedCommand(
        endpoint=session.endpoint(message.endpoint),
        payload=wire_payload(message),
    )


def split_move(message: MouseMove, max_step: int | None) -> list[MouseMove]:
    """Split a move whose rounded components exceed ``max_step``.

    The parts sum to the rounded original delta.
    """
    dx = round_half_away(message.dx)
    dy = round_half_away(message.dy)
    if max_step is None or (abs(dx) <= max_step and abs(dy) <= max_step):
        return [message]

    steps = max(-(-abs(dx) // max_step), -(-abs(dy) // max_step))
    parts: list[MouseMove] = []
    done_x = done_y = 0
    for index in range(1, steps + 1):
        target_x = dx * index // steps
        target_y = dy * index // steps
        parts.append(MouseMove(float(target_x - done_x), float(target_y - done_y)))
        done_x, done_y = target_x, target_y
    return parts


def _parse_number(text: str, *, context: str) -> float:
    try:
        value = float(text)
    except ValueError as exc:
        raise CommandError(f"{context} must be a number, got '{text}'") from exc
    if not math.isfinite(value):
        raise CommandError(f"{context} must be finite, got '{text}'")
    return value


def parse_command(text: str) -> CommandMessage:
    """Parse one line of the wire vocabulary back into a command message."""
    line = text.strip()
    if not line:
        raise CommandError("Empty command")

    head, sep, rest = line.partition(":")
    if sep:
        if head == "key":
            return Key(rest)
        if head == "move":
            parts = rest.split(",")
            if len(parts) != 2:
                raise CommandError(f"Expected 'move:<dx>,<dy>', got '{line}'")
            return MouseMove(
                _parse_number(parts[0].strip(), context="dx"),
                _parse_number(parts[1].strip(), context="dy"),
            )
        if head == "scroll":
            return MouseScroll(_parse_number(rest.strip(), context="scroll amount"))
        if head == "press":
            return MousePress(rest)
        if head == "release":
            return MouseRelease(rest)
        raise CommandError(f"Unknown command '{head}'")

    if line in MOUSE_BUTTONS:
        return MouseClick(line)
    if line == "doubleclick":
        return MouseDoubleClick()
    raise CommandError(f"Unknown command '{line}'")
