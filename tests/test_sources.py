from __future__ import annotations

import pytest

from hidbridge.core.commands import Key, MouseMove
from hidbridge.core.errors import CommandError
from hidbridge.core.sources import KeySource, PointerGestureTracker


def test_gesture_emits_deltas_between_samples() -> None:
    events = []
    tracker = PointerGestureTracker(events.append)

    tracker.sample(10, 10)
    tracker.begin(100, 100)
    tracker.sample(103, 98)
    tracker.sample(103, 98)
    tracker.sample(101.5, 99)
    tracker.end()
    tracker.sample(0, 0)

    assert events == [MouseMove(3, -2), MouseMove(-1.5, 1)]
    assert not tracker.active


def test_gesture_sensitivity_scales_deltas() -> None:
    events = []
    tracker = PointerGestureTracker(events.append, sensitivity=2.0)

    tracker.begin(0, 0)
    tracker.sample(1.5, -1)

    assert tracker.active
    assert events == [MouseMove(3.0, -2.0)]


def test_type_text_maps_whitespace_to_named_keys() -> None:
    events = []
    KeySource(events.append).type_text("hi there\r\n")

    assert events == [
        Key("h"),
        Key("i"),
        Key("space"),
        Key("t"),
        Key("h"),
        Key("e"),
        Key("r"),
        Key("e"),
        Key("enter"),
    ]


def test_key_source_press_and_combo() -> None:
    events = []
    source = KeySource(events.append)

    source.press("esc")
    source.combo("alt", "x")

    assert events == [Key("esc"), Key("alt+x")]
    with pytest.raises(CommandError):
        source.combo("meta", "x")
