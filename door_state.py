"""Translation between MyQ door state codes and garage door accessory states.

The accessory side follows the HomeKit GarageDoorOpener numbering.
"""

from __future__ import annotations

from enum import IntEnum

from errors import DoorStateError


class CurrentDoorState(IntEnum):
    OPEN = 0
    CLOSED = 1
    OPENING = 2
    CLOSING = 3


class TargetDoorState(IntEnum):
    OPEN = 0
    CLOSED = 1


# Door is moving but the API no longer says which way
AMBIGUOUS = -1

API_TO_CURRENT = {
    # Legacy values, kept in case the regression is reverted
    1: CurrentDoorState.OPEN,
    4: CurrentDoorState.OPENING,
    5: CurrentDoorState.CLOSING,
    2: CurrentDoorState.CLOSED,
    9: CurrentDoorState.OPEN,
    0: AMBIGUOUS,
}

TARGET_TO_API = {
    TargetDoorState.OPEN: 1,
    TargetDoorState.CLOSED: 0,
}

CURRENT_TO_TARGET = {
    CurrentDoorState.OPEN: TargetDoorState.OPEN,
    CurrentDoorState.CLOSED: TargetDoorState.CLOSED,
    CurrentDoorState.OPENING: TargetDoorState.OPEN,
    CurrentDoorState.CLOSING: TargetDoorState.CLOSED,
}

OBSTRUCTION_LABELS = {
    False: "not obstructed",
    True: "obstructed",
}

CURRENT_LABELS = {
    CurrentDoorState.OPEN: "open",
    CurrentDoorState.CLOSED: "closed",
    CurrentDoorState.OPENING: "opening",
    CurrentDoorState.CLOSING: "closing",
}

TARGET_LABELS = {
    TargetDoorState.OPEN: "open",
    TargetDoorState.CLOSED: "closed",
}

_TARGET_WORDS = {
    "open": TargetDoorState.OPEN,
    "opened": TargetDoorState.OPEN,
    "close": TargetDoorState.CLOSED,
    "closed": TargetDoorState.CLOSED,
}


def api_to_current(
    code: int | str, pending_target: TargetDoorState | None = None
) -> CurrentDoorState:
    """Map a MyQ ``doorstate`` value to a current door state.

    Code 0 only says the door is moving.  If a command is in flight we
    trust its direction, otherwise we guess the door is closing.
    """
    try:
        state = API_TO_CURRENT[int(code)]
    except (KeyError, TypeError, ValueError):
        raise DoorStateError(f"Unknown door state ({code})") from None

    if state == AMBIGUOUS:
        if pending_target == TargetDoorState.OPEN:
            return CurrentDoorState.OPENING
        return CurrentDoorState.CLOSING
    return state


def target_to_api(target: TargetDoorState) -> int:
    return TARGET_TO_API[TargetDoorState(target)]


def current_to_target(current: CurrentDoorState) -> TargetDoorState:
    return CURRENT_TO_TARGET[CurrentDoorState(current)]


def obstruction_from_api(value: str) -> bool:
    """``isunattendedcloseallowed`` of "0" means nothing is in the way."""
    return str(value) != "0"


def describe(value) -> str:
    """Human-readable label for a state value, used in log lines."""
    if isinstance(value, bool):
        return OBSTRUCTION_LABELS[value]
    if isinstance(value, TargetDoorState):
        return TARGET_LABELS[value]
    if isinstance(value, CurrentDoorState):
        return CURRENT_LABELS[value]
    return str(value)


def parse_target(text: str | int) -> TargetDoorState:
    """Parse a target given as "open"/"closed" or its numeric value."""
    if isinstance(text, int) and not isinstance(text, bool):
        return TargetDoorState(text)
    word = str(text).strip().lower()
    if word in _TARGET_WORDS:
        return _TARGET_WORDS[word]
    if word.isdigit():
        return TargetDoorState(int(word))
    raise ValueError(f"Invalid target door state: {text!r}")
