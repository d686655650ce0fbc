"""State management and event logging for the garage door accessory."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from door_state import (
    CurrentDoorState,
    TargetDoorState,
    current_to_target,
    describe,
)

_LOGGER = logging.getLogger(__name__)


@dataclass
class GarageDoorState:
    """Host-facing state of the garage door opener."""

    current_door_state: CurrentDoorState = CurrentDoorState.CLOSED
    target_door_state: TargetDoorState = TargetDoorState.CLOSED
    obstruction_detected: bool = False
    last_updated: str = ""
    last_activity: str = ""
    last_activity_type: str = ""       # open, closed, opening, closing, obstructed

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["current_door_state"] = self.current_door_state.name.lower()
        data["target_door_state"] = self.target_door_state.name.lower()
        return data


@dataclass
class StateEvent:
    """A single state change event."""

    timestamp: str
    event_type: str          # current_door_state, target_door_state, obstruction
    old_value: str
    new_value: str
    source: str = "poll"     # poll, read, command, reactive
    reactive: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class EventLog:
    """Bounded in-memory log of state change events."""

    def __init__(self, max_events: int = 500):
        self._events: deque[StateEvent] = deque(maxlen=max_events)

    def add(self, event: StateEvent) -> None:
        self._events.append(event)

    def recent(self, count: int = 50) -> list[dict]:
        """Get the most recent events."""
        if count <= 0:
            return []
        return [e.to_dict() for e in list(self._events)[-count:]]

    def __len__(self) -> int:
        return len(self._events)


StateCallback = Callable[[GarageDoorState, StateEvent], None]


class StateManager:
    """Holds the accessory state and notifies subscribers of changes.

    A change of the current door state immediately realigns the target
    door state.  That follow-up write is flagged ``reactive`` so that
    nothing downstream mistakes it for a user command.
    """

    def __init__(self, max_events: int = 500):
        self.state = GarageDoorState()
        self.event_log = EventLog(max_events)
        self._callbacks: list[StateCallback] = []

    def subscribe(self, callback: StateCallback) -> Callable[[], None]:
        """Register a callback for state changes; returns an unsubscribe."""
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    def _notify(self, event: StateEvent) -> None:
        """Notify all registered callbacks of a state change."""
        for cb in list(self._callbacks):
            try:
                cb(self.state, event)
            except Exception as e:
                _LOGGER.error("Error in state callback: %s", e)

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def _record(
        self,
        event_type: str,
        old: Any,
        new: Any,
        source: str,
        reactive: bool = False,
    ) -> None:
        event = StateEvent(
            timestamp=self._now(),
            event_type=event_type,
            old_value=describe(old),
            new_value=describe(new),
            source=source,
            reactive=reactive,
        )
        self.state.last_updated = event.timestamp
        self.event_log.add(event)
        _LOGGER.info(
            "%s changed from %s to %s (via %s)",
            event_type,
            event.old_value,
            event.new_value,
            source,
        )
        self._notify(event)

    def update_current_door_state(
        self, new_state: CurrentDoorState, source: str = "poll"
    ) -> bool:
        """Update current door state, returns True if changed."""
        new_state = CurrentDoorState(new_state)
        if new_state == self.state.current_door_state:
            return False
        old = self.state.current_door_state
        self.state.current_door_state = new_state
        self.state.last_activity = self._now()
        self.state.last_activity_type = describe(new_state)
        self._record("current_door_state", old, new_state, source)

        self.update_target_door_state(
            current_to_target(new_state), source="reactive", reactive=True
        )
        return True

    def update_target_door_state(
        self,
        new_state: TargetDoorState,
        source: str = "command",
        *,
        reactive: bool = False,
    ) -> bool:
        """Update target door state, returns True if changed.

        Only records the value; sending a command is the accessory's job.
        """
        new_state = TargetDoorState(new_state)
        if new_state == self.state.target_door_state:
            return False
        old = self.state.target_door_state
        self.state.target_door_state = new_state
        self._record("target_door_state", old, new_state, source, reactive)
        return True

    def update_obstruction(self, obstructed: bool, source: str = "poll") -> bool:
        """Update obstruction flag, returns True if changed."""
        obstructed = bool(obstructed)
        if obstructed == self.state.obstruction_detected:
            return False
        old = self.state.obstruction_detected
        self.state.obstruction_detected = obstructed
        if obstructed:
            self.state.last_activity = self._now()
            self.state.last_activity_type = "obstructed"
        self._record("obstruction", old, obstructed, source)
        return True
