"""Garage door accessory backed by the MyQ cloud API.

Keeps the accessory's three properties (current door state, target door
state, obstruction) in sync with the remote device through an adaptive
polling loop, and turns target state commands into MyQ attribute writes.

Since an API regression the MyQ ``doorstate`` attribute reports 0 for
both opening and closing.  While a command is in flight we remember its
direction (the pending target) and use it to tell the two apart; without
one we assume the door is closing.  That is a guess, not something the
API guarantees.
"""

from __future__ import annotations

import asyncio
import logging

from api import MyQApi
from door_state import (
    CurrentDoorState,
    TargetDoorState,
    api_to_current,
    describe,
    obstruction_from_api,
    target_to_api,
)
from errors import ObstructionError
from scheduler import PollScheduler
from state import StateManager

_LOGGER = logging.getLogger(__name__)

ATTR_DOOR_STATE = "doorstate"
ATTR_DESIRED_DOOR_STATE = "desireddoorstate"
ATTR_OBSTRUCTION = "isunattendedcloseallowed"


class GarageDoorAccessory:
    """A single garage door opener exposed to the host."""

    def __init__(
        self,
        api: MyQApi,
        state_manager: StateManager,
        scheduler: PollScheduler,
        name: str = "Garage Door",
    ):
        self.name = name
        self._api = api
        self._state = state_manager
        self._scheduler = scheduler
        self._pending_target: TargetDoorState | None = None
        self._running = False
        self._stopped = False
        self._scheduler.set_poll_callback(self.async_poll)

    @property
    def pending_target(self) -> TargetDoorState | None:
        return self._pending_target

    @property
    def state_manager(self) -> StateManager:
        return self._state

    def start(self) -> None:
        """Start the polling loop with an immediate first tick."""
        self._stopped = False
        self._running = True
        _LOGGER.info("Starting accessory %s", self.name)
        self._scheduler.schedule(0)

    def stop(self) -> None:
        """Stop polling; in-flight host calls are left alone."""
        self._stopped = True
        self._running = False
        self._scheduler.stop()
        _LOGGER.info("Accessory %s stopped", self.name)

    def _schedule(self, delay: float) -> None:
        if not self._stopped:
            self._scheduler.schedule(delay)

    async def async_read_current_door_state(
        self, source: str = "read"
    ) -> CurrentDoorState:
        """Read the door state from MyQ and store it."""
        try:
            value = await self._api.async_get_attribute(ATTR_DOOR_STATE)
            current = api_to_current(value, self._pending_target)
        except Exception as e:
            _LOGGER.error("Failed to read door state: %s", e)
            raise
        self._state.update_current_door_state(current, source=source)
        return current

    async def async_read_obstruction_state(self, source: str = "read") -> bool:
        """Read the obstruction flag from MyQ and store it."""
        try:
            value = await self._api.async_get_attribute(ATTR_OBSTRUCTION)
        except Exception as e:
            _LOGGER.error("Failed to read obstruction state: %s", e)
            raise
        obstructed = obstruction_from_api(value)
        self._state.update_obstruction(obstructed, source=source)
        return obstructed

    async def async_command_target_door_state(
        self, value: TargetDoorState
    ) -> None:
        """Ask MyQ to move the door towards ``value``.

        Refused without touching the network while an obstruction is
        detected.
        """
        value = TargetDoorState(value)
        _LOGGER.info("Setting desired door state to %s", describe(value))

        if self._state.state.obstruction_detected:
            _LOGGER.error("Cannot close door because it is obstructed")
            raise ObstructionError("Cannot close door because it is obstructed")

        self._pending_target = value
        try:
            await self._api.async_set_attribute(
                ATTR_DESIRED_DOOR_STATE, target_to_api(value)
            )
        except Exception as e:
            _LOGGER.error("Failed to set desired door state: %s", e)
            raise

        self._state.update_target_door_state(value, source="command")
        self._schedule(0)
        self._pending_target = None

    async def async_poll(self) -> float:
        """Run one poll tick and schedule the next; returns its delay.

        Never raises: a failed tick is logged and retried after the idle
        interval.
        """
        self._scheduler.cancel()
        delay = self._scheduler.idle_interval
        try:
            await asyncio.gather(
                self.async_read_current_door_state(source="poll"),
                self.async_read_obstruction_state(source="poll"),
            )
            state = self._state.state
            delay = self._scheduler.next_interval(
                state.current_door_state, state.target_door_state
            )
        except Exception as e:
            _LOGGER.error("Poll failed: %s", e)

        self._scheduler.mark_polled()
        self._schedule(delay)
        return delay

    def get_diagnostics(self) -> dict:
        """Get diagnostic info about the accessory."""
        return {
            "name": self.name,
            "running": self._running,
            "pending_target": (
                describe(self._pending_target)
                if self._pending_target is not None else None
            ),
            "api": self._api.get_diagnostics(),
        }
