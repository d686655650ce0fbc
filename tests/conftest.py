from __future__ import annotations

import asyncio
from typing import Any

import pytest

from api import MyQApi, MyQSession
from config import PollConfig
from scheduler import PollScheduler
from state import StateManager


class FakeRequests:
    """Stands in for MyQApi._request and replays canned responses per path."""

    def __init__(self, responses: dict[str, Any]) -> None:
        self.responses = responses
        self.calls: list[tuple[str, str, dict]] = []

    async def __call__(self, method: str, path: str, **kwargs) -> dict:
        self.calls.append((method, path, kwargs))
        await asyncio.sleep(0)
        response = self.responses[path]
        if isinstance(response, list):
            response = response.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def paths(self) -> list[str]:
        return [path for _, path, _ in self.calls]


class FakeAttributeApi:
    """Attribute-level stand-in for MyQApi used by accessory tests."""

    def __init__(self, attributes: dict[str, str] | None = None) -> None:
        self.attributes = dict(attributes or {})
        self.get_calls: list[str] = []
        self.set_calls: list[tuple[str, Any]] = []
        self.get_error: Exception | None = None
        self.set_error: Exception | None = None

    async def async_get_attribute(self, name, device_id=None):
        self.get_calls.append(name)
        if self.get_error is not None:
            raise self.get_error
        return self.attributes[name]

    async def async_set_attribute(self, name, value, device_id=None):
        self.set_calls.append((name, value))
        if self.set_error is not None:
            raise self.set_error
        return {"ReturnCode": "0"}

    def get_diagnostics(self) -> dict:
        return {"fake": True}


class RecordingScheduler(PollScheduler):
    """Records requested delays instead of arming real timers."""

    def __init__(self) -> None:
        super().__init__(PollConfig())
        self.scheduled: list[float] = []
        self.cancelled = 0

    def schedule(self, delay: float) -> None:
        self.cancel()
        self._last_interval = delay
        self.scheduled.append(delay)

    def cancel(self) -> None:
        self.cancelled += 1
        super().cancel()


def door_device(device_id: int, **attributes: str) -> dict:
    return {
        "MyQDeviceId": device_id,
        "MyQDeviceTypeId": 2,
        "Attributes": [
            {"AttributeDisplayName": name, "Value": value}
            for name, value in attributes.items()
        ],
    }


def gateway_device(device_id: int, type_id: int = 1) -> dict:
    return {"MyQDeviceId": device_id, "MyQDeviceTypeId": type_id, "Attributes": []}


def make_api(responses: dict[str, Any], **session_kwargs) -> tuple[MyQApi, FakeRequests]:
    session = MyQSession(username="user@example.com", password="hunter2", **session_kwargs)
    api = MyQApi(None, session)  # type: ignore[arg-type]
    requests = FakeRequests(responses)
    api._request = requests  # type: ignore[method-assign]
    return api, requests


@pytest.fixture
def state_manager() -> StateManager:
    return StateManager()


@pytest.fixture
def fake_api() -> FakeAttributeApi:
    return FakeAttributeApi({"doorstate": "2", "isunattendedcloseallowed": "0"})


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()
