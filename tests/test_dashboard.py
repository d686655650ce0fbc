from __future__ import annotations

import asyncio

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from accessory import GarageDoorAccessory
from api import MyQApi, MyQSession
from dashboard import Dashboard
from door_state import TargetDoorState
from errors import ApiError


def _dashboard(fake_api, state_manager, scheduler) -> Dashboard:
    accessory = GarageDoorAccessory(fake_api, state_manager, scheduler, name="Garage")
    return Dashboard(accessory, state_manager, scheduler, host="127.0.0.1", port=0)


@pytest.mark.asyncio
async def test_state_endpoint(fake_api, state_manager, scheduler) -> None:
    dashboard = _dashboard(fake_api, state_manager, scheduler)

    async with TestClient(TestServer(dashboard.app)) as client:
        resp = await client.get("/api/state")
        data = await resp.json()

    assert resp.status == 200
    assert data["name"] == "Garage"
    assert data["state"]["current_door_state"] == "closed"
    assert data["state"]["target_door_state"] == "closed"
    assert data["state"]["obstruction_detected"] is False


@pytest.mark.asyncio
async def test_current_endpoint_reads_live(fake_api, state_manager, scheduler) -> None:
    fake_api.attributes["doorstate"] = "9"
    dashboard = _dashboard(fake_api, state_manager, scheduler)

    async with TestClient(TestServer(dashboard.app)) as client:
        resp = await client.get("/api/current")
        data = await resp.json()

    assert resp.status == 200
    assert data == {"current_door_state": "open"}
    assert state_manager.state.target_door_state is TargetDoorState.OPEN


@pytest.mark.asyncio
async def test_current_endpoint_reports_failure(fake_api, state_manager, scheduler) -> None:
    fake_api.get_error = ApiError("14", "Device offline")
    dashboard = _dashboard(fake_api, state_manager, scheduler)

    async with TestClient(TestServer(dashboard.app)) as client:
        resp = await client.get("/api/current")
        data = await resp.json()

    assert resp.status == 502
    assert data == {"error": "Device offline"}


@pytest.mark.asyncio
async def test_obstruction_endpoint(fake_api, state_manager, scheduler) -> None:
    fake_api.attributes["isunattendedcloseallowed"] = "1"
    dashboard = _dashboard(fake_api, state_manager, scheduler)

    async with TestClient(TestServer(dashboard.app)) as client:
        resp = await client.get("/api/obstruction")
        data = await resp.json()

    assert data == {"obstruction_detected": True}


@pytest.mark.asyncio
async def test_target_command(fake_api, state_manager, scheduler) -> None:
    dashboard = _dashboard(fake_api, state_manager, scheduler)

    async with TestClient(TestServer(dashboard.app)) as client:
        resp = await client.post("/api/target", json={"target": "open"})
        data = await resp.json()

    assert resp.status == 200
    assert data["target_door_state"] == "open"
    assert fake_api.set_calls == [("desireddoorstate", 1)]
    assert scheduler.scheduled == [0]


@pytest.mark.asyncio
async def test_target_command_while_obstructed(fake_api, state_manager, scheduler) -> None:
    state_manager.update_obstruction(True)
    dashboard = _dashboard(fake_api, state_manager, scheduler)

    async with TestClient(TestServer(dashboard.app)) as client:
        resp = await client.post("/api/target", json={"target": "closed"})
        data = await resp.json()

    assert resp.status == 409
    assert "obstructed" in data["error"]
    assert fake_api.set_calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{"target": "sideways"}, {}, ["open"]])
async def test_target_command_rejects_bad_input(body, fake_api, state_manager, scheduler) -> None:
    dashboard = _dashboard(fake_api, state_manager, scheduler)

    async with TestClient(TestServer(dashboard.app)) as client:
        resp = await client.post("/api/target", json=body)

    assert resp.status == 400
    assert fake_api.set_calls == []


@pytest.mark.asyncio
async def test_events_and_diagnostics(fake_api, state_manager, scheduler) -> None:
    fake_api.attributes["doorstate"] = "4"
    dashboard = _dashboard(fake_api, state_manager, scheduler)

    async with TestClient(TestServer(dashboard.app)) as client:
        await client.get("/api/current")
        events = await (await client.get("/api/events?count=1")).json()
        diag = await (await client.get("/api/diagnostics")).json()

    (event,) = events["events"]
    assert event["event_type"] == "target_door_state"
    assert event["reactive"] is True
    assert diag["accessory"]["name"] == "Garage"
    assert diag["sse_clients"] == 0


@pytest.mark.asyncio
async def test_current_endpoint_reports_unreadable_vendor_reply(
    state_manager, scheduler
) -> None:
    async def outage(request: web.Request) -> web.Response:
        return web.Response(
            text="<html><body>503 Service Unavailable</body></html>",
            status=503,
            content_type="text/html",
        )

    vendor_app = web.Application()
    vendor_app.router.add_route("*", "/{tail:.*}", outage)

    async with TestServer(vendor_app) as vendor, aiohttp.ClientSession() as http:
        api = MyQApi(
            http,
            MyQSession(security_token="abc123", device_id=555),
            base_url=f"http://{vendor.host}:{vendor.port}",
        )
        dashboard = _dashboard(api, state_manager, scheduler)

        async with TestClient(TestServer(dashboard.app)) as client:
            resp = await client.get("/api/current")
            data = await resp.json()

    assert resp.status == 502
    assert "HTTP 503" in data["error"]


class RecordingStream:
    def __init__(self) -> None:
        self.writes: list[bytes] = []

    async def write(self, data: bytes) -> None:
        self.writes.append(data)


@pytest.mark.asyncio
async def test_state_change_broadcast_is_tracked_until_sent(
    fake_api, state_manager, scheduler
) -> None:
    dashboard = _dashboard(fake_api, state_manager, scheduler)
    stream = RecordingStream()
    dashboard._sse_clients.append(stream)

    state_manager.update_obstruction(True)
    assert len(dashboard._broadcast_tasks) == 1

    await asyncio.sleep(0.01)

    assert dashboard._broadcast_tasks == set()
    (payload,) = stream.writes
    assert payload.startswith(b"data: ")
    assert b'"obstruction_detected": true' in payload
