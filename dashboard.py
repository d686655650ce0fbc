"""HTTP surface for the garage door accessory.

Exposes the three accessory characteristics as JSON endpoints and pushes
every state change to browsers over Server-Sent Events (SSE).
"""

from __future__ import annotations

import asyncio
import json
import logging

import aiohttp
from aiohttp import web

from accessory import GarageDoorAccessory
from door_state import describe, parse_target
from errors import MyQError, ObstructionError
from scheduler import PollScheduler
from state import GarageDoorState, StateEvent, StateManager

_LOGGER = logging.getLogger(__name__)

SSE_HEARTBEAT_SEC = 30


def _sse_frame(data: dict) -> bytes:
    return f"data: {json.dumps(data)}\n\n".encode("utf-8")


class Dashboard:
    """Web server with SSE for live updates."""

    def __init__(
        self,
        accessory: GarageDoorAccessory,
        state_manager: StateManager,
        scheduler: PollScheduler,
        host: str = "0.0.0.0",
        port: int = 8098,
    ):
        self._accessory = accessory
        self._state = state_manager
        self._scheduler = scheduler
        self._host = host
        self._port = port
        self._app = web.Application()
        self._runner: web.AppRunner | None = None
        self._sse_clients: list[web.StreamResponse] = []
        self._broadcast_tasks: set[asyncio.Future] = set()

        # Register state change callback for SSE
        self._unsubscribe = self._state.subscribe(self._on_state_change)

        # Setup routes
        self._app.router.add_get("/api/state", self._handle_state)
        self._app.router.add_get("/api/current", self._handle_current)
        self._app.router.add_get("/api/obstruction", self._handle_obstruction)
        self._app.router.add_post("/api/target", self._handle_target)
        self._app.router.add_get("/api/events", self._handle_events)
        self._app.router.add_get("/api/events/stream", self._handle_sse)
        self._app.router.add_get("/api/diagnostics", self._handle_diagnostics)

    @property
    def app(self) -> web.Application:
        return self._app

    def _on_state_change(self, state: GarageDoorState, event: StateEvent) -> None:
        """Push state update to all SSE clients."""
        if not self._sse_clients:
            return
        data = {
            "type": "state_update",
            "state": state.to_dict(),
            "event": event.to_dict(),
        }
        task = asyncio.ensure_future(self._broadcast_sse(data))
        self._broadcast_tasks.add(task)
        task.add_done_callback(self._broadcast_tasks.discard)

    async def _broadcast_sse(self, data: dict) -> None:
        """Send data to all connected SSE clients."""
        payload = _sse_frame(data)
        dead_clients = []

        for client in self._sse_clients:
            try:
                await client.write(payload)
            except (ConnectionResetError, ConnectionAbortedError, RuntimeError):
                dead_clients.append(client)

        for client in dead_clients:
            if client in self._sse_clients:
                self._sse_clients.remove(client)

    @staticmethod
    def _error(message: str, status: int) -> web.Response:
        return web.json_response({"error": message}, status=status)

    async def _handle_state(self, request: web.Request) -> web.Response:
        """Return current state as JSON."""
        return web.json_response({
            "name": self._accessory.name,
            "state": self._state.state.to_dict(),
            "scheduler": self._scheduler.get_status(),
        })

    async def _handle_current(self, request: web.Request) -> web.Response:
        """Read the current door state from MyQ."""
        try:
            current = await self._accessory.async_read_current_door_state()
        except (MyQError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            return self._error(str(e) or type(e).__name__, 502)
        return web.json_response({"current_door_state": describe(current)})

    async def _handle_obstruction(self, request: web.Request) -> web.Response:
        """Read the obstruction flag from MyQ."""
        try:
            obstructed = await self._accessory.async_read_obstruction_state()
        except (MyQError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            return self._error(str(e) or type(e).__name__, 502)
        return web.json_response({"obstruction_detected": obstructed})

    async def _handle_target(self, request: web.Request) -> web.Response:
        """Command a new target door state."""
        try:
            body = await request.json()
            target = parse_target(body["target"])
        except (ValueError, KeyError, TypeError) as e:
            return self._error(f"Invalid request: {e}", 400)

        try:
            await self._accessory.async_command_target_door_state(target)
        except ObstructionError as e:
            return self._error(str(e), 409)
        except (MyQError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            return self._error(str(e) or type(e).__name__, 502)

        return web.json_response({
            "target_door_state": describe(target),
            "state": self._state.state.to_dict(),
        })

    async def _handle_events(self, request: web.Request) -> web.Response:
        """Return recent events as JSON."""
        try:
            count = int(request.query.get("count", "50"))
        except ValueError:
            return self._error("count must be an integer", 400)
        return web.json_response({
            "events": self._state.event_log.recent(count),
        })

    async def _handle_diagnostics(self, request: web.Request) -> web.Response:
        """Return diagnostics info."""
        return web.json_response({
            "scheduler": self._scheduler.get_status(),
            "sse_clients": len(self._sse_clients),
            "accessory": self._accessory.get_diagnostics(),
        })

    async def _handle_sse(self, request: web.Request) -> web.StreamResponse:
        """Handle SSE connection from browser."""
        response = web.StreamResponse(
            status=200,
            reason="OK",
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "Access-Control-Allow-Origin": "*",
            },
        )
        await response.prepare(request)

        # Send current state immediately
        initial = {
            "type": "initial_state",
            "state": self._state.state.to_dict(),
            "events": self._state.event_log.recent(20),
        }
        await response.write(_sse_frame(initial))

        self._sse_clients.append(response)
        _LOGGER.debug("SSE client connected (%d total)", len(self._sse_clients))

        try:
            # Keep connection alive with heartbeats
            while True:
                await asyncio.sleep(SSE_HEARTBEAT_SEC)
                try:
                    await response.write(b": heartbeat\n\n")
                except (ConnectionResetError, ConnectionAbortedError):
                    break
        except asyncio.CancelledError:
            pass
        finally:
            if response in self._sse_clients:
                self._sse_clients.remove(response)
            _LOGGER.debug(
                "SSE client disconnected (%d remaining)", len(self._sse_clients)
            )

        return response

    async def start(self) -> None:
        """Start the web server."""
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        _LOGGER.info(
            "Dashboard running at http://%s:%d",
            self._host,
            self._port,
        )

    async def stop(self) -> None:
        """Stop the web server."""
        self._unsubscribe()
        for task in list(self._broadcast_tasks):
            task.cancel()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        _LOGGER.info("Dashboard stopped")
