#!/usr/bin/env python3
"""MyQ Garage Door Bridge – Main Entry Point.

Runs the garage door accessory against the MyQ cloud API and serves its
state over HTTP.

Usage:
    python3 app.py                     # Run the accessory and dashboard
    python3 app.py --auth-only         # Log in and list devices
    python3 app.py --poll-once         # Read door and obstruction state, then exit
    python3 app.py --open              # Open the door and wait for it
    python3 app.py --close             # Close the door and wait for it
    python3 app.py --setup             # Interactive setup wizard

Environment:
    MYQ_USERNAME    MyQ account email (overrides config)
    MYQ_PASSWORD    MyQ account password (overrides config)
    MYQ_DEVICE_ID   Device to control (overrides config)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal

import aiohttp

from accessory import GarageDoorAccessory
from api import GATEWAY_TYPE_IDS, MyQApi, MyQSession
from config import Config
from dashboard import Dashboard
from door_state import TargetDoorState, describe
from errors import MyQError
from scheduler import PollScheduler
from state import StateManager

_LOGGER = logging.getLogger(__name__)

SETTLE_TIMEOUT_SEC = 60


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    # Reduce noise from libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def build_api(config: Config, http_session: aiohttp.ClientSession) -> MyQApi:
    return MyQApi(
        http_session,
        MyQSession(
            username=config.username,
            password=config.password,
            security_token=config.security_token or None,
            device_id=config.device_id,
        ),
        base_url=config.base_url,
    )


def build_accessory(
    config: Config, http_session: aiohttp.ClientSession
) -> GarageDoorAccessory:
    return GarageDoorAccessory(
        build_api(config, http_session),
        StateManager(),
        PollScheduler(config.poll),
        name=config.name,
    )


def _has_credentials(config: Config) -> bool:
    if config.security_token or (config.username and config.password):
        return True
    print("❌ MyQ credentials not configured.")
    print("   Set them in the config, via MYQ_USERNAME/MYQ_PASSWORD, or use --setup")
    return False


def _device_name(device: dict) -> str:
    for attribute in device.get("Attributes") or []:
        if attribute.get("AttributeDisplayName") == "desc":
            return attribute.get("Value") or ""
    return ""


async def cmd_auth(config: Config) -> None:
    """Log in to MyQ and list the account's devices."""
    if not _has_credentials(config):
        return

    print("\n🔐 Logging in to MyQ...\n")
    async with aiohttp.ClientSession() as session:
        api = build_api(config, session)
        try:
            devices = await api.async_with_retry_on_expiry(api.async_get_device_list)
        except (MyQError, aiohttp.ClientError) as e:
            print(f"❌ Login failed: {e}")
            return

        print(f"✅ Login successful. Found {len(devices)} device(s):\n")
        for device in devices:
            kind = (
                "gateway"
                if device.get("MyQDeviceTypeId") in GATEWAY_TYPE_IDS
                else "controllable"
            )
            print(
                f"   - {device.get('MyQDeviceId')} "
                f"(type {device.get('MyQDeviceTypeId')}, {kind}) "
                f"{_device_name(device)}"
            )

        if config.device_id:
            print(f"\n   Pinned device id: {config.device_id}")
            return
        try:
            device_id = api.resolve_device_id(devices)
        except MyQError as e:
            print(f"\n⚠️  {e}")
            print("   Pin one with device_id in the config or MYQ_DEVICE_ID.")
            return
        print(f"\n   Auto-selected device id: {device_id}")


async def cmd_poll_once(config: Config) -> None:
    """Read the door state once and exit."""
    if not _has_credentials(config):
        return

    print("\n📡 Reading door state...\n")
    async with aiohttp.ClientSession() as session:
        accessory = build_accessory(config, session)
        try:
            current = await accessory.async_read_current_door_state()
            obstructed = await accessory.async_read_obstruction_state()
        except (MyQError, aiohttp.ClientError) as e:
            print(f"❌ Could not read state: {e}")
            return

    print(f"   Door:        {describe(current)}")
    print(f"   Obstruction: {describe(obstructed)}")
    print()


async def cmd_set_target(config: Config, target: TargetDoorState) -> None:
    """Command the door and wait until it reports the matching state."""
    if not _has_credentials(config):
        return

    async with aiohttp.ClientSession() as session:
        accessory = build_accessory(config, session)
        state_mgr = accessory.state_manager
        settled = asyncio.Event()

        def on_change(state, event):
            # At rest in the commanded position; both enums share OPEN/CLOSED values
            if (
                event.event_type == "current_door_state"
                and int(state.current_door_state) == int(target)
            ):
                settled.set()

        state_mgr.subscribe(on_change)

        try:
            # Prime obstruction and current state before commanding
            await accessory.async_read_obstruction_state()
            current = await accessory.async_read_current_door_state()
            if int(current) == int(target):
                print(f"✅ Door is already {describe(current)}")
                return
            print(f"\n🚪 Sending {describe(target)} command...\n")
            await accessory.async_command_target_door_state(target)
        except (MyQError, aiohttp.ClientError) as e:
            print(f"❌ Command failed: {e}")
            accessory.stop()
            return

        try:
            await asyncio.wait_for(settled.wait(), timeout=SETTLE_TIMEOUT_SEC)
            print(f"✅ Door is {describe(state_mgr.state.current_door_state)}")
        except asyncio.TimeoutError:
            print(
                "⏳ Door did not settle in time; last seen "
                f"{describe(state_mgr.state.current_door_state)}"
            )
        finally:
            accessory.stop()


async def cmd_setup(config: Config) -> None:
    """Interactive setup wizard."""
    print("\n🔧 MyQ Garage Door Bridge – Setup\n")

    print("Step 1: MyQ credentials\n")
    username = input(f"  Email [{config.username or 'none'}]: ").strip()
    if username:
        config.username = username

    password = input(f"  Password [{'*****' if config.password else 'none'}]: ").strip()
    if password:
        config.password = password

    print("\nStep 2: Device")
    print("  Leave empty to auto-select the only door opener on the account.\n")
    device_id = input(f"  Device id [{config.device_id or 'auto'}]: ").strip()
    if device_id.isdigit():
        config.device_id = int(device_id)

    name = input(f"  Accessory name [{config.name}]: ").strip()
    if name:
        config.name = name

    print("\nStep 3: Web dashboard")
    port = input(f"  Dashboard port [{config.web_port}]: ").strip()
    if port and port.isdigit():
        config.web_port = int(port)

    config.save()
    print(f"\n✅ Configuration saved to {config.config_file}\n")

    if config.username and config.password:
        do_auth = input("  Log in now and list devices? (y/n): ").strip().lower()
        if do_auth == "y":
            await cmd_auth(config)


async def run_app(config: Config) -> None:
    """Run the full application."""
    if not _has_credentials(config):
        return

    shutdown_event = asyncio.Event()

    def handle_signal():
        _LOGGER.info("Shutdown signal received")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    async with aiohttp.ClientSession() as session:
        state_mgr = StateManager()
        scheduler = PollScheduler(config.poll)
        accessory = GarageDoorAccessory(
            build_api(config, session), state_mgr, scheduler, name=config.name
        )
        dashboard = Dashboard(
            accessory, state_mgr, scheduler,
            host=config.web_host,
            port=config.web_port,
        )

        _LOGGER.info("Starting MyQ Garage Door Bridge...")
        await dashboard.start()
        accessory.start()

        _LOGGER.info(
            "App running. Dashboard: http://%s:%d",
            config.web_host,
            config.web_port,
        )

        await shutdown_event.wait()

        _LOGGER.info("Shutting down...")
        accessory.stop()
        await dashboard.stop()
    _LOGGER.info("Shutdown complete.")


def main():
    parser = argparse.ArgumentParser(
        description="MyQ Garage Door Bridge",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config", "-c",
        help="Path to config file",
        default=None,
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--auth-only",
        action="store_true",
        help="Log in to MyQ, list devices and exit",
    )
    mode.add_argument(
        "--poll-once",
        action="store_true",
        help="Read door state and exit",
    )
    mode.add_argument(
        "--open",
        action="store_true",
        help="Open the door and wait for it",
    )
    mode.add_argument(
        "--close",
        action="store_true",
        help="Close the door and wait for it",
    )
    mode.add_argument(
        "--setup",
        action="store_true",
        help="Interactive setup wizard",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose logging",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        help="Override dashboard port",
    )

    args = parser.parse_args()
    setup_logging(args.verbose)

    config = Config.load(args.config)
    config.apply_env(os.environ)
    if args.port:
        config.web_port = args.port

    if args.auth_only:
        asyncio.run(cmd_auth(config))
    elif args.poll_once:
        asyncio.run(cmd_poll_once(config))
    elif args.open:
        asyncio.run(cmd_set_target(config, TargetDoorState.OPEN))
    elif args.close:
        asyncio.run(cmd_set_target(config, TargetDoorState.CLOSED))
    elif args.setup:
        asyncio.run(cmd_setup(config))
    else:
        asyncio.run(run_app(config))


if __name__ == "__main__":
    main()
