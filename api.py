"""Client for the MyQ cloud API.

The MyQ API is only loosely documented and has changed behaviour under us
before, so this module keeps the contract it relies on small:

1. ``POST /api/v4/User/Validate`` exchanges username/password for a
   short-lived ``SecurityToken``.
2. ``GET /api/v4/UserDeviceDetails/Get`` lists the account's devices,
   each with a flat list of string-valued attributes.
3. ``PUT /api/v4/DeviceAttribute/PutDeviceAttribute`` writes one
   attribute on one device.

Every response carries a ``ReturnCode``; ``"0"`` is success and anything
else is turned into an ApiError.  Tokens expire after an unspecified time,
which the API reports only through the error message ("Please login
again").  MyQApi clears the cached token and retries exactly once when
that happens.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import aiohttp

from errors import ApiError, ResolutionError, ResponseError, SessionExpiredError

_LOGGER = logging.getLogger(__name__)

BASE_URL = "https://myqexternal.myqdevice.com"

MYQ_APPLICATION_ID = (
    "NWknvuBd7LoFHfXmKNMBcgajXtZEgKUh4V7WNzMidrpUUluDpVYVZx+xT4PCM5Kx"
)

LOGIN_PATH = "/api/v4/User/Validate"
DEVICE_LIST_PATH = "/api/v4/UserDeviceDetails/Get"
PUT_ATTRIBUTE_PATH = "/api/v4/DeviceAttribute/PutDeviceAttribute"

# Hubs and gateways, never door openers
GATEWAY_TYPE_IDS = (1, 15)

SESSION_EXPIRED_SIGNATURE = "please login again"

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "User-Agent": "Chamberlain/3.61.1 (iPhone; iOS 10.0.1; Scale/2.00)",
    "ApiVersion": "4.1",
    "BrandId": "2",
    "Culture": "en",
    "MyQApplicationId": MYQ_APPLICATION_ID,
}

T = TypeVar("T")


def _api_error(code: str, message: str | None) -> ApiError:
    """Build the ApiError matching a non-success ReturnCode."""
    message = message or f"Unknown Error ({code})"
    if SESSION_EXPIRED_SIGNATURE in message.lower():
        return SessionExpiredError(code, message)
    return ApiError(code, message)


async def async_request(
    session: aiohttp.ClientSession,
    method: str,
    path: str,
    *,
    query: dict[str, str] | None = None,
    headers: dict[str, str] | None = None,
    body: dict[str, Any] | None = None,
    base_url: str = BASE_URL,
) -> dict[str, Any]:
    """Send one request to the MyQ API and return the decoded payload.

    Transport errors from aiohttp propagate unchanged.
    """
    request_headers = {**DEFAULT_HEADERS, **(headers or {})}
    data = json.dumps(body) if body is not None else None

    async with session.request(
        method,
        f"{base_url}{path}",
        params=query,
        headers=request_headers,
        data=data,
    ) as resp:
        try:
            payload = await resp.json(content_type=None)
        except ValueError as e:
            raise ResponseError(
                f"Unreadable response from MyQ (HTTP {resp.status})"
            ) from e

    if not isinstance(payload, dict):
        raise ResponseError(
            f"Unexpected response from MyQ (HTTP {resp.status})"
        )

    code = str(payload.get("ReturnCode"))
    if code != "0":
        raise _api_error(code, payload.get("ErrorMessage"))
    return payload


@dataclass
class MyQSession:
    """Credentials and device selection owned by one MyQApi."""

    username: str = ""
    password: str = ""
    security_token: str | None = None
    device_id: int | None = None


class MyQApi:
    """Authenticated access to the attributes of a single MyQ device."""

    def __init__(
        self,
        http_session: aiohttp.ClientSession,
        myq_session: MyQSession,
        base_url: str = BASE_URL,
    ):
        self._http = http_session
        self._session = myq_session
        self._base_url = base_url
        self._login_lock = asyncio.Lock()
        self._login_count = 0

    @property
    def session(self) -> MyQSession:
        return self._session

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        return await async_request(
            self._http, method, path, base_url=self._base_url, **kwargs
        )

    # ─── Session ──────────────────────────────────────────────────

    async def async_get_security_token(
        self, security_token: str | None = None
    ) -> str:
        """Return a security token, logging in only if none is cached.

        An explicit ``security_token`` bypasses login entirely.
        """
        if security_token:
            return security_token
        if self._session.security_token:
            return self._session.security_token

        async with self._login_lock:
            # Another caller may have logged in while we waited
            if self._session.security_token:
                return self._session.security_token

            _LOGGER.debug("Logging in to MyQ as %s", self._session.username)
            payload = await self._request(
                "POST",
                LOGIN_PATH,
                body={
                    "password": self._session.password,
                    "username": self._session.username,
                },
            )
            token = payload.get("SecurityToken")
            if not token:
                raise ApiError(
                    str(payload.get("ReturnCode")),
                    "Login response did not include a security token",
                )
            self._session.security_token = token
            self._login_count += 1
            _LOGGER.info("Logged in to MyQ as %s", self._session.username)
            return token

    def invalidate_security_token(self) -> None:
        """Forget the cached token so the next call logs in again."""
        self._session.security_token = None

    async def async_with_retry_on_expiry(
        self, operation: Callable[[], Awaitable[T]]
    ) -> T:
        """Run ``operation``, retrying once if the session has expired."""
        try:
            return await operation()
        except SessionExpiredError as e:
            _LOGGER.info("MyQ session expired (%s), logging in again", e)
            self.invalidate_security_token()
            return await operation()

    # ─── Devices ──────────────────────────────────────────────────

    async def async_get_device_list(
        self, security_token: str | None = None
    ) -> list[dict[str, Any]]:
        """Fetch all devices that are switched on for this account."""
        token = await self.async_get_security_token(security_token)
        payload = await self._request(
            "GET",
            DEVICE_LIST_PATH,
            headers={"SecurityToken": token},
            query={"filterOn": "true"},
        )
        return payload.get("Devices") or []

    def resolve_device_id(self, devices: list[dict[str, Any]]) -> int:
        """Pick the only controllable device out of ``devices``.

        Refuses to guess when there is more than one candidate.
        """
        ids = [
            device.get("MyQDeviceId")
            for device in devices
            if device.get("MyQDeviceTypeId") not in GATEWAY_TYPE_IDS
        ]
        if not ids:
            raise ResolutionError("No controllable devices found")
        if len(ids) > 1:
            raise ResolutionError(
                "Multiple controllable devices found: "
                + ", ".join(str(i) for i in ids)
            )

        self._session.device_id = ids[0]
        _LOGGER.info("Resolved MyQ device id %s", ids[0])
        return ids[0]

    async def async_get_device_id(
        self,
        device_id: int | None = None,
        security_token: str | None = None,
    ) -> int:
        """Return the pinned or cached device id, resolving it if needed."""
        device_id = device_id or self._session.device_id
        if device_id:
            return int(device_id)
        devices = await self.async_get_device_list(security_token)
        return self.resolve_device_id(devices)

    async def async_get_security_token_and_device_id(
        self,
        device_id: int | None = None,
        security_token: str | None = None,
    ) -> tuple[str, int]:
        async def _both() -> tuple[str, int]:
            token = await self.async_get_security_token(security_token)
            resolved = await self.async_get_device_id(device_id, token)
            return token, resolved

        return await self.async_with_retry_on_expiry(_both)

    # ─── Attributes ───────────────────────────────────────────────

    async def async_get_attribute(
        self, name: str, device_id: int | None = None
    ) -> str:
        """Read the string value of attribute ``name`` on the door device."""

        async def _get() -> str:
            devices = await self.async_get_device_list()
            target = device_id or self._session.device_id
            if target:
                target = int(target)
            else:
                target = self.resolve_device_id(devices)

            device = next(
                (d for d in devices if d.get("MyQDeviceId") == target), None
            )
            if device is None:
                raise ResolutionError(f"Device {target} not found")

            attribute = next(
                (
                    a
                    for a in device.get("Attributes") or []
                    if a.get("AttributeDisplayName") == name
                ),
                None,
            )
            if attribute is None:
                raise ResolutionError(
                    f"Attribute {name} not found on device {target}"
                )
            return attribute.get("Value")

        return await self.async_with_retry_on_expiry(_get)

    async def async_set_attribute(
        self, name: str, value: Any, device_id: int | None = None
    ) -> dict[str, Any]:
        """Write ``value`` to attribute ``name`` on the door device."""

        async def _set() -> dict[str, Any]:
            token, resolved = await self.async_get_security_token_and_device_id(
                device_id
            )
            _LOGGER.debug("Setting %s=%s on device %s", name, value, resolved)
            return await self._request(
                "PUT",
                PUT_ATTRIBUTE_PATH,
                headers={"SecurityToken": token},
                body={
                    "AttributeName": name,
                    "AttributeValue": value,
                    "MyQDeviceId": resolved,
                },
            )

        return await self.async_with_retry_on_expiry(_set)

    def get_diagnostics(self) -> dict:
        """Get diagnostic info about the API session."""
        return {
            "username": self._session.username,
            "has_security_token": bool(self._session.security_token),
            "device_id": self._session.device_id,
            "login_count": self._login_count,
        }
