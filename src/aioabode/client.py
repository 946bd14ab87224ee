"""Abode API client."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import aiohttp

from .auth import AuthSessionManager
from .bus import EventBus
from .const import (
    API_BASE_URL,
    CONTROL_LOCK_PATH,
    DEDUPE_WINDOW,
    DEVICES_PATH,
    ORIGIN,
    PING_INTERVAL,
    RECONNECT_BASE_DELAY,
    RECONNECT_MAX_DELAY,
    RENEW_INTERVAL,
    REQUEST_TIMEOUT,
    STALE_TIMEOUT,
    USER_AGENT,
    WS_URL,
    BusEvent,
    ConnectionState,
    LockStatusInt,
)
from .events import BackoffState, DedupeWindow, EventStream
from .exceptions import ProtocolError
from .models import Device, LockControlResult

_LOGGER = logging.getLogger(__name__)


class AbodeClient:
    """Async client for the Abode home security API.

    Usage:
        async with aiohttp.ClientSession() as session:
            client = AbodeClient(session)
            client.on_device_updated(lambda device_id: ...)
            await client.async_initialize("me@example.com", "secret")
            locks = await client.async_get_locks()
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        base_url: str = API_BASE_URL,
        ws_url: str = WS_URL,
        origin: str = ORIGIN,
        user_agent: str = USER_AGENT,
        host_version: str | None = None,
        request_timeout: float = REQUEST_TIMEOUT,
        renew_interval: float = RENEW_INTERVAL,
        ping_interval: float = PING_INTERVAL,
        stale_timeout: float | None = STALE_TIMEOUT,
        reconnect_base_delay: float = RECONNECT_BASE_DELAY,
        reconnect_max_delay: float = RECONNECT_MAX_DELAY,
        dedupe_window: float = DEDUPE_WINDOW,
        dedupe_per_device: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the client.

        Args:
            session: aiohttp client session (caller manages lifecycle).
            base_url: API base URL.
            ws_url: Push channel URL.
            origin: Origin header for the push channel handshake.
            user_agent: User-Agent sent on REST calls and the handshake.
            host_version: Version of the embedding application, appended
                to the User-Agent as "<user_agent>/<host_version>".
            request_timeout: Total timeout in seconds for each REST call.
            renew_interval: Seconds between periodic session renewals.
            ping_interval: Seconds between push channel keepalive pings.
            stale_timeout: Seconds without any inbound frame before the
                push channel is considered dead. None disables the check.
            reconnect_base_delay: First reconnect delay in seconds.
            reconnect_max_delay: Upper bound for the reconnect delay.
            dedupe_window: Seconds during which repeat update
                notifications are dropped.
            dedupe_per_device: Keep one window per device instead of a
                single window shared by all devices.
            clock: Monotonic clock used by the dedupe window.
        """
        if host_version:
            user_agent = f"{user_agent}/{host_version}"

        self.bus = EventBus()
        self.auth = AuthSessionManager(
            session,
            base_url=base_url,
            user_agent=user_agent,
            request_timeout=request_timeout,
            renew_interval=renew_interval,
        )
        self.stream = EventStream(
            session,
            self.auth,
            self.bus,
            ws_url=ws_url,
            origin=origin,
            ping_interval=ping_interval,
            stale_timeout=stale_timeout,
            backoff=BackoffState(
                base_delay=reconnect_base_delay, max_delay=reconnect_max_delay
            ),
            dedupe=DedupeWindow(
                dedupe_window, per_device=dedupe_per_device, clock=clock
            ),
        )

    # ── Public properties ────────────────────────────────────────────

    @property
    def is_authenticated(self) -> bool:
        """Return True if the session, API key and OAuth token are all held."""
        return self.auth.is_authenticated

    @property
    def connection_state(self) -> ConnectionState:
        """Current push channel state."""
        return self.stream.state

    # ── Lifecycle ────────────────────────────────────────────────────

    async def async_initialize(
        self, email: str, password: str, *, open_stream: bool = True
    ) -> None:
        """Sign in, start session renewal and open the push channel.

        Raises:
            AuthError: If the initial login fails. The push channel is not
                opened in that case.
        """
        await self.auth.async_initialize(email, password)
        if open_stream:
            await self.stream.async_connect()

    async def async_renew(self) -> None:
        """Renew the session now. Never raises."""
        await self.auth.async_renew()

    async def async_close(self) -> None:
        """Close the push channel and stop session renewal."""
        await self.stream.async_close()
        await self.auth.async_close()

    # ── Subscriptions ────────────────────────────────────────────────

    def on_device_updated(self, callback: Callable[[str], Any]) -> Callable[[], None]:
        """Call ``callback(device_id)`` when the service reports a change."""
        return self.bus.subscribe(BusEvent.DEVICE_UPDATED, callback)

    def on_socket_connected(self, callback: Callable[[], Any]) -> Callable[[], None]:
        return self.bus.subscribe(BusEvent.SOCKET_CONNECTED, callback)

    def on_socket_disconnected(
        self, callback: Callable[[], Any]
    ) -> Callable[[], None]:
        return self.bus.subscribe(BusEvent.SOCKET_DISCONNECTED, callback)

    # ── Devices ──────────────────────────────────────────────────────

    async def async_get_devices(self) -> list[Device]:
        """Get all devices on the account.

        Raises:
            MissingCredentialError: If not signed in.
            ProtocolError: If the response is not a device list.
            TransportError: If unable to reach the API.
        """
        _LOGGER.debug("Fetching devices")
        result = await self.auth.http.async_request_json("GET", DEVICES_PATH)
        if not isinstance(result, list):
            raise ProtocolError("Device list response was not a list")
        return [Device.from_api(d) for d in result if isinstance(d, dict)]

    async def async_get_locks(self) -> list[Device]:
        """Get only door lock devices."""
        devices = await self.async_get_devices()
        return [d for d in devices if d.is_lock]

    async def async_control_lock(
        self, device_id: str, status: LockStatusInt
    ) -> LockControlResult:
        """Lock or unlock a door lock.

        Args:
            device_id: The lock's device id.
            status: LockStatusInt.LOCKED or LockStatusInt.UNLOCKED.

        Returns:
            The id and status echoed by the API.
        """
        _LOGGER.debug("Setting lock %s to %s", device_id, status)
        result = await self.auth.http.async_request_json(
            "PUT",
            CONTROL_LOCK_PATH.format(device_id=device_id),
            json_data={"status": int(status)},
        )
        if not isinstance(result, dict):
            raise ProtocolError("Lock control response was not an object")
        return LockControlResult.from_api(result)
