"""Abode push event stream."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from .auth import AuthSessionManager
from .bus import EventBus
from .const import (
    DEDUPE_WINDOW,
    DEVICE_UPDATE_EVENT,
    HANDSHAKE_PREFIX,
    ORIGIN,
    PING_FRAME,
    PING_INTERVAL,
    RECONNECT_BASE_DELAY,
    RECONNECT_MAX_DELAY,
    STALE_TIMEOUT,
    UNAUTHORIZED_MARKER,
    WS_CLOSE_TIMEOUT,
    WS_URL,
    BusEvent,
    ConnectionState,
)
from .exceptions import DecodeError, TransportError

_LOGGER = logging.getLogger(__name__)

# engine.io/socket.io packet type digits in front of the JSON payload
_ENVELOPE_RE = re.compile(r"^[:\d]*")


def decode_frame(text: str) -> Any:
    """Strip the packet type prefix and decode the JSON payload.

    Returns:
        The decoded payload, or None for frames without one (pings, pongs).

    Raises:
        DecodeError: If the payload is not valid JSON.
    """
    payload = _ENVELOPE_RE.sub("", text, count=1)
    if not payload:
        return None
    try:
        return json.loads(payload)
    except ValueError as err:
        raise DecodeError(f"Malformed frame: {text[:80]!r}") from err


@dataclass
class BackoffState:
    """Exponential reconnect delay, capped at ``max_delay``."""

    base_delay: float = RECONNECT_BASE_DELAY
    max_delay: float = RECONNECT_MAX_DELAY
    current_delay: float = field(init=False)

    def __post_init__(self) -> None:
        self.current_delay = self.base_delay

    def reset(self) -> None:
        self.current_delay = self.base_delay

    def next_delay(self) -> float:
        """Return the delay for this attempt and double it for the next."""
        delay = self.current_delay
        self.current_delay = min(self.current_delay * 2, self.max_delay)
        return delay


class DedupeWindow:
    """Cooldown that coalesces bursts of update notifications.

    With ``per_device=False`` there is a single window for all devices: an
    update for any device suppresses every other update until it expires.
    """

    def __init__(
        self,
        duration: float = DEDUPE_WINDOW,
        *,
        per_device: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.duration = duration
        self.per_device = per_device
        self._clock = clock
        self._opened_at: dict[str | None, float] = {}

    def allow(self, device_id: str) -> bool:
        """Return True and open the window if no emission happened within it."""
        key = device_id if self.per_device else None
        now = self._clock()
        opened_at = self._opened_at.get(key)
        if opened_at is not None and now - opened_at < self.duration:
            return False
        self._opened_at[key] = now
        return True


class EventStream:
    """Keeps the socket.io push channel open and publishes device updates.

    On any disconnect the session is renewed and the channel reopened after
    an exponentially growing delay. The delay resets once a healthy frame
    arrives.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        auth: AuthSessionManager,
        bus: EventBus,
        *,
        ws_url: str = WS_URL,
        origin: str = ORIGIN,
        ping_interval: float = PING_INTERVAL,
        stale_timeout: float | None = STALE_TIMEOUT,
        backoff: BackoffState | None = None,
        dedupe: DedupeWindow | None = None,
    ) -> None:
        self._session = session
        self._auth = auth
        self._bus = bus
        self._ws_url = ws_url
        self._origin = origin
        self._ping_interval = ping_interval
        self._stale_timeout = stale_timeout
        self.backoff = backoff or BackoffState()
        self.dedupe = dedupe or DedupeWindow()

        self._state = ConnectionState.DISCONNECTED
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._ping_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._closed = False
        self._generation = 0

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    # ── Connect ──────────────────────────────────────────────────────

    async def async_connect(self) -> None:
        """Open the push channel. No-op unless currently disconnected."""
        if self._state is not ConnectionState.DISCONNECTED:
            _LOGGER.debug("Push channel already %s", self._state)
            return

        self._closed = False
        # async_close() bumps this; an open that outlives it must not go live.
        generation = self._generation
        self._state = ConnectionState.CONNECTING
        try:
            ws = await self._open()
        except aiohttp.InvalidURL as err:
            _LOGGER.error("Failed to open push channel: invalid URL %s", err)
            if generation == self._generation:
                self._state = ConnectionState.DISCONNECTED
            return
        except TransportError as err:
            _LOGGER.debug("Failed to open push channel: %s", err)
            if generation == self._generation:
                self._handle_closed()
            return
        except asyncio.CancelledError:
            if generation == self._generation:
                self._state = ConnectionState.DISCONNECTED
            raise

        if generation != self._generation:
            _LOGGER.debug("Push channel closed while connecting")
            await ws.close()
            return

        self._ws = ws
        self._state = ConnectionState.CONNECTED
        _LOGGER.debug("Push channel connected")
        self._bus.publish(BusEvent.SOCKET_CONNECTED)
        self._ping_task = asyncio.create_task(self._ping_periodically(ws))
        self._reader_task = asyncio.create_task(self._receive(ws))

    async def _open(self) -> aiohttp.ClientWebSocketResponse:
        # Same identity as REST calls; no API key or bearer token needed.
        headers = self._auth.interceptor.identity_headers()
        headers["Origin"] = self._origin
        try:
            return await self._session.ws_connect(
                self._ws_url,
                headers=headers,
                timeout=aiohttp.ClientWSTimeout(
                    ws_receive=self._stale_timeout, ws_close=WS_CLOSE_TIMEOUT
                ),
            )
        except aiohttp.InvalidURL:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise TransportError(f"Connection error: {self._ws_url}: {err}") from err

    async def async_close(self) -> None:
        """Close the channel and stop reconnecting."""
        self._closed = True
        self._generation += 1
        for task in (self._reconnect_task, self._ping_task):
            if task:
                task.cancel()
        self._reconnect_task = None

        ws = self._ws
        if ws is not None and not ws.closed:
            self._state = ConnectionState.CLOSING
            await ws.close()

        reader = self._reader_task
        if reader is not None:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        self._state = ConnectionState.DISCONNECTED

    # ── Receive ──────────────────────────────────────────────────────

    async def _receive(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        try:
            async for msg in ws:
                if msg.type is aiohttp.WSMsgType.TEXT:
                    if not await self._handle_frame(ws, msg.data):
                        break
                elif msg.type is aiohttp.WSMsgType.ERROR:
                    _LOGGER.debug("Push channel error: %s", ws.exception())
                    break
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            # ws_receive timeout expiring means the channel went stale
            _LOGGER.debug("Push channel dropped: %r", err)
        finally:
            try:
                # A stale or errored channel is still open; release it first.
                if not ws.closed:
                    with contextlib.suppress(aiohttp.ClientError, OSError):
                        await asyncio.shield(ws.close())
            finally:
                self._handle_closed()

    async def _handle_frame(
        self, ws: aiohttp.ClientWebSocketResponse, text: str
    ) -> bool:
        """Handle one inbound text frame. Returns False once the channel is closed."""
        if UNAUTHORIZED_MARKER in text:
            _LOGGER.debug("Push channel not authorized, closing")
            self._state = ConnectionState.CLOSING
            await ws.close()
            return False

        try:
            message = decode_frame(text)
        except DecodeError as err:
            _LOGGER.debug("Failed to parse message: %s", err)
            return True

        if not text.startswith(HANDSHAKE_PREFIX):
            self.backoff.reset()

        self._process_event(message)
        return True

    def _process_event(self, message: Any) -> None:
        if not isinstance(message, list) or len(message) < 2:
            return
        if message[0] != DEVICE_UPDATE_EVENT:
            return
        device_id = message[1]
        if not device_id:
            return

        device_id = str(device_id)
        if not self.dedupe.allow(device_id):
            _LOGGER.debug("Coalescing update for device %s", device_id)
            return
        self._bus.publish(BusEvent.DEVICE_UPDATED, device_id)

    async def _ping_periodically(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while True:
            await asyncio.sleep(self._ping_interval)
            try:
                await ws.send_str(PING_FRAME)
            except (aiohttp.ClientError, ConnectionResetError) as err:
                _LOGGER.debug("Failed to send ping: %s", err)
                return

    # ── Disconnect / reconnect ───────────────────────────────────────

    def _handle_closed(self) -> None:
        self._ws = None
        self._reader_task = None
        self._state = ConnectionState.DISCONNECTED
        if self._ping_task is not None:
            self._ping_task.cancel()
            self._ping_task = None

        _LOGGER.debug("Push channel disconnected")
        self._bus.publish(BusEvent.SOCKET_DISCONNECTED)

        if not self._closed:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        # At most one reconnect pending; the running one may be scheduling.
        pending = self._reconnect_task
        if pending is not None and pending is not asyncio.current_task():
            pending.cancel()

        delay = self.backoff.next_delay()
        _LOGGER.debug("Reopening push channel in %.1fs", delay)
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Never raises; a failed login surfaces on the next REST call.
        await self._auth.async_renew()
        await self.async_connect()
