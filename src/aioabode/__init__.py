"""aioabode — asyncio client library for the Abode home security API.

Keeps an authenticated session (session cookie, API key and OAuth token)
and a push event stream open, reporting device changes on an event bus.

Usage:
    from aioabode import AbodeClient, LockStatusInt

    async with aiohttp.ClientSession() as session:
        client = AbodeClient(session)
        client.on_device_updated(lambda device_id: print("changed", device_id))
        await client.async_initialize("me@example.com", "secret")
        for lock in await client.async_get_locks():
            await client.async_control_lock(lock.id, LockStatusInt.LOCKED)
"""

from .auth import AuthSessionManager
from .bus import EventBus
from .client import AbodeClient
from .const import BusEvent, ConnectionState, DeviceType, LockStatus, LockStatusInt
from .events import BackoffState, DedupeWindow, EventStream
from .exceptions import (
    AbodeError,
    AuthError,
    DecodeError,
    MissingCredentialError,
    ProtocolError,
    TransportError,
)
from .models import AuthState, Device, LockControlResult, LockFaults

__all__ = [
    "AbodeClient",
    "AuthSessionManager",
    "EventStream",
    "EventBus",
    "BackoffState",
    "DedupeWindow",
    "BusEvent",
    "ConnectionState",
    "DeviceType",
    "LockStatus",
    "LockStatusInt",
    "AbodeError",
    "AuthError",
    "DecodeError",
    "MissingCredentialError",
    "ProtocolError",
    "TransportError",
    "AuthState",
    "Device",
    "LockControlResult",
    "LockFaults",
]

__version__ = "0.1.0"
