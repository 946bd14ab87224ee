"""Data models for the aioabode library."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .const import SESSION_COOKIE_NAME, DeviceType, LockStatus, LockStatusInt


@dataclass
class Credentials:
    """Login credentials for an Abode account."""

    email: str = ""
    password: str = field(default="", repr=False)

    @property
    def is_complete(self) -> bool:
        """Return True if both email and password are set."""
        return bool(self.email and self.password)


@dataclass(frozen=True)
class AuthState:
    """The three secrets derived from a login.

    Instances are immutable; the session manager swaps whole instances so
    readers never see a half-populated state.
    """

    session_cookie: str = field(default="", repr=False)
    api_key: str = field(default="", repr=False)
    oauth_token: str = field(default="", repr=False)

    @property
    def is_authenticated(self) -> bool:
        """Return True if all three secrets are present."""
        return bool(self.session_cookie and self.api_key and self.oauth_token)

    @property
    def is_empty(self) -> bool:
        """Return True if no secret is present."""
        return not (self.session_cookie or self.api_key or self.oauth_token)

    def cookie_header(self, client_id: str) -> str:
        """Format the Cookie header value for this state."""
        return f"{SESSION_COOKIE_NAME}={self.session_cookie};uuid={client_id}"


@dataclass
class HttpResponse:
    """Status, decoded JSON body and Set-Cookie values of a REST call."""

    status: int
    body: Any = None
    set_cookies: list[str] = field(default_factory=list)


@dataclass
class LockFaults:
    """Fault flags reported for a lock."""

    low_battery: bool = False
    jammed: bool = False

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> LockFaults:
        return cls(
            low_battery=bool(data.get("low_battery", 0)),
            jammed=bool(data.get("jammed", 0)),
        )


@dataclass
class Device:
    """An Abode device record."""

    id: str
    name: str
    type_tag: str
    device_type: DeviceType
    status: LockStatus | str
    faults: LockFaults = field(default_factory=LockFaults)
    version: str | None = None

    # Full raw response for anything we haven't modeled
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_lock(self) -> bool:
        """Return True if this device is a door lock."""
        return self.device_type == DeviceType.LOCK

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Device:
        """Create from API response data."""
        type_tag = data.get("type_tag", "")
        try:
            device_type = DeviceType(type_tag)
        except ValueError:
            device_type = DeviceType.UNKNOWN

        raw_status = data.get("status", "")
        status: LockStatus | str = raw_status
        if device_type == DeviceType.LOCK:
            try:
                status = LockStatus(raw_status)
            except ValueError:
                status = LockStatus.UNKNOWN

        faults = data.get("faults")
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", "Unknown Device"),
            type_tag=type_tag,
            device_type=device_type,
            status=status,
            faults=LockFaults.from_api(faults) if isinstance(faults, dict) else LockFaults(),
            version=data.get("version"),
            raw=data,
        )


@dataclass
class LockControlResult:
    """Response of the lock control endpoint."""

    id: str
    status: LockStatusInt | int

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> LockControlResult:
        raw_status = data.get("status")
        try:
            status: LockStatusInt | int = LockStatusInt(int(raw_status))
        except (TypeError, ValueError):
            status = -1
        return cls(id=str(data.get("id", "")), status=status)
