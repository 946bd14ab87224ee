"""Constants for the aioabode library."""

from enum import IntEnum, StrEnum

# Abode API base URL
API_BASE_URL = "https://my.goabode.com"
ORIGIN = "https://my.goabode.com/"

# socket.io push channel (engine.io protocol v3 over a raw websocket)
WS_URL = "wss://my.goabode.com/socket.io/?EIO=3&transport=websocket"

# API paths
AUTH_PATH_PREFIX = "/api/auth2/"
LOGIN_PATH = "/api/auth2/login"
CLAIMS_PATH = "/api/auth2/claims"
SESSION_PATH = "/api/v1/session"
DEVICES_PATH = "/api/v1/devices"
CONTROL_LOCK_PATH = "/api/v1/control/lock/{device_id}"

# Headers
API_KEY_HEADER = "ABODE-API-KEY"
SESSION_COOKIE_NAME = "SESSION"

# User agent
USER_AGENT = "aioabode/0.1.0"

# Session lifetime
RENEW_INTERVAL = 1500  # 25 minutes
REQUEST_TIMEOUT = 30  # seconds, applied per REST call

# Push channel
PING_INTERVAL = 25  # seconds
PING_FRAME = "2"
STALE_TIMEOUT = 60  # seconds without any inbound frame
WS_CLOSE_TIMEOUT = 10  # seconds to wait for the close handshake
HANDSHAKE_PREFIX = "0{"
UNAUTHORIZED_MARKER = '"Not Authorized"'
DEVICE_UPDATE_EVENT = "com.goabode.device.update"

# Reconnect backoff
RECONNECT_BASE_DELAY = 1.0  # seconds
RECONNECT_MAX_DELAY = 300.0  # 5 minutes

# Update burst coalescing
DEDUPE_WINDOW = 0.5  # seconds


class ConnectionState(StrEnum):
    """Push channel connection states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


class BusEvent(StrEnum):
    """Event bus channel names."""

    SOCKET_CONNECTED = "socket_connected"
    SOCKET_DISCONNECTED = "socket_disconnected"
    DEVICE_UPDATED = "device_updated"


class RequestClass(StrEnum):
    """Which secrets an outbound request must carry."""

    UNAUTHENTICATED = "unauthenticated"
    SESSION_ONLY = "session_only"
    FULLY_AUTHENTICATED = "fully_authenticated"


class DeviceType(StrEnum):
    """Device type tags as returned by the Abode API."""

    LOCK = "device_type.door_lock"
    UNKNOWN = "unknown"


class LockStatus(StrEnum):
    """Lock status strings reported in device records."""

    UNLOCKED = "LockOpen"
    LOCKED = "LockClosed"
    UNKNOWN = "unknown"


class LockStatusInt(IntEnum):
    """Lock status values accepted by the lock control endpoint."""

    UNLOCKED = 0
    LOCKED = 1
