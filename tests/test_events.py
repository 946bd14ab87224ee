"""Tests for the push event stream."""

import asyncio
import contextlib
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from fakes import FakeWebSocket

from aioabode.bus import EventBus
from aioabode.const import BusEvent, ConnectionState
from aioabode.events import BackoffState, DedupeWindow, EventStream, decode_frame
from aioabode.exceptions import DecodeError

UPDATE_FRAME = '42["com.goabode.device.update","ZW:1"]'
HANDSHAKE_FRAME = '0{"sid":"abc","upgrades":[],"pingInterval":25000,"pingTimeout":60000}'


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _make_stream(
    ws: FakeWebSocket | None = None, clock: FakeClock | None = None
) -> tuple[EventStream, EventBus, MagicMock, MagicMock]:
    session = MagicMock()
    session.ws_connect = AsyncMock(return_value=ws or FakeWebSocket())
    auth = MagicMock()
    auth.interceptor.identity_headers.side_effect = lambda: {
        "User-Agent": "test-agent",
        "Cookie": "SESSION=xyz;uuid=client-1",
    }
    auth.async_renew = AsyncMock()
    bus = EventBus()
    stream = EventStream(
        session,
        auth,
        bus,
        ping_interval=3600,
        dedupe=DedupeWindow(0.5, clock=clock or FakeClock()),
    )
    return stream, bus, session, auth


def _record(bus: EventBus, event: BusEvent) -> list[tuple]:
    received: list[tuple] = []
    bus.subscribe(event, lambda *args: received.append(args))
    return received


# ── Frame decoding ───────────────────────────────────────────────────


def test_decode_frame_strips_envelope() -> None:
    assert decode_frame(UPDATE_FRAME) == ["com.goabode.device.update", "ZW:1"]
    assert decode_frame(HANDSHAKE_FRAME)["sid"] == "abc"


def test_decode_frame_without_payload() -> None:
    assert decode_frame("3") is None
    assert decode_frame("40") is None


def test_decode_frame_malformed() -> None:
    with pytest.raises(DecodeError):
        decode_frame('42["unterminated"')


# ── Backoff ──────────────────────────────────────────────────────────


def test_backoff_doubles() -> None:
    backoff = BackoffState(base_delay=1.0)
    assert [backoff.next_delay() for _ in range(4)] == [1.0, 2.0, 4.0, 8.0]


def test_backoff_is_capped() -> None:
    backoff = BackoffState(base_delay=100.0, max_delay=300.0)
    assert [backoff.next_delay() for _ in range(4)] == [100.0, 200.0, 300.0, 300.0]


def test_backoff_reset() -> None:
    backoff = BackoffState(base_delay=1.0)
    backoff.next_delay()
    backoff.next_delay()
    backoff.reset()
    assert backoff.current_delay == 1.0


# ── Dedupe window ────────────────────────────────────────────────────


def test_dedupe_window_coalesces_burst() -> None:
    clock = FakeClock()
    window = DedupeWindow(0.5, clock=clock)

    assert window.allow("X") is True
    clock.now = 0.1
    assert window.allow("X") is False
    clock.now = 0.6
    assert window.allow("X") is True


def test_dedupe_window_is_global_by_default() -> None:
    clock = FakeClock()
    window = DedupeWindow(0.5, clock=clock)

    assert window.allow("X") is True
    clock.now = 0.1
    assert window.allow("Y") is False


def test_dedupe_window_per_device() -> None:
    clock = FakeClock()
    window = DedupeWindow(0.5, per_device=True, clock=clock)

    assert window.allow("X") is True
    clock.now = 0.1
    assert window.allow("Y") is True
    assert window.allow("X") is False


# ── Frame handling ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_update_frame_publishes_device_updated() -> None:
    stream, bus, _, _ = _make_stream()
    updates = _record(bus, BusEvent.DEVICE_UPDATED)

    assert await stream._handle_frame(FakeWebSocket(), UPDATE_FRAME) is True

    assert updates == [("ZW:1",)]


@pytest.mark.asyncio
async def test_update_burst_emits_once() -> None:
    clock = FakeClock()
    stream, bus, _, _ = _make_stream(clock=clock)
    updates = _record(bus, BusEvent.DEVICE_UPDATED)
    ws = FakeWebSocket()

    await stream._handle_frame(ws, UPDATE_FRAME)
    clock.now = 0.1
    await stream._handle_frame(ws, UPDATE_FRAME)
    clock.now = 0.6
    await stream._handle_frame(ws, UPDATE_FRAME)

    assert updates == [("ZW:1",), ("ZW:1",)]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "frame",
    [
        '42["com.goabode.gateway.timeline","ZW:1"]',
        '42["com.goabode.device.update",""]',
        '42["com.goabode.device.update"]',
        '42{"event":"com.goabode.device.update"}',
        "3",
    ],
)
async def test_other_frames_do_not_publish(frame: str) -> None:
    stream, bus, _, _ = _make_stream()
    updates = _record(bus, BusEvent.DEVICE_UPDATED)

    assert await stream._handle_frame(FakeWebSocket(), frame) is True

    assert updates == []


@pytest.mark.asyncio
async def test_unauthorized_frame_closes_channel() -> None:
    stream, bus, _, _ = _make_stream()
    updates = _record(bus, BusEvent.DEVICE_UPDATED)
    ws = FakeWebSocket()

    keep_reading = await stream._handle_frame(ws, '42["error","Not Authorized"]')

    assert keep_reading is False
    assert ws.closed is True
    assert stream.state is ConnectionState.CLOSING
    assert updates == []


@pytest.mark.asyncio
async def test_healthy_frame_resets_backoff() -> None:
    stream, _, _, _ = _make_stream()
    stream.backoff.next_delay()
    stream.backoff.next_delay()

    await stream._handle_frame(FakeWebSocket(), "3")

    assert stream.backoff.current_delay == stream.backoff.base_delay


@pytest.mark.asyncio
async def test_handshake_frame_does_not_reset_backoff() -> None:
    stream, _, _, _ = _make_stream()
    stream.backoff.next_delay()

    await stream._handle_frame(FakeWebSocket(), HANDSHAKE_FRAME)

    assert stream.backoff.current_delay == 2 * stream.backoff.base_delay


@pytest.mark.asyncio
async def test_malformed_frame_is_discarded() -> None:
    stream, bus, _, _ = _make_stream()
    updates = _record(bus, BusEvent.DEVICE_UPDATED)
    stream.backoff.next_delay()
    ws = FakeWebSocket()

    assert await stream._handle_frame(ws, '42["com.goabode.device.update",') is True

    assert ws.closed is False
    assert stream.backoff.current_delay == 2 * stream.backoff.base_delay
    assert updates == []


# ── Connection state machine ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_connect_publishes_and_sends_identity_headers() -> None:
    ws = FakeWebSocket(hold_open=True)
    stream, bus, session, _ = _make_stream(ws)
    connected = _record(bus, BusEvent.SOCKET_CONNECTED)
    disconnected = _record(bus, BusEvent.SOCKET_DISCONNECTED)

    await stream.async_connect()

    assert stream.state is ConnectionState.CONNECTED
    assert connected == [()]
    _, kwargs = session.ws_connect.call_args
    assert kwargs["headers"] == {
        "User-Agent": "test-agent",
        "Cookie": "SESSION=xyz;uuid=client-1",
        "Origin": "https://my.goabode.com/",
    }
    assert "ABODE-API-KEY" not in kwargs["headers"]
    assert "Authorization" not in kwargs["headers"]
    assert kwargs["timeout"].ws_receive == 60

    await stream.async_close()
    assert stream.state is ConnectionState.DISCONNECTED
    assert ws.closed is True
    assert disconnected == [()]
    assert stream._reconnect_task is None


@pytest.mark.asyncio
async def test_connect_is_idempotent() -> None:
    stream, _, session, _ = _make_stream()
    stream._state = ConnectionState.CONNECTED
    await stream.async_connect()
    stream._state = ConnectionState.CONNECTING
    await stream.async_connect()
    session.ws_connect.assert_not_called()


@pytest.mark.asyncio
async def test_server_close_schedules_reconnect() -> None:
    ws = FakeWebSocket([HANDSHAKE_FRAME, UPDATE_FRAME])
    stream, bus, _, _ = _make_stream(ws)
    disconnected = _record(bus, BusEvent.SOCKET_DISCONNECTED)
    updates = _record(bus, BusEvent.DEVICE_UPDATED)

    await stream.async_connect()
    reader = stream._reader_task
    assert reader is not None
    await reader

    assert updates == [("ZW:1",)]
    assert disconnected == [()]
    assert stream.state is ConnectionState.DISCONNECTED
    assert stream._reconnect_task is not None
    # The update frame reset the delay, so this attempt waits the base delay
    assert stream.backoff.current_delay == 2 * stream.backoff.base_delay

    await stream.async_close()


@pytest.mark.asyncio
async def test_unauthorized_frame_triggers_reconnect_without_update() -> None:
    ws = FakeWebSocket(['42["error","Not Authorized"]', UPDATE_FRAME])
    stream, bus, _, _ = _make_stream(ws)
    disconnected = _record(bus, BusEvent.SOCKET_DISCONNECTED)
    updates = _record(bus, BusEvent.DEVICE_UPDATED)

    await stream.async_connect()
    await stream._reader_task

    assert ws.closed is True
    assert updates == []
    assert disconnected == [()]
    assert stream._reconnect_task is not None

    await stream.async_close()


@pytest.mark.asyncio
async def test_stale_channel_is_closed_before_reconnect() -> None:
    ws = FakeWebSocket([UPDATE_FRAME], stale=True)
    stream, bus, _, _ = _make_stream(ws)
    disconnected = _record(bus, BusEvent.SOCKET_DISCONNECTED)

    await stream.async_connect()
    await stream._reader_task

    assert ws.closed is True
    assert disconnected == [()]
    assert stream.state is ConnectionState.DISCONNECTED
    assert stream._ws is None
    assert stream._reconnect_task is not None

    await stream.async_close()


@pytest.mark.asyncio
async def test_repeated_disconnects_double_delay() -> None:
    stream, bus, _, _ = _make_stream()
    disconnected = _record(bus, BusEvent.SOCKET_DISCONNECTED)
    delays: list[float] = []

    for _ in range(4):
        delays.append(stream.backoff.current_delay)
        stream._handle_closed()

    assert delays == [1.0, 2.0, 4.0, 8.0]
    assert len(disconnected) == 4

    await stream.async_close()


@pytest.mark.asyncio
async def test_failed_open_goes_through_disconnect_path() -> None:
    stream, bus, session, _ = _make_stream()
    session.ws_connect.side_effect = aiohttp.ClientConnectionError("refused")
    disconnected = _record(bus, BusEvent.SOCKET_DISCONNECTED)

    await stream.async_connect()

    assert stream.state is ConnectionState.DISCONNECTED
    assert disconnected == [()]
    assert stream._reconnect_task is not None

    await stream.async_close()


@pytest.mark.asyncio
async def test_invalid_url_stays_disconnected() -> None:
    stream, bus, session, _ = _make_stream()
    session.ws_connect.side_effect = aiohttp.InvalidURL("not a url")
    disconnected = _record(bus, BusEvent.SOCKET_DISCONNECTED)

    await stream.async_connect()

    assert stream.state is ConnectionState.DISCONNECTED
    assert disconnected == []
    assert stream._reconnect_task is None


@pytest.mark.asyncio
async def test_reconnect_renews_before_connecting() -> None:
    stream, _, session, auth = _make_stream()
    order: list[str] = []
    auth.async_renew.side_effect = lambda: order.append("renew")
    session.ws_connect.side_effect = lambda *args, **kwargs: (
        order.append("connect") or FakeWebSocket()
    )

    await stream._reconnect_after(0)

    assert order == ["renew", "connect"]
    await stream.async_close()


@pytest.mark.asyncio
async def test_close_stops_reconnecting() -> None:
    stream, bus, _, _ = _make_stream()
    stream._handle_closed()
    pending = stream._reconnect_task
    assert pending is not None

    await stream.async_close()
    await asyncio.sleep(0)

    assert pending.cancelled()
    assert stream._reconnect_task is None


@pytest.mark.asyncio
async def test_close_while_connecting_discards_channel() -> None:
    ws = FakeWebSocket(hold_open=True)
    stream, bus, session, _ = _make_stream(ws)
    connected = _record(bus, BusEvent.SOCKET_CONNECTED)
    gate = asyncio.Event()

    async def slow_connect(*args, **kwargs) -> FakeWebSocket:
        await gate.wait()
        return ws

    session.ws_connect.side_effect = slow_connect

    connecting = asyncio.create_task(stream.async_connect())
    await asyncio.sleep(0)
    assert stream.state is ConnectionState.CONNECTING

    await stream.async_close()
    gate.set()
    await connecting

    assert ws.closed is True
    assert connected == []
    assert stream.state is ConnectionState.DISCONNECTED
    assert stream._ws is None
    assert stream._reader_task is None
    assert stream._reconnect_task is None


@pytest.mark.asyncio
async def test_keepalive_sends_ping() -> None:
    stream, _, _, _ = _make_stream()
    stream._ping_interval = 0
    ws = FakeWebSocket()

    task = asyncio.create_task(stream._ping_periodically(ws))
    for _ in range(3):
        await asyncio.sleep(0)
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task

    assert "2" in ws.sent


@pytest.mark.asyncio
async def test_keepalive_stops_when_send_fails() -> None:
    stream, _, _, _ = _make_stream()
    stream._ping_interval = 0
    ws = FakeWebSocket()
    ws.send_str = AsyncMock(side_effect=ConnectionResetError("closed"))  # type: ignore[method-assign]

    await stream._ping_periodically(ws)

    ws.send_str.assert_awaited_once_with("2")
