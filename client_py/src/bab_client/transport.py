"""WebSocket transport with named events and automatic reconnection"""

import asyncio
import contextlib
import logging
from typing import Any, Optional, Tuple

import orjson
import websockets
from websockets.exceptions import WebSocketException

from .config import ClientConfig, default_config
from .constants import (
    SIGNAL_CONNECT, SIGNAL_DISCONNECT, SIGNAL_RECONNECT_ATTEMPT, SIGNAL_RECONNECT_FAILED,
)
from .emitter import EventEmitter, Listener, Unsubscribe
from .errors import INVALID_EVENT, NOT_CONNECTED, TRANSPORT_ERROR, ClientError, raise_error

logger = logging.getLogger(__name__)

CLIENT_DISCONNECT = "io client disconnect"
SERVER_DISCONNECT = "transport close"


def encode_message(event: str, data: Any = None) -> bytes:
    """Encode an outbound envelope {"event": ..., "data": ...}."""
    try:
        return orjson.dumps({"event": event, "data": data})
    except TypeError as e:
        raise_error(TRANSPORT_ERROR, f"Cannot encode: {e}", event, e)


def decode_message(raw: Any) -> Tuple[str, Any]:
    """
    Decode an inbound envelope into (event, data).

    Raises:
        ClientError: INVALID_EVENT if the frame is not a JSON envelope
    """
    try:
        message = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise_error(INVALID_EVENT, f"Malformed frame: {e}", cause=e)

    if not isinstance(message, dict):
        raise_error(INVALID_EVENT, "Frame is not an object")
    event = message.get("event")
    if not isinstance(event, str) or not event:
        raise_error(INVALID_EVENT, "Frame has no event name")
    return event, message.get("data")


class WebSocketTransport:
    """
    Transport handle over a websockets client connection.

    connect() and disconnect() are plain calls that start and stop a
    background task on the running event loop, the way the connection
    manager expects of a transport. Outbound messages sent while a
    reconnect is in progress are queued and flushed on the next connect.
    """

    def __init__(self, config: Optional[ClientConfig] = None):
        self.config = config or default_config
        self._events = EventEmitter()
        self._outbox: "asyncio.Queue[bytes]" = asyncio.Queue()
        self._unsent: Optional[bytes] = None
        self._task: Optional[asyncio.Task] = None
        self._ws = None
        self._connected = asyncio.Event()
        self._closing = True

    @property
    def id(self) -> Optional[str]:
        if self._ws is None:
            return None
        return str(getattr(self._ws, 'id', '')) or None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def on(self, event: str, callback: Listener) -> Unsubscribe:
        return self._events.on(event, callback)

    def off(self, event: str, callback: Listener):
        self._events.off(event, callback)

    def emit(self, event: str, data: Any = None):
        """Queue an outbound message. Raises NOT_CONNECTED once disconnect() was called."""
        if self._closing:
            raise_error(NOT_CONNECTED, "transport is closed", event)
        self._outbox.put_nowait(encode_message(event, data))

    def connect(self) -> asyncio.Task:
        """Start connecting in the background. Must be called from a running event loop."""
        if self._task is not None and not self._task.done():
            return self._task
        self._closing = False
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    def disconnect(self):
        """Close the connection and stop reconnecting."""
        self._closing = True
        was_connected = self._ws is not None
        self._ws = None
        self._connected.clear()

        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

        if was_connected:
            logger.info("Disconnected by client")
            self._events.emit(SIGNAL_DISCONNECT, CLIENT_DISCONNECT)

    async def wait_connected(self, timeout: Optional[float] = None):
        await asyncio.wait_for(self._connected.wait(), timeout)

    async def close(self):
        """Disconnect and wait for the background task to finish."""
        task = self._task
        self.disconnect()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self):
        attempt = 0
        while not self._closing:
            reason = SERVER_DISCONNECT
            try:
                async with websockets.connect(self.config.server_url) as ws:
                    self._ws = ws
                    attempt = 0
                    self._connected.set()
                    logger.info(f"Connected to {self.config.server_url}")
                    self._events.emit(SIGNAL_CONNECT)
                    await self._pump(ws)
            except (OSError, WebSocketException) as e:
                reason = f"transport error: {e}"
                logger.warning(f"Connection to {self.config.server_url} failed: {e}")

            was_connected = self._ws is not None
            self._ws = None
            self._connected.clear()
            if was_connected:
                self._events.emit(SIGNAL_DISCONNECT, reason)
            if self._closing:
                break

            attempt += 1
            if attempt > self.config.reconnect_attempts:
                logger.error(f"Giving up after {self.config.reconnect_attempts} reconnect attempts")
                self._closing = True
                self._events.emit(SIGNAL_RECONNECT_FAILED)
                break

            self._events.emit(SIGNAL_RECONNECT_ATTEMPT, attempt)
            await asyncio.sleep(self.config.backoff_delay(attempt))

    async def _pump(self, ws):
        sender = asyncio.create_task(self._send_loop(ws))
        try:
            async for raw in ws:
                self._dispatch(raw)
        finally:
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError, WebSocketException):
                await sender

    async def _send_loop(self, ws):
        while True:
            # A frame that failed to send stays in the slot and goes out first next time
            if self._unsent is None:
                self._unsent = await self._outbox.get()
            await ws.send(self._unsent.decode())
            self._unsent = None

    def _dispatch(self, raw: Any):
        try:
            event, data = decode_message(raw)
        except ClientError as e:
            logger.warning(f"Dropping inbound frame: {e.message}")
            return
        logger.debug(f"Received {event}")
        self._events.emit(event, data)
