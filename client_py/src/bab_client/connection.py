"""
Connection manager with two-tier listener tracking.

Owns the one transport handle of a client session and routes every
registration and outbound message through it. Listeners are tracked in two
tiers: session listeners live until removed or reset, match listeners are
dropped together by cleanup_match_listeners() when a match ends. The
manager also drives the rejoin request after every (re)connect and the
forced reconnect after the app comes back from the background.
"""

import asyncio
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Union

from .constants import (
    CONNECTION_CONNECTED, CONNECTION_DISCONNECTED, CONNECTION_RECONNECTING,
    SESSION_MATCH_ID, SESSION_USERNAME,
    SIGNAL_CONNECT, SIGNAL_DISCONNECT, SIGNAL_RECONNECT_ATTEMPT, SIGNAL_RECONNECT_FAILED,
    STATE_CHANGED, STATE_DISCONNECT, STATE_RECONNECT_FAILED, STATE_RECONNECTING,
)
from .config import ClientConfig, default_config
from .errors import ClientError
from .events import ClientEvent, ClientMessage, create_rejoin
from .session import MemorySessionStore, SessionStore

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]
StateListener = Callable[[str, Dict[str, Any]], Any]
Registry = Dict[str, Dict[Handler, None]]
DelayFn = Callable[[float, Callable[[], None]], Any]


def _call_later(seconds: float, callback: Callable[[], None]):
    """Run callback after a delay on the running event loop, or a timer thread without one."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        timer = threading.Timer(seconds, callback)
        timer.daemon = True
        timer.start()
        return timer
    return loop.call_later(seconds, callback)


def _noop():
    pass


class ConnectionManager:
    """
    Mediates all listener registration and emission for one transport.

    The transport handle is anything with on/off/emit/connect/disconnect,
    firing the connect, disconnect, reconnect_attempt and reconnect_failed
    lifecycle signals. Timing is injectable for tests: `clock` returns
    seconds, `delay_fn(seconds, callback)` schedules a callback.
    """

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        config: Optional[ClientConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        delay_fn: DelayFn = _call_later,
    ):
        self._store = store if store is not None else MemorySessionStore()
        self._config = config or default_config
        self._clock = clock
        self._delay_fn = delay_fn

        self._transport = None
        self._state = CONNECTION_DISCONNECTED
        self._match_id: Optional[str] = None

        self._session_listeners: Registry = {}
        self._match_listeners: Registry = {}
        self._state_listeners: Dict[StateListener, None] = {}
        self._builtin_handlers: Dict[str, Handler] = {}

        self._hidden_at: Optional[float] = None
        self._is_force_reconnecting = False

    # Properties

    @property
    def transport(self):
        return self._transport

    @property
    def id(self) -> Optional[str]:
        if self._transport is None:
            return None
        return getattr(self._transport, 'id', None)

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == CONNECTION_CONNECTED

    @property
    def match_id(self) -> Optional[str]:
        return self._match_id or self._store.get(SESSION_MATCH_ID)

    @property
    def username(self) -> Optional[str]:
        return self._store.get(SESSION_USERNAME)

    @property
    def is_force_reconnecting(self) -> bool:
        return self._is_force_reconnecting

    # Connection management

    def initialize(self, transport):
        """
        Bind to a transport and install the lifecycle handlers.

        The lifecycle handlers are registered before any caller listener,
        so the rejoin request goes out before other connect handlers run.
        """
        if self._transport is transport:
            logger.warning("Connection manager already initialized with this transport")
            return
        if self._transport is not None:
            logger.warning("Connection manager already bound to a transport; reset() before re-initializing")
            return

        self._transport = transport
        self._builtin_handlers = {
            SIGNAL_CONNECT: self._handle_connect,
            SIGNAL_DISCONNECT: self._handle_disconnect,
            SIGNAL_RECONNECT_ATTEMPT: self._handle_reconnect_attempt,
            SIGNAL_RECONNECT_FAILED: self._handle_reconnect_failed,
        }
        for event, handler in self._builtin_handlers.items():
            transport.on(event, handler)

    def _handle_connect(self, *args):
        self._set_state(CONNECTION_CONNECTED)
        self._try_rejoin()

    def _handle_disconnect(self, reason: Optional[str] = None):
        self._set_state(CONNECTION_DISCONNECTED)
        self._emit_state_change(STATE_DISCONNECT, {'reason': reason})

    def _handle_reconnect_attempt(self, attempt: Optional[int] = None):
        self._set_state(CONNECTION_RECONNECTING)
        self._emit_state_change(STATE_RECONNECTING, {'attempt': attempt})

    def _handle_reconnect_failed(self, *args):
        self._set_state(CONNECTION_DISCONNECTED)
        # A stale rejoin target is worse than none
        self.clear_match_id()
        self._emit_state_change(STATE_RECONNECT_FAILED)

    def _set_state(self, state: str):
        old_state = self._state
        self._state = state
        logger.info(f"Connection state {old_state} -> {state}")
        self._emit_state_change(STATE_CHANGED, {'old_state': old_state, 'new_state': state})

    def _emit_state_change(self, kind: str, data: Optional[Dict[str, Any]] = None):
        for callback in list(self._state_listeners):
            try:
                callback(kind, data or {})
            except Exception:
                logger.exception("Error in connection state listener")

    def _try_rejoin(self):
        match_id = self.match_id
        username = self.username

        if match_id and username:
            logger.info(f"Attempting to rejoin match {match_id} as {username}")
            self.emit(ClientEvent.REJOIN_GAME.value, create_rejoin(match_id, username))

    # Backgrounding

    def handle_visibility_change(self, hidden: bool):
        """
        Feed an app foreground/background transition.

        Coming back after more than the configured threshold with a match
        in progress forces a reconnect, since the platform may have killed
        the socket without a disconnect signal.
        """
        if hidden:
            self._hidden_at = self._clock()
            return

        if self._hidden_at is None:
            return

        hidden_for = self._clock() - self._hidden_at
        self._hidden_at = None

        if hidden_for > self._config.force_reconnect_threshold and self.match_id:
            self._force_reconnect()

    def _force_reconnect(self):
        if self._is_force_reconnecting or self._transport is None:
            return
        self._is_force_reconnecting = True

        logger.info("Forcing reconnect after returning from background")
        self._transport.disconnect()
        self._delay_fn(self._config.force_reconnect_delay, self._finish_force_reconnect)

    def _finish_force_reconnect(self):
        try:
            if self._transport is not None:
                self._transport.connect()
        finally:
            self._is_force_reconnecting = False

    # Match and identity persistence

    def set_match_id(self, match_id: str):
        """Persist the match id for rejoin after a restart."""
        self._match_id = match_id
        self._store.set(SESSION_MATCH_ID, match_id)

    def clear_match_id(self):
        self._match_id = None
        self._store.remove(SESSION_MATCH_ID)

    def set_username(self, username: str):
        self._store.set(SESSION_USERNAME, username)

    def clear_username(self):
        self._store.remove(SESSION_USERNAME)

    # Listener management

    def on(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register a session listener (survives across matches). Returns an unsubscribe function."""
        return self._add_listener(event, handler, self._session_listeners)

    def on_match(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register a match listener, removed by cleanup_match_listeners(). Returns an unsubscribe function."""
        return self._add_listener(event, handler, self._match_listeners)

    def _add_listener(self, event: str, handler: Handler, registry: Registry) -> Callable[[], None]:
        if self._transport is None:
            logger.warning(f"Cannot register {event} listener: transport not initialized")
            return _noop

        registry.setdefault(event, {})[handler] = None
        self._transport.on(event, handler)
        return lambda: self._remove_listener(event, handler, registry)

    def _remove_listener(self, event: str, handler: Handler, registry: Registry):
        listeners = registry.get(event)
        if not listeners or handler not in listeners:
            return
        del listeners[handler]
        if not listeners:
            del registry[event]

        # Same handler may still be tracked by the other tier
        if self._transport is not None and not self._is_tracked(event, handler):
            self._transport.off(event, handler)

    def _is_tracked(self, event: str, handler: Handler) -> bool:
        return (
            handler in self._session_listeners.get(event, {})
            or handler in self._match_listeners.get(event, {})
        )

    def off(self, event: str, handler: Handler):
        """Remove a handler from whichever tier holds it."""
        self._remove_listener(event, handler, self._session_listeners)
        self._remove_listener(event, handler, self._match_listeners)

    def off_all(self, event: str):
        """Remove every handler, both tiers, for one event."""
        for registry in (self._session_listeners, self._match_listeners):
            for handler in list(registry.get(event, {})):
                self._remove_listener(event, handler, registry)

    def cleanup_match_listeners(self):
        """Remove every match listener. Session listeners are untouched."""
        count = 0
        for event, listeners in list(self._match_listeners.items()):
            for handler in list(listeners):
                self._remove_listener(event, handler, self._match_listeners)
                count += 1
        logger.info(f"Cleaned up {count} match listeners")

    def on_state_change(self, callback: StateListener) -> Callable[[], None]:
        """Subscribe to connection lifecycle changes, called with (kind, data)."""
        self._state_listeners[callback] = None
        return lambda: self._state_listeners.pop(callback, None)

    # Emit

    def emit(self, event: str, payload: Union[ClientMessage, Dict[str, Any], None] = None):
        """Send an outbound message. Logs and does nothing when no transport is bound."""
        if self._transport is None:
            logger.warning(f"Cannot emit {event}: transport not initialized")
            return

        if isinstance(payload, ClientMessage):
            payload = payload.to_payload()
        try:
            self._transport.emit(event, payload)
        except ClientError as e:
            logger.warning(f"Dropped outbound {event}: {e}")

    # Diagnostics

    def get_listener_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for registry in (self._session_listeners, self._match_listeners):
            for event, listeners in registry.items():
                counts[event] = counts.get(event, 0) + len(listeners)
        return counts

    def get_total_listener_count(self) -> int:
        return sum(self.get_listener_counts().values())

    def reset(self):
        """Drop every listener and detach from the transport, for sign-out and tests."""
        transport = self._transport
        if transport is not None:
            for registry in (self._session_listeners, self._match_listeners):
                for event, listeners in registry.items():
                    for handler in listeners:
                        transport.off(event, handler)
            for event, handler in self._builtin_handlers.items():
                transport.off(event, handler)

        self._session_listeners.clear()
        self._match_listeners.clear()
        self._state_listeners.clear()
        self._builtin_handlers = {}
        self._transport = None
        self._state = CONNECTION_DISCONNECTED
        self._match_id = None
        self._hidden_at = None
        self._is_force_reconnecting = False
