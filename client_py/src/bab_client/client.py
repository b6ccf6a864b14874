"""
Application root.

GameClient owns the session's one game state container, one connection
manager and one transport, wires the handlers between them and exposes
the outbound actions a UI needs.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from .bidding import normalize_bid
from .config import ClientConfig, default_config
from .connection import ConnectionManager
from .errors import INVALID_PAYLOAD, NOT_CONNECTED, raise_error
from .events import (
    ClientEvent, ClientMessage, CreateLobby, Draw, Empty, JoinLobby,
    create_chat, create_credentials, create_play_card, create_player_bid,
)
from .handlers import register_all_handlers
from .models import Bid, Card
from .rules import LegalityResult, get_legal_cards, is_legal_move
from .session import SessionStore, create_session_store
from .state import GameState
from .transport import WebSocketTransport

logger = logging.getLogger(__name__)


class GameClient:
    """One client session: state, connection and transport."""

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        transport=None,
        store: Optional[SessionStore] = None,
        callbacks: Optional[Dict[str, Callable[..., Any]]] = None,
        connection: Optional[ConnectionManager] = None,
    ):
        self.config = config or default_config
        self.store = store if store is not None else create_session_store(self.config.session_file)
        self.transport = transport if transport is not None else WebSocketTransport(self.config)
        self.state = GameState()
        self.connection = connection or ConnectionManager(store=self.store, config=self.config)
        self.callbacks = dict(callbacks or {})

        self.connection.initialize(self.transport)
        register_all_handlers(self.connection, self.state, self.callbacks)

    # Lifecycle

    async def connect(self, timeout: Optional[float] = None):
        """
        Open the transport and wait until the first connect.

        Raises:
            ClientError: NOT_CONNECTED if no connection is made within timeout.
                The transport keeps retrying in the background.
        """
        self.transport.connect()
        wait_connected = getattr(self.transport, 'wait_connected', None)
        if wait_connected is None:
            return
        try:
            await wait_connected(timeout)
        except asyncio.TimeoutError as e:
            raise_error(NOT_CONNECTED, f"No connection to {self.config.server_url} within {timeout}s", cause=e)

    async def disconnect(self):
        close = getattr(self.transport, 'close', None)
        if close is not None:
            await close()
        else:
            self.transport.disconnect()

    def handle_visibility_change(self, hidden: bool):
        self.connection.handle_visibility_change(hidden)

    # Outbound

    def _build(self, event: ClientEvent, factory: Callable[..., ClientMessage], *args, **kwargs) -> ClientMessage:
        """Build an outbound message. Raises ClientError INVALID_PAYLOAD when it fails validation."""
        try:
            return factory(*args, **kwargs)
        except ValidationError as e:
            fields = ', '.join(str(error['loc'][0]) for error in e.errors() if error['loc'])
            raise_error(INVALID_PAYLOAD, f"invalid {fields or 'payload'}", event.value, e)

    def _send(self, event: ClientEvent, factory: Callable[..., ClientMessage], *args, **kwargs):
        self.connection.emit(event.value, self._build(event, factory, *args, **kwargs))

    # Auth and lobby

    def sign_in(self, username: str, password: str):
        self._send(ClientEvent.SIGN_IN, create_credentials, username, password)

    def sign_up(self, username: str, password: str):
        self._send(ClientEvent.SIGN_UP, create_credentials, username, password)

    def create_lobby(self, name: Optional[str] = None):
        self._send(ClientEvent.CREATE_LOBBY, CreateLobby, name=name)

    def join_lobby(self, lobby_id: str):
        self._send(ClientEvent.JOIN_LOBBY, JoinLobby, lobby_id=lobby_id)

    def leave_lobby(self):
        self._send(ClientEvent.LEAVE_LOBBY, Empty)

    def set_ready(self, ready: bool = True):
        event = ClientEvent.PLAYER_READY if ready else ClientEvent.PLAYER_UNREADY
        self._send(event, Empty)

    def draw(self, num: int):
        """Draw a card from the spread deck during the seating draw."""
        if self.state.has_drawn:
            logger.warning("Already drew a card this draw")
            return
        self._send(ClientEvent.DRAW, Draw, num=num)

    # Gameplay

    def legal_cards(self):
        state = self.state
        return get_legal_cards(
            state.my_cards, state.lead_card, state.is_leading(), state.trump,
            state.trump_broken, state.position, state.lead_position,
        )

    def play_card(self, card) -> LegalityResult:
        """
        Play a card from the hand.

        The card leaves the hand at once and comes back if the server
        rejects it. Nothing is sent unless the play is legal, it is our
        turn and no earlier card play is awaiting the server.
        """
        state = self.state
        card = Card.from_dict(card)

        if not state.is_my_turn():
            return LegalityResult.illegal("Not your turn")
        if state.has_played_card:
            return LegalityResult.illegal("Already played a card this trick")
        if card not in state.my_cards:
            return LegalityResult.illegal("Card not in hand")

        result = is_legal_move(
            card, state.my_cards, state.lead_card, state.is_leading(), state.trump,
            state.trump_broken, state.position, state.lead_position,
        )
        if not result.legal:
            logger.info(f"Refused {card}: {result.reason}")
            return result

        message = self._build(ClientEvent.PLAY_CARD, create_play_card, card, state.position)
        if not state.optimistic_play_card(card):
            return LegalityResult.illegal("Another card play is awaiting the server")

        self.connection.emit(ClientEvent.PLAY_CARD.value, message)
        return result

    def submit_bid(self, bid: Bid) -> bool:
        """Stage and send a bid. Returns False, sending nothing, if the bid is refused."""
        state = self.state
        if not state.is_bidding or not state.is_my_turn():
            logger.warning(f"Bid {bid!r} refused: not bidding on our turn")
            return False
        if not state.optimistic_bid(bid):
            return False

        self._send(ClientEvent.PLAYER_BID, create_player_bid, normalize_bid(bid), state.position)
        return True

    def send_chat(self, message: str):
        self._send(ClientEvent.CHAT_MESSAGE, create_chat, message)

    # Leaving

    def leave_match(self):
        """Drop match listeners and forget the match, keeping the signed-in session."""
        self.connection.cleanup_match_listeners()
        self.connection.clear_match_id()
        self.state.reset()

    def sign_out(self):
        """Forget the session entirely and start over on the same transport."""
        self.connection.clear_match_id()
        self.connection.clear_username()
        self.connection.reset()
        self.state.reset()

        self.connection.initialize(self.transport)
        register_all_handlers(self.connection, self.state, self.callbacks)
