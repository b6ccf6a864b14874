"""
Inbound message handlers.

Each handler decodes its payload into the message model once, applies it
to the game state container and then calls the matching UI callback, if
one was given. Auth, lobby and rejoin handlers are session listeners;
gameplay and in-game chat handlers are match listeners, dropped when a
match ends and registered again on entering the next one.

Callbacks are passed as a dict of name -> callable, e.g.
{'on_game_start': fn}; each receives the decoded message.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .connection import ConnectionManager
from .constants import PHASE_BIDDING, PHASE_DRAW, PHASE_ENDED, PHASE_LOBBY, PHASE_NONE, PHASE_PLAYING
from .events import ClientEvent, ServerEvent, parse_inbound_event
from .positions import team_number
from .state import GameState, PlayerRoster

logger = logging.getLogger(__name__)

Callbacks = Dict[str, Callable[..., Any]]
Unsubscribes = List[Callable[[], None]]


def _decoded(event: ServerEvent, handler: Callable[[Any], None]) -> Callable[..., None]:
    """Wrap a handler so it receives the decoded model; undecodable payloads are dropped."""
    def listener(data=None, *args):
        try:
            message = parse_inbound_event(event.value, data)
        except ValueError as e:
            logger.warning(f"Dropping {event.value}: {e}")
            return
        handler(message)
    return listener


def _notify(callbacks: Callbacks, name: str, *args):
    callback = callbacks.get(name)
    if callback is not None:
        callback(*args)


def has_match_handlers(connection: ConnectionManager) -> bool:
    return connection.get_listener_counts().get(ServerEvent.GAME_START.value, 0) > 0


def register_auth_handlers(connection: ConnectionManager, state: GameState,
                           callbacks: Optional[Callbacks] = None) -> Unsubscribes:
    """Register sign in/up, forced logout and active game handlers (session scoped)."""
    callbacks = callbacks or {}

    def on_sign_in(msg):
        if msg.success:
            connection.set_username(msg.username)
            state.username = msg.username
            state.player_id = connection.id
            logger.info(f"Signed in as {msg.username}")
            _notify(callbacks, 'on_sign_in_success', msg)
        else:
            logger.warning(f"Sign in failed: {msg.message}")
            _notify(callbacks, 'on_sign_in_error', msg.message or 'Sign in failed')

    def on_sign_up(msg):
        if msg.success:
            connection.set_username(msg.username)
            state.username = msg.username
            logger.info(f"Registered as {msg.username}")
            _notify(callbacks, 'on_sign_up_success', msg)
        else:
            logger.warning(f"Registration failed: {msg.message}")
            _notify(callbacks, 'on_sign_up_error', msg.message or 'Registration failed')

    def on_force_logout(msg):
        logger.warning(f"Forced logout: {msg.reason}")
        connection.clear_username()
        connection.clear_match_id()
        state.reset()
        _notify(callbacks, 'on_force_logout', msg)

    def on_active_game_found(msg):
        logger.info(f"Active match found: {msg.game_id}")
        _notify(callbacks, 'on_active_game_found', msg)

    return [
        connection.on(ServerEvent.SIGN_IN_RESPONSE.value, _decoded(ServerEvent.SIGN_IN_RESPONSE, on_sign_in)),
        connection.on(ServerEvent.SIGN_UP_RESPONSE.value, _decoded(ServerEvent.SIGN_UP_RESPONSE, on_sign_up)),
        connection.on(ServerEvent.FORCE_LOGOUT.value, _decoded(ServerEvent.FORCE_LOGOUT, on_force_logout)),
        connection.on(ServerEvent.ACTIVE_GAME_FOUND.value, _decoded(ServerEvent.ACTIVE_GAME_FOUND, on_active_game_found)),
    ]


def register_lobby_handlers(connection: ConnectionManager, state: GameState,
                            callbacks: Optional[Callbacks] = None,
                            enter_match: Optional[Callable[[], None]] = None) -> Unsubscribes:
    """
    Register main room and lobby handlers (session scoped).

    enter_match is called on joining a lobby so the match listeners are in
    place before the draw starts.
    """
    callbacks = callbacks or {}

    def on_main_room_joined(msg):
        state.set_phase(PHASE_NONE)
        _notify(callbacks, 'on_main_room_joined', msg)

    def on_lobby_joined(name):
        def handler(msg):
            logger.info(f"Entered lobby {msg.lobby_id}")
            if enter_match is not None:
                enter_match()
            state.set_phase(PHASE_LOBBY)
            state.game_id = msg.lobby_id
            _notify(callbacks, name, msg)
        return handler

    def on_left_lobby(msg):
        state.set_phase(PHASE_NONE)
        state.game_id = None
        connection.cleanup_match_listeners()
        _notify(callbacks, 'on_left_lobby', msg)

    def on_room_full(msg):
        logger.info(f"Room full: {msg.message}")
        _notify(callbacks, 'on_room_full', msg)

    def on_all_players_ready(msg):
        logger.info(f"All players ready, match {msg.game_id} starting")
        _notify(callbacks, 'on_all_players_ready', msg)

    def passthrough(name):
        def handler(msg):
            _notify(callbacks, name, msg)
        return handler

    handlers = {
        ServerEvent.MAIN_ROOM_JOINED: on_main_room_joined,
        ServerEvent.MAIN_ROOM_MESSAGE: passthrough('on_main_room_message'),
        ServerEvent.MAIN_ROOM_PLAYER_JOINED: passthrough('on_main_room_player_joined'),
        ServerEvent.LOBBIES_UPDATED: passthrough('on_lobbies_updated'),
        ServerEvent.LOBBY_CREATED: on_lobby_joined('on_lobby_created'),
        ServerEvent.LOBBY_JOINED: on_lobby_joined('on_lobby_joined'),
        ServerEvent.LOBBY_PLAYER_JOINED: passthrough('on_lobby_player_joined'),
        ServerEvent.LOBBY_PLAYER_LEFT: passthrough('on_lobby_player_left'),
        ServerEvent.LOBBY_MESSAGE: passthrough('on_lobby_message'),
        ServerEvent.PLAYER_READY_UPDATE: passthrough('on_player_ready_update'),
        ServerEvent.ALL_PLAYERS_READY: on_all_players_ready,
        ServerEvent.LEFT_LOBBY: on_left_lobby,
        ServerEvent.ROOM_FULL: on_room_full,
    }
    return [
        connection.on(event.value, _decoded(event, handler))
        for event, handler in handlers.items()
    ]


def register_rejoin_handlers(connection: ConnectionManager, state: GameState,
                             callbacks: Optional[Callbacks] = None,
                             enter_match: Optional[Callable[[], None]] = None) -> Unsubscribes:
    """Register rejoin outcome and server error handlers (session scoped)."""
    callbacks = callbacks or {}

    def on_rejoin_success(msg):
        logger.info(f"Rejoined match {msg.game_id}")
        if enter_match is not None:
            enter_match()
        state.restore_from_rejoin(msg)
        if msg.game_id:
            connection.set_match_id(msg.game_id)
        _notify(callbacks, 'on_rejoin_success', msg)

    def on_rejoin_failed(msg):
        logger.warning(f"Rejoin failed: {msg.reason}")
        connection.clear_match_id()
        _notify(callbacks, 'on_rejoin_failed', msg)

    def on_error(msg):
        logger.warning(f"Server error ({msg.type}) from {msg.handler}: {msg.message}")
        # Rejection of an optimistic action
        if msg.handler == ClientEvent.PLAY_CARD.value:
            state.rollback_card_play()
        elif msg.handler == ClientEvent.PLAYER_BID.value:
            state.rollback_bid()
        _notify(callbacks, 'on_server_error', msg)

    return [
        connection.on(ServerEvent.REJOIN_SUCCESS.value, _decoded(ServerEvent.REJOIN_SUCCESS, on_rejoin_success)),
        connection.on(ServerEvent.REJOIN_FAILED.value, _decoded(ServerEvent.REJOIN_FAILED, on_rejoin_failed)),
        connection.on(ServerEvent.ERROR.value, _decoded(ServerEvent.ERROR, on_error)),
    ]


def register_game_handlers(connection: ConnectionManager, state: GameState,
                           callbacks: Optional[Callbacks] = None) -> Unsubscribes:
    """Register gameplay handlers (match scoped)."""
    callbacks = callbacks or {}

    # Setup phase

    def on_position_update(msg):
        state.set_player_data(PlayerRoster(
            positions=list(msg.positions),
            sockets=list(msg.sockets),
            usernames=list(msg.usernames),
            pics=list(msg.pics),
        ))
        if msg.your_position:
            state.set_position(msg.your_position)
        _notify(callbacks, 'on_position_update', msg)

    def on_game_start(msg):
        logger.info(f"Hand dealt: {len(msg.hand)} cards, dealer P{msg.dealer}")
        if msg.position:
            state.set_position(msg.position)

        state.set_game_info(msg.game_id, msg.current_hand, msg.dealer)
        state.set_trump(msg.trump)
        state.set_cards(msg.hand)
        state.set_bidding(True)
        state.set_phase(PHASE_BIDDING)

        if msg.game_id:
            connection.set_match_id(msg.game_id)

        if msg.score1 is not None and msg.score2 is not None:
            if state.position is not None and team_number(state.position) == 2:
                state.set_game_scores(msg.score2, msg.score1)
            else:
                state.set_game_scores(msg.score1, msg.score2)

        _notify(callbacks, 'on_game_start', msg)

    def on_start_draw(msg):
        state.set_phase(PHASE_DRAW)
        state.set_has_drawn(False)
        _notify(callbacks, 'on_start_draw', msg)

    def on_you_drew(msg):
        state.set_has_drawn(True)
        _notify(callbacks, 'on_you_drew', msg)

    def on_player_drew(msg):
        logger.info(f"{msg.username} drew {msg.card} (draw {msg.draw_order})")
        _notify(callbacks, 'on_player_drew', msg)

    def on_teams_announced(msg):
        logger.info(f"Teams: {' & '.join(msg.team1)} vs {' & '.join(msg.team2)}")
        _notify(callbacks, 'on_teams_announced', msg)

    def on_create_ui(msg):
        _notify(callbacks, 'on_create_ui', msg)

    def on_destroy_hands(msg):
        logger.info("Both teams bid zero, hand thrown in")
        _notify(callbacks, 'on_destroy_hands', msg)

    # Bidding phase

    def on_bid_received(msg):
        # The server's echo of our own staged bid confirms it
        if msg.position == state.position and state.pending_bid is not None:
            state.confirm_bid()
        else:
            state.record_bid(msg.position, msg.bid)
        state.add_temp_bid(msg.bid)
        state.set_multipliers(msg.team1_mult, msg.team2_mult)
        _notify(callbacks, 'on_bid_received', msg)

    def on_done_bidding(msg):
        state.set_bidding(False)
        state.set_phase(PHASE_PLAYING)
        state.clear_trick()
        state.trump_broken = False
        if msg.lead is not None:
            state.set_current_turn(msg.lead)
        _notify(callbacks, 'on_done_bidding', msg)

    # Playing phase

    def on_update_turn(msg):
        state.set_current_turn(msg.current_turn)
        state.set_has_played_card(False)
        _notify(callbacks, 'on_update_turn', msg)

    def on_card_played(msg):
        logger.info(f"Card played: {msg.card} by P{msg.position}")
        if msg.trump_broken:
            state.break_trump()

        state.add_played_card(msg.card, msg.position)

        if msg.position == state.position:
            state.confirm_card_play()
            state.set_has_played_card(True)

        _notify(callbacks, 'on_card_played', msg)

    def on_trick_complete(msg):
        logger.info(f"Trick won by P{msg.winner}")
        state.record_trick_winner(msg.winner)
        state.clear_trick()
        _notify(callbacks, 'on_trick_complete', msg)

    def on_hand_complete(msg):
        if msg.score is not None:
            state.set_raw_game_scores(msg.score)
        state.reset_for_new_hand()
        _notify(callbacks, 'on_hand_complete', msg)

    # Match end

    def on_game_end(msg):
        logger.info(f"Match over, winner: team {msg.winner}")
        if msg.score is not None:
            state.set_raw_game_scores(msg.score)
        state.set_phase(PHASE_ENDED)
        connection.clear_match_id()
        connection.cleanup_match_listeners()
        _notify(callbacks, 'on_game_end', msg)

    def on_rainbow(msg):
        state.add_rainbow(msg.position)
        _notify(callbacks, 'on_rainbow', msg)

    def on_abort_game(msg):
        logger.warning(f"Match aborted: {msg.reason}")
        state.reset()
        connection.clear_match_id()
        connection.cleanup_match_listeners()
        _notify(callbacks, 'on_abort_game', msg)

    # Other seats dropping out and back

    def on_player_disconnected(msg):
        logger.info(f"Player {msg.username} at P{msg.position} disconnected")
        _notify(callbacks, 'on_player_disconnected', msg)

    def on_player_reconnected(msg):
        logger.info(f"Player {msg.username} at P{msg.position} reconnected")
        _notify(callbacks, 'on_player_reconnected', msg)

    handlers = {
        ServerEvent.POSITION_UPDATE: on_position_update,
        ServerEvent.GAME_START: on_game_start,
        ServerEvent.START_DRAW: on_start_draw,
        ServerEvent.YOU_DREW: on_you_drew,
        ServerEvent.PLAYER_DREW: on_player_drew,
        ServerEvent.TEAMS_ANNOUNCED: on_teams_announced,
        ServerEvent.CREATE_UI: on_create_ui,
        ServerEvent.BID_RECEIVED: on_bid_received,
        ServerEvent.DONE_BIDDING: on_done_bidding,
        ServerEvent.UPDATE_TURN: on_update_turn,
        ServerEvent.CARD_PLAYED: on_card_played,
        ServerEvent.TRICK_COMPLETE: on_trick_complete,
        ServerEvent.HAND_COMPLETE: on_hand_complete,
        ServerEvent.GAME_END: on_game_end,
        ServerEvent.RAINBOW: on_rainbow,
        ServerEvent.DESTROY_HANDS: on_destroy_hands,
        ServerEvent.ABORT_GAME: on_abort_game,
        ServerEvent.PLAYER_DISCONNECTED: on_player_disconnected,
        ServerEvent.PLAYER_RECONNECTED: on_player_reconnected,
    }
    return [
        connection.on_match(event.value, _decoded(event, handler))
        for event, handler in handlers.items()
    ]


def register_chat_handlers(connection: ConnectionManager, state: GameState,
                           callbacks: Optional[Callbacks] = None) -> Unsubscribes:
    """Register in-game chat (match scoped)."""
    callbacks = callbacks or {}

    def on_chat_message(msg):
        logger.info(f"Chat from P{msg.position}: {msg.message}")
        _notify(callbacks, 'on_chat_message', msg)

    return [
        connection.on_match(ServerEvent.CHAT_MESSAGE.value, _decoded(ServerEvent.CHAT_MESSAGE, on_chat_message)),
    ]


def register_match_handlers(connection: ConnectionManager, state: GameState,
                            callbacks: Optional[Callbacks] = None) -> Unsubscribes:
    return (
        register_game_handlers(connection, state, callbacks)
        + register_chat_handlers(connection, state, callbacks)
    )


def register_all_handlers(connection: ConnectionManager, state: GameState,
                          callbacks: Optional[Callbacks] = None) -> Unsubscribes:
    """
    Register every handler.

    Match handlers are registered now and again whenever a lobby is
    entered or a match is rejoined after they were cleaned up.
    """
    callbacks = callbacks or {}

    def enter_match():
        if not has_match_handlers(connection):
            register_match_handlers(connection, state, callbacks)

    unsubscribes = register_auth_handlers(connection, state, callbacks)
    unsubscribes += register_lobby_handlers(connection, state, callbacks, enter_match)
    unsubscribes += register_rejoin_handlers(connection, state, callbacks, enter_match)
    unsubscribes += register_match_handlers(connection, state, callbacks)
    return unsubscribes
