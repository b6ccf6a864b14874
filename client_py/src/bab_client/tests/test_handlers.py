"""
Tests for inbound message handlers wired between connection and state.
"""

from bab_client.connection import ConnectionManager
from bab_client.constants import (
    PHASE_BIDDING, PHASE_ENDED, PHASE_LOBBY, PHASE_NONE, PHASE_PLAYING,
    SESSION_MATCH_ID, SESSION_USERNAME,
)
from bab_client.emitter import EventEmitter
from bab_client.handlers import has_match_handlers, register_all_handlers
from bab_client.models import Card
from bab_client.session import MemorySessionStore
from bab_client.state import GameState


class FakeTransport:
    def __init__(self):
        self.events = EventEmitter()
        self.sent = []
        self.id = 'sock-9'

    def on(self, event, callback):
        return self.events.on(event, callback)

    def off(self, event, callback):
        self.events.off(event, callback)

    def emit(self, event, data=None):
        self.sent.append((event, data))

    def connect(self):
        pass

    def disconnect(self):
        pass

    def fire(self, event, data=None):
        self.events.emit(event, data)


def setup(callbacks=None, store=None):
    store = store if store is not None else MemorySessionStore()
    transport = FakeTransport()
    connection = ConnectionManager(store=store)
    connection.initialize(transport)
    state = GameState()
    register_all_handlers(connection, state, callbacks)
    return transport, connection, state, store


def deal(transport, position=2, hand=None, score1=None, score2=None):
    data = {
        'gameId': 'match-1',
        'position': position,
        'currentHand': 2,
        'dealer': 4,
        'trump': {'rank': '7', 'suit': 'spades'},
        'hand': hand or [{'rank': 'K', 'suit': 'hearts'}, {'rank': 'A', 'suit': 'spades'}],
    }
    if score1 is not None:
        data.update(score1=score1, score2=score2)
    transport.fire('gameStart', data)


def test_sign_in_persists_username():
    transport, connection, state, store = setup()
    transport.fire('signInResponse', {'success': True, 'username': 'alice'})
    assert store.get(SESSION_USERNAME) == 'alice'
    assert state.username == 'alice'
    assert state.player_id == 'sock-9'


def test_sign_in_failure_reports_message():
    errors = []
    transport, _, state, store = setup({'on_sign_in_error': errors.append})
    transport.fire('signInResponse', {'success': False})
    assert errors == ['Sign in failed']
    assert store.get(SESSION_USERNAME) is None


def test_force_logout_clears_identity():
    store = MemorySessionStore({SESSION_USERNAME: 'alice', SESSION_MATCH_ID: 'm'})
    transport, connection, state, _ = setup(store=store)
    state.set_cards([Card('A', 'spades')])

    transport.fire('forceLogout', {'reason': 'signed in elsewhere'})

    assert store.get(SESSION_USERNAME) is None
    assert connection.match_id is None
    assert state.my_cards == []


def test_lobby_phases():
    transport, _, state, _ = setup()
    transport.fire('lobbyJoined', {'lobbyId': 'lobby-3'})
    assert state.phase == PHASE_LOBBY
    assert state.game_id == 'lobby-3'

    transport.fire('leftLobby')
    assert state.phase == PHASE_NONE
    assert state.game_id is None


def test_game_start_applies_deal():
    """Test a deal sets seat, hand, trump, phase, match id and scores by parity."""
    started = []
    transport, connection, state, store = setup({'on_game_start': started.append})

    deal(transport, position=2, score1=30, score2=45)

    assert state.position == 2
    assert state.my_cards == [Card('K', 'hearts'), Card('A', 'spades')]
    assert state.trump == Card('7', 'spades')
    assert state.dealer == 4
    assert state.is_bidding
    assert state.phase == PHASE_BIDDING
    assert store.get(SESSION_MATCH_ID) == 'match-1'
    assert (state.team_score, state.opp_score) == (45, 30)
    assert len(started) == 1


def test_bid_flow_confirms_own_bid():
    transport, _, state, _ = setup()
    deal(transport, position=2)

    transport.fire('bidReceived', {'position': 1, 'bid': '1', 'team1Mult': 1, 'team2Mult': 1})
    assert state.optimistic_bid('B')
    transport.fire('bidReceived', {'position': 2, 'bid': 'B', 'team1Mult': 1, 'team2Mult': 2})

    assert not state.has_pending_action()
    assert state.bids == {1: 1, 2: 'B'}
    assert state.temp_bids == ['1', 'B']
    assert state.team2_mult == 2
    assert state.opp_bids == '1/-'


def test_done_bidding_starts_play():
    transport, _, state, _ = setup()
    deal(transport)
    state.trump_broken = True

    transport.fire('doneBidding', {'lead': 3, 'bids': {'1': '1', '2': '0', '3': '1', '4': '0'}})

    assert not state.is_bidding
    assert state.phase == PHASE_PLAYING
    assert state.current_turn == 3
    assert not state.trump_broken
    assert state.played_cards == []


def test_card_played_confirms_own_play():
    """Test the server's echo of our card confirms the optimistic removal."""
    transport, _, state, _ = setup()
    deal(transport, position=2)

    assert state.optimistic_play_card(Card('A', 'spades'))
    transport.fire('cardPlayed', {'card': {'rank': 'A', 'suit': 'spades'}, 'position': 2, 'trumpBroken': True})

    assert not state.has_pending_action()
    assert state.my_cards == [Card('K', 'hearts')]
    assert state.trump_broken
    assert state.has_played_card
    assert state.lead_position == 2


def test_server_error_rolls_back_card():
    transport, _, state, _ = setup()
    deal(transport, position=2)
    errors = []
    state.on('cardPlayRolledBack', errors.append)

    state.optimistic_play_card(Card('A', 'spades'))
    transport.fire('error', {'type': 'GAME_STATE_ERROR', 'message': 'Illegal move', 'handler': 'playCard'})

    assert state.my_cards == [Card('K', 'hearts'), Card('A', 'spades')]
    assert errors == [Card('A', 'spades')]


def test_server_error_rolls_back_bid():
    transport, _, state, _ = setup()
    deal(transport, position=2)
    state.optimistic_bid(2)
    transport.fire('error', {'type': 'VALIDATION_ERROR', 'message': 'bad bid', 'handler': 'playerBid'})
    assert state.pending_bid is None
    assert state.bids == {}


def test_trick_and_hand_completion():
    transport, _, state, _ = setup()
    deal(transport, position=1)
    transport.fire('doneBidding', {'lead': 1})
    for seat, rank in ((1, '2'), (2, '5'), (3, 'Q'), (4, '9')):
        transport.fire('cardPlayed', {'card': {'rank': rank, 'suit': 'hearts'}, 'position': seat})

    transport.fire('trickComplete', {'winner': 3})
    assert state.team_tricks == 1
    assert state.played_cards == []
    assert state.lead_card is None

    transport.fire('handComplete', {'score': {'team1': 20, 'team2': -10}})
    assert (state.team_score, state.opp_score) == (20, -10)
    assert state.team_tricks == 0
    assert state.is_bidding


def test_rainbow_counts_by_team():
    transport, _, state, _ = setup()
    deal(transport, position=1)
    transport.fire('rainbow', {'position': 3})
    transport.fire('rainbow', {'position': 2})
    assert state.team_rainbows == 1
    assert state.opp_rainbows == 1


def test_game_end_drops_match_listeners():
    """Test match listeners go at match end and return on the next lobby."""
    transport, connection, state, store = setup()
    deal(transport, position=1)

    transport.fire('gameEnd', {'score': {'team1': 300, 'team2': 120}, 'winner': 1})

    assert state.phase == PHASE_ENDED
    assert (state.team_score, state.opp_score) == (300, 120)
    assert store.get(SESSION_MATCH_ID) is None
    assert not has_match_handlers(connection)

    transport.fire('cardPlayed', {'card': {'rank': 'A', 'suit': 'spades'}, 'position': 2})
    assert state.played_cards == []

    transport.fire('lobbyCreated', {'lobbyId': 'lobby-2'})
    assert has_match_handlers(connection)
    transport.fire('startDraw')
    assert state.phase == 'draw'


def test_match_handlers_not_duplicated_on_lobby_join():
    transport, connection, _, _ = setup()
    transport.fire('lobbyJoined', {'lobbyId': 'l'})
    transport.fire('lobbyJoined', {'lobbyId': 'l'})
    assert connection.get_listener_counts()['gameStart'] == 1


def test_abort_resets_state():
    transport, connection, state, store = setup()
    deal(transport)
    transport.fire('abortGame', {'reason': 'player left'})
    assert state.my_cards == []
    assert state.position is None
    assert store.get(SESSION_MATCH_ID) is None
    assert not has_match_handlers(connection)


def test_rejoin_success_restores_state():
    transport, connection, state, store = setup()
    connection.cleanup_match_listeners()

    transport.fire('rejoinSuccess', {
        'gameId': 'match-5',
        'position': 3,
        'currentHand': 3,
        'isBidding': False,
        'hand': [{'rank': '4', 'suit': 'clubs'}],
        'playedCards': [{'rank': 'J', 'suit': 'clubs'}, None, None, None],
    })

    assert state.position == 3
    assert state.my_cards == [Card('4', 'clubs')]
    assert state.lead_position == 1
    assert store.get(SESSION_MATCH_ID) == 'match-5'
    assert has_match_handlers(connection)


def test_rejoin_success_with_bad_fields():
    """Test a snapshot with nulls and an unreadable card still restores and notifies."""
    rejoined = []
    transport, connection, state, store = setup({'on_rejoin_success': rejoined.append})
    deal(transport, position=2, hand=[{'rank': 'A', 'suit': 'spades'}])

    transport.fire('rejoinSuccess', {
        'gameId': 'match-6',
        'position': 2,
        'currentHand': None,
        'trumpBroken': None,
        'isBidding': None,
        'hand': [{'rank': 'K', 'suit': 'hearts'}, {'rank': '?', 'suit': 'hearts'}],
        'playedCards': [{'rank': 'K', 'suit': None}, None, None, None],
    })

    assert state.my_cards == [Card('K', 'hearts')]
    assert state.current_hand == 0
    assert not state.trump_broken
    assert state.played_cards == []
    assert store.get(SESSION_MATCH_ID) == 'match-6'
    assert len(rejoined) == 1


def test_rejoin_failed_clears_match():
    failures = []
    store = MemorySessionStore({SESSION_MATCH_ID: 'old'})
    transport, connection, _, _ = setup({'on_rejoin_failed': failures.append}, store=store)
    transport.fire('rejoinFailed', {'reason': 'Game no longer exists'})
    assert connection.match_id is None
    assert failures[0].reason == 'Game no longer exists'


def test_malformed_payload_is_dropped():
    transport, _, state, _ = setup()
    deal(transport)
    transport.fire('cardPlayed', {'position': 1})
    transport.fire('trickComplete', {'winner': 'nobody'})
    assert state.played_cards == []
    assert state.team_tricks == 0


def test_position_update_derives_names():
    transport, _, state, _ = setup()
    transport.fire('positionUpdate', {
        'positions': [1, 2, 3, 4],
        'sockets': ['a', 'b', 'c', 'd'],
        'usernames': ['ann', 'bob', 'cat', 'dan'],
        'yourPosition': 4,
    })
    assert state.position == 4
    assert state.partner_name == 'bob'
    assert state.opp1_name == 'ann'
    assert state.opp2_name == 'cat'


def test_lobby_ready_callbacks():
    """Test ready updates and the all-ready signal reach the UI."""
    seen = []
    transport, connection, _, _ = setup({
        'on_player_ready_update': lambda msg: seen.append(('ready', msg.ready_socket_id)),
        'on_all_players_ready': lambda msg: seen.append(('all', msg.game_id)),
        'on_lobby_player_left': lambda msg: seen.append(('left', msg.left_username)),
    })

    transport.fire('playerReadyUpdate', {'lobbyId': 'l1', 'players': [], 'readySocketId': 'sock-3'})
    transport.fire('lobbyPlayerLeft', {'lobbyId': 'l1', 'players': [], 'leftUsername': 'bob'})
    transport.fire('allPlayersReady', {'gameId': 'match-8'})

    assert seen == [('ready', 'sock-3'), ('left', 'bob'), ('all', 'match-8')]

    # Session scoped: still delivered after match listeners are gone
    connection.cleanup_match_listeners()
    transport.fire('allPlayersReady', {'gameId': 'match-9'})
    assert seen[-1] == ('all', 'match-9')


def test_draw_announcements():
    drawn, teams = [], []
    transport, connection, _, _ = setup({'on_player_drew': drawn.append, 'on_teams_announced': teams.append})

    transport.fire('startDraw')
    transport.fire('playerDrew', {'username': 'bob', 'card': {'rank': 'J', 'suit': 'clubs'}, 'drawOrder': 1})
    transport.fire('teamsAnnounced', {'team1': ['ann', 'cat'], 'team2': ['bob', 'dan']})

    assert drawn[0].card == Card('J', 'clubs')
    assert teams[0].team1 == ['ann', 'cat']

    # Match scoped: dropped with the match listeners
    connection.cleanup_match_listeners()
    transport.fire('teamsAnnounced', {'team1': [], 'team2': []})
    assert len(teams) == 1


def test_destroy_hands_callback():
    redeals = []
    transport, _, _, _ = setup({'on_destroy_hands': redeals.append})
    transport.fire('destroyHands', {})
    assert len(redeals) == 1


def test_chat_callback():
    messages = []
    transport, _, _, _ = setup({'on_chat_message': messages.append})
    transport.fire('chatMessage', {'message': 'gl hf', 'position': 2, 'username': 'bob'})
    assert messages[0].message == 'gl hf'
