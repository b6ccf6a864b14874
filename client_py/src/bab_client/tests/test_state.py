"""
Tests for the game state container.
"""

from bab_client.constants import (
    EVENT_BID_ROLLED_BACK, EVENT_CARD_PLAY_ROLLED_BACK, EVENT_CARD_PLAYED, EVENT_HAND_CHANGED,
    EVENT_PLAYER_NAMES_UPDATED, EVENT_STATE_RESTORED, EVENT_TRUMP_BROKEN,
    PHASE_BIDDING, PHASE_NONE, PHASE_PLAYING,
)
from bab_client.models import Card, PlayedCard
from bab_client.state import GameState, PlayerRoster

ACE_SPADES = Card('A', 'spades')
KING_HEARTS = Card('K', 'hearts')


def record(state, event):
    """Collect every payload emitted for an event."""
    seen = []
    state.on(event, seen.append)
    return seen


def test_initial_state():
    state = GameState()
    assert state.phase == PHASE_NONE
    assert state.my_cards == []
    assert state.is_leading()
    assert not state.has_pending_action()
    assert not state.is_my_turn()


def test_set_cards_copies_input():
    """Test the hand is a copy of the caller's list."""
    state = GameState()
    cards = [ACE_SPADES, {'rank': 'K', 'suit': 'hearts'}]
    state.set_cards(cards)
    cards.pop()
    assert state.my_cards == [ACE_SPADES, KING_HEARTS]


def test_optimistic_play_then_rollback():
    """Test a rejected play restores the hand in its original order."""
    state = GameState()
    state.set_cards([ACE_SPADES, KING_HEARTS])
    rollbacks = record(state, EVENT_CARD_PLAY_ROLLED_BACK)
    hands = record(state, EVENT_HAND_CHANGED)

    assert state.optimistic_play_card({'rank': 'A', 'suit': 'spades'})
    assert state.my_cards == [KING_HEARTS]
    assert state.has_pending_action()
    assert state.pending_card == ACE_SPADES

    state.rollback_card_play()
    assert state.my_cards == [ACE_SPADES, KING_HEARTS]
    assert rollbacks == [ACE_SPADES]
    assert hands[-1] == [ACE_SPADES, KING_HEARTS]
    assert not state.has_pending_action()

    # Nothing pending: no-op
    state.rollback_card_play()
    assert rollbacks == [ACE_SPADES]


def test_optimistic_play_then_confirm():
    state = GameState()
    state.set_cards([ACE_SPADES, KING_HEARTS])

    assert state.optimistic_play_card(KING_HEARTS)
    state.confirm_card_play()
    assert state.my_cards == [ACE_SPADES]
    assert state.pending_card is None

    state.confirm_card_play()
    state.rollback_card_play()
    assert state.my_cards == [ACE_SPADES]


def test_optimistic_play_of_missing_card():
    """Test a card not in hand is refused with no change."""
    state = GameState()
    state.set_cards([ACE_SPADES])
    hands = record(state, EVENT_HAND_CHANGED)

    assert not state.optimistic_play_card(KING_HEARTS)
    assert state.my_cards == [ACE_SPADES]
    assert hands == []
    assert not state.has_pending_action()


def test_one_pending_action_per_kind():
    """Test a pending card play blocks a second play but not a bid."""
    state = GameState()
    state.set_cards([ACE_SPADES, KING_HEARTS])
    state.current_hand = 2
    state.position = 1

    assert state.optimistic_play_card(ACE_SPADES)
    assert not state.optimistic_play_card(KING_HEARTS)
    assert state.my_cards == [KING_HEARTS]

    assert state.optimistic_bid(1)
    assert not state.optimistic_bid(2)
    assert state.pending_bid == 1


def test_pending_bid_does_not_block_card_play():
    """Test a bid whose echo never arrives leaves card play open."""
    state = GameState()
    state.set_cards([ACE_SPADES, KING_HEARTS])
    state.current_hand = 2
    state.position = 1

    assert state.optimistic_bid(1)
    assert state.optimistic_play_card(ACE_SPADES)
    assert state.pending_card == ACE_SPADES
    assert state.my_cards == [KING_HEARTS]


def test_optimistic_bid():
    """Test staging, confirming and rolling back a bid."""
    state = GameState()
    state.set_position(1)
    state.current_hand = 4
    rollbacks = record(state, EVENT_BID_ROLLED_BACK)

    assert not state.optimistic_bid(5)
    assert not state.optimistic_bid('2B')
    assert state.optimistic_bid('b')
    assert state.pending_bid == 'B'

    state.confirm_bid()
    assert state.bids == {1: 'B'}
    assert state.team_bids == 'B/-'
    assert not state.has_pending_action()

    assert state.optimistic_bid(3)
    state.rollback_bid()
    state.rollback_bid()
    assert rollbacks == [3]
    assert state.bids == {1: 'B'}


def test_bore_availability_follows_history():
    state = GameState()
    assert state.available_bore_bids() == ['B']
    state.add_temp_bid('3')
    state.add_temp_bid('b')
    assert state.available_bore_bids() == ['2B']
    state.clear_temp_bids()
    assert state.available_bore_bids() == ['B']


def test_record_bid_summaries():
    """Test my-team and opposing-team bid summaries from seat 1."""
    state = GameState()
    state.set_position(1)

    state.record_bid(1, 3)
    assert state.team_bids == '3/-'
    assert state.opp_bids == '-/-'

    state.record_bid(2, 'b')
    state.record_bid(3, '2')
    assert state.team_bids == '3/2'
    assert state.opp_bids == 'B/-'
    assert state.bids == {1: 3, 2: 'B', 3: 2}


def test_trick_bookkeeping():
    """Test the lead is fixed by the first card until the trick clears."""
    state = GameState()
    played = record(state, EVENT_CARD_PLAYED)
    cards = [Card('2', 'hearts'), Card('9', 'hearts'), Card('A', 'hearts'), Card('3', 'clubs')]

    for i, card in enumerate(cards):
        state.add_played_card(card, i + 1)
        assert state.played_card_index == i + 1
        assert state.lead_card == Card('2', 'hearts')
        assert state.lead_position == 1

    assert [p['played_card_index'] for p in played] == [1, 2, 3, 4]
    assert state.get_cards_in_trick() == 4

    # A fifth card is ignored
    state.add_played_card(Card('4', 'clubs'), 1)
    assert state.get_cards_in_trick() == 4

    state.has_played_card = True
    state.clear_trick()
    assert state.played_card_index == 0
    assert state.lead_card is None
    assert state.lead_position is None
    assert not state.has_played_card
    assert state.is_leading()


def test_record_trick_winner():
    state = GameState()
    state.set_position(2)
    state.add_played_card(Card('2', 'hearts'), 1)
    state.add_played_card(Card('K', 'hearts'), 2)

    state.record_trick_winner(4)
    state.record_trick_winner(1)
    assert state.team_tricks == 1
    assert state.opp_tricks == 1
    assert state.team_trick_history[0] == [
        PlayedCard(Card('2', 'hearts'), 1), PlayedCard(Card('K', 'hearts'), 2),
    ]


def test_break_trump_emits_once():
    state = GameState()
    broken = record(state, EVENT_TRUMP_BROKEN)
    state.break_trump()
    state.break_trump()
    assert state.trump_broken
    assert len(broken) == 1


def test_reset_for_new_hand_keeps_scores():
    """Test per-hand state clears while scores, rainbows and identity stay."""
    state = GameState()
    state.set_player('sock-1', 'alice', 1)
    state.set_game_scores(120, 80)
    state.add_rainbow(3)
    state.record_bid(1, 3)
    state.add_temp_bid('3')
    state.add_played_card(Card('2', 'hearts'), 1)
    state.set_trick_scores(2, 1)
    state.break_trump()
    state.set_has_drawn(True)

    state.reset_for_new_hand()

    assert state.bids == {}
    assert state.team_bids is None
    assert state.temp_bids == []
    assert state.played_cards == []
    assert state.team_tricks == 0
    assert not state.trump_broken
    assert not state.has_drawn
    assert state.is_bidding
    assert (state.team_score, state.opp_score) == (120, 80)
    assert state.team_rainbows == 1
    assert state.username == 'alice'
    assert state.position == 1


def test_player_names_follow_seat_and_roster():
    """Test derived names are recomputed whenever seat or roster change."""
    state = GameState()
    names = record(state, EVENT_PLAYER_NAMES_UPDATED)

    state.set_player_data(PlayerRoster(
        positions=[1, 2, 3, 4],
        usernames=['me', 'east', 'pard', 'west'],
    ))
    assert names == []
    assert state.players[3] == {'username': 'pard', 'pic': None}

    state.set_position(1)
    assert (state.partner_name, state.opp1_name, state.opp2_name) == ('pard', 'east', 'west')

    state.set_position(2)
    assert state.username == 'east'
    assert (state.partner_name, state.opp1_name, state.opp2_name) == ('west', 'pard', 'me')
    assert len(names) == 2
    assert state.get_player_name_by_position(4) == 'west'


def test_player_names_fall_back():
    state = GameState()
    state.set_position(1)
    state.set_player_data(PlayerRoster(positions=[1, 2], usernames=['me', None]))
    assert state.partner_name == 'Partner'
    assert state.opp1_name == 'Opp1'
    assert state.get_player_name_by_position(3) == 'P3'


def test_queries():
    state = GameState()
    state.set_position(2)
    state.set_current_turn(2)
    assert state.is_my_turn()
    assert state.get_partner_position() == 4
    assert state.is_teammate(4)
    assert not state.is_teammate(3)


def test_listener_errors_are_isolated():
    """Test a failing listener does not stop delivery to the others."""
    state = GameState()
    seen = []

    def broken(_):
        raise RuntimeError("boom")

    state.on(EVENT_TRUMP_BROKEN, broken)
    state.on(EVENT_TRUMP_BROKEN, seen.append)
    state.break_trump()
    assert seen == [None]


def test_listener_may_unsubscribe_during_emit():
    state = GameState()
    calls = []

    def once(cards):
        calls.append(cards)
        unsubscribe()

    unsubscribe = state.on(EVENT_HAND_CHANGED, once)
    state.set_cards([ACE_SPADES])
    state.set_cards([KING_HEARTS])
    assert calls == [[ACE_SPADES]]


def test_restore_from_rejoin_overwrites_everything():
    """Test a snapshot replaces stale state, including the trick in progress."""
    state = GameState()
    state.set_position(4)
    state.set_cards([ACE_SPADES, KING_HEARTS])
    state.set_trump(Card('2', 'clubs'))
    state.break_trump()
    state.record_bid(4, 7)
    state.set_game_scores(999, 999)
    state.add_played_card(Card('3', 'clubs'), 3)
    state.optimistic_play_card(ACE_SPADES)
    restored = record(state, EVENT_STATE_RESTORED)

    snapshot = {
        'gameId': 'match-9',
        'position': 2,
        'currentHand': 4,
        'trump': {'rank': '7', 'suit': 'diamonds'},
        'trumpBroken': False,
        'dealer': 1,
        'isBidding': False,
        'currentTurn': 3,
        'hand': [{'rank': 'Q', 'suit': 'hearts'}, {'rank': 'HI', 'suit': 'joker'}],
        'bids': {'1': '2', '2': 'B', '3': '0', '4': '1'},
        'score': {'team1': 10, 'team2': 20},
        'tricks': {'team1': 1, 'team2': 0},
        'playedCards': [None, {'rank': '5', 'suit': 'hearts'}, {'rank': '9', 'suit': 'hearts'}, None],
        'players': [
            {'position': 1, 'username': 'ann'},
            {'position': 2, 'username': 'bob'},
            {'position': 3, 'username': 'cat'},
            {'position': 4, 'username': 'dan'},
        ],
    }
    state.restore_from_rejoin(snapshot)

    assert state.game_id == 'match-9'
    assert state.position == 2
    assert state.current_hand == 4
    assert state.trump == Card('7', 'diamonds')
    assert not state.trump_broken
    assert state.my_cards == [Card('Q', 'hearts'), Card('HI', 'joker')]
    assert state.bids == {1: 2, 2: 'B', 3: 0, 4: 1}
    assert state.team_bids == 'B/1'
    assert state.opp_bids == '2/0'
    assert (state.team_score, state.opp_score) == (20, 10)
    assert (state.team_tricks, state.opp_tricks) == (0, 1)
    assert state.phase == PHASE_PLAYING
    assert state.current_turn == 3

    assert state.lead_card == Card('5', 'hearts')
    assert state.lead_position == 2
    assert state.played_card_index == 2
    assert state.has_played_card
    assert not state.has_pending_action()

    assert state.partner_name == 'dan'
    assert state.opp1_name == 'cat'
    assert len(restored) == 1
    assert restored[0] is snapshot


def test_restore_from_rejoin_defaults():
    """Test missing fields fall back to defaults, seat and match id to current values."""
    state = GameState()
    state.set_position(3)
    state.game_id = 'match-1'
    state.set_game_scores(50, 40)

    state.restore_from_rejoin({'isBidding': True, 'teamScore': 5, 'oppScore': 6})

    assert state.position == 3
    assert state.game_id == 'match-1'
    assert state.phase == PHASE_BIDDING
    assert (state.team_score, state.opp_score) == (5, 6)
    assert state.my_cards == []
    assert state.trump is None
    assert state.played_cards == []


def test_restore_from_rejoin_null_fields():
    """Test null scalars take their defaults instead of aborting the restore."""
    state = GameState()
    state.set_position(2)
    state.set_cards([ACE_SPADES])
    state.break_trump()
    restored = record(state, EVENT_STATE_RESTORED)

    state.restore_from_rejoin({
        'gameId': 'g',
        'position': 2,
        'currentHand': None,
        'trumpBroken': None,
        'isBidding': None,
        'dealer': None,
        'bids': None,
        'score': None,
        'hand': [{'rank': 'K', 'suit': 'hearts'}],
    })

    assert state.my_cards == [KING_HEARTS]
    assert state.current_hand == 0
    assert not state.trump_broken
    assert not state.is_bidding
    assert state.phase == PHASE_PLAYING
    assert state.bids == {}
    assert len(restored) == 1


def test_restore_from_rejoin_skips_bad_cards():
    """Test unreadable cards are skipped and played-card slots keep their seats."""
    state = GameState()
    state.set_position(1)

    state.restore_from_rejoin({
        'position': 'north',
        'currentHand': '3',
        'trump': {'rank': 'Z'},
        'hand': [{'rank': 'Z', 'suit': 'hearts'}, {'rank': 'K', 'suit': 'hearts'}, 'AS'],
        'playedCards': [None, {'rank': '1', 'suit': 'cups'}, {'rank': '9', 'suit': 'hearts'}, None],
        'bids': {'1': '2', 'x': '1', '3': None},
        'players': [{'position': 1, 'username': 'ann'}, {'username': 'ghost'}, 'junk'],
    })

    assert state.position == 1
    assert state.current_hand == 3
    assert state.trump is None
    assert state.my_cards == [KING_HEARTS]
    assert state.played_cards == [PlayedCard(card=Card('9', 'hearts'), position=3)]
    assert state.lead_position == 3
    assert state.bids == {1: 2}
    assert state.get_player_name_by_position(1) == 'ann'


def test_reset():
    state = GameState()
    state.set_player('s', 'alice', 1)
    state.set_cards([ACE_SPADES])
    state.reset()
    assert state.username is None
    assert state.my_cards == []
    assert state.to_dict()['position'] is None
