"""
Client-side game state container.

Holds what the local player currently believes about the match, notifies
subscribers of every change, and stages the local player's own card plays
and bids optimistically until the server confirms or rejects them.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .bidding import available_bore_bids, calculate_multiplier, is_valid_bid, normalize_bid
from .constants import (
    EVENT_BID_RECEIVED, EVENT_BID_ROLLED_BACK, EVENT_BIDDING_CHANGED,
    EVENT_CARD_PLAY_ROLLED_BACK, EVENT_CARD_PLAYED, EVENT_GAME_INFO_SET,
    EVENT_GAME_SCORES_CHANGED, EVENT_HAND_CHANGED, EVENT_HAS_DRAWN_CHANGED,
    EVENT_HAS_PLAYED_CARD_CHANGED, EVENT_NEW_HAND_RESET, EVENT_PHASE_CHANGED,
    EVENT_PLAYER_DATA_SET, EVENT_PLAYER_NAMES_UPDATED, EVENT_PLAYER_SET,
    EVENT_PLAYERS_SET, EVENT_RAINBOW_ADDED, EVENT_RESET, EVENT_STATE_RESTORED,
    EVENT_TEMP_BIDS_CHANGED, EVENT_TRICK_CLEARED, EVENT_TRICK_SCORES_CHANGED,
    EVENT_TRUMP_BROKEN, EVENT_TRUMP_SET, EVENT_TURN_CHANGED,
    PHASE_BIDDING, PHASE_NONE, PHASE_PLAYING, TRICK_SIZE,
)
from .emitter import EventEmitter, Unsubscribe
from .events import RejoinSnapshot, TeamScore
from .models import Bid, Card, PlayedCard
from .positions import is_same_team, partner_of, rotate, team_number

logger = logging.getLogger(__name__)

CardLike = Union[Card, Dict[str, Any]]


@dataclass(frozen=True)
class PendingCardPlay:
    """An optimistic card play and the hand to restore if it is rejected."""
    card: Card
    previous_hand: Tuple[Card, ...]


@dataclass(frozen=True)
class PendingBid:
    bid: Bid


@dataclass
class PlayerRoster:
    """Seat roster as the server sends it: parallel arrays."""
    positions: List[int] = field(default_factory=list)
    sockets: List[Optional[str]] = field(default_factory=list)
    usernames: List[Optional[str]] = field(default_factory=list)
    pics: List[Optional[str]] = field(default_factory=list)

    def name_at(self, position: int) -> Optional[str]:
        if position not in self.positions:
            return None
        idx = self.positions.index(position)
        if idx < len(self.usernames):
            return self.usernames[idx]
        return None


def _score_pair(position: Optional[int], raw: TeamScore) -> Tuple[int, int]:
    """Map raw team1/team2 values to (mine, theirs). Team 1 holds the odd seats."""
    if position is not None and team_number(position) == 2:
        return raw.team2, raw.team1
    return raw.team1, raw.team2


class GameState:
    """
    Mutable model of the match as the local player sees it.

    Every mutator applies its change fully before emitting, so a listener
    never observes a half-applied update.
    """

    def __init__(self):
        self._events = EventEmitter()
        self.reset()

    def reset(self):
        """Reset every field to its initial value."""
        # Player identity
        self.player_id: Optional[str] = None
        self.username: Optional[str] = None
        self.position: Optional[int] = None
        self.pic: Optional[str] = None

        # Game info
        self.game_id: Optional[str] = None
        self.phase: str = PHASE_NONE
        self.current_hand: int = 0
        self.dealer: Optional[int] = None

        # Trump
        self.trump: Optional[Card] = None
        self.trump_broken: bool = False

        # Turn management
        self.current_turn: Optional[int] = None
        self.is_bidding: bool = False

        # Cards
        self.my_cards: List[Card] = []
        self.played_cards: List[PlayedCard] = []

        # Trick
        self.lead_card: Optional[Card] = None
        self.lead_position: Optional[int] = None
        self.played_card_index: int = 0

        # Bids
        self.bids: Dict[int, Bid] = {}
        self.team_bids: Optional[str] = None
        self.opp_bids: Optional[str] = None
        self.team1_mult: int = 1
        self.team2_mult: int = 1
        self.temp_bids: List[str] = []  # bid history this round, drives bore availability

        # Scores
        self.team_tricks: int = 0
        self.opp_tricks: int = 0
        self.team_score: int = 0
        self.opp_score: int = 0
        self.team_rainbows: int = 0
        self.opp_rainbows: int = 0
        self.team_trick_history: List[List[PlayedCard]] = []
        self.opp_trick_history: List[List[PlayedCard]] = []

        # Players
        self.player_data: Optional[PlayerRoster] = None
        self.players: Dict[int, Dict[str, Optional[str]]] = {}
        self.partner_name: Optional[str] = None
        self.opp1_name: Optional[str] = None
        self.opp2_name: Optional[str] = None

        # UI interaction flags
        self.has_played_card: bool = False
        self.has_drawn: bool = False
        self.clicked_card_position: Optional[int] = None

        self.rainbows: List[int] = []

        # Data that arrived before its consumer was ready
        self._pending_rejoin_data: Optional[RejoinSnapshot] = None
        self._pending_position_data: Optional[Any] = None
        self._pending_game_start_data: Optional[Any] = None

        # Optimistic updates
        self._pending_card: Optional[PendingCardPlay] = None
        self._pending_bid: Optional[PendingBid] = None

        self._emit(EVENT_RESET)

    # Event system

    def on(self, event: str, callback: Callable[[Any], Any]) -> Unsubscribe:
        """Subscribe to state changes. Returns an unsubscribe function."""
        return self._events.on(event, callback)

    def off(self, event: str, callback: Callable[[Any], Any]):
        self._events.off(event, callback)

    def _emit(self, event: str, data: Any = None):
        self._events.emit(event, data)

    # State updates

    def set_player(self, player_id: Optional[str], username: Optional[str],
                   position: Optional[int], pic: Optional[str] = None):
        self.player_id = player_id
        self.username = username
        self.position = position
        self.pic = pic

        if self.player_data:
            self._update_player_names()

        self._emit(EVENT_PLAYER_SET, {
            'player_id': player_id, 'username': username, 'position': position, 'pic': pic,
        })

    def set_position(self, position: int):
        """Set the local seat and re-derive seat names."""
        self.position = position
        if self.bids:
            self._update_team_bids()
        self._update_player_names()

    def set_game_info(self, game_id: Optional[str], current_hand: int, dealer: Optional[int]):
        self.game_id = game_id
        self.current_hand = current_hand
        self.dealer = dealer
        self._emit(EVENT_GAME_INFO_SET, {
            'game_id': game_id, 'current_hand': current_hand, 'dealer': dealer,
        })

    def set_phase(self, phase: str):
        old_phase = self.phase
        self.phase = phase
        self._emit(EVENT_PHASE_CHANGED, {'old_phase': old_phase, 'new_phase': phase})

    def set_trump(self, trump: Optional[CardLike]):
        self.trump = Card.from_dict(trump) if trump is not None else None
        self._emit(EVENT_TRUMP_SET, self.trump)

    def break_trump(self):
        """Mark trump broken. One-way within a hand."""
        if not self.trump_broken:
            self.trump_broken = True
            self._emit(EVENT_TRUMP_BROKEN)

    def set_current_turn(self, position: Optional[int]):
        self.current_turn = position
        self._emit(EVENT_TURN_CHANGED, position)

    def set_bidding(self, is_bidding: bool):
        self.is_bidding = is_bidding
        self._emit(EVENT_BIDDING_CHANGED, is_bidding)

    def set_cards(self, cards: List[CardLike]):
        """Replace the hand with a copy of the given cards."""
        self.my_cards = [Card.from_dict(card) for card in cards]
        self._emit(EVENT_HAND_CHANGED, list(self.my_cards))

    def record_bid(self, position: int, bid: Bid):
        """Record a bid and refresh the team bid summaries."""
        try:
            bid = normalize_bid(bid)
        except ValueError:
            logger.warning(f"Recording unrecognised bid {bid!r} for seat {position}")
        self.bids[position] = bid
        self._update_team_bids()
        self._update_multipliers()
        self._emit(EVENT_BID_RECEIVED, {'position': position, 'bid': bid})

    def _update_team_bids(self):
        position = self.position
        my_bid = self.bids.get(position)
        partner_bid = self.bids.get(partner_of(position))

        opp_positions = [2, 4] if position is not None and team_number(position) == 1 else [1, 3]
        opp1_bid = self.bids.get(opp_positions[0])
        opp2_bid = self.bids.get(opp_positions[1])

        def fmt(bid):
            return '-' if bid is None else str(bid)

        self.team_bids = f"{fmt(my_bid)}/{fmt(partner_bid)}"
        self.opp_bids = f"{fmt(opp1_bid)}/{fmt(opp2_bid)}"

    def _update_multipliers(self):
        """Team multipliers implied by the bore bids on the ledger."""
        self.team1_mult = calculate_multiplier(self.bids.get(1), self.bids.get(3))
        self.team2_mult = calculate_multiplier(self.bids.get(2), self.bids.get(4))

    def set_multipliers(self, team1_mult: Optional[int], team2_mult: Optional[int]):
        if team1_mult is not None:
            self.team1_mult = team1_mult
        if team2_mult is not None:
            self.team2_mult = team2_mult

    def set_trick_scores(self, team_tricks: int, opp_tricks: int):
        self.team_tricks = team_tricks
        self.opp_tricks = opp_tricks
        self._emit(EVENT_TRICK_SCORES_CHANGED, {'team_tricks': team_tricks, 'opp_tricks': opp_tricks})

    def set_game_scores(self, team_score: int, opp_score: int):
        self.team_score = team_score
        self.opp_score = opp_score
        self._emit(EVENT_GAME_SCORES_CHANGED, {'team_score': team_score, 'opp_score': opp_score})

    def set_raw_game_scores(self, raw: TeamScore):
        """Set scores from raw team1/team2 values using the local seat's parity."""
        self.set_game_scores(*_score_pair(self.position, raw))

    def add_played_card(self, card: CardLike, position: int):
        """
        Append a card to the trick in progress.

        The first card of a trick fixes the lead card and lead seat until
        the trick is cleared.
        """
        card = Card.from_dict(card)
        if len(self.played_cards) >= TRICK_SIZE:
            logger.warning(f"Trick already holds {TRICK_SIZE} cards; ignoring {card} from seat {position}")
            return

        self.played_cards.append(PlayedCard(card=card, position=position))
        self.played_card_index += 1

        if len(self.played_cards) == 1:
            self.lead_card = card
            self.lead_position = position

        self._emit(EVENT_CARD_PLAYED, {
            'card': card, 'position': position, 'played_card_index': self.played_card_index,
        })

    def clear_trick(self):
        """Reset the trick in progress after it completes."""
        self.played_cards = []
        self.played_card_index = 0
        self.lead_card = None
        self.lead_position = None
        self.has_played_card = False
        self._emit(EVENT_TRICK_CLEARED)

    def record_trick_winner(self, winner: int):
        """Credit a finished trick to the winner's team, as reported by the server."""
        trick = list(self.played_cards)
        if self.position is not None and is_same_team(winner, self.position):
            self.team_tricks += 1
            self.team_trick_history.append(trick)
        else:
            self.opp_tricks += 1
            self.opp_trick_history.append(trick)
        self._emit(EVENT_TRICK_SCORES_CHANGED, {
            'team_tricks': self.team_tricks, 'opp_tricks': self.opp_tricks, 'winner': winner,
        })

    def set_players(self, players: Dict[int, Dict[str, Optional[str]]]):
        self.players = dict(players)
        self._emit(EVENT_PLAYERS_SET, self.players)

    def set_player_data(self, roster: PlayerRoster):
        """Set the raw seat roster and derive the normalized players map and seat names."""
        self._apply_roster(roster)

        if self.position:
            self._update_player_names()

        self._emit(EVENT_PLAYER_DATA_SET, self.player_data)

    def _apply_roster(self, roster: PlayerRoster):
        self.player_data = roster
        self.players = {}
        for idx, pos in enumerate(roster.positions):
            self.players[pos] = {
                'username': roster.usernames[idx] if idx < len(roster.usernames) else None,
                'pic': roster.pics[idx] if idx < len(roster.pics) else None,
            }

    def _derive_player_names(self) -> bool:
        roster = self.player_data
        if not roster or not self.position or self.position not in roster.positions:
            return False

        self.username = roster.name_at(self.position) or self.username
        self.partner_name = roster.name_at(partner_of(self.position)) or 'Partner'
        self.opp1_name = roster.name_at(rotate(self.position)) or 'Opp1'
        self.opp2_name = roster.name_at(rotate(rotate(rotate(self.position)))) or 'Opp2'
        return True

    def _update_player_names(self):
        if self._derive_player_names():
            self._emit_player_names()

    def _emit_player_names(self):
        self._emit(EVENT_PLAYER_NAMES_UPDATED, {
            'username': self.username,
            'partner_name': self.partner_name,
            'opp1_name': self.opp1_name,
            'opp2_name': self.opp2_name,
        })

    def get_player_name_by_position(self, position: int) -> str:
        if not self.player_data:
            return f"P{position}"
        return self.player_data.name_at(position) or f"P{position}"

    def set_has_played_card(self, value: bool):
        self.has_played_card = value
        self._emit(EVENT_HAS_PLAYED_CARD_CHANGED, value)

    def set_has_drawn(self, value: bool):
        self.has_drawn = value
        self._emit(EVENT_HAS_DRAWN_CHANGED, value)

    def set_clicked_card_position(self, position: Optional[int]):
        self.clicked_card_position = position

    def add_temp_bid(self, bid: Bid):
        self.temp_bids.append(str(bid).upper())
        self._emit(EVENT_TEMP_BIDS_CHANGED, list(self.temp_bids))

    def clear_temp_bids(self):
        self.temp_bids = []
        self._emit(EVENT_TEMP_BIDS_CHANGED, [])

    def available_bore_bids(self) -> List[str]:
        return available_bore_bids(self.temp_bids)

    def add_rainbow(self, position: int):
        """Record a rainbow hand and credit it to the seat's team."""
        self.rainbows.append(position)
        if self.position is not None and is_same_team(position, self.position):
            self.team_rainbows += 1
        else:
            self.opp_rainbows += 1
        self._emit(EVENT_RAINBOW_ADDED, position)

    def consume_rainbows(self) -> List[int]:
        rainbows = list(self.rainbows)
        self.rainbows = []
        return rainbows

    # Pending data

    def set_pending_rejoin_data(self, data: RejoinSnapshot):
        self._pending_rejoin_data = data

    def consume_pending_rejoin_data(self) -> Optional[RejoinSnapshot]:
        data = self._pending_rejoin_data
        self._pending_rejoin_data = None
        return data

    def set_pending_position_data(self, data: Any):
        self._pending_position_data = data

    def consume_pending_position_data(self) -> Optional[Any]:
        data = self._pending_position_data
        self._pending_position_data = None
        return data

    def set_pending_game_start_data(self, data: Any):
        self._pending_game_start_data = data

    def consume_pending_game_start_data(self) -> Optional[Any]:
        data = self._pending_game_start_data
        self._pending_game_start_data = None
        return data

    def has_pending_data(self) -> bool:
        return bool(self._pending_rejoin_data or self._pending_position_data or self._pending_game_start_data)

    def reset_for_new_hand(self):
        """
        Reset per-hand state between hands of the same match.

        Running scores, rainbow counts and player identity carry over.
        """
        self.played_cards = []
        self.played_card_index = 0
        self.lead_card = None
        self.lead_position = None
        self.trump_broken = False

        self.bids = {}
        self.team_bids = None
        self.opp_bids = None
        self.team1_mult = 1
        self.team2_mult = 1
        self.is_bidding = True
        self.temp_bids = []

        self.team_tricks = 0
        self.opp_tricks = 0
        self.team_trick_history = []
        self.opp_trick_history = []

        self.has_played_card = False
        self.has_drawn = False
        self.clicked_card_position = None

        self.rainbows = []

        self._emit(EVENT_NEW_HAND_RESET)

    # Optimistic updates

    def optimistic_play_card(self, card: CardLike) -> bool:
        """
        Remove a card from the hand ahead of server confirmation.

        Call confirm_card_play() when the server accepts the play or
        rollback_card_play() when it rejects it.

        Returns:
            False, with no change, if the card is not in hand or an earlier
            card play is still outstanding. A pending bid does not block it.
        """
        card = Card.from_dict(card)
        if self._pending_card is not None:
            logger.warning(f"Optimistic play of {card} refused: {self._pending_card.card} is still pending")
            return False

        try:
            index = self.my_cards.index(card)
        except ValueError:
            return False

        self._pending_card = PendingCardPlay(card=card, previous_hand=tuple(self.my_cards))
        del self.my_cards[index]
        self._emit(EVENT_HAND_CHANGED, list(self.my_cards))
        return True

    def confirm_card_play(self):
        """Make the optimistic removal permanent. No-op when nothing is pending."""
        self._pending_card = None

    def rollback_card_play(self):
        """Restore the hand as it was before the rejected play."""
        pending = self._pending_card
        if pending is None:
            return

        self.my_cards = list(pending.previous_hand)
        self._pending_card = None
        self._emit(EVENT_HAND_CHANGED, list(self.my_cards))
        self._emit(EVENT_CARD_PLAY_ROLLED_BACK, pending.card)

    def optimistic_bid(self, bid: Bid) -> bool:
        """
        Stage a bid ahead of server confirmation.

        Returns:
            False, with no change, if an earlier bid is outstanding, the bore
            token is out of sequence, or the count exceeds the hand size
        """
        if self._pending_bid is not None:
            logger.warning(f"Optimistic bid {bid!r} refused: {self._pending_bid.bid!r} is still pending")
            return False

        hand_size = self.current_hand or len(self.my_cards)
        if not is_valid_bid(bid, hand_size, self.temp_bids):
            logger.warning(f"Optimistic bid {bid!r} refused: not a valid bid now")
            return False

        self._pending_bid = PendingBid(bid=normalize_bid(bid))
        return True

    def confirm_bid(self):
        """Record the pending bid for the local seat. No-op when nothing is pending."""
        pending = self._pending_bid
        if pending is None:
            return
        self._pending_bid = None
        self.record_bid(self.position, pending.bid)

    def rollback_bid(self):
        if self._pending_bid is None:
            return
        bid = self._pending_bid.bid
        self._pending_bid = None
        self._emit(EVENT_BID_ROLLED_BACK, bid)

    @property
    def pending_card(self) -> Optional[Card]:
        return self._pending_card.card if self._pending_card else None

    @property
    def pending_bid(self) -> Optional[Bid]:
        return self._pending_bid.bid if self._pending_bid else None

    def has_pending_action(self) -> bool:
        return self._pending_card is not None or self._pending_bid is not None

    # Queries

    def is_my_turn(self) -> bool:
        return self.position is not None and self.current_turn == self.position

    def get_partner_position(self) -> Optional[int]:
        return partner_of(self.position)

    def is_teammate(self, position: int) -> bool:
        return partner_of(self.position) == position

    def is_leading(self) -> bool:
        return len(self.played_cards) == 0

    def get_cards_in_trick(self) -> int:
        return len(self.played_cards)

    # Rejoin

    def restore_from_rejoin(self, snapshot: Union[RejoinSnapshot, Dict[str, Any]]):
        """
        Rebuild match state from a server snapshot after reconnecting.

        Every restored field is taken from the snapshot or its default, never
        from what was in memory before, so a reconnecting client ends up
        where one that never disconnected would be. Only the seat and match
        id fall back to the current values when the snapshot omits them.
        Null or unreadable fields take their defaults; the restore never
        raises on a bad snapshot. A single state-restored event carries
        the raw snapshot.
        """
        if isinstance(snapshot, RejoinSnapshot):
            raw = snapshot.model_dump(by_alias=True)
        else:
            raw = snapshot
            snapshot = RejoinSnapshot.from_payload(snapshot)

        self.game_id = snapshot.game_id or self.game_id
        if snapshot.position is not None:
            self.position = snapshot.position
        self.current_hand = snapshot.current_hand
        self.trump = snapshot.trump
        self.trump_broken = snapshot.trump_broken
        self.dealer = snapshot.dealer
        self.is_bidding = snapshot.is_bidding
        self.current_turn = snapshot.current_turn
        self.my_cards = list(snapshot.hand)

        # Optimistic actions from before the drop are superseded by the snapshot
        self._pending_card = None
        self._pending_bid = None

        self.bids = {}
        for seat, bid in sorted(snapshot.bids.items()):
            try:
                self.bids[seat] = normalize_bid(bid)
            except ValueError:
                self.bids[seat] = bid
        self.temp_bids = [str(bid).upper() for bid in self.bids.values()]
        self.team_bids = None
        self.opp_bids = None
        if self.bids:
            self._update_team_bids()
        self._update_multipliers()
        self.set_multipliers(snapshot.team1_mult, snapshot.team2_mult)

        self.team_tricks = snapshot.team_tricks or 0
        self.opp_tricks = snapshot.opp_tricks or 0
        if snapshot.tricks is not None:
            self.team_tricks, self.opp_tricks = _score_pair(self.position, snapshot.tricks)

        self.team_score = snapshot.team_score or 0
        self.opp_score = snapshot.opp_score or 0
        if snapshot.score is not None:
            self.team_score, self.opp_score = _score_pair(self.position, snapshot.score)

        # Trick in progress: slot index is seat - 1, first filled slot leads
        self.played_cards = []
        self.played_card_index = 0
        self.lead_card = None
        self.lead_position = None
        self.has_played_card = False
        for index, card in enumerate(snapshot.played_cards[:TRICK_SIZE]):
            if card is None:
                continue
            seat = index + 1
            if self.lead_card is None:
                self.lead_card = card
                self.lead_position = seat
            self.played_cards.append(PlayedCard(card=card, position=seat))
            self.played_card_index += 1
            if seat == self.position:
                self.has_played_card = True

        names_derived = False
        if snapshot.players:
            self._apply_roster(PlayerRoster(
                positions=[p.position for p in snapshot.players],
                sockets=[p.socket_id for p in snapshot.players],
                usernames=[p.username for p in snapshot.players],
                pics=[p.pic for p in snapshot.players],
            ))
            names_derived = self._derive_player_names()

        self.phase = PHASE_BIDDING if snapshot.is_bidding else PHASE_PLAYING

        if names_derived:
            self._emit_player_names()
        self._emit(EVENT_STATE_RESTORED, raw)

    def to_dict(self) -> Dict[str, Any]:
        """Summary snapshot for debugging."""
        return {
            'player_id': self.player_id,
            'username': self.username,
            'position': self.position,
            'phase': self.phase,
            'current_hand': self.current_hand,
            'trump': self.trump.to_dict() if self.trump else None,
            'trump_broken': self.trump_broken,
            'current_turn': self.current_turn,
            'is_bidding': self.is_bidding,
            'my_cards': len(self.my_cards),
            'played_cards': len(self.played_cards),
            'bids': dict(self.bids),
            'team_tricks': self.team_tricks,
            'opp_tricks': self.opp_tricks,
            'team_score': self.team_score,
            'opp_score': self.opp_score,
        }
