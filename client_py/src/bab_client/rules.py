"""
Card legality rules.

These functions mirror the server's rules so the client can predict the
outcome of its own moves. The server always has final authority; nothing
here keeps state between calls.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from .comparator import get_rank_value
from .models import Card, Rank, Suit

SuitLike = Union[Suit, str]


@dataclass(frozen=True)
class LegalityResult:
    """Result of a legality check."""
    legal: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> 'LegalityResult':
        return cls(legal=True)

    @classmethod
    def illegal(cls, reason: str) -> 'LegalityResult':
        return cls(legal=False, reason=reason)


def _suit_matches(card: Card, suit: Suit, trump: Optional[Card]) -> bool:
    if card.suit == suit:
        return True
    if trump is None:
        return False
    trump_suit = trump.suit
    return (
        (card.suit == Suit.JOKER and suit == trump_suit)
        or (suit == Suit.JOKER and card.suit == trump_suit)
    )


def same_suit(card1: Card, card2: Card, trump: Optional[Card] = None) -> bool:
    """
    Check if two cards are the same suit.

    Jokers count as the trump suit, so a joker matches a trump-suit card
    (in either order) but never a card of another suit.
    """
    return _suit_matches(card1, card2.suit, trump)


def is_trump(card: Card, trump: Optional[Card]) -> bool:
    """True for trump-suit cards and jokers."""
    if trump is None:
        return False
    return same_suit(card, trump, trump)


def is_void(hand: Iterable[Card], suit: SuitLike, trump: Optional[Card] = None) -> bool:
    """
    Check if a hand holds no card of a suit.

    Matching is trump-aware: a joker in hand means the player is never
    void in the trump suit.
    """
    suit = Suit(suit)
    for card in hand:
        if _suit_matches(card, suit, trump):
            return False
    return True


def is_trump_tight(hand: Iterable[Card], trump: Optional[Card]) -> bool:
    """Check if every card in the hand is trump suit or a joker."""
    if trump is None:
        return False

    for card in hand:
        if card.suit != trump.suit and card.suit != Suit.JOKER:
            return False
    return True


def is_highest_trump(rank: Union[Rank, str], hand: Iterable[Card], trump: Optional[Card]) -> bool:
    """Check that no trump (or joker) in the hand outranks the given rank."""
    if trump is None:
        return True

    value = get_rank_value(rank)
    for card in hand:
        if is_trump(card, trump) and get_rank_value(card.rank) > value:
            return False
    return True


def is_legal_move(
    card: Card,
    hand: List[Card],
    lead: Optional[Card],
    is_leading: bool,
    trump: Optional[Card],
    trump_broken: bool,
    my_position: Optional[int],
    lead_position: Optional[int]
) -> LegalityResult:
    """
    Check if a card is a legal play.

    Args:
        card: Card to play
        hand: Player's hand
        lead: Lead card of the trick (None when leading)
        is_leading: Whether this player is leading the trick
        trump: Trump card for the hand
        trump_broken: Whether trump has been broken
        my_position: Seat of the acting player
        lead_position: Seat that led the trick (for the HI joker rule)

    Returns:
        LegalityResult with a reason when illegal
    """
    if is_leading:
        # Trump-tight hands have nothing else to lead
        if is_trump(card, trump) and not trump_broken and not is_trump_tight(hand, trump):
            return LegalityResult.illegal("Cannot lead trump until trump is broken")
        return LegalityResult.ok()

    if lead is None:
        return LegalityResult.illegal("No lead card found")

    if not same_suit(card, lead, trump) and not is_void(hand, lead.suit, trump):
        return LegalityResult.illegal("Must follow suit")

    # Opponents of the HI joker leader must give up their highest trump
    if lead.rank == Rank.HI and my_position is not None and lead_position is not None:
        is_opponent = my_position % 2 != lead_position % 2
        if is_opponent and not is_highest_trump(card.rank, hand, trump):
            return LegalityResult.illegal("Must play highest trump when HI joker leads")

    return LegalityResult.ok()


def would_break_trump(card: Card, trump: Optional[Card], currently_broken: bool) -> bool:
    """Check if playing a card would break trump."""
    if currently_broken:
        return False
    return is_trump(card, trump)


def get_legal_cards(
    hand: List[Card],
    lead: Optional[Card],
    is_leading: bool,
    trump: Optional[Card],
    trump_broken: bool,
    my_position: Optional[int],
    lead_position: Optional[int]
) -> List[Card]:
    """Filter a hand down to the cards that are legal to play."""
    return [
        card for card in hand
        if is_legal_move(
            card, hand, lead, is_leading, trump, trump_broken, my_position, lead_position
        ).legal
    ]

