"""Card and trick data structures"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Union

from .constants import JOKER_SUIT

Bid = Union[int, str]  # 0..hand size, or a bore token B|2B|3B|4B


class Rank(str, Enum):
    """Card ranks, jokers included."""
    TWO = '2'
    THREE = '3'
    FOUR = '4'
    FIVE = '5'
    SIX = '6'
    SEVEN = '7'
    EIGHT = '8'
    NINE = '9'
    TEN = '10'
    JACK = 'J'
    QUEEN = 'Q'
    KING = 'K'
    ACE = 'A'
    LO = 'LO'
    HI = 'HI'


class Suit(str, Enum):
    """Card suits. Jokers carry the joker suit."""
    SPADES = 'spades'
    HEARTS = 'hearts'
    DIAMONDS = 'diamonds'
    CLUBS = 'clubs'
    JOKER = JOKER_SUIT


@dataclass(frozen=True)
class Card:
    rank: Rank
    suit: Suit

    def __post_init__(self):
        # Accept plain strings so callers can write Card('A', 'spades')
        if not isinstance(self.rank, Rank):
            object.__setattr__(self, 'rank', Rank(str(self.rank).upper()))
        if not isinstance(self.suit, Suit):
            object.__setattr__(self, 'suit', Suit(str(self.suit).lower()))

    @property
    def is_joker(self) -> bool:
        return self.suit == Suit.JOKER

    @classmethod
    def from_dict(cls, data: Union['Card', Dict[str, Any]]) -> 'Card':
        """Build a card from a wire payload such as {'rank': 'A', 'suit': 'spades'}."""
        if isinstance(data, Card):
            return data
        return cls(rank=data['rank'], suit=data['suit'])

    def to_dict(self) -> Dict[str, str]:
        return {'rank': self.rank.value, 'suit': self.suit.value}

    def __str__(self) -> str:
        return f"{self.rank.value} of {self.suit.value}"


@dataclass(frozen=True)
class PlayedCard:
    """A card on the table and the seat that played it."""
    card: Card
    position: int
