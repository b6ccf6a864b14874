"""
Bid values and the bore escalation sequence.

A bid is a trick count 0..hand size, or one of the bore tokens B, 2B, 3B,
4B. Bore tokens are claimed strictly in that order, each at most once per
round. The server re-validates every bid; these checks let the client
refuse obviously bad bids before sending them.
"""

from typing import Iterable, List, Optional

from .constants import BORE_BIDS, BORE_MULTIPLIERS
from .models import Bid


def normalize_bid(bid: Bid) -> Bid:
    """
    Normalize a bid to an int or an upper-case bore token.

    Raises:
        ValueError: If the value is neither a count nor a bore token
    """
    if isinstance(bid, bool):
        raise ValueError(f"Invalid bid: {bid!r}")
    if isinstance(bid, int):
        if bid < 0:
            raise ValueError(f"Invalid bid: {bid}")
        return bid

    text = str(bid).strip().upper()
    if text.isdigit():
        return int(text)
    if text in BORE_BIDS:
        return text
    raise ValueError(f"Invalid bid: {bid!r}")


def is_bore_bid(bid: Bid) -> bool:
    return isinstance(bid, str) and bid.strip().upper() in BORE_BIDS


def available_bore_bids(history: Iterable[str]) -> List[str]:
    """
    Bore tokens that may still be bid this round.

    Tokens go strictly in order B, 2B, 3B, 4B and each is taken at most
    once, so only the next unclaimed token in the sequence is available.
    """
    taken = {str(bid).upper() for bid in history}
    available = []
    previous_taken = True
    for token in BORE_BIDS:
        if previous_taken and token not in taken:
            available.append(token)
        previous_taken = token in taken
    return available


def is_valid_bid(bid: Bid, hand_size: int, history: Iterable[str] = ()) -> bool:
    """Check a bid against the hand size and the bore sequence so far."""
    try:
        value = normalize_bid(bid)
    except ValueError:
        return False

    if isinstance(value, int):
        return 0 <= value <= hand_size
    return value in available_bore_bids(history)


def calculate_multiplier(bid1: Optional[Bid], bid2: Optional[Bid]) -> int:
    """Team score multiplier from a partnership's two bids (1, 2, 4, 8 or 16)."""
    multiplier = 1
    for bid in (bid1, bid2):
        if is_bore_bid(bid):
            multiplier = max(multiplier, BORE_MULTIPLIERS[bid.strip().upper()])
    return multiplier
