"""
Rank comparison on the fixed total order 2 < 3 < ... < A < LO < HI.
"""

from typing import Union

from .constants import RANK_VALUES
from .models import Rank

RankLike = Union[Rank, str]


def get_rank_value(rank: RankLike) -> int:
    """Numeric value of a rank."""
    key = rank.value if isinstance(rank, Rank) else str(rank).upper()
    try:
        return RANK_VALUES[key]
    except KeyError:
        raise ValueError(f"Invalid rank: {rank}")


def compare_ranks(rank_a: RankLike, rank_b: RankLike) -> int:
    """
    Compare two ranks.

    Returns:
        < 0 if rank_a is lower than rank_b
        0 if ranks are equal
        > 0 if rank_a is higher than rank_b
    """
    return get_rank_value(rank_a) - get_rank_value(rank_b)


def is_higher_rank(rank_a: RankLike, rank_b: RankLike) -> bool:
    """Check if rank_a is higher than rank_b."""
    return compare_ranks(rank_a, rank_b) > 0

