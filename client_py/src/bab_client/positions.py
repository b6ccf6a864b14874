"""
Seat arithmetic for the four-player table.

Seats 1 & 3 partner against seats 2 & 4. Play rotates clockwise
1 -> 2 -> 3 -> 4 -> 1.
"""

from typing import Optional

_PARTNERS = {1: 3, 2: 4, 3: 1, 4: 2}
_RELATIVE = ['bottom', 'left', 'top', 'right']


def partner_of(position: Optional[int]) -> Optional[int]:
    """Partner seat for a seat, or None for anything outside 1-4."""
    return _PARTNERS.get(position)


def rotate(position: int) -> int:
    """Next seat clockwise."""
    return (position % 4) + 1


def is_same_team(pos1: int, pos2: int) -> bool:
    return pos1 % 2 == pos2 % 2


def team_number(position: int) -> int:
    """Team 1 holds the odd seats, team 2 the even seats."""
    return 1 if position % 2 == 1 else 2


def relative_position(target: int, viewer: int) -> str:
    """Where a seat sits from the viewer's perspective."""
    return _RELATIVE[(target - viewer + 4) % 4]
