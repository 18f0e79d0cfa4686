"""
Set scoring rules: to 11, win by 2, no ceiling on deuce.
Pure functions over a list of SetScore; callers persist the result.
"""
from __future__ import annotations

from livescoring.config import (
    DECIDING_SET_INDEX,
    DECIDING_SET_SWITCH_POINTS,
    POINTS_TO_WIN_SET,
    SETS_TO_WIN,
    WIN_BY,
)
from livescoring.models import SetScore, SetsWon, Side


def set_winner(set_score: SetScore, to_win: int = POINTS_TO_WIN_SET, win_by: int = WIN_BY) -> Side | None:
    """Returns the side that won the set, else None."""
    a, b = set_score.side1, set_score.side2
    if a >= to_win and a - b >= win_by:
        return Side.SIDE1
    if b >= to_win and b - a >= win_by:
        return Side.SIDE2
    return None


def is_set_finished(set_score: SetScore) -> bool:
    """max(a, b) >= 11 and |a - b| >= 2. 10-10, 11-11, ... never finish."""
    return set_winner(set_score) is not None


def update_point(sets: list[SetScore], side: Side, delta: int) -> list[SetScore]:
    """
    Apply delta to side on the current (last) set and return a new list.
    Increments on a finished set are ignored; decrements are always allowed
    (so an accidental finishing point can be undone) and floor at 0.
    Empty sets: returned unchanged.
    """
    if not sets or delta == 0:
        return list(sets)
    current = sets[-1]
    if delta > 0 and is_set_finished(current):
        return list(sets)
    updated = current.with_points(side, max(0, current.points(side) + delta))
    return list(sets[:-1]) + [updated]


def sides_should_flip(set_index: int, previous: SetScore, current: SetScore) -> bool:
    """
    Deciding-set switch: True when the leading score crosses 5 in either direction.
    The downward crossing re-flips after a correction so the orientation always
    matches whether 5 has been reached.
    """
    if set_index != DECIDING_SET_INDEX:
        return False
    prev_max = max(previous.side1, previous.side2)
    curr_max = max(current.side1, current.side2)
    threshold = DECIDING_SET_SWITCH_POINTS
    return (prev_max < threshold <= curr_max) or (prev_max >= threshold > curr_max)


# ---------- Sets won: two named views ----------


def _count_finished(sets: list[SetScore]) -> SetsWon:
    side1 = side2 = 0
    for s in sets:
        winner = set_winner(s)
        if winner is Side.SIDE1:
            side1 += 1
        elif winner is Side.SIDE2:
            side2 += 1
    return SetsWon(side1, side2)


def sets_won_closed(sets: list[SetScore]) -> SetsWon:
    """Display view: every set except the last (still contested, or not yet validated)."""
    return _count_finished(sets[:-1])


def sets_won_including_current(sets: list[SetScore]) -> SetsWon:
    """Eligibility view: also counts the current set once it reaches a finishing score."""
    return _count_finished(sets)


def compute_sets_won(sets: list[SetScore], include_current: bool = True) -> SetsWon:
    if include_current:
        return sets_won_including_current(sets)
    return sets_won_closed(sets)


def match_winner(sets_won: SetsWon) -> Side | None:
    """Side holding exactly SETS_TO_WIN sets, if any."""
    if sets_won.side1 == SETS_TO_WIN and sets_won.side2 != SETS_TO_WIN:
        return Side.SIDE1
    if sets_won.side2 == SETS_TO_WIN and sets_won.side1 != SETS_TO_WIN:
        return Side.SIDE2
    return None
