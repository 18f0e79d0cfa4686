"""
Match state machine: launch, score, next set, terminate, reset, table moves.
Transitions mutate the Match in place and report whether they applied; a
transition whose precondition does not hold is a no-op, never an exception.
Persistence and team counters are handled by services.match_service.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from livescoring.config import MAX_SETS
from livescoring.models import Match, MatchKind, MatchStatus, SetScore, SetsWon, Side
from livescoring.scoring import (
    is_set_finished,
    match_winner,
    sets_won_closed,
    sets_won_including_current,
    sides_should_flip,
    update_point,
)

_TERMINAL_FOR_SCORING = (MatchStatus.FINISHED, MatchStatus.CANCELLED)


@dataclass(frozen=True)
class Transition:
    """Outcome of terminate/reset: whether it applied and which side won (terminate) or had won (reset)."""
    applied: bool
    winner: Side | None = None


def launch_match(match: Match) -> bool:
    """Open the first set. No-op once any set exists."""
    if match.sets or match.status == MatchStatus.CANCELLED:
        return False
    match.sets = [SetScore()]
    return True


def update_score(match: Match, side: Side, delta: int) -> bool:
    """
    Adjust the current set by delta (+1 / -1). Toggles side_flipped when the
    deciding set crosses the 5-point mark. Stored sets_won is the inclusive view.
    Finished and cancelled matches are frozen; corrections after a finish go through reset.
    """
    if match.status in _TERMINAL_FOR_SCORING or not match.sets:
        return False
    previous = match.sets[-1]
    updated = update_point(match.sets, side, delta)
    if updated[-1] == previous:
        return False
    if sides_should_flip(len(updated) - 1, previous, updated[-1]):
        match.side_flipped = not match.side_flipped
    match.sets = updated
    match.sets_won = sets_won_including_current(updated)
    return True


def is_finished(match: Match) -> bool:
    """One side has 3 sets, counting a current set that has reached a finishing score."""
    return match_winner(sets_won_including_current(match.sets)) is not None


def can_launch_set(match: Match) -> bool:
    if match.status in _TERMINAL_FOR_SCORING or not match.sets:
        return False
    if is_finished(match) or len(match.sets) >= MAX_SETS:
        return False
    last = match.sets[-1]
    return is_set_finished(last) and not last.is_empty()


def launch_set(match: Match) -> bool:
    """
    Close the current set and open a new empty one. Players change ends at the
    start of every set after the first, so side_flipped toggles on each launch.
    """
    if not can_launch_set(match):
        return False
    match.sets = list(match.sets) + [SetScore()]
    match.sets_won = sets_won_including_current(match.sets)
    match.side_flipped = not match.side_flipped
    return True


def can_terminate(match: Match) -> bool:
    if match.status in _TERMINAL_FOR_SCORING:
        return False
    return is_finished(match)


def terminate_match(match: Match) -> Transition:
    """Mark finished with the final inclusive sets_won. Team counters are the caller's job."""
    if not can_terminate(match):
        return Transition(applied=False)
    final = sets_won_including_current(match.sets)
    match.sets_won = final
    match.status = MatchStatus.FINISHED.value
    return Transition(applied=True, winner=match_winner(final))


def reset_match(match: Match) -> Transition:
    """
    Back to waiting with a fresh (0, 0) set. When the match was finished, the
    previous winner comes from the stored sets_won, not from the sets being cleared.
    """
    if match.status == MatchStatus.CANCELLED:
        return Transition(applied=False)
    previous_winner = None
    if match.status == MatchStatus.FINISHED:
        previous_winner = match_winner(match.sets_won)
    match.sets = [SetScore()]
    match.sets_won = SetsWon()
    match.status = MatchStatus.WAITING.value
    match.side_flipped = False
    match.table = None
    return Transition(applied=True, winner=previous_winner)


def display_sets_won(match: Match) -> SetsWon:
    """Sets shown on the scoreboard: closed sets only."""
    return sets_won_closed(match.sets)


# ---------- Table scheduling ----------


def start_on_table(match: Match, table: int, now: datetime | None = None) -> bool:
    """waiting → in_progress on a table. Table availability is checked by the caller."""
    if match.status != MatchStatus.WAITING:
        return False
    match.status = MatchStatus.IN_PROGRESS.value
    match.table = table
    match.start_time = now or datetime.now(timezone.utc)
    return True


def stop(match: Match) -> bool:
    """in_progress → waiting, releasing the table. Scores are kept."""
    if match.status != MatchStatus.IN_PROGRESS:
        return False
    match.status = MatchStatus.WAITING.value
    match.table = None
    return True


def cancel(match: Match) -> bool:
    if match.status not in (MatchStatus.WAITING, MatchStatus.IN_PROGRESS):
        return False
    match.status = MatchStatus.CANCELLED.value
    match.table = None
    return True


def compose_double(match: Match, side1_name: str, side2_name: str) -> bool:
    """Overwrite the doubles placeholder names with the announced pairs."""
    if match.kind != MatchKind.DOUBLE or match.status not in (MatchStatus.WAITING, MatchStatus.IN_PROGRESS):
        return False
    match.player1.name = side1_name
    match.player2.name = side2_name
    return True
