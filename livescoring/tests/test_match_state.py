"""
Tests for the match state machine (pure, no database).
"""
from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from livescoring import match_state
from livescoring.models import Match, MatchKind, MatchPlayer, MatchStatus, SetScore, SetsWon, Side


def make_match(**kwargs) -> Match:
    return Match(
        id="m1",
        match_number=1,
        player1=MatchPlayer(id="p1", name="Alice", team_id="t1"),
        player2=MatchPlayer(id="p2", name="Wendy", team_id="t2"),
        **kwargs,
    )


def win_set(match: Match, side: Side) -> None:
    """Score 11-0 for side on the current set."""
    for _ in range(11):
        match_state.update_score(match, side, 1)


def test_launch_opens_first_set_once():
    m = make_match()
    assert match_state.launch_match(m)
    assert m.sets == [SetScore()]
    assert not match_state.launch_match(m)
    assert m.sets == [SetScore()]


def test_update_score_requires_launched_match():
    m = make_match()
    assert not match_state.update_score(m, Side.SIDE1, 1)
    assert m.sets == []


def test_update_score_stores_inclusive_sets_won():
    m = make_match()
    match_state.launch_match(m)
    win_set(m, Side.SIDE1)
    assert m.sets[-1] == SetScore(11, 0)
    assert m.sets_won == SetsWon(1, 0)
    assert match_state.display_sets_won(m) == SetsWon(0, 0)


def test_can_launch_set_only_after_finished_set():
    m = make_match()
    match_state.launch_match(m)
    assert not match_state.can_launch_set(m)
    for _ in range(10):
        match_state.update_score(m, Side.SIDE1, 1)
    assert not match_state.can_launch_set(m)
    match_state.update_score(m, Side.SIDE1, 1)
    assert match_state.can_launch_set(m)
    assert match_state.launch_set(m)
    assert len(m.sets) == 2
    assert m.sets[-1] == SetScore()


def test_launch_set_toggles_side_flipped():
    m = make_match()
    match_state.launch_match(m)
    win_set(m, Side.SIDE1)
    match_state.launch_set(m)
    assert m.side_flipped is True
    win_set(m, Side.SIDE2)
    match_state.launch_set(m)
    assert m.side_flipped is False


def test_fifth_set_switch_and_correction():
    m = make_match()
    match_state.launch_match(m)
    for side in (Side.SIDE1, Side.SIDE2, Side.SIDE1, Side.SIDE2):
        win_set(m, side)
        match_state.launch_set(m)
    assert len(m.sets) == 5
    flipped_at_start = m.side_flipped
    for _ in range(4):
        match_state.update_score(m, Side.SIDE1, 1)
    assert m.side_flipped == flipped_at_start
    match_state.update_score(m, Side.SIDE1, 1)  # 5-0
    assert m.side_flipped != flipped_at_start
    match_state.update_score(m, Side.SIDE1, -1)  # 4-0: corrected
    assert m.side_flipped == flipped_at_start


def test_no_sixth_set():
    m = make_match()
    match_state.launch_match(m)
    for side in (Side.SIDE1, Side.SIDE2, Side.SIDE1, Side.SIDE2):
        win_set(m, side)
        match_state.launch_set(m)
    win_set(m, Side.SIDE1)
    assert match_state.is_finished(m)
    assert not match_state.can_launch_set(m)
    assert not match_state.launch_set(m)


def test_no_new_set_once_match_decided():
    m = make_match()
    match_state.launch_match(m)
    for i in range(3):
        win_set(m, Side.SIDE2)
        if i < 2:
            match_state.launch_set(m)
    assert match_state.is_finished(m)
    assert not match_state.can_launch_set(m)


def test_terminate_requires_three_sets():
    m = make_match()
    match_state.launch_match(m)
    win_set(m, Side.SIDE1)
    assert not match_state.can_terminate(m)
    t = match_state.terminate_match(m)
    assert not t.applied
    assert m.status == MatchStatus.WAITING


def test_terminate_counts_current_set():
    m = make_match()
    match_state.launch_match(m)
    for i in range(3):
        win_set(m, Side.SIDE1)
        if i < 2:
            match_state.launch_set(m)
    t = match_state.terminate_match(m)
    assert t.applied
    assert t.winner is Side.SIDE1
    assert m.status == MatchStatus.FINISHED
    assert m.sets_won == SetsWon(3, 0)
    # Terminating twice is not possible
    assert not match_state.terminate_match(m).applied


def test_finished_match_is_frozen():
    m = make_match()
    match_state.launch_match(m)
    for i in range(3):
        win_set(m, Side.SIDE1)
        if i < 2:
            match_state.launch_set(m)
    match_state.terminate_match(m)
    assert not match_state.update_score(m, Side.SIDE1, -1)
    assert m.sets[-1] == SetScore(11, 0)


def test_reset_reports_previous_winner_from_stored_sets_won():
    m = make_match(
        sets=[SetScore(11, 1), SetScore(11, 2), SetScore(11, 3)],
        sets_won=SetsWon(3, 0),
        status=MatchStatus.FINISHED.value,
        table=2,
        side_flipped=True,
    )
    t = match_state.reset_match(m)
    assert t.applied
    assert t.winner is Side.SIDE1
    assert m.sets == [SetScore()]
    assert m.sets_won == SetsWon(0, 0)
    assert m.status == MatchStatus.WAITING
    assert m.table is None
    assert m.side_flipped is False


def test_reset_unfinished_match_has_no_previous_winner():
    m = make_match(sets=[SetScore(5, 3)], status=MatchStatus.IN_PROGRESS.value, table=1)
    t = match_state.reset_match(m)
    assert t.applied
    assert t.winner is None


def test_reset_cancelled_is_noop():
    m = make_match(status=MatchStatus.CANCELLED.value)
    assert not match_state.reset_match(m).applied
    assert m.status == MatchStatus.CANCELLED


def test_table_moves():
    m = make_match()
    assert match_state.start_on_table(m, 2)
    assert m.status == MatchStatus.IN_PROGRESS
    assert m.table == 2
    assert m.start_time is not None
    assert not match_state.start_on_table(m, 1)
    assert match_state.stop(m)
    assert m.status == MatchStatus.WAITING
    assert m.table is None
    assert not match_state.stop(m)


def test_cancel():
    m = make_match()
    assert match_state.cancel(m)
    assert m.status == MatchStatus.CANCELLED
    assert not match_state.cancel(m)
    assert not match_state.launch_match(m)


def test_compose_double_only_for_doubles():
    single = make_match()
    assert not match_state.compose_double(single, "A / B", "W / X")
    double = make_match(kind=MatchKind.DOUBLE.value)
    assert match_state.compose_double(double, "A / B", "W / X")
    assert double.player1.name == "A / B"
    assert double.player2.name == "W / X"


def test_two_all_not_terminable_until_fifth_set_won():
    m = make_match()
    match_state.launch_match(m)
    for side in (Side.SIDE1, Side.SIDE2, Side.SIDE1, Side.SIDE2):
        win_set(m, side)
        if len(m.sets) < 4:
            match_state.launch_set(m)
    assert m.sets_won == SetsWon(2, 2)
    assert not match_state.terminate_match(m).applied
    match_state.launch_set(m)
    win_set(m, Side.SIDE1)
    t = match_state.terminate_match(m)
    assert t.applied
    assert t.winner is Side.SIDE1
    assert m.sets_won == SetsWon(3, 2)
