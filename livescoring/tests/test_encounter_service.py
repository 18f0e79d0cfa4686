"""
Tests for encounter progression: fixture storage, win threshold, cancellation,
non-acquired format, counter reconciliation, current encounter.
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from livescoring.models import EncounterStatus, MatchStatus, SetScore, Side
from livescoring.persistence.db import get_connection, init_db, set_db_path
from livescoring.persistence.feed import ChangeFeed
from livescoring.persistence.repositories import (
    EncounterRepository,
    MatchRepository,
    PlayerRepository,
    TeamRepository,
)
from livescoring.services.encounter_service import (
    EncounterNotFoundError,
    EncounterService,
    FixturesLockedError,
    tally_matches,
)
from livescoring.services.match_service import MatchService


@pytest.fixture
def db_conn(tmp_path):
    """Temporary DB with the full schema."""
    db_path = tmp_path / "encounter_test.db"
    set_db_path(db_path)
    init_db(db_path=db_path)
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def change_feed():
    return ChangeFeed()


@pytest.fixture
def encounter_service(change_feed):
    return EncounterService(change_feed=change_feed)


@pytest.fixture
def match_service(encounter_service, change_feed):
    return MatchService(encounter_service=encounter_service, change_feed=change_feed)


def create_encounter(conn, name: str = "Round 1", fmt: str = "acquired"):
    """Two teams of four (A-D vs W-Z) and an encounter on 2 tables."""
    team_repo = TeamRepository()
    player_repo = PlayerRepository()
    t1 = team_repo.create(conn, f"{name} Home", order=0)
    t2 = team_repo.create(conn, f"{name} Away", order=1)
    for i, n in enumerate("ABCD"):
        player_repo.create(conn, n, t1.id, order=i)
    for i, n in enumerate("WXYZ"):
        player_repo.create(conn, n, t2.id, order=i)
    return EncounterRepository().create(conn, name, t1.id, t2.id, 2, fmt=fmt)


def finish(conn, match_service: MatchService, match_id: str, winner: Side):
    """Record a 3-0 for winner and terminate through the service."""
    repo = MatchRepository()
    m = repo.get(conn, match_id)
    won = SetScore(11, 0) if winner is Side.SIDE1 else SetScore(0, 11)
    m.sets = [won, won, won]
    repo.save(conn, m)
    return match_service.terminate_match(conn, match_id)


@pytest.fixture
def encounter(db_conn, encounter_service):
    enc = create_encounter(db_conn)
    encounter_service.generate_fixtures(db_conn, enc.id)
    return enc


class TestFixtures:
    def test_generate_stores_fourteen_in_order(self, db_conn, encounter):
        matches = MatchRepository().list_by_encounter(db_conn, encounter.id)
        assert [m.match_number for m in matches] == list(range(1, 15))
        assert all(m.status == MatchStatus.WAITING for m in matches)
        assert matches[0].player1.name == "A" and matches[0].player2.name == "W"

    def test_regenerate_untouched_fixtures(self, db_conn, encounter_service, encounter):
        matches = encounter_service.generate_fixtures(db_conn, encounter.id, fmt="custom", custom_count=6)
        assert len(matches) == 6
        assert len(MatchRepository().list_by_encounter(db_conn, encounter.id)) == 6
        assert EncounterRepository().get(db_conn, encounter.id).format == "custom"

    def test_regenerate_refused_once_played(self, db_conn, encounter_service, match_service, encounter):
        match_service.launch_match(db_conn, f"{encounter.id}-01")
        with pytest.raises(FixturesLockedError):
            encounter_service.generate_fixtures(db_conn, encounter.id)

    def test_unknown_encounter(self, db_conn, encounter_service):
        with pytest.raises(EncounterNotFoundError):
            encounter_service.generate_fixtures(db_conn, "missing")


class TestAcquired:
    def test_eighth_win_completes_and_cancels_waiting(self, db_conn, encounter_service, match_service, encounter):
        playing = f"{encounter.id}-14"
        match_service.start_match(db_conn, playing, 1)
        result = None
        for n in range(1, 9):
            result = finish(db_conn, match_service, f"{encounter.id}-{n:02d}", Side.SIDE1)
        assert result.encounter.completed
        assert result.encounter.winner_team_id == encounter.team1_id

        stored = EncounterRepository().get(db_conn, encounter.id)
        assert stored.status == EncounterStatus.COMPLETED
        matches = {m.match_number: m for m in MatchRepository().list_by_encounter(db_conn, encounter.id)}
        assert all(matches[n].status == MatchStatus.CANCELLED for n in range(9, 14))
        assert matches[14].status == MatchStatus.IN_PROGRESS
        assert TeamRepository().get(db_conn, encounter.team1_id).matches_won == 8

    def test_seven_wins_stays_active(self, db_conn, match_service, encounter):
        for n in range(1, 8):
            result = finish(db_conn, match_service, f"{encounter.id}-{n:02d}", Side.SIDE2)
        assert not result.encounter.completed
        assert EncounterRepository().get(db_conn, encounter.id).status == EncounterStatus.ACTIVE
        waiting = MatchRepository().list_by_encounter(db_conn, encounter.id, status=MatchStatus.WAITING)
        assert len(waiting) == 7

    def test_seven_all_stays_active(self, db_conn, match_service, encounter):
        for n in range(1, 15):
            finish(db_conn, match_service, f"{encounter.id}-{n:02d}", Side.SIDE1 if n % 2 else Side.SIDE2)
        assert EncounterRepository().get(db_conn, encounter.id).status == EncounterStatus.ACTIVE

    def test_progression_is_idempotent(self, db_conn, encounter_service, match_service, encounter):
        for n in range(1, 9):
            finish(db_conn, match_service, f"{encounter.id}-{n:02d}", Side.SIDE1)
        last = MatchRepository().get(db_conn, f"{encounter.id}-08")
        first = encounter_service.on_match_finished(db_conn, last)
        before = [m.to_dict() for m in MatchRepository().list_by_encounter(db_conn, encounter.id)]
        second = encounter_service.on_match_finished(db_conn, last)
        after = [m.to_dict() for m in MatchRepository().list_by_encounter(db_conn, encounter.id)]
        assert first == second
        assert before == after

    def test_archived_status_kept(self, db_conn, match_service, encounter):
        EncounterRepository().update_status(db_conn, encounter.id, EncounterStatus.ARCHIVED)
        for n in range(1, 9):
            finish(db_conn, match_service, f"{encounter.id}-{n:02d}", Side.SIDE1)
        assert EncounterRepository().get(db_conn, encounter.id).status == EncounterStatus.ARCHIVED

    def test_completion_published(self, db_conn, change_feed, match_service, encounter):
        received = []
        change_feed.subscribe("encounters", lambda c, p: received.append(p), encounter_id=encounter.id)
        for n in range(1, 9):
            finish(db_conn, match_service, f"{encounter.id}-{n:02d}", Side.SIDE1)
        assert received[-1]["status"] == "completed"
        assert received[-1]["completion"]["team1_wins"] == 8


class TestOtherFormats:
    def test_non_acquired_plays_everything(self, db_conn, encounter_service, match_service):
        enc = create_encounter(db_conn, fmt="nonAcquired")
        encounter_service.generate_fixtures(db_conn, enc.id, fmt="nonAcquired")
        for n in range(1, 9):
            finish(db_conn, match_service, f"{enc.id}-{n:02d}", Side.SIDE1)
        assert EncounterRepository().get(db_conn, enc.id).status == EncounterStatus.ACTIVE
        assert len(MatchRepository().list_by_encounter(db_conn, enc.id, status=MatchStatus.CANCELLED)) == 0
        for n in range(9, 15):
            finish(db_conn, match_service, f"{enc.id}-{n:02d}", Side.SIDE2)
        assert EncounterRepository().get(db_conn, enc.id).status == EncounterStatus.COMPLETED
        assert encounter_service.tally(db_conn, enc.id).team1_wins == 8

    def test_non_acquired_completes_when_last_fixture_cancelled(self, db_conn, encounter_service, match_service):
        enc = create_encounter(db_conn, fmt="nonAcquired")
        encounter_service.generate_fixtures(db_conn, enc.id, fmt="nonAcquired")
        for n in range(1, 14):
            finish(db_conn, match_service, f"{enc.id}-{n:02d}", Side.SIDE1 if n % 2 else Side.SIDE2)
        assert EncounterRepository().get(db_conn, enc.id).status == EncounterStatus.ACTIVE
        result = match_service.cancel_match(db_conn, f"{enc.id}-14")
        assert result.applied
        assert result.encounter is not None
        assert not result.encounter.completed  # 7-6, no side reached the threshold
        assert EncounterRepository().get(db_conn, enc.id).status == EncounterStatus.COMPLETED

    def test_cancel_before_threshold_keeps_acquired_active(self, db_conn, match_service, encounter):
        result = match_service.cancel_match(db_conn, f"{encounter.id}-14")
        assert result.applied
        assert not result.encounter.completed
        assert EncounterRepository().get(db_conn, encounter.id).status == EncounterStatus.ACTIVE

    def test_custom_stops_at_threshold(self, db_conn, encounter_service, match_service):
        enc = create_encounter(db_conn)
        encounter_service.generate_fixtures(db_conn, enc.id, fmt="custom", custom_count=10)
        for n in range(1, 9):
            finish(db_conn, match_service, f"{enc.id}-{n:02d}", Side.SIDE2)
        assert EncounterRepository().get(db_conn, enc.id).status == EncounterStatus.COMPLETED
        assert len(MatchRepository().list_by_encounter(db_conn, enc.id, status=MatchStatus.CANCELLED)) == 2


class TestCountersAndCurrent:
    def test_tally_ignores_unfinished(self, db_conn, match_service, encounter):
        finish(db_conn, match_service, f"{encounter.id}-01", Side.SIDE1)
        finish(db_conn, match_service, f"{encounter.id}-02", Side.SIDE2)
        match_service.launch_match(db_conn, f"{encounter.id}-03")
        matches = MatchRepository().list_by_encounter(db_conn, encounter.id)
        tally = tally_matches(encounter, matches)
        assert (tally.team1_wins, tally.team2_wins) == (1, 1)

    def test_reconcile_rewrites_counters(self, db_conn, encounter_service, match_service, encounter):
        for n in range(1, 4):
            finish(db_conn, match_service, f"{encounter.id}-{n:02d}", Side.SIDE1)
        team_repo = TeamRepository()
        team_repo.set_matches_won(db_conn, encounter.team1_id, 42)
        team_repo.set_matches_won(db_conn, encounter.team2_id, 5)
        tally = encounter_service.reconcile_team_counters(db_conn, encounter.id)
        assert tally.team1_wins == 3
        assert team_repo.get(db_conn, encounter.team1_id).matches_won == 3
        assert team_repo.get(db_conn, encounter.team2_id).matches_won == 0

    def test_activate_keeps_single_current(self, db_conn, encounter_service):
        first = create_encounter(db_conn, "First")
        second = create_encounter(db_conn, "Second")
        encounter_service.activate_encounter(db_conn, first.id)
        assert encounter_service.get_current_encounter(db_conn).id == first.id
        encounter_service.activate_encounter(db_conn, second.id)
        assert encounter_service.get_current_encounter(db_conn).id == second.id
        old = EncounterRepository().get(db_conn, first.id)
        assert not old.is_current
        assert old.status == EncounterStatus.ACTIVE

    def test_activate_leaves_completed_status(self, db_conn, encounter_service, match_service, encounter):
        for n in range(1, 9):
            finish(db_conn, match_service, f"{encounter.id}-{n:02d}", Side.SIDE1)
        activated = encounter_service.activate_encounter(db_conn, encounter.id)
        assert activated.is_current
        assert activated.status == EncounterStatus.COMPLETED
        assert EncounterRepository().get(db_conn, encounter.id).status == EncounterStatus.COMPLETED

    def test_deactivated_unfinished_encounter_stays_active(self, db_conn, encounter_service, match_service, encounter):
        encounter_service.activate_encounter(db_conn, encounter.id)
        finish(db_conn, match_service, f"{encounter.id}-01", Side.SIDE1)
        other = create_encounter(db_conn, "Other")
        encounter_service.activate_encounter(db_conn, other.id)
        stored = EncounterRepository().get(db_conn, encounter.id)
        assert not stored.is_current
        assert stored.status == EncounterStatus.ACTIVE
        assert encounter_service.tally(db_conn, encounter.id).team1_wins == 1

    def test_activate_leaves_archived_status(self, db_conn, encounter_service):
        enc = create_encounter(db_conn)
        EncounterRepository().update_status(db_conn, enc.id, EncounterStatus.ARCHIVED)
        assert encounter_service.activate_encounter(db_conn, enc.id).status == EncounterStatus.ARCHIVED

    def test_tables_and_next_match(self, db_conn, encounter_service, match_service, encounter):
        assert encounter_service.available_tables(db_conn, encounter.id) == [1, 2]
        assert encounter_service.next_match_number(db_conn, encounter.id) == 1
        match_service.start_match(db_conn, f"{encounter.id}-01", 2)
        assert encounter_service.available_tables(db_conn, encounter.id) == [1]
        assert encounter_service.next_match_number(db_conn, encounter.id) == 2

    def test_summary_counts(self, db_conn, encounter_service, match_service, encounter):
        finish(db_conn, match_service, f"{encounter.id}-01", Side.SIDE1)
        match_service.start_match(db_conn, f"{encounter.id}-02", 1)
        match_service.cancel_match(db_conn, f"{encounter.id}-03")
        summary = encounter_service.summary(db_conn, encounter.id)
        assert summary.total_matches == 14
        assert summary.finished_matches == 1
        assert summary.in_progress_matches == 1
        assert summary.cancelled_matches == 1
        assert summary.waiting_matches == 11
        assert summary.tally.team1_wins == 1
