"""
Encounter progression: team-win tally over finished matches, completion at the
win threshold, cancellation of remaining fixtures, current-encounter handling.

on_match_finished is a pure function of (tally, fixture statuses): it can be
re-run after any match event and converges to the same state.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any

from livescoring.config import ENCOUNTER_WIN_THRESHOLD
from livescoring.models import (
    Encounter,
    EncounterFormat,
    EncounterStatus,
    Match,
    MatchStatus,
)
from livescoring.persistence.feed import ChangeFeed, feed as default_feed
from livescoring.persistence.repositories import (
    EncounterRepository,
    MatchRepository,
    PlayerRepository,
    TeamRepository,
)
from livescoring.scoring import match_winner
from livescoring.services.fixtures import generate_fixtures

logger = logging.getLogger(__name__)


# ---------- Exceptions ----------


class EncounterNotFoundError(LookupError):
    """No encounter with this id."""


class FixturesLockedError(ValueError):
    """Fixtures cannot be regenerated once any of them has been played."""


# ---------- Tally (pure) ----------


@dataclass(frozen=True)
class EncounterTally:
    team1_id: str
    team2_id: str
    team1_wins: int = 0
    team2_wins: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "team1_id": self.team1_id,
            "team2_id": self.team2_id,
            "team1_wins": self.team1_wins,
            "team2_wins": self.team2_wins,
        }


@dataclass(frozen=True)
class EncounterCompletion:
    completed: bool
    winner_team_id: str | None
    team1_wins: int
    team2_wins: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "completed": self.completed,
            "winner_team_id": self.winner_team_id,
            "team1_wins": self.team1_wins,
            "team2_wins": self.team2_wins,
        }


def winning_team_id(match: Match) -> str | None:
    """Team of the player holding 3 sets in the stored tally."""
    side = match_winner(match.sets_won)
    if side is None:
        return None
    return match.player(side).team_id


def tally_matches(encounter: Encounter, matches: list[Match]) -> EncounterTally:
    """Count finished matches per team. Matches won by a team outside the encounter are ignored."""
    team1_wins = team2_wins = 0
    for m in matches:
        if m.status != MatchStatus.FINISHED:
            continue
        team_id = winning_team_id(m)
        if team_id == encounter.team1_id:
            team1_wins += 1
        elif team_id == encounter.team2_id:
            team2_wins += 1
    return EncounterTally(encounter.team1_id, encounter.team2_id, team1_wins, team2_wins)


def is_complete(tally: EncounterTally, threshold: int = ENCOUNTER_WIN_THRESHOLD) -> EncounterCompletion:
    """First team to threshold wins, whatever fixtures remain."""
    if tally.team1_wins >= threshold:
        winner = tally.team1_id
    elif tally.team2_wins >= threshold:
        winner = tally.team2_id
    else:
        winner = None
    return EncounterCompletion(
        completed=winner is not None,
        winner_team_id=winner,
        team1_wins=tally.team1_wins,
        team2_wins=tally.team2_wins,
    )


# ---------- Summary ----------


@dataclass
class EncounterSummary:
    encounter: Encounter
    tally: EncounterTally
    completion: EncounterCompletion
    total_matches: int
    finished_matches: int
    in_progress_matches: int
    waiting_matches: int
    cancelled_matches: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "encounter": self.encounter.to_dict(),
            "tally": self.tally.to_dict(),
            "completion": self.completion.to_dict(),
            "total_matches": self.total_matches,
            "finished_matches": self.finished_matches,
            "in_progress_matches": self.in_progress_matches,
            "waiting_matches": self.waiting_matches,
            "cancelled_matches": self.cancelled_matches,
        }


# ---------- EncounterService ----------


class EncounterService:
    """
    Encounter-level domain logic. Persistence is delegated to repositories;
    committed changes are published on the change feed.
    """

    def __init__(self, change_feed: ChangeFeed | None = None, win_threshold: int = ENCOUNTER_WIN_THRESHOLD) -> None:
        self._encounter_repo = EncounterRepository()
        self._match_repo = MatchRepository()
        self._player_repo = PlayerRepository()
        self._team_repo = TeamRepository()
        self._feed = change_feed or default_feed
        self.win_threshold = win_threshold

    def get_encounter(self, conn: sqlite3.Connection, encounter_id: str) -> Encounter:
        encounter = self._encounter_repo.get(conn, encounter_id)
        if encounter is None:
            raise EncounterNotFoundError(f"Encounter not found: {encounter_id}")
        return encounter

    # ---------- Fixtures ----------

    def generate_fixtures(
        self,
        conn: sqlite3.Connection,
        encounter_id: str,
        fmt: str = EncounterFormat.ACQUIRED,
        custom_count: int | None = None,
    ) -> list[Match]:
        """
        Build the fixtures from both rosters (roster order) and store them.
        Untouched fixtures from a previous generation are replaced; once any
        fixture has left the waiting state or opened a set, regeneration is refused.
        """
        encounter = self.get_encounter(conn, encounter_id)
        existing = self._match_repo.list_by_encounter(conn, encounter_id)
        if any(m.status != MatchStatus.WAITING or m.sets for m in existing):
            raise FixturesLockedError(f"Encounter {encounter_id} already has fixtures in play")
        team1_roster = self._player_repo.list_by_team(conn, encounter.team1_id)
        team2_roster = self._player_repo.list_by_team(conn, encounter.team2_id)
        matches = generate_fixtures(team1_roster, team2_roster, fmt, custom_count, encounter_id=encounter_id)
        try:
            self._match_repo.delete_by_encounter(conn, encounter_id, commit=False)
            self._match_repo.create_many(conn, matches, commit=False)
            self._encounter_repo.update_format(conn, encounter_id, fmt, commit=False)
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        logger.info("Generated %d fixtures (%s) for encounter %s", len(matches), EncounterFormat(fmt).value, encounter_id)
        for m in matches:
            self._feed.publish("matches", m.to_dict())
        return matches

    # ---------- Tally & completion ----------

    def tally(self, conn: sqlite3.Connection, encounter_id: str) -> EncounterTally:
        encounter = self.get_encounter(conn, encounter_id)
        finished = self._match_repo.list_by_encounter(conn, encounter_id, status=MatchStatus.FINISHED)
        return tally_matches(encounter, finished)

    def check_completion(self, conn: sqlite3.Connection, encounter_id: str) -> EncounterCompletion:
        return is_complete(self.tally(conn, encounter_id), self.win_threshold)

    def on_match_finished(self, conn: sqlite3.Connection, match: Match) -> EncounterCompletion | None:
        """
        Re-evaluate the encounter after a match finished (or a finished match was reset).

        acquired / custom: once a team reaches the threshold every waiting fixture
        is cancelled (in-progress ones are left alone) and the encounter is completed;
        otherwise it is active.
        non-acquired: nothing is cancelled; the encounter completes when no waiting
        or in-progress fixture remains.
        Archived encounters keep their status. Idempotent.
        """
        if match.encounter_id is None:
            logger.debug("Match %s has no encounter; skipping progression", match.id)
            return None
        encounter = self.get_encounter(conn, match.encounter_id)
        completion = self.check_completion(conn, encounter.id)

        cancelled = 0
        if encounter.format == EncounterFormat.NON_ACQUIRED:
            pending = [
                m for m in self._match_repo.list_by_encounter(conn, encounter.id)
                if m.status in (MatchStatus.WAITING, MatchStatus.IN_PROGRESS)
            ]
            new_status = EncounterStatus.ACTIVE if pending else EncounterStatus.COMPLETED
        elif completion.completed:
            cancelled = self._match_repo.cancel_waiting(conn, encounter.id, commit=False)
            new_status = EncounterStatus.COMPLETED
        else:
            new_status = EncounterStatus.ACTIVE

        if encounter.status == EncounterStatus.ARCHIVED:
            conn.commit()
        else:
            try:
                self._encounter_repo.update_status(conn, encounter.id, new_status, commit=False)
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            encounter.status = new_status.value

        if cancelled:
            logger.info("Cancelled %d waiting fixtures for encounter %s", cancelled, encounter.id)
            for m in self._match_repo.list_by_encounter(conn, encounter.id, status=MatchStatus.CANCELLED):
                self._feed.publish("matches", m.to_dict())
        if completion.completed:
            logger.info(
                "Encounter %s won by %s (%d-%d)",
                encounter.id, completion.winner_team_id, completion.team1_wins, completion.team2_wins,
            )
        self._feed.publish("encounters", {**encounter.to_dict(), "completion": completion.to_dict()})
        return completion

    # ---------- Counters ----------

    def reconcile_team_counters(self, conn: sqlite3.Connection, encounter_id: str) -> EncounterTally:
        """Set both teams' matches_won to the finished-match tally. Safe to repeat."""
        tally = self.tally(conn, encounter_id)
        try:
            self._team_repo.set_matches_won(conn, tally.team1_id, tally.team1_wins, commit=False)
            self._team_repo.set_matches_won(conn, tally.team2_id, tally.team2_wins, commit=False)
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        logger.info(
            "Reconciled team counters for encounter %s: %d-%d",
            encounter_id, tally.team1_wins, tally.team2_wins,
        )
        return tally

    # ---------- Current encounter ----------

    def activate_encounter(self, conn: sqlite3.Connection, encounter_id: str) -> Encounter:
        """Make this the single current encounter. Statuses stay with the progression tracker."""
        self.get_encounter(conn, encounter_id)
        try:
            cleared = self._encounter_repo.clear_current(conn, except_id=encounter_id, commit=False)
            self._encounter_repo.set_current(conn, encounter_id, commit=False)
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        logger.info("Encounter %s is now current (%d others deactivated)", encounter_id, cleared)
        encounter = self.get_encounter(conn, encounter_id)
        self._feed.publish("encounters", encounter.to_dict())
        return encounter

    def get_current_encounter(self, conn: sqlite3.Connection) -> Encounter | None:
        return self._encounter_repo.get_current(conn)

    # ---------- Read models ----------

    def summary(self, conn: sqlite3.Connection, encounter_id: str) -> EncounterSummary:
        encounter = self.get_encounter(conn, encounter_id)
        matches = self._match_repo.list_by_encounter(conn, encounter_id)
        tally = tally_matches(encounter, matches)

        def count(status: MatchStatus) -> int:
            return sum(1 for m in matches if m.status == status)

        return EncounterSummary(
            encounter=encounter,
            tally=tally,
            completion=is_complete(tally, self.win_threshold),
            total_matches=len(matches),
            finished_matches=count(MatchStatus.FINISHED),
            in_progress_matches=count(MatchStatus.IN_PROGRESS),
            waiting_matches=count(MatchStatus.WAITING),
            cancelled_matches=count(MatchStatus.CANCELLED),
        )

    def used_tables(self, conn: sqlite3.Connection, encounter_id: str) -> list[int]:
        matches = self._match_repo.list_by_encounter(conn, encounter_id, status=MatchStatus.IN_PROGRESS)
        return sorted(m.table for m in matches if m.table is not None)

    def available_tables(self, conn: sqlite3.Connection, encounter_id: str) -> list[int]:
        """Tables 1..number_of_tables not held by an in-progress fixture."""
        encounter = self.get_encounter(conn, encounter_id)
        used = set(self.used_tables(conn, encounter_id))
        return [t for t in range(1, encounter.number_of_tables + 1) if t not in used]

    def next_match_number(self, conn: sqlite3.Connection, encounter_id: str) -> int | None:
        """Lowest waiting fixture number, i.e. the next match in the official order."""
        waiting = self._match_repo.list_by_encounter(conn, encounter_id, status=MatchStatus.WAITING)
        if not waiting:
            return None
        return min(m.match_number for m in waiting)
