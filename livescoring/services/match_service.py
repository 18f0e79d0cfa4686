"""
Persisted match commands: load → state-machine transition → versioned write →
team counter / encounter progression → change feed.

Every write carries the version the caller read; a concurrent writer makes it
fail with StaleMatchError instead of silently overwriting (last-writer-wins).
Finishing a match and crediting the team happen in one SQLite transaction.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Callable

from livescoring import match_state
from livescoring.models import Match, MatchStatus, Side
from livescoring.persistence.feed import ChangeFeed, feed as default_feed
from livescoring.persistence.repositories import (
    MatchRepository,
    StaleMatchError,
    TeamRepository,
)
from livescoring.services.encounter_service import (
    EncounterCompletion,
    EncounterNotFoundError,
    EncounterService,
)

logger = logging.getLogger(__name__)


# ---------- Exceptions ----------


class MatchNotFoundError(LookupError):
    """No match with this id."""


class InvalidTableError(ValueError):
    """Table number outside 1..number_of_tables."""


class MatchTransitionError(RuntimeError):
    """A persistence failure aborted the transition; nothing was written."""


# ---------- Results ----------


@dataclass
class MatchCommandResult:
    """
    applied=False means a precondition did not hold; the match is returned unchanged.
    conflict marks a refusal caused by another fixture (table already taken).
    encounter is set when the command re-ran encounter progression.
    """
    applied: bool
    match: Match
    reason: str | None = None
    conflict: bool = False
    encounter: EncounterCompletion | None = None
    encounter_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"applied": self.applied, "match": match_view(self.match)}
        if self.reason is not None:
            d["reason"] = self.reason
        if self.encounter is not None:
            d["encounter"] = self.encounter.to_dict()
        if self.encounter_error is not None:
            d["encounter_error"] = self.encounter_error
        return d


@dataclass
class TerminationResult(MatchCommandResult):
    """winner_team_id was credited when counter_updated is True."""
    winner_team_id: str | None = None
    counter_updated: bool = False

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d.update({
            "winner_team_id": self.winner_team_id,
            "counter_updated": self.counter_updated,
            "encounter": self.encounter.to_dict() if self.encounter else None,
        })
        return d


@dataclass
class ResetResult(MatchCommandResult):
    """previous_winner_team_id lost one win when counter_updated is True."""
    previous_winner_team_id: str | None = None
    counter_updated: bool = False

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d.update({
            "previous_winner_team_id": self.previous_winner_team_id,
            "counter_updated": self.counter_updated,
            "encounter": self.encounter.to_dict() if self.encounter else None,
        })
        return d


def match_view(match: Match) -> dict[str, Any]:
    """Match payload plus the read-only eligibility flags the scoreboard needs."""
    return {
        **match.to_dict(),
        "sets_won_closed": match_state.display_sets_won(match).to_dict(),
        "can_launch_set": match_state.can_launch_set(match),
        "can_terminate": match_state.can_terminate(match),
        "is_finished": match_state.is_finished(match),
    }


# ---------- MatchService ----------


class MatchService:
    """Per-match commands for the scorekeeper and scheduling layer."""

    def __init__(
        self,
        encounter_service: EncounterService | None = None,
        change_feed: ChangeFeed | None = None,
    ) -> None:
        self._match_repo = MatchRepository()
        self._team_repo = TeamRepository()
        self._feed = change_feed or default_feed
        self._encounters = encounter_service or EncounterService(change_feed=self._feed)

    def get_match(self, conn: sqlite3.Connection, match_id: str) -> Match:
        match = self._match_repo.get(conn, match_id)
        if match is None:
            raise MatchNotFoundError(f"Match not found: {match_id}")
        return match

    def _load(self, conn: sqlite3.Connection, match_id: str, expected_version: int | None) -> Match:
        match = self.get_match(conn, match_id)
        if expected_version is not None and expected_version != match.version:
            logger.warning(
                "Rejected write on match %s: base version %d, stored %d",
                match_id, expected_version, match.version,
            )
            raise StaleMatchError(match_id, expected_version)
        return match

    def _write(self, conn: sqlite3.Connection, match: Match, base_version: int) -> None:
        try:
            self._match_repo.save(conn, match, base_version)
        except StaleMatchError:
            conn.rollback()
            logger.warning("Concurrent write on match %s (base version %d)", match.id, base_version)
            raise
        except sqlite3.Error as e:
            conn.rollback()
            raise MatchTransitionError(f"Could not save match {match.id}: {e}") from e
        self._feed.publish("matches", match_view(match))

    def _simple_command(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        expected_version: int | None,
        transition: Callable[[Match], bool],
        reason: str,
    ) -> MatchCommandResult:
        match = self._load(conn, match_id, expected_version)
        base = match.version
        if not transition(match):
            return MatchCommandResult(applied=False, match=match, reason=reason)
        self._write(conn, match, base)
        return MatchCommandResult(applied=True, match=match)

    # ---------- Scoring ----------

    def launch_match(
        self, conn: sqlite3.Connection, match_id: str, expected_version: int | None = None
    ) -> MatchCommandResult:
        return self._simple_command(
            conn, match_id, expected_version, match_state.launch_match, "match already launched",
        )

    def update_score(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        side: Side | str,
        delta: int,
        expected_version: int | None = None,
    ) -> MatchCommandResult:
        side = Side(side)
        return self._simple_command(
            conn, match_id, expected_version,
            lambda m: match_state.update_score(m, side, delta),
            "score unchanged",
        )

    def launch_set(
        self, conn: sqlite3.Connection, match_id: str, expected_version: int | None = None
    ) -> MatchCommandResult:
        return self._simple_command(
            conn, match_id, expected_version, match_state.launch_set, "current set not finished",
        )

    # ---------- Finish / reset ----------

    def terminate_match(
        self, conn: sqlite3.Connection, match_id: str, expected_version: int | None = None
    ) -> TerminationResult:
        """
        Finish the match and credit the winner's team in one transaction, then
        re-evaluate the encounter. Only encounter matches move team counters. A
        missing team row does not block the finish: counter_updated is False and
        reconcile_team_counters repairs it.
        """
        match = self._load(conn, match_id, expected_version)
        base = match.version
        transition = match_state.terminate_match(match)
        if not transition.applied or transition.winner is None:
            return TerminationResult(applied=False, match=match, reason="no side has won 3 sets")
        winner_team_id = match.player(transition.winner).team_id
        counter_updated = False
        try:
            self._match_repo.save(conn, match, base, commit=False)
            if match.encounter_id is not None:
                counter_updated = self._team_repo.increment_matches_won(conn, winner_team_id, 1, commit=False)
            conn.commit()
        except StaleMatchError:
            conn.rollback()
            logger.warning("Concurrent write on match %s (base version %d)", match.id, base)
            raise
        except sqlite3.Error as e:
            conn.rollback()
            raise MatchTransitionError(f"Could not finish match {match.id}: {e}") from e
        if match.encounter_id is not None and not counter_updated:
            logger.warning("Match %s finished but team %s was not credited (team not found)", match.id, winner_team_id)
        logger.info(
            "Match %s finished %d-%d, won by %s",
            match.id, match.sets_won.side1, match.sets_won.side2, match.player(transition.winner).name,
        )
        self._feed.publish("matches", match_view(match))
        result = TerminationResult(
            applied=True, match=match, winner_team_id=winner_team_id, counter_updated=counter_updated,
        )
        result.encounter, result.encounter_error = self._progress(conn, match)
        return result

    def reset_match(
        self, conn: sqlite3.Connection, match_id: str, expected_version: int | None = None
    ) -> ResetResult:
        """
        Back to waiting with a (0, 0) set. A finished match gives its win back
        (clamped at 0), using the stored sets won, in the same transaction.
        """
        match = self._load(conn, match_id, expected_version)
        base = match.version
        was_finished = match.status == MatchStatus.FINISHED
        transition = match_state.reset_match(match)
        if not transition.applied:
            return ResetResult(applied=False, match=match, reason="cancelled matches cannot be reset")
        previous_team_id = match.player(transition.winner).team_id if transition.winner else None
        adjust_counter = previous_team_id is not None and match.encounter_id is not None
        counter_updated = False
        try:
            self._match_repo.save(conn, match, base, commit=False)
            if adjust_counter:
                counter_updated = self._team_repo.increment_matches_won(conn, previous_team_id, -1, commit=False)
            conn.commit()
        except StaleMatchError:
            conn.rollback()
            logger.warning("Concurrent write on match %s (base version %d)", match.id, base)
            raise
        except sqlite3.Error as e:
            conn.rollback()
            raise MatchTransitionError(f"Could not reset match {match.id}: {e}") from e
        if adjust_counter and not counter_updated:
            logger.warning("Match %s reset but team %s was not found to remove the win", match.id, previous_team_id)
        logger.info("Match %s reset", match.id)
        self._feed.publish("matches", match_view(match))
        result = ResetResult(
            applied=True, match=match,
            previous_winner_team_id=previous_team_id, counter_updated=counter_updated,
        )
        if was_finished:
            result.encounter, result.encounter_error = self._progress(conn, match)
        return result

    def _progress(
        self, conn: sqlite3.Connection, match: Match
    ) -> tuple[EncounterCompletion | None, str | None]:
        """Run encounter progression; a failure is reported, the match transition stands."""
        try:
            return self._encounters.on_match_finished(conn, match), None
        except (sqlite3.Error, EncounterNotFoundError) as e:
            logger.error("Encounter progression failed after match %s: %s", match.id, e)
            return None, str(e)

    # ---------- Scheduling ----------

    def start_match(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        table: int,
        expected_version: int | None = None,
    ) -> MatchCommandResult:
        """
        Put a waiting fixture on a table. Refused (applied=False) when another
        in-progress fixture of the encounter already holds the table.
        """
        match = self._load(conn, match_id, expected_version)
        max_table = None
        if match.encounter_id is not None:
            max_table = self._encounters.get_encounter(conn, match.encounter_id).number_of_tables
        if table < 1 or (max_table is not None and table > max_table):
            raise InvalidTableError(f"Table {table} is not available (1..{max_table})")
        if self._match_repo.table_in_use(conn, match.encounter_id, table, exclude_match_id=match.id):
            logger.warning("Table %d already in use; match %s not started", table, match.id)
            return MatchCommandResult(applied=False, match=match, reason=f"table {table} is in use", conflict=True)
        base = match.version
        if not match_state.start_on_table(match, table):
            return MatchCommandResult(applied=False, match=match, reason="match is not waiting")
        self._write(conn, match, base)
        return MatchCommandResult(applied=True, match=match)

    def stop_match(
        self, conn: sqlite3.Connection, match_id: str, expected_version: int | None = None
    ) -> MatchCommandResult:
        return self._simple_command(
            conn, match_id, expected_version, match_state.stop, "match is not in progress",
        )

    def cancel_match(
        self, conn: sqlite3.Connection, match_id: str, expected_version: int | None = None
    ) -> MatchCommandResult:
        """Cancelling the last open fixture can complete a nonAcquired encounter."""
        result = self._simple_command(
            conn, match_id, expected_version, match_state.cancel, "only waiting or in-progress matches can be cancelled",
        )
        if result.applied and result.match.encounter_id is not None:
            result.encounter, result.encounter_error = self._progress(conn, result.match)
        return result

    def compose_double(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        side1_name: str,
        side2_name: str,
        expected_version: int | None = None,
    ) -> MatchCommandResult:
        return self._simple_command(
            conn, match_id, expected_version,
            lambda m: match_state.compose_double(m, side1_name, side2_name),
            "not an open doubles fixture",
        )
