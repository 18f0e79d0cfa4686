"""
Data models for live encounter scoring.
Domain objects only, no persistence or API logic.

Team-vs-team encounters: two teams of four, up to 14 fixtures; each fixture is a
best-of-five match scored point by point.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


# ---------- Sides ----------
class Side(str, Enum):
    """Side a player was assigned to when the fixture was created. Display flips never change it."""
    SIDE1 = "side1"
    SIDE2 = "side2"

    @property
    def other(self) -> "Side":
        return Side.SIDE2 if self is Side.SIDE1 else Side.SIDE1


# ---------- Match status (state machine) ----------
class MatchStatus(str, Enum):
    """waiting → in_progress → finished; waiting|in_progress → cancelled; finished → waiting (reset)."""
    WAITING = "waiting"
    IN_PROGRESS = "inProgress"
    FINISHED = "finished"
    CANCELLED = "cancelled"  # terminal


# ---------- Encounter status ----------
class EncounterStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


# ---------- Encounter format ----------
class EncounterFormat(str, Enum):
    """
    acquired: stop at the win threshold and cancel remaining fixtures.
    non_acquired: same 14 fixtures, all played regardless of the score.
    custom: user-defined number of singles, rotating through both rosters.
    """
    ACQUIRED = "acquired"
    NON_ACQUIRED = "nonAcquired"
    CUSTOM = "custom"


class MatchKind(str, Enum):
    SINGLE = "single"
    DOUBLE = "double"


# ---------- Set ----------
@dataclass(frozen=True)
class SetScore:
    """Points of one set, (side 1, side 2)."""
    side1: int = 0
    side2: int = 0

    def points(self, side: Side) -> int:
        return self.side1 if side is Side.SIDE1 else self.side2

    def with_points(self, side: Side, value: int) -> "SetScore":
        if side is Side.SIDE1:
            return SetScore(value, self.side2)
        return SetScore(self.side1, value)

    def is_empty(self) -> bool:
        return self.side1 == 0 and self.side2 == 0

    def to_list(self) -> list[int]:
        return [self.side1, self.side2]

    @classmethod
    def from_list(cls, pair: list[int] | tuple[int, int]) -> "SetScore":
        return cls(int(pair[0]), int(pair[1]))


@dataclass(frozen=True)
class SetsWon:
    side1: int = 0
    side2: int = 0

    def count(self, side: Side) -> int:
        return self.side1 if side is Side.SIDE1 else self.side2

    def to_dict(self) -> dict[str, int]:
        return {"side1": self.side1, "side2": self.side2}


# ---------- Team ----------
@dataclass
class Team:
    """
    One side of an encounter. order (0 or 1) fixes which column the team occupies.
    matches_won is a denormalized counter; tally() over finished matches is the source of truth.
    """
    id: str
    name: str
    matches_won: int
    order: int
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "matches_won": self.matches_won,
            "order": self.order,
            "created_at": self.created_at.isoformat(),
        }


# ---------- Player ----------
@dataclass
class Player:
    """A roster member. order is the roster position (A, B, C, D / W, X, Y, Z)."""
    id: str
    name: str
    team_id: str
    order: int = 0
    encounter_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "team_id": self.team_id,
            "order": self.order,
        }
        if self.encounter_id is not None:
            d["encounter_id"] = self.encounter_id
        return d


@dataclass
class MatchPlayer:
    """Player as recorded on a fixture. Doubles placeholders carry a sentinel name until composed."""
    id: str
    name: str
    team_id: str

    @classmethod
    def from_player(cls, player: Player) -> "MatchPlayer":
        return cls(id=player.id, name=player.name, team_id=player.team_id)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "team_id": self.team_id}


# ---------- Encounter ----------
@dataclass
class Encounter:
    """
    Team-vs-team tie. Only one encounter should be current at a time.
    Status: active → completed (threshold or all fixtures done) → archived.
    """
    id: str
    name: str
    team1_id: str
    team2_id: str
    number_of_tables: int
    status: str  # EncounterStatus value
    format: str  # EncounterFormat value
    is_current: bool
    created_at: datetime
    updated_at: datetime
    description: str | None = None

    def team_ids(self) -> tuple[str, str]:
        return (self.team1_id, self.team2_id)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "team1_id": self.team1_id,
            "team2_id": self.team2_id,
            "number_of_tables": self.number_of_tables,
            "status": self.status,
            "format": self.format,
            "is_current": self.is_current,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if self.description is not None:
            d["description"] = self.description
        return d


# ---------- Match ----------
@dataclass
class Match:
    """
    One fixture. sets is in play order; the last entry is the current set.
    sets_won is the stored tally (inclusive of a finished current set).
    version increments on every persisted write.
    """
    id: str
    match_number: int
    player1: MatchPlayer
    player2: MatchPlayer
    encounter_id: str | None = None
    sets: list[SetScore] = field(default_factory=list)
    sets_won: SetsWon = field(default_factory=SetsWon)
    status: str = MatchStatus.WAITING.value
    table: int | None = None
    side_flipped: bool = False
    kind: str = MatchKind.SINGLE.value
    version: int = 0
    start_time: datetime | None = None

    def player(self, side: Side) -> MatchPlayer:
        return self.player1 if side is Side.SIDE1 else self.player2

    def current_set(self) -> SetScore | None:
        return self.sets[-1] if self.sets else None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "match_number": self.match_number,
            "player1": self.player1.to_dict(),
            "player2": self.player2.to_dict(),
            "encounter_id": self.encounter_id,
            "sets": [s.to_list() for s in self.sets],
            "sets_won": self.sets_won.to_dict(),
            "status": self.status,
            "table": self.table,
            "side_flipped": self.side_flipped,
            "kind": self.kind,
            "version": self.version,
        }
        if self.start_time is not None:
            d["start_time"] = self.start_time.isoformat()
        return d
