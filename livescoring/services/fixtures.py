"""
Deterministic fixture generation for team encounters.

14-match format (federation order): 12 singles in three rounds of four plus two
doubles between the second and third rounds. Both "acquired" and "non-acquired"
encounters use the same order; they differ only in whether play stops at the
win threshold (see encounter_service).

Custom format: n singles rotating through both rosters (i mod len(roster)).

Same rosters in the same order yield the same fixtures, ids included.
"""
from __future__ import annotations

from livescoring.config import FIXED_ROSTER_SIZE
from livescoring.models import EncounterFormat, Match, MatchKind, MatchPlayer, Player

# Sentinel name for doubles sides until the pairs are announced
DOUBLES_PLACEHOLDER_NAME = "Composition to be defined"

# Sentinel slot for a doubles fixture in the pairing table
DOUBLE = -1

# (team1 roster index, team2 roster index) in play order
FIXED_PAIRINGS: list[tuple[int, int]] = [
    (0, 0), (1, 1), (2, 2), (3, 3),  # 1-4: A-W, B-X, C-Y, D-Z
    (0, 1), (1, 0), (3, 2), (2, 3),  # 5-8: A-X, B-W, D-Y, C-Z
    (DOUBLE, DOUBLE), (DOUBLE, DOUBLE),  # 9-10: doubles
    (0, 2), (2, 0), (3, 1), (1, 3),  # 11-14: A-Y, C-W, D-X, B-Z
]


class InvalidRosterError(ValueError):
    """Rosters or count do not fit the requested format."""


def fixture_id(encounter_id: str | None, match_number: int) -> str:
    return f"{encounter_id or 'fixture'}-{match_number:02d}"


def _new_match(
    encounter_id: str | None,
    match_number: int,
    player1: MatchPlayer,
    player2: MatchPlayer,
    kind: MatchKind = MatchKind.SINGLE,
) -> Match:
    return Match(
        id=fixture_id(encounter_id, match_number),
        match_number=match_number,
        player1=player1,
        player2=player2,
        encounter_id=encounter_id,
        kind=kind.value,
    )


def _doubles_placeholder(team_id: str, side_label: str, match_number: int) -> MatchPlayer:
    return MatchPlayer(
        id=f"double{match_number}_{side_label}",
        name=DOUBLES_PLACEHOLDER_NAME,
        team_id=team_id,
    )


def generate_fixed_fixtures(
    team1_roster: list[Player],
    team2_roster: list[Player],
    encounter_id: str | None = None,
) -> list[Match]:
    """
    The 14 fixtures in federation order. Rosters must be exactly 4 and 4, in roster order.
    Raises InvalidRosterError otherwise: the pairing table has no meaning for other sizes.
    """
    if len(team1_roster) != FIXED_ROSTER_SIZE or len(team2_roster) != FIXED_ROSTER_SIZE:
        raise InvalidRosterError(
            f"14-match format needs {FIXED_ROSTER_SIZE} players per team "
            f"(got {len(team1_roster)} and {len(team2_roster)})"
        )
    team1_id = team1_roster[0].team_id
    team2_id = team2_roster[0].team_id
    matches: list[Match] = []
    for i, (idx1, idx2) in enumerate(FIXED_PAIRINGS):
        number = i + 1
        if idx1 == DOUBLE:
            matches.append(_new_match(
                encounter_id, number,
                _doubles_placeholder(team1_id, "team1", number),
                _doubles_placeholder(team2_id, "team2", number),
                kind=MatchKind.DOUBLE,
            ))
            continue
        matches.append(_new_match(
            encounter_id, number,
            MatchPlayer.from_player(team1_roster[idx1]),
            MatchPlayer.from_player(team2_roster[idx2]),
        ))
    return matches


def generate_custom_fixtures(
    team1_roster: list[Player],
    team2_roster: list[Player],
    count: int,
    encounter_id: str | None = None,
) -> list[Match]:
    """count singles; fixture i pairs team1[i mod n1] with team2[i mod n2]."""
    if count < 1:
        raise InvalidRosterError(f"custom format needs a positive match count (got {count})")
    if not team1_roster or not team2_roster:
        raise InvalidRosterError("custom format needs at least one player per team")
    return [
        _new_match(
            encounter_id, i + 1,
            MatchPlayer.from_player(team1_roster[i % len(team1_roster)]),
            MatchPlayer.from_player(team2_roster[i % len(team2_roster)]),
        )
        for i in range(count)
    ]


def generate_fixtures(
    team1_roster: list[Player],
    team2_roster: list[Player],
    fmt: str = EncounterFormat.ACQUIRED,
    custom_count: int | None = None,
    encounter_id: str | None = None,
) -> list[Match]:
    """
    Ordered fixtures for an encounter. Every match starts waiting with no sets,
    sets won 0-0 and match_number = position + 1.
    """
    try:
        fmt = EncounterFormat(fmt)
    except ValueError as e:
        raise InvalidRosterError(f"Unknown encounter format: {fmt!r}") from e
    if fmt is EncounterFormat.CUSTOM:
        if custom_count is None:
            raise InvalidRosterError("custom format requires custom_count")
        return generate_custom_fixtures(team1_roster, team2_roster, custom_count, encounter_id)
    return generate_fixed_fixtures(team1_roster, team2_roster, encounter_id)
