"""
Repository interfaces for encounter scoring data.
No business logic: only read/write operations.

Writes commit by default; pass commit=False to group several writes in one
transaction (the caller commits or rolls back).
"""
from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone

from livescoring.models import (
    Encounter,
    EncounterFormat,
    EncounterStatus,
    Match,
    MatchPlayer,
    MatchStatus,
    Player,
    SetScore,
    SetsWon,
    Team,
)


class StaleMatchError(RuntimeError):
    """Write rejected: the match changed since it was read (version mismatch)."""

    def __init__(self, match_id: str, expected_version: int) -> None:
        super().__init__(f"Match {match_id} was modified concurrently (expected version {expected_version})")
        self.match_id = match_id
        self.expected_version = expected_version


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_datetime(s: str | None) -> datetime:
    if s is None:
        raise ValueError("expected datetime string")
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


# ---------- TeamRepository ----------


class TeamRepository:
    """CRUD for teams. matches_won only moves through increment_matches_won."""

    def create(
        self,
        conn: sqlite3.Connection,
        name: str,
        order: int = 0,
        id: str | None = None,
        matches_won: int = 0,
    ) -> Team:
        tid = id or str(uuid.uuid4())
        now = _now_iso()
        conn.execute(
            "INSERT INTO teams (id, name, matches_won, team_order, created_at) VALUES (?, ?, ?, ?, ?)",
            (tid, name, matches_won, order, now),
        )
        conn.commit()
        return Team(id=tid, name=name, matches_won=matches_won, order=order, created_at=_parse_datetime(now))

    def get(self, conn: sqlite3.Connection, team_id: str) -> Team | None:
        row = conn.execute(
            "SELECT id, name, matches_won, team_order, created_at FROM teams WHERE id = ?",
            (team_id,),
        ).fetchone()
        if row is None:
            return None
        return Team(
            id=row["id"],
            name=row["name"],
            matches_won=row["matches_won"],
            order=row["team_order"],
            created_at=_parse_datetime(row["created_at"]),
        )

    def increment_matches_won(
        self, conn: sqlite3.Connection, team_id: str, delta: int, commit: bool = True
    ) -> bool:
        """Relative update, clamped at 0. Returns False when the team does not exist."""
        cur = conn.execute(
            "UPDATE teams SET matches_won = MAX(0, matches_won + ?) WHERE id = ?",
            (delta, team_id),
        )
        if commit:
            conn.commit()
        return cur.rowcount > 0

    def set_matches_won(
        self, conn: sqlite3.Connection, team_id: str, value: int, commit: bool = True
    ) -> bool:
        """Absolute write; reserved for reconciliation from the finished-match tally."""
        cur = conn.execute("UPDATE teams SET matches_won = ? WHERE id = ?", (max(0, value), team_id))
        if commit:
            conn.commit()
        return cur.rowcount > 0


# ---------- PlayerRepository ----------


class PlayerRepository:
    """CRUD for roster players."""

    def create(
        self,
        conn: sqlite3.Connection,
        name: str,
        team_id: str,
        order: int = 0,
        encounter_id: str | None = None,
        id: str | None = None,
    ) -> Player:
        pid = id or str(uuid.uuid4())
        conn.execute(
            "INSERT INTO players (id, name, team_id, encounter_id, player_order) VALUES (?, ?, ?, ?, ?)",
            (pid, name, team_id, encounter_id, order),
        )
        conn.commit()
        return Player(id=pid, name=name, team_id=team_id, order=order, encounter_id=encounter_id)

    def get(self, conn: sqlite3.Connection, player_id: str) -> Player | None:
        row = conn.execute(
            "SELECT id, name, team_id, encounter_id, player_order FROM players WHERE id = ?",
            (player_id,),
        ).fetchone()
        if row is None:
            return None
        return _player_from_row(row)

    def list_by_team(self, conn: sqlite3.Connection, team_id: str) -> list[Player]:
        """Roster order (player_order, then name for ties)."""
        rows = conn.execute(
            "SELECT id, name, team_id, encounter_id, player_order FROM players WHERE team_id = ? ORDER BY player_order, name",
            (team_id,),
        ).fetchall()
        return [_player_from_row(r) for r in rows]


def _player_from_row(row: sqlite3.Row) -> Player:
    return Player(
        id=row["id"],
        name=row["name"],
        team_id=row["team_id"],
        order=row["player_order"],
        encounter_id=row["encounter_id"],
    )


# ---------- EncounterRepository ----------

_ENCOUNTER_COLS = (
    "id, name, description, team1_id, team2_id, number_of_tables, status, format, "
    "is_current, created_at, updated_at"
)


class EncounterRepository:
    """CRUD for encounters. No business logic."""

    def create(
        self,
        conn: sqlite3.Connection,
        name: str,
        team1_id: str,
        team2_id: str,
        number_of_tables: int,
        fmt: str = EncounterFormat.ACQUIRED.value,
        description: str | None = None,
        id: str | None = None,
    ) -> Encounter:
        eid = id or str(uuid.uuid4())
        now = _now_iso()
        conn.execute(
            f"INSERT INTO encounters ({_ENCOUNTER_COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                eid, name, description, team1_id, team2_id, number_of_tables,
                EncounterStatus.ACTIVE.value, EncounterFormat(fmt).value, 0, now, now,
            ),
        )
        conn.commit()
        return self.get(conn, eid)  # type: ignore[return-value]

    def get(self, conn: sqlite3.Connection, encounter_id: str) -> Encounter | None:
        row = conn.execute(
            f"SELECT {_ENCOUNTER_COLS} FROM encounters WHERE id = ?",
            (encounter_id,),
        ).fetchone()
        if row is None:
            return None
        return _encounter_from_row(row)

    def get_current(self, conn: sqlite3.Connection) -> Encounter | None:
        row = conn.execute(
            f"SELECT {_ENCOUNTER_COLS} FROM encounters WHERE is_current = 1 ORDER BY updated_at DESC LIMIT 1"
        ).fetchone()
        if row is None:
            return None
        return _encounter_from_row(row)

    def list_all(self, conn: sqlite3.Connection) -> list[Encounter]:
        rows = conn.execute(
            f"SELECT {_ENCOUNTER_COLS} FROM encounters ORDER BY created_at DESC"
        ).fetchall()
        return [_encounter_from_row(r) for r in rows]

    def update_status(
        self, conn: sqlite3.Connection, encounter_id: str, status: str, commit: bool = True
    ) -> None:
        conn.execute(
            "UPDATE encounters SET status = ?, updated_at = ? WHERE id = ?",
            (EncounterStatus(status).value, _now_iso(), encounter_id),
        )
        if commit:
            conn.commit()

    def update_format(
        self, conn: sqlite3.Connection, encounter_id: str, fmt: str, commit: bool = True
    ) -> None:
        conn.execute(
            "UPDATE encounters SET format = ?, updated_at = ? WHERE id = ?",
            (EncounterFormat(fmt).value, _now_iso(), encounter_id),
        )
        if commit:
            conn.commit()

    def clear_current(self, conn: sqlite3.Connection, except_id: str | None = None, commit: bool = True) -> int:
        """Unset is_current on every current encounter except except_id. Status is untouched."""
        cur = conn.execute(
            "UPDATE encounters SET is_current = 0, updated_at = ? WHERE is_current = 1 AND id != ?",
            (_now_iso(), except_id or ""),
        )
        if commit:
            conn.commit()
        return cur.rowcount

    def set_current(self, conn: sqlite3.Connection, encounter_id: str, commit: bool = True) -> None:
        conn.execute(
            "UPDATE encounters SET is_current = 1, updated_at = ? WHERE id = ?",
            (_now_iso(), encounter_id),
        )
        if commit:
            conn.commit()


def _encounter_from_row(row: sqlite3.Row) -> Encounter:
    return Encounter(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        team1_id=row["team1_id"],
        team2_id=row["team2_id"],
        number_of_tables=row["number_of_tables"],
        status=row["status"],
        format=row["format"],
        is_current=bool(row["is_current"]),
        created_at=_parse_datetime(row["created_at"]),
        updated_at=_parse_datetime(row["updated_at"]),
    )


# ---------- MatchRepository ----------

_MATCH_COLS = (
    "id, encounter_id, match_number, kind, "
    "player1_id, player1_name, player1_team_id, player2_id, player2_name, player2_team_id, "
    "sets_json, sets_won_1, sets_won_2, status, table_number, side_flipped, version, start_time"
)


class MatchRepository:
    """
    CRUD for fixtures. save() is a versioned write: it only applies when the
    stored version still equals the version the caller read, then bumps it.
    """

    def create(self, conn: sqlite3.Connection, match: Match, commit: bool = True) -> Match:
        conn.execute(
            f"INSERT INTO matches ({_MATCH_COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            _match_params(match),
        )
        if commit:
            conn.commit()
        return match

    def create_many(self, conn: sqlite3.Connection, matches: list[Match], commit: bool = True) -> list[Match]:
        conn.executemany(
            f"INSERT INTO matches ({_MATCH_COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [_match_params(m) for m in matches],
        )
        if commit:
            conn.commit()
        return matches

    def get(self, conn: sqlite3.Connection, match_id: str) -> Match | None:
        row = conn.execute(f"SELECT {_MATCH_COLS} FROM matches WHERE id = ?", (match_id,)).fetchone()
        if row is None:
            return None
        return _match_from_row(row)

    def list_by_encounter(
        self, conn: sqlite3.Connection, encounter_id: str, status: str | None = None
    ) -> list[Match]:
        """Fixtures in play order, optionally filtered by status."""
        if status is None:
            rows = conn.execute(
                f"SELECT {_MATCH_COLS} FROM matches WHERE encounter_id = ? ORDER BY match_number",
                (encounter_id,),
            ).fetchall()
        else:
            rows = conn.execute(
                f"SELECT {_MATCH_COLS} FROM matches WHERE encounter_id = ? AND status = ? ORDER BY match_number",
                (encounter_id, MatchStatus(status).value),
            ).fetchall()
        return [_match_from_row(r) for r in rows]

    def save(
        self,
        conn: sqlite3.Connection,
        match: Match,
        expected_version: int | None = None,
        commit: bool = True,
    ) -> Match:
        """
        Persist every mutable field. expected_version defaults to match.version.
        Raises StaleMatchError when another writer got there first. On success
        match.version is bumped in place.
        """
        base = match.version if expected_version is None else expected_version
        cur = conn.execute(
            "UPDATE matches SET sets_json = ?, sets_won_1 = ?, sets_won_2 = ?, status = ?, "
            "table_number = ?, side_flipped = ?, start_time = ?, player1_name = ?, player2_name = ?, "
            "version = version + 1 WHERE id = ? AND version = ?",
            (
                _sets_to_json(match.sets),
                match.sets_won.side1,
                match.sets_won.side2,
                MatchStatus(match.status).value,
                match.table,
                int(match.side_flipped),
                match.start_time.isoformat() if match.start_time else None,
                match.player1.name,
                match.player2.name,
                match.id,
                base,
            ),
        )
        if cur.rowcount == 0:
            raise StaleMatchError(match.id, base)
        if commit:
            conn.commit()
        match.version = base + 1
        return match

    def cancel_waiting(self, conn: sqlite3.Connection, encounter_id: str, commit: bool = True) -> int:
        """Cancel every waiting fixture of the encounter in one statement. Returns the number cancelled."""
        cur = conn.execute(
            "UPDATE matches SET status = ?, table_number = NULL, version = version + 1 "
            "WHERE encounter_id = ? AND status = ?",
            (MatchStatus.CANCELLED.value, encounter_id, MatchStatus.WAITING.value),
        )
        if commit:
            conn.commit()
        return cur.rowcount

    def table_in_use(
        self,
        conn: sqlite3.Connection,
        encounter_id: str | None,
        table: int,
        exclude_match_id: str | None = None,
    ) -> bool:
        """True when another in-progress fixture of the encounter holds the table."""
        row = conn.execute(
            "SELECT 1 FROM matches WHERE encounter_id IS ? AND table_number = ? AND status = ? AND id != ? LIMIT 1",
            (encounter_id, table, MatchStatus.IN_PROGRESS.value, exclude_match_id or ""),
        ).fetchone()
        return row is not None

    def delete_by_encounter(self, conn: sqlite3.Connection, encounter_id: str, commit: bool = True) -> int:
        cur = conn.execute("DELETE FROM matches WHERE encounter_id = ?", (encounter_id,))
        if commit:
            conn.commit()
        return cur.rowcount


def _sets_to_json(sets: list[SetScore]) -> str:
    return json.dumps([s.to_list() for s in sets])


def _match_params(m: Match) -> tuple:
    return (
        m.id,
        m.encounter_id,
        m.match_number,
        m.kind,
        m.player1.id, m.player1.name, m.player1.team_id,
        m.player2.id, m.player2.name, m.player2.team_id,
        _sets_to_json(m.sets),
        m.sets_won.side1,
        m.sets_won.side2,
        MatchStatus(m.status).value,
        m.table,
        int(m.side_flipped),
        m.version,
        m.start_time.isoformat() if m.start_time else None,
    )


def _match_from_row(row: sqlite3.Row) -> Match:
    return Match(
        id=row["id"],
        encounter_id=row["encounter_id"],
        match_number=row["match_number"],
        kind=row["kind"],
        player1=MatchPlayer(id=row["player1_id"], name=row["player1_name"], team_id=row["player1_team_id"]),
        player2=MatchPlayer(id=row["player2_id"], name=row["player2_name"], team_id=row["player2_team_id"]),
        sets=[SetScore.from_list(p) for p in json.loads(row["sets_json"] or "[]")],
        sets_won=SetsWon(row["sets_won_1"], row["sets_won_2"]),
        status=row["status"],
        table=row["table_number"],
        side_flipped=bool(row["side_flipped"]),
        version=row["version"],
        start_time=_parse_datetime(row["start_time"]) if row["start_time"] else None,
    )
