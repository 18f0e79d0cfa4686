"""
SQLite schema for encounter scoring.
Migration-friendly: each table created with IF NOT EXISTS.
"""
from __future__ import annotations


def teams_schema() -> str:
    """matches_won is only ever changed by relative updates (+1 / -1)."""
    return """
    CREATE TABLE IF NOT EXISTS teams (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        matches_won INTEGER NOT NULL DEFAULT 0,
        team_order INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    );
    """


def players_schema() -> str:
    return """
    CREATE TABLE IF NOT EXISTS players (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        team_id TEXT NOT NULL,
        encounter_id TEXT,
        player_order INTEGER NOT NULL DEFAULT 0,
        FOREIGN KEY (team_id) REFERENCES teams(id)
    );
    CREATE INDEX IF NOT EXISTS ix_players_team ON players(team_id);
    """


def encounters_schema() -> str:
    """status: active | completed | archived. format: acquired | nonAcquired | custom."""
    return """
    CREATE TABLE IF NOT EXISTS encounters (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        team1_id TEXT NOT NULL,
        team2_id TEXT NOT NULL,
        number_of_tables INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'active',
        format TEXT NOT NULL DEFAULT 'acquired',
        is_current INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (team1_id) REFERENCES teams(id),
        FOREIGN KEY (team2_id) REFERENCES teams(id)
    );
    CREATE INDEX IF NOT EXISTS ix_encounters_current ON encounters(is_current);
    """


def matches_schema() -> str:
    """
    One fixture. Players are copied onto the row (doubles placeholders have no players row).
    sets_json: JSON list of [side1, side2]. version: optimistic-concurrency counter.
    """
    return """
    CREATE TABLE IF NOT EXISTS matches (
        id TEXT PRIMARY KEY,
        encounter_id TEXT,
        match_number INTEGER NOT NULL,
        kind TEXT NOT NULL DEFAULT 'single',
        player1_id TEXT NOT NULL,
        player1_name TEXT NOT NULL,
        player1_team_id TEXT NOT NULL,
        player2_id TEXT NOT NULL,
        player2_name TEXT NOT NULL,
        player2_team_id TEXT NOT NULL,
        sets_json TEXT NOT NULL DEFAULT '[]',
        sets_won_1 INTEGER NOT NULL DEFAULT 0,
        sets_won_2 INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'waiting',
        table_number INTEGER,
        side_flipped INTEGER NOT NULL DEFAULT 0,
        version INTEGER NOT NULL DEFAULT 0,
        start_time TEXT,
        FOREIGN KEY (encounter_id) REFERENCES encounters(id)
    );
    CREATE INDEX IF NOT EXISTS ix_matches_encounter ON matches(encounter_id);
    CREATE INDEX IF NOT EXISTS ix_matches_encounter_status ON matches(encounter_id, status);
    """


def all_schema_sql() -> str:
    """Combine all schema DDL for a single execution. Order: teams, players, encounters, matches."""
    return "\n".join([
        teams_schema(),
        players_schema(),
        encounters_schema(),
        matches_schema(),
    ])
