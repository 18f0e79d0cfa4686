#!/usr/bin/env python3
"""
Demo: Create teams → Generate fixtures → Score matches point by point → Encounter result.
Run from project root: python3 scripts/play_encounter.py
"""
from __future__ import annotations

import random
import sys
from pathlib import Path

# Ensure project root on path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from livescoring.config import configure_logging
from livescoring.models import MatchStatus, Side
from livescoring.persistence import (
    EncounterRepository,
    MatchRepository,
    PlayerRepository,
    TeamRepository,
    get_connection,
    init_db,
)
from livescoring.persistence.db import set_db_path
from livescoring.services import EncounterService, MatchService, match_view


def play_match(conn, svc: MatchService, match_id: str, rng: random.Random) -> None:
    """Random rallies until one side holds 3 sets, then terminate."""
    svc.launch_match(conn, match_id)
    while True:
        view = match_view(svc.get_match(conn, match_id))
        if view["can_terminate"]:
            break
        if view["can_launch_set"]:
            svc.launch_set(conn, match_id)
            continue
        side = Side.SIDE1 if rng.random() < 0.5 else Side.SIDE2
        svc.update_score(conn, match_id, side, 1)
    result = svc.terminate_match(conn, match_id)
    m = result.match
    sets = " ".join(f"{s.side1}-{s.side2}" for s in m.sets)
    print(f"  #{m.match_number:2d} {m.player1.name} vs {m.player2.name}: {sets}")


def main() -> None:
    configure_logging("WARNING")
    # Use data/play_encounter.db for demo (distinct from livescoring.db)
    db_path = PROJECT_ROOT / "data" / "play_encounter.db"
    if db_path.exists():
        db_path.unlink()
    set_db_path(db_path)
    init_db(db_path=db_path)
    rng = random.Random(2024)

    conn = get_connection()
    try:
        team_repo = TeamRepository()
        player_repo = PlayerRepository()
        encounter_service = EncounterService()
        match_service = MatchService(encounter_service=encounter_service)

        # 1. Teams and rosters
        home = team_repo.create(conn, "Home", order=0)
        away = team_repo.create(conn, "Away", order=1)
        for i, name in enumerate(["Anna", "Ben", "Chloe", "David"]):
            player_repo.create(conn, name, home.id, order=i)
        for i, name in enumerate(["Wen", "Xavier", "Yara", "Zoe"]):
            player_repo.create(conn, name, away.id, order=i)

        # 2. Encounter and fixtures
        encounter = EncounterRepository().create(conn, "Demo encounter", home.id, away.id, 2)
        encounter_service.activate_encounter(conn, encounter.id)
        encounter_service.generate_fixtures(conn, encounter.id)
        for number in (9, 10):
            match_service.compose_double(conn, f"{encounter.id}-{number:02d}", "Anna / Ben", "Wen / Xavier")
        print(f"Created encounter {encounter.id} with 14 fixtures")

        # 3. Play in fixture order until the encounter is decided
        match_repo = MatchRepository()
        while True:
            number = encounter_service.next_match_number(conn, encounter.id)
            if number is None:
                break
            match_id = f"{encounter.id}-{number:02d}"
            match_service.start_match(conn, match_id, encounter_service.available_tables(conn, encounter.id)[0])
            play_match(conn, match_service, match_id, rng)

        # 4. Result
        summary = encounter_service.summary(conn, encounter.id)
        print(f"\nEncounter {summary.encounter.status}: Home {summary.tally.team1_wins} - {summary.tally.team2_wins} Away")
        cancelled = match_repo.list_by_encounter(conn, encounter.id, status=MatchStatus.CANCELLED)
        if cancelled:
            print(f"Cancelled fixtures: {', '.join(str(m.match_number) for m in cancelled)}")
        print(f"Team counters: Home {team_repo.get(conn, home.id).matches_won}, Away {team_repo.get(conn, away.id).matches_won}")
    finally:
        conn.close()


if __name__ == "__main__":
    main()
