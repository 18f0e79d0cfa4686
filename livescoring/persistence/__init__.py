"""
Persistence layer for encounter scoring.
No business logic: only read/write/subscribe interfaces.
"""
from .db import get_connection, init_db
from .feed import ChangeFeed, feed
from .repositories import (
    EncounterRepository,
    MatchRepository,
    PlayerRepository,
    StaleMatchError,
    TeamRepository,
)

__all__ = [
    "get_connection",
    "init_db",
    "ChangeFeed",
    "feed",
    "EncounterRepository",
    "MatchRepository",
    "PlayerRepository",
    "StaleMatchError",
    "TeamRepository",
]
