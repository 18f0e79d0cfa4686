"""
Service layer: fixture generation, encounter progression, persisted match commands.
Pure rules live in scoring / match_state; services orchestrate persistence.
"""
from .fixtures import InvalidRosterError, generate_fixtures
from .encounter_service import (
    EncounterCompletion,
    EncounterNotFoundError,
    EncounterService,
    EncounterTally,
    FixturesLockedError,
)
from .match_service import (
    InvalidTableError,
    MatchNotFoundError,
    MatchService,
    MatchTransitionError,
    match_view,
)

__all__ = [
    "InvalidRosterError",
    "generate_fixtures",
    "EncounterCompletion",
    "EncounterNotFoundError",
    "EncounterService",
    "EncounterTally",
    "FixturesLockedError",
    "InvalidTableError",
    "MatchNotFoundError",
    "MatchService",
    "MatchTransitionError",
    "match_view",
]
