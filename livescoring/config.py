"""
Rule constants and environment-driven settings.
Rule values follow the federation team format (best of 5 to 11, 14 fixtures, first to 8).
"""
from __future__ import annotations

import logging
import os
from pathlib import Path


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning(
            "%s is not a valid integer (got %r); defaulting to %d", name, raw, default
        )
        return default


PROJECT_ROOT = Path(__file__).resolve().parent.parent

# ---------- Set / match rules ----------
POINTS_TO_WIN_SET = 11
WIN_BY = 2
SETS_TO_WIN = 3
MAX_SETS = 5
DECIDING_SET_INDEX = MAX_SETS - 1
DECIDING_SET_SWITCH_POINTS = 5

# ---------- Encounter rules ----------
ENCOUNTER_WIN_THRESHOLD = _int_env("LIVESCORING_WIN_THRESHOLD", 8)
FIXED_ROSTER_SIZE = 4
FIXED_FIXTURE_COUNT = 14
DEFAULT_NUMBER_OF_TABLES = _int_env("LIVESCORING_DEFAULT_TABLES", 2)

# ---------- Runtime ----------
DB_PATH = Path(os.environ.get("LIVESCORING_DB_PATH", str(PROJECT_ROOT / "data" / "livescoring.db")))
LOG_LEVEL = os.environ.get("LIVESCORING_LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [
    o.strip()
    for o in os.environ.get(
        "LIVESCORING_CORS_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173",
    ).split(",")
    if o.strip()
]

_logging_configured = False


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once. Later calls are ignored."""
    global _logging_configured
    if _logging_configured:
        return
    logging.basicConfig(
        level=level or LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _logging_configured = True
