"""
REST + WebSocket API for live encounter scoring.
Thin wrappers around the services; every committed change is also pushed to
WebSocket subscribers of the encounter.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager, contextmanager, suppress
from typing import Any, AsyncGenerator, Generator

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from livescoring.config import CORS_ORIGINS, DEFAULT_NUMBER_OF_TABLES, configure_logging
from livescoring.models import EncounterFormat, Side
from livescoring.persistence import (
    EncounterRepository,
    MatchRepository,
    PlayerRepository,
    StaleMatchError,
    TeamRepository,
    feed,
    get_connection,
    init_db,
)
from livescoring.persistence.db import get_db_path
from livescoring.services import (
    EncounterNotFoundError,
    EncounterService,
    FixturesLockedError,
    InvalidRosterError,
    InvalidTableError,
    MatchNotFoundError,
    MatchService,
    MatchTransitionError,
    match_view,
)

logger = logging.getLogger(__name__)


@contextmanager
def db_conn() -> Generator[sqlite3.Connection, None, None]:
    """Yield a DB connection, ensure close on exit."""
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def service_errors() -> Generator[None, None, None]:
    """Translate domain exceptions into HTTP errors."""
    try:
        yield
    except (EncounterNotFoundError, MatchNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StaleMatchError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except FixturesLockedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (InvalidRosterError, InvalidTableError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except MatchTransitionError as e:
        logger.error("Match transition aborted: %s", e)
        raise HTTPException(status_code=503, detail=str(e))


# ---------- Lifespan ----------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    configure_logging()
    init_db(db_path=get_db_path())
    logger.info("Database ready at %s", get_db_path())
    yield


# ---------- FastAPI app ----------
app = FastAPI(
    title="Live Scoring API",
    description="Scorekeeping for team table tennis encounters",
    version="0.1.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


encounter_service = EncounterService(change_feed=feed)
match_service = MatchService(encounter_service=encounter_service, change_feed=feed)


# ---------- Request models ----------


class CreateTeamRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    order: int = Field(0, ge=0, le=1)


class CreatePlayerRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    order: int = Field(0, ge=0)


class CreateEncounterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    team1_id: str
    team2_id: str
    number_of_tables: int = Field(DEFAULT_NUMBER_OF_TABLES, ge=1)
    format: EncounterFormat = EncounterFormat.ACQUIRED
    description: str | None = None


class GenerateFixturesRequest(BaseModel):
    format: EncounterFormat = EncounterFormat.ACQUIRED
    custom_count: int | None = Field(None, ge=1)


class VersionedRequest(BaseModel):
    """expected_version: the match version the client last saw; omit to skip the check."""
    expected_version: int | None = Field(None, ge=0)


class ScoreRequest(VersionedRequest):
    side: Side
    delta: int = Field(1, ge=-1, le=1)


class StartMatchRequest(VersionedRequest):
    table: int


class ComposeDoubleRequest(VersionedRequest):
    side1_name: str = Field(..., min_length=1, max_length=200)
    side2_name: str = Field(..., min_length=1, max_length=200)


# ---------- Teams & players ----------


@app.post("/teams")
def create_team(req: CreateTeamRequest) -> dict[str, Any]:
    with db_conn() as conn:
        team = TeamRepository().create(conn, req.name, order=req.order)
        return team.to_dict()


@app.get("/teams/{team_id}")
def get_team(team_id: str) -> dict[str, Any]:
    """Team with its roster in roster order."""
    with db_conn() as conn:
        team = TeamRepository().get(conn, team_id)
        if team is None:
            raise HTTPException(status_code=404, detail="Team not found")
        players = PlayerRepository().list_by_team(conn, team_id)
        return {**team.to_dict(), "players": [p.to_dict() for p in players]}


@app.post("/teams/{team_id}/players")
def add_player(team_id: str, req: CreatePlayerRequest) -> dict[str, Any]:
    with db_conn() as conn:
        if TeamRepository().get(conn, team_id) is None:
            raise HTTPException(status_code=404, detail="Team not found")
        player = PlayerRepository().create(conn, req.name, team_id, order=req.order)
        return player.to_dict()


# ---------- Encounters ----------


@app.post("/encounters")
def create_encounter(req: CreateEncounterRequest) -> dict[str, Any]:
    if req.team1_id == req.team2_id:
        raise HTTPException(status_code=400, detail="An encounter needs two different teams")
    with db_conn() as conn:
        team_repo = TeamRepository()
        for tid in (req.team1_id, req.team2_id):
            if team_repo.get(conn, tid) is None:
                raise HTTPException(status_code=404, detail=f"Team not found: {tid}")
        encounter = EncounterRepository().create(
            conn,
            req.name,
            req.team1_id,
            req.team2_id,
            req.number_of_tables,
            fmt=req.format.value,
            description=req.description,
        )
        logger.info("Created encounter %s (%s)", encounter.id, encounter.name)
        return encounter.to_dict()


@app.get("/encounters/current")
def get_current_encounter() -> dict[str, Any]:
    with db_conn() as conn:
        encounter = encounter_service.get_current_encounter(conn)
        if encounter is None:
            raise HTTPException(status_code=404, detail="No current encounter")
        return encounter.to_dict()


@app.get("/encounters/{encounter_id}")
def get_encounter(encounter_id: str) -> dict[str, Any]:
    """Summary: tally, completion, fixture counts, free tables and next fixture number."""
    with db_conn() as conn, service_errors():
        summary = encounter_service.summary(conn, encounter_id)
        return {
            **summary.to_dict(),
            "available_tables": encounter_service.available_tables(conn, encounter_id),
            "next_match_number": encounter_service.next_match_number(conn, encounter_id),
        }


@app.post("/encounters/{encounter_id}/fixtures")
def generate_fixtures(encounter_id: str, req: GenerateFixturesRequest) -> dict[str, Any]:
    with db_conn() as conn, service_errors():
        matches = encounter_service.generate_fixtures(
            conn, encounter_id, fmt=req.format.value, custom_count=req.custom_count
        )
        return {"encounter_id": encounter_id, "matches": [match_view(m) for m in matches]}


@app.post("/encounters/{encounter_id}/activate")
def activate_encounter(encounter_id: str) -> dict[str, Any]:
    with db_conn() as conn, service_errors():
        return encounter_service.activate_encounter(conn, encounter_id).to_dict()


@app.post("/encounters/{encounter_id}/reconcile")
def reconcile_encounter(encounter_id: str) -> dict[str, Any]:
    """Rewrite both team counters from the finished-match tally."""
    with db_conn() as conn, service_errors():
        return encounter_service.reconcile_team_counters(conn, encounter_id).to_dict()


@app.get("/encounters/{encounter_id}/matches")
def list_encounter_matches(encounter_id: str) -> list[dict[str, Any]]:
    with db_conn() as conn, service_errors():
        encounter_service.get_encounter(conn, encounter_id)
        return [match_view(m) for m in MatchRepository().list_by_encounter(conn, encounter_id)]


# ---------- Matches ----------


@app.get("/matches/{match_id}")
def get_match(match_id: str) -> dict[str, Any]:
    with db_conn() as conn, service_errors():
        return match_view(match_service.get_match(conn, match_id))


@app.post("/matches/{match_id}/launch")
def launch_match(match_id: str, req: VersionedRequest | None = None) -> dict[str, Any]:
    version = req.expected_version if req else None
    with db_conn() as conn, service_errors():
        return match_service.launch_match(conn, match_id, version).to_dict()


@app.post("/matches/{match_id}/score")
def update_score(match_id: str, req: ScoreRequest) -> dict[str, Any]:
    with db_conn() as conn, service_errors():
        return match_service.update_score(conn, match_id, req.side, req.delta, req.expected_version).to_dict()


@app.post("/matches/{match_id}/sets")
def launch_set(match_id: str, req: VersionedRequest | None = None) -> dict[str, Any]:
    version = req.expected_version if req else None
    with db_conn() as conn, service_errors():
        return match_service.launch_set(conn, match_id, version).to_dict()


@app.post("/matches/{match_id}/terminate")
def terminate_match(match_id: str, req: VersionedRequest | None = None) -> dict[str, Any]:
    version = req.expected_version if req else None
    with db_conn() as conn, service_errors():
        return match_service.terminate_match(conn, match_id, version).to_dict()


@app.post("/matches/{match_id}/reset")
def reset_match(match_id: str, req: VersionedRequest | None = None) -> dict[str, Any]:
    version = req.expected_version if req else None
    with db_conn() as conn, service_errors():
        return match_service.reset_match(conn, match_id, version).to_dict()


@app.post("/matches/{match_id}/start")
def start_match(match_id: str, req: StartMatchRequest) -> dict[str, Any]:
    with db_conn() as conn, service_errors():
        result = match_service.start_match(conn, match_id, req.table, req.expected_version)
        if result.conflict:
            raise HTTPException(status_code=409, detail=result.reason)
        return result.to_dict()


@app.post("/matches/{match_id}/stop")
def stop_match(match_id: str, req: VersionedRequest | None = None) -> dict[str, Any]:
    version = req.expected_version if req else None
    with db_conn() as conn, service_errors():
        return match_service.stop_match(conn, match_id, version).to_dict()


@app.post("/matches/{match_id}/cancel")
def cancel_match(match_id: str, req: VersionedRequest | None = None) -> dict[str, Any]:
    version = req.expected_version if req else None
    with db_conn() as conn, service_errors():
        return match_service.cancel_match(conn, match_id, version).to_dict()


@app.post("/matches/{match_id}/double")
def compose_double(match_id: str, req: ComposeDoubleRequest) -> dict[str, Any]:
    with db_conn() as conn, service_errors():
        return match_service.compose_double(
            conn, match_id, req.side1_name, req.side2_name, req.expected_version
        ).to_dict()


# ---------- Live updates: change feed → WebSocket ----------
# Feed callbacks run on the worker thread that committed the write; they hand
# the snapshot to the socket's event loop through a queue.

_FEED_TYPES = {"matches": "match", "encounters": "encounter"}


@app.websocket("/ws/encounters/{encounter_id}")
async def websocket_encounter(websocket: WebSocket, encounter_id: str) -> None:
    """
    Subscribe to an encounter. On connect the server sends { type: "snapshot", summary, matches },
    then { type: "match", ...match } and { type: "encounter", ...encounter } after every committed change.
    """
    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    def on_change(collection: str, payload: dict[str, Any]) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, {"type": _FEED_TYPES[collection], **payload})

    # Subscribe before reading the snapshot so no commit falls in between
    unsubscribers = [feed.subscribe(c, on_change, encounter_id=encounter_id) for c in _FEED_TYPES]
    with db_conn() as conn:
        try:
            summary = encounter_service.summary(conn, encounter_id)
        except EncounterNotFoundError:
            for unsubscribe in unsubscribers:
                unsubscribe()
            await websocket.close(code=4404)
            return
        matches = MatchRepository().list_by_encounter(conn, encounter_id)

    async def sender() -> None:
        while True:
            await websocket.send_json(await queue.get())

    send_task: asyncio.Task[None] | None = None
    try:
        await websocket.send_json({
            "type": "snapshot",
            "summary": summary.to_dict(),
            "matches": [match_view(m) for m in matches],
        })
        send_task = asyncio.create_task(sender())
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        for unsubscribe in unsubscribers:
            unsubscribe()
        if send_task is not None:
            send_task.cancel()
            with suppress(asyncio.CancelledError):
                await send_task


# ---------- Run with: uvicorn livescoring.api:app --reload ----------
