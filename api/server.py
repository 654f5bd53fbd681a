"""
BlockOS API Server - thin REST handlers over the block engine.

Every endpoint is scoped by `owner` (query parameter, defaults to
BLOCKOS_OWNER). Engine errors map to HTTP statuses in one place.
"""

import logging
from datetime import datetime, timedelta

import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from blockos import __version__, config
from blockos import db as db_module
from blockos.blocks import (
    BlockStore,
    CalendarSyncService,
    CurrentBlockResolver,
    RefactorService,
    RoutineStore,
    RoutineSync,
    SessionStore,
    block_status,
    execution_stats,
)
from blockos.blocks.calendar_sync import EventSource
from blockos.collectors import GoogleCalendarCollector, load_calendar_config
from blockos.errors import (
    BlockOSError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    UpstreamError,
    ValidationError,
)
from blockos.observability import CorrelationIdMiddleware, configure_logging
from blockos.observability.context import set_owner
from blockos.state_store import StateStore, get_store

logger = logging.getLogger(__name__)

app = FastAPI(
    title="BlockOS API",
    description="Time-block execution engine: current block, routines, calendar sync, refactor",
    version=__version__,
)
app.add_middleware(CorrelationIdMiddleware)

ERROR_STATUS: list[tuple[type[BlockOSError], int]] = [
    (ValidationError, 422),
    (NotFoundError, 404),
    (ConflictError, 409),
    (UpstreamError, 502),
    (PersistenceError, 503),
]


@app.on_event("startup")
async def startup():
    configure_logging()
    logger.info("=== BlockOS API startup === DB: %s", db_module.get_db_path())


@app.exception_handler(BlockOSError)
async def handle_engine_error(request: Request, exc: BlockOSError):
    status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status,
        content={"status": "error", "error": str(exc), "error_code": type(exc).__name__},
    )


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_state() -> StateStore:
    return get_store()


def get_calendar_config() -> dict:
    return load_calendar_config()


def get_event_source(calendar_config: dict = Depends(get_calendar_config)) -> EventSource:
    return GoogleCalendarCollector(calendar_config)


def get_now() -> datetime:
    return datetime.now(config.local_tz())


async def get_owner(
    owner: str | None = Query(None, description="Owner id; defaults to BLOCKOS_OWNER"),
) -> str:
    owner = owner or config.DEFAULT_OWNER
    set_owner(owner)
    return owner


def _wrap_response(data: dict | list | None, now: datetime) -> dict:
    return {"status": "ok", "data": data, "computed_at": now.isoformat()}


# =============================================================================
# REQUEST MODELS
# =============================================================================


class RefactorRequest(BaseModel):
    apply: bool = False


class ExpandRequest(BaseModel):
    horizon_days: int | None = Field(None, ge=1, le=60)


class SyncRequest(BaseModel):
    force: bool = False


# =============================================================================
# ENDPOINTS
# =============================================================================


@app.get("/api/health")
def health(state: StateStore = Depends(get_state), now: datetime = Depends(get_now)):
    """Store reachability and schema version."""
    with db_module.get_connection(state.db_path) as conn:
        version = db_module.get_schema_version(conn)
    return _wrap_response({"healthy": True, "schema_version": version, "version": __version__}, now)


@app.get("/api/blocks/current")
def current_block(
    owner: str = Depends(get_owner),
    state: StateStore = Depends(get_state),
    now: datetime = Depends(get_now),
):
    """
    The block happening now with its latest session and display status,
    plus the most recent resume token for the idle view.
    """
    blocks = BlockStore(owner, state)
    sessions = SessionStore(owner, state)
    current = CurrentBlockResolver(blocks, sessions).resolve_with_context(now)
    last = sessions.last_resume_token()

    data = {"current": None, "last_resume_token": last.resume_token if last else None}
    if current is not None:
        data["current"] = current.to_dict()
        data["current"]["status"] = block_status(current.block, current.latest_session, now).to_dict()
    return _wrap_response(data, now)


@app.post("/api/blocks/refactor")
def refactor_blocks(
    body: RefactorRequest | None = None,
    owner: str = Depends(get_owner),
    state: StateStore = Depends(get_state),
    now: datetime = Depends(get_now),
):
    """Re-flow the rest of today. With apply=true the proposal is committed as one batch."""
    body = body or RefactorRequest()
    result = RefactorService(BlockStore(owner, state)).run(now, apply=body.apply)
    return _wrap_response(result.to_dict(), now)


@app.post("/api/routines/expand")
def expand_routines(
    body: ExpandRequest | None = None,
    owner: str = Depends(get_owner),
    state: StateStore = Depends(get_state),
    now: datetime = Depends(get_now),
):
    """Materialize routines into blocks over the rolling horizon."""
    body = body or ExpandRequest()
    sync = RoutineSync(BlockStore(owner, state), RoutineStore(owner, state), body.horizon_days)
    return _wrap_response(sync.run(now).to_dict(), now)


@app.post("/api/calendar/sync")
def sync_calendar(
    body: SyncRequest | None = None,
    owner: str = Depends(get_owner),
    state: StateStore = Depends(get_state),
    source: EventSource = Depends(get_event_source),
    calendar_config: dict = Depends(get_calendar_config),
    now: datetime = Depends(get_now),
):
    """Pull calendar events into blocks unless the last sync is still fresh."""
    body = body or SyncRequest()
    lookahead = int(calendar_config.get("lookahead_days", 7))
    service = CalendarSyncService(BlockStore(owner, state), source, state, lookahead_days=lookahead)
    outcome = service.sync(now, force=body.force)
    if outcome.reason == "upstream_error":
        raise UpstreamError("; ".join(outcome.errors) or "calendar fetch failed")
    return _wrap_response(outcome.to_dict(), now)


@app.get("/api/stats")
def stats(
    days: int = Query(7, ge=1, le=90),
    owner: str = Depends(get_owner),
    state: StateStore = Depends(get_state),
    now: datetime = Depends(get_now),
):
    """Execution statistics over the last `days` days."""
    result = execution_stats(SessionStore(owner, state), now, days=days)
    data = result.to_dict()
    data["since"] = (now - timedelta(days=days)).date().isoformat()
    return _wrap_response(data, now)


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8420)  # noqa: S104
