"""
FastAPI application for the game-night wagering engine
Exposes odds, wager placement, settlement and rating endpoints
"""

from fastapi import FastAPI, Depends, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional
import logging

from gamenight.auth import verify_api_key, verify_admin_api_key
from gamenight.core.engine_config import EngineConfig
from gamenight.core.odds_math import format_decimal, format_fraction
from gamenight.models import GameInstance, Member, SessionLocal, get_db, init_db
from gamenight.schemas import (
    CancelResponse,
    LeaderboardEntry,
    ManualOddsUpdate,
    NightResultEntry,
    NightResultsResponse,
    OddsBoardResponse,
    OddsQuoteResponse,
    OddsUpdateResponse,
    PlaceWagerResponse,
    ResolveResponse,
    ResultUpdate,
    WagerCreate,
    WagerResponse,
)
from gamenight.services.odds import OddsEngine, book_overround, roster_layout
from gamenight.services.ratings import RatingEngine
from gamenight.services.schedule import (
    ResultLockedError,
    ScheduleError,
    ScheduleNotFoundError,
    ScheduleStore,
)
from gamenight.services.wagers import ResolveStatus, WagerLedger

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting Game Night Wagers")
    init_db()
    yield
    logger.info("Shutting down Game Night Wagers")


app = FastAPI(
    title="Game Night Wagers",
    description="Ratings, odds and coin wagers for board-game nights",
    version="1.0",
    lifespan=lifespan,
)

# CORS (adjust origins for production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# SERVICE WIRING
# ============================================================================

_ledger: Optional[WagerLedger] = None


def get_ledger() -> WagerLedger:
    global _ledger
    if _ledger is None:
        config = EngineConfig.from_env()
        ratings = RatingEngine(config)
        _ledger = WagerLedger(SessionLocal, odds=OddsEngine(ratings, config))
    return _ledger


def get_schedule(ledger: WagerLedger = Depends(get_ledger)) -> ScheduleStore:
    return ScheduleStore(ledger.session_factory, ledger)


# Rejections that are the caller's fault rather than a state conflict
_STATUS_CODES = {
    "NOT_FOUND": 404,
    "INSUFFICIENT_FUNDS": 402,
    "INVALID_AMOUNT": 400,
    "INVALID_WINNER": 400,
}


def _raise_for_status(status: Enum) -> None:
    raise HTTPException(status_code=_STATUS_CODES.get(status.value, 409), detail=status.value)


def _raise_for_schedule_error(exc: ScheduleError) -> None:
    if isinstance(exc, ScheduleNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ResultLockedError):
        raise HTTPException(status_code=409, detail=str(exc))
    raise HTTPException(status_code=400, detail=str(exc))


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    """Service info"""
    return {
        "app": "Game Night Wagers",
        "version": "1.0",
        "status": "operational",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint"""
    health = {"status": "healthy", "database": "connected"}

    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Health check database error: %s", e)
        health["status"] = "degraded"
        health["database"] = f"error: {str(e)}"

    return health


# ============================================================================
# AUTHENTICATED ENDPOINTS - ODDS AND WAGERS
# ============================================================================

@app.get("/api/games/{game_id}/odds", response_model=OddsBoardResponse)
async def get_game_odds(
    game_id: int,
    bettor_id: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
    ledger: WagerLedger = Depends(get_ledger),
):
    """Current odds board for one game."""
    game = db.get(GameInstance, game_id)
    if game is None:
        raise HTTPException(status_code=404, detail="NOT_FOUND")

    odds = ledger.odds.get_odds_for_outcome(db, game_id)
    layout = roster_layout(game)
    names = dict(
        db.query(Member.id, Member.name).filter(Member.id.in_(list(odds) or [-1])).all()
    )

    quotes = [
        OddsQuoteResponse(
            member_id=member_id,
            member_name=names.get(member_id),
            team_name=layout.member_team(member_id),
            odds_times100=value,
            decimal=format_decimal(value),
            fraction=format_fraction(value),
        )
        for member_id, value in sorted(odds.items())
    ]

    return OddsBoardResponse(
        game_id=game.id,
        game_name=game.game_name,
        scheduled_date=game.scheduled_date,
        state=game.state,
        overround=round(book_overround(odds, layout), 4),
        quotes=quotes,
    )


@app.post("/api/games/{game_id}/wagers", response_model=PlaceWagerResponse)
async def place_wager(
    game_id: int,
    payload: WagerCreate,
    bettor_id: str = Depends(verify_api_key),
    ledger: WagerLedger = Depends(get_ledger),
):
    """Stake coins on a contestant or team of a confirmed game."""
    result = ledger.place_wager(game_id, payload.predicted_winner, payload.amount, bettor_id)
    if not result.ok:
        _raise_for_status(result.status)

    return PlaceWagerResponse(
        message="Wager placed",
        wager=WagerResponse(**result.wager.to_dict()),
        odds=result.odds,
    )


@app.get("/api/games/{game_id}/wagers/me", response_model=List[WagerResponse])
async def get_my_wagers(
    game_id: int,
    bettor_id: str = Depends(verify_api_key),
    ledger: WagerLedger = Depends(get_ledger),
):
    return [WagerResponse(**w.to_dict()) for w in ledger.get_user_wagers(game_id, bettor_id)]


@app.get("/api/ratings/leaderboard", response_model=List[LeaderboardEntry])
async def get_leaderboard(
    limit: int = Query(20, ge=1, le=200),
    bettor_id: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
    ledger: WagerLedger = Depends(get_ledger),
):
    rankings = ledger.ratings.get_leaderboard(db, limit=limit)
    return [
        LeaderboardEntry(
            rank=i,
            member_id=r.member_id,
            name=r.name,
            rating=r.rating,
            last_updated=r.last_updated,
        )
        for i, r in enumerate(rankings, start=1)
    ]


@app.get("/api/nights/{scheduled_date}/results", response_model=NightResultsResponse)
async def get_night_results(
    scheduled_date: date,
    bettor_id: str = Depends(verify_api_key),
    ledger: WagerLedger = Depends(get_ledger),
):
    """Net coin result per bettor over every settled game of one night."""
    results = ledger.get_net_results(scheduled_date)
    return NightResultsResponse(
        scheduled_date=scheduled_date,
        results=[NightResultEntry(**r.to_dict()) for r in results],
    )


# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================

@app.post("/api/admin/games/{game_id}/confirm", response_model=OddsUpdateResponse)
async def confirm_game(
    game_id: int,
    admin: str = Depends(verify_admin_api_key),
    schedule: ScheduleStore = Depends(get_schedule),
):
    """Confirm a planned game and open betting with initial odds."""
    try:
        odds = schedule.confirm_game(game_id)
    except ScheduleError as exc:
        _raise_for_schedule_error(exc)

    logger.info("Game %d confirmed by %s", game_id, admin)
    return OddsUpdateResponse(game_id=game_id, odds=odds)


@app.post("/api/admin/games/{game_id}/result")
async def record_result(
    game_id: int,
    payload: ResultUpdate,
    admin: str = Depends(verify_admin_api_key),
    schedule: ScheduleStore = Depends(get_schedule),
):
    """Record who won (or that nobody did)."""
    try:
        if payload.no_winner:
            schedule.record_no_winner(game_id)
        elif payload.winner_team_name:
            schedule.record_team_winner(game_id, payload.winner_team_name)
        else:
            schedule.record_winner(game_id, payload.winner_member_id)
    except ScheduleError as exc:
        _raise_for_schedule_error(exc)

    return {"game_id": game_id, "message": "Result recorded"}


@app.post("/api/admin/games/{game_id}/resolve", response_model=ResolveResponse)
async def resolve_game(
    game_id: int,
    admin: str = Depends(verify_admin_api_key),
    ledger: WagerLedger = Depends(get_ledger),
):
    """Settle every open wager.  Repeating the call is a no-op."""
    result = ledger.resolve_outcome(game_id)
    if not result.ok and result.status is not ResolveStatus.ALREADY_RESOLVED:
        _raise_for_status(result.status)

    return ResolveResponse(
        game_id=game_id,
        status=result.status.value,
        settled=result.settled,
        payouts=result.payouts,
    )


@app.post("/api/admin/games/{game_id}/cancel", response_model=CancelResponse)
async def cancel_game(
    game_id: int,
    admin: str = Depends(verify_admin_api_key),
    ledger: WagerLedger = Depends(get_ledger),
):
    """Refund every open wager and return the game to planning."""
    result = ledger.cancel_open_wagers(game_id)
    if not result.ok:
        _raise_for_status(result.status)

    return CancelResponse(game_id=game_id, status=result.status.value, refunded=result.refunded)


@app.put("/api/admin/games/{game_id}/odds", response_model=OddsUpdateResponse)
async def override_odds(
    game_id: int,
    payload: ManualOddsUpdate,
    admin: str = Depends(verify_admin_api_key),
    ledger: WagerLedger = Depends(get_ledger),
):
    """Set a contestant's (or their team's) odds by hand."""
    try:
        odds = ledger.set_manual_odds(game_id, payload.member_id, payload.odds_times100)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    logger.info("Odds for game %d overridden by %s", game_id, admin)
    return OddsUpdateResponse(game_id=game_id, odds=odds)


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Catch-all exception handler"""
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": type(exc).__name__}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
