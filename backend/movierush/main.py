import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .challenges import ChallengeUnavailable, challenge_repository
from .db import settings
from .events import event_store
from .game import controller
from .schemas import (
    AdminChallengeIn,
    GameViewOut,
    GuessIn,
    GuessOut,
    OpenGameIn,
    PlayerIn,
    PublicChallengeOut,
    RecordGuessIn,
    ResetPlayerIn,
    ResultsOut,
)
from .search import CatalogSearch, SearchUnavailable
from .stats import guess_stats
from .utils import sort_by_points, today_key

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

catalog = CatalogSearch()


@asynccontextmanager
async def lifespan(app):
    yield
    await controller.shutdown()


app = FastAPI(title="MovieRush API", lifespan=lifespan)

origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_origin_regex=settings.CORS_ORIGIN_REGEX or None,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def require_admin(x_admin_key: Optional[str] = Header(default=None)):
    if x_admin_key != settings.ADMIN_KEY:
        raise HTTPException(status_code=401, detail="Invalid admin key")


def _game_or_404(view: Optional[GameViewOut]) -> GameViewOut:
    if view is None:
        raise HTTPException(status_code=404, detail="No open game for this player")
    return view


@app.get("/api/challenge", response_model=PublicChallengeOut)
async def get_challenge(date: Optional[str] = None):
    query_date = date or today_key()
    try:
        challenge = await challenge_repository.fetch_today_challenge(query_date)
    except ChallengeUnavailable as exc:
        raise HTTPException(status_code=503, detail="Failed to fetch challenge") from exc
    if not challenge:
        raise HTTPException(status_code=404, detail=f"No challenge available for {query_date}")
    return PublicChallengeOut.from_challenge(challenge)


@app.get("/api/autocomplete")
async def autocomplete(query: str = ""):
    try:
        results = await catalog.search(query)
    except SearchUnavailable as exc:
        raise HTTPException(status_code=503, detail="Search failed") from exc
    return {"results": [r.model_dump() for r in results]}


@app.post("/api/game/open", response_model=GameViewOut)
async def open_game(payload: OpenGameIn):
    return await controller.open(payload.player_id, payload.date)


@app.post("/api/game/start", response_model=GameViewOut)
async def start_game(payload: PlayerIn):
    return _game_or_404(await controller.start(payload.player_id))


@app.post("/api/game/guess", response_model=GuessOut)
async def guess(payload: GuessIn):
    result = await controller.guess(payload.player_id, payload.movie)
    return GuessOut(result=result, game=_game_or_404(controller.view(payload.player_id)))


@app.post("/api/game/end", response_model=GameViewOut)
async def end_game(payload: PlayerIn):
    return _game_or_404(await controller.end(payload.player_id))


@app.get("/api/game/{player_id}", response_model=GameViewOut)
async def get_game(player_id: str):
    return _game_or_404(controller.view(player_id))


@app.get("/api/game/{player_id}/events")
async def list_events(player_id: str, after: int | None = None, limit: int = 200):
    events = await event_store.list(player_id, after=after, limit=limit)
    latest_seq = events[-1]["seq"] if events else after
    return {"events": events, "latest_seq": latest_seq}


@app.get("/api/game/{player_id}/results", response_model=ResultsOut)
async def get_results(player_id: str):
    view = _game_or_404(controller.view(player_id))
    if view.session.phase != "ended":
        raise HTTPException(status_code=409, detail="Game is still in progress")
    movies = sort_by_points([m.model_dump() for m in view.guessed_movies])
    share_text = (
        f"MovieRush {view.challenge.date}\n\n"
        f"{view.score} points\n"
        f"{len(movies)} movies found"
    )
    return ResultsOut(score=view.score, movies_found=len(movies), guessed_movies=movies, share_text=share_text)


@app.post("/api/stats/record-guess")
async def record_guess(payload: RecordGuessIn):
    # Always succeeds from the caller's point of view; failures are only logged.
    await guess_stats.record_guess(payload.challenge_id, payload.tmdb_id)
    return {"success": True}


@app.get("/api/stats/popular")
async def popular(challenge_id: Optional[int] = None, limit: int = 5):
    if challenge_id is None:
        return {"movies": []}
    return {"movies": await guess_stats.popular(challenge_id, limit)}


@app.get("/api/stats/rare")
async def rare(challenge_id: Optional[int] = None, limit: int = 5):
    if challenge_id is None:
        return {"movies": []}
    return {"movies": await guess_stats.rare(challenge_id, limit)}


@app.post("/api/admin/challenge")
async def upsert_challenge(payload: AdminChallengeIn, _: None = Depends(require_admin)):
    await challenge_repository.upsert(payload.challenge)
    await catalog.add_movies(payload.movies)
    return {"ok": True}


@app.post("/api/admin/reset-player")
async def reset_player(payload: ResetPlayerIn, _: None = Depends(require_admin)):
    await controller.reset_player(payload.player_id, payload.date or today_key())
    return {"ok": True}


@app.get("/api/admin/verify")
async def verify(_: None = Depends(require_admin)):
    return {"ok": True}
