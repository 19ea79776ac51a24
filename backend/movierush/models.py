from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, timezone

MovieId = int

GamePhase = Literal["idle", "playing", "ended"]
Tier = Literal["very-well-known", "well-known", "moderate", "obscure"]
GuessOutcome = Literal["correct", "incorrect", "already_found", "already_tried", "ignored"]


class Challenge(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    date: str  # YYYY-MM-DD
    prompt: str
    type: Literal["actor", "director", "genre", "theme"] = "actor"
    total_movies: int
    valid_movie_ids: List[MovieId]


class CandidateMovie(BaseModel):
    id: MovieId
    title: str
    vote_count: int = Field(default=0, ge=0)
    vote_average: float = Field(default=0.0, ge=0, le=10)
    poster_path: Optional[str] = None
    release_date: Optional[str] = None


class GuessedMovie(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: MovieId
    title: str
    poster_path: Optional[str] = None
    points_awarded: int
    time_bonus: int


# States: idle -> playing -> ended
class GameSession(BaseModel):
    date: str
    challenge_id: int
    phase: GamePhase = "idle"
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    guessed_movie_ids: List[MovieId] = Field(default_factory=list)
    incorrect_count: int = Field(default=0, ge=0)
    time_remaining: float = Field(default=0, ge=0)
    final_score: Optional[int] = None


class SavedGame(BaseModel):
    """Live snapshot written after every mutation."""

    session: GameSession
    guessed_movies: List[GuessedMovie] = Field(default_factory=list)
    tried_movie_ids: List[MovieId] = Field(default_factory=list)


class CompletionRecord(BaseModel):
    completed: Literal[True] = True
    score: int
    movies_found: int
    guessed_movies: List[GuessedMovie] = Field(default_factory=list)
    date: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class GuessResult(BaseModel):
    outcome: GuessOutcome
    movie_id: Optional[MovieId] = None
    points_awarded: int = 0
    time_bonus: int = 0
    time_penalty: float = 0
    session: Optional[GameSession] = None
