from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from .models import CandidateMovie, Challenge, GameSession, GuessedMovie, GuessResult
from .utils import format_date_for_display


class PublicChallengeOut(BaseModel):
    """Challenge as shown to players: the answer ids stay on the server."""

    id: int
    date: str
    prompt: str
    type: str
    total_movies: int
    display_date: str

    @classmethod
    def from_challenge(cls, c: Challenge) -> "PublicChallengeOut":
        return cls(
            id=c.id,
            date=c.date,
            prompt=c.prompt,
            type=c.type,
            total_movies=c.total_movies,
            display_date=format_date_for_display(c.date),
        )


class GameViewOut(BaseModel):
    status: Literal["ready", "no_challenge", "error"]
    message: Optional[str] = None
    retryable: bool = False
    challenge: Optional[PublicChallengeOut] = None
    session: Optional[GameSession] = None
    guessed_movies: List[GuessedMovie] = Field(default_factory=list)
    score: int = 0


class OpenGameIn(BaseModel):
    player_id: str
    date: Optional[str] = None


class PlayerIn(BaseModel):
    player_id: str


class GuessIn(BaseModel):
    player_id: str
    movie: CandidateMovie


class GuessOut(BaseModel):
    result: GuessResult
    game: GameViewOut


class RecordGuessIn(BaseModel):
    challenge_id: int
    tmdb_id: int


class AdminChallengeIn(BaseModel):
    challenge: Challenge
    movies: List[CandidateMovie] = Field(default_factory=list)


class ResetPlayerIn(BaseModel):
    player_id: str
    date: Optional[str] = None


class ResultsOut(BaseModel):
    score: int
    movies_found: int
    guessed_movies: List[GuessedMovie]
    share_text: str
