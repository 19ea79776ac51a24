from __future__ import annotations

import logging
from typing import List, Optional, Set

from pydantic import BaseModel, Field

from .db import Settings
from .models import (
    CandidateMovie,
    Challenge,
    CompletionRecord,
    GameSession,
    GuessedMovie,
    GuessResult,
    SavedGame,
)
from .scoring import calculate_points, calculate_time_bonus
from .utils import now_ts

logger = logging.getLogger(__name__)


class GameRules(BaseModel):
    initial_time: float = Field(default=30, gt=0)
    time_penalty: float = Field(default=3, ge=0)
    max_time: float = Field(default=45, gt=0)
    tick_seconds: float = Field(default=1, gt=0)

    @classmethod
    def from_settings(cls, s: Settings) -> "GameRules":
        return cls(
            initial_time=s.INITIAL_TIME,
            time_penalty=s.TIME_PENALTY,
            max_time=s.MAX_TIME,
            tick_seconds=s.TICK_SECONDS,
        )


class GameStateMachine:
    """One player's attempt at one challenge.

    Owns the session, the guessed-movie list and the set of every movie id
    tried so far. All mutations go through start/guess/tick/end; once the
    phase is ``ended`` every call is a no-op.
    """

    def __init__(
        self,
        challenge: Challenge,
        rules: GameRules | None = None,
        session: GameSession | None = None,
        guessed_movies: List[GuessedMovie] | None = None,
        tried_movie_ids: Set[int] | None = None,
    ):
        self.challenge = challenge
        self.rules = rules or GameRules()
        self.session = session or GameSession(date=challenge.date, challenge_id=challenge.id)
        self.guessed_movies: List[GuessedMovie] = list(guessed_movies or [])
        self.tried_movie_ids: Set[int] = set(tried_movie_ids or ())
        self._valid_ids = frozenset(challenge.valid_movie_ids)

    @classmethod
    def restore(cls, challenge: Challenge, saved: SavedGame, rules: GameRules | None = None) -> "GameStateMachine":
        machine = cls(
            challenge,
            rules,
            session=saved.session.model_copy(deep=True),
            guessed_movies=saved.guessed_movies,
            tried_movie_ids=set(saved.tried_movie_ids),
        )
        # Never trust ids from storage that are not answers to this challenge.
        s = machine.session
        kept_ids = {mid for mid in s.guessed_movie_ids if mid in machine._valid_ids}
        found: dict[int, GuessedMovie] = {}
        for movie in saved.guessed_movies:
            if movie.id in kept_ids and movie.id not in found:
                found[movie.id] = movie
        machine.guessed_movies = list(found.values())
        s.guessed_movie_ids = list(found)
        s.time_remaining = min(max(s.time_remaining, 0), machine.rules.max_time)
        if s.phase == "ended":
            s.final_score = machine.score
        return machine

    @classmethod
    def from_completion(
        cls, challenge: Challenge, record: CompletionRecord, rules: GameRules | None = None
    ) -> "GameStateMachine":
        """Rebuild an already-finished game; used to block replays of the day."""
        session = GameSession(
            date=record.date,
            challenge_id=challenge.id,
            phase="ended",
            completed_at=record.timestamp.timestamp(),
            guessed_movie_ids=[m.id for m in record.guessed_movies],
            time_remaining=0,
            final_score=record.score,
        )
        return cls(challenge, rules, session=session, guessed_movies=record.guessed_movies)

    @property
    def phase(self):
        return self.session.phase

    @property
    def score(self) -> int:
        return sum(m.points_awarded for m in self.guessed_movies)

    def snapshot(self) -> SavedGame:
        return SavedGame(
            session=self.session.model_copy(deep=True),
            guessed_movies=list(self.guessed_movies),
            tried_movie_ids=sorted(self.tried_movie_ids),
        )

    def completion_record(self) -> Optional[CompletionRecord]:
        if self.session.phase != "ended":
            return None
        return CompletionRecord(
            score=self.session.final_score if self.session.final_score is not None else self.score,
            movies_found=len(self.guessed_movies),
            guessed_movies=list(self.guessed_movies),
            date=self.session.date,
        )

    def start(self) -> bool:
        s = self.session
        if s.phase != "idle":
            logger.warning("start ignored: challenge=%s phase=%s", s.challenge_id, s.phase)
            return False

        s.phase = "playing"
        s.started_at = now_ts()
        s.completed_at = None
        s.time_remaining = min(self.rules.initial_time, self.rules.max_time)
        s.guessed_movie_ids = []
        s.incorrect_count = 0
        s.final_score = None
        self.guessed_movies = []
        self.tried_movie_ids = set()
        logger.info("game started: challenge=%s date=%s", s.challenge_id, s.date)
        return True

    def guess(self, candidate: CandidateMovie) -> GuessResult:
        s = self.session
        if s.phase != "playing":
            return GuessResult(outcome="ignored", movie_id=candidate.id, session=s.model_copy(deep=True))

        if candidate.id in s.guessed_movie_ids:
            return GuessResult(outcome="already_found", movie_id=candidate.id, session=s.model_copy(deep=True))

        if candidate.id in self.tried_movie_ids:
            return GuessResult(outcome="already_tried", movie_id=candidate.id, session=s.model_copy(deep=True))

        self.tried_movie_ids.add(candidate.id)

        if candidate.id in self._valid_ids:
            bonus = calculate_time_bonus(candidate.vote_count, candidate.vote_average).bonus
            awarded = calculate_points(candidate.vote_count, candidate.vote_average).total_points
            self.guessed_movies.append(
                GuessedMovie(
                    id=candidate.id,
                    title=candidate.title,
                    poster_path=candidate.poster_path,
                    points_awarded=awarded,
                    time_bonus=bonus,
                )
            )
            s.guessed_movie_ids.append(candidate.id)
            s.time_remaining = min(self.rules.max_time, s.time_remaining + bonus)
            if len(s.guessed_movie_ids) >= self.challenge.total_movies:
                self._finish("all movies found")
            return GuessResult(
                outcome="correct",
                movie_id=candidate.id,
                points_awarded=awarded,
                time_bonus=bonus,
                session=s.model_copy(deep=True),
            )

        s.incorrect_count += 1
        penalty = min(self.rules.time_penalty, s.time_remaining)
        s.time_remaining -= penalty
        if s.time_remaining <= 0:
            self._finish("time penalty exhausted the clock")
        return GuessResult(
            outcome="incorrect",
            movie_id=candidate.id,
            time_penalty=penalty,
            session=s.model_copy(deep=True),
        )

    def tick(self) -> bool:
        """Advance the clock one unit. Returns True when the tick ended the game."""
        s = self.session
        if s.phase != "playing":
            return False
        s.time_remaining = max(0, s.time_remaining - self.rules.tick_seconds)
        if s.time_remaining <= 0:
            self._finish("time expired")
            return True
        return False

    def end(self) -> bool:
        if self.session.phase != "playing":
            return False
        self._finish("ended by player")
        return True

    def _finish(self, reason: str):
        s = self.session
        s.phase = "ended"
        s.completed_at = now_ts()
        s.final_score = self.score
        logger.info(
            "game ended: challenge=%s reason=%s found=%d/%d score=%d",
            s.challenge_id,
            reason,
            len(s.guessed_movie_ids),
            self.challenge.total_movies,
            s.final_score,
        )
