from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, Optional, Set

from .challenges import ChallengeSource, ChallengeUnavailable, challenge_repository
from .db import settings
from .events import EventStore, clock_event, event_store, game_over_event, guess_feedback
from .models import CandidateMovie, Challenge, GuessResult
from .persistence import SessionStore, session_store
from .schemas import GameViewOut, PublicChallengeOut
from .session import GameRules, GameStateMachine
from .stats import GuessStats, guess_stats
from .timer import CountdownTimer

logger = logging.getLogger(__name__)

NO_CHALLENGE_MESSAGE = "No challenge available for today. Check back tomorrow!"
LOAD_FAILED_MESSAGE = "Failed to load challenge. Please try again."

TimerFactory = Callable[..., CountdownTimer]


class GameController:
    """Owns every player's running game.

    Guesses and timer ticks for a player go through the same lock, so the
    clock can never be updated by two callers at once.
    """

    def __init__(
        self,
        challenges: ChallengeSource = challenge_repository,
        store: SessionStore = session_store,
        events: EventStore = event_store,
        stats: GuessStats = guess_stats,
        rules: GameRules | None = None,
        timer_factory: TimerFactory = CountdownTimer,
    ):
        self.challenges = challenges
        self.store = store
        self.events = events
        self.stats = stats
        self.rules = rules or GameRules.from_settings(settings)
        self.timer_factory = timer_factory
        self.games: Dict[str, GameStateMachine] = {}
        self.timers: Dict[str, CountdownTimer] = {}
        self.locks: Dict[str, asyncio.Lock] = {}
        self._background: Set[asyncio.Task] = set()

    def _lock(self, player_id: str) -> asyncio.Lock:
        self.locks.setdefault(player_id, asyncio.Lock())
        return self.locks[player_id]

    def view(self, player_id: str) -> Optional[GameViewOut]:
        machine = self.games.get(player_id)
        if not machine:
            return None
        return GameViewOut(
            status="ready",
            challenge=PublicChallengeOut.from_challenge(machine.challenge),
            session=machine.session.model_copy(deep=True),
            guessed_movies=list(machine.guessed_movies),
            score=machine.score,
        )

    async def open(self, player_id: str, day_key: str | None = None) -> GameViewOut:
        """Load today's challenge and restore (or create) the player's game."""
        try:
            challenge = await self.challenges.fetch_today_challenge(day_key)
        except ChallengeUnavailable as exc:
            logger.warning("challenge fetch failed for %s: %s", player_id, exc)
            return GameViewOut(status="error", message=LOAD_FAILED_MESSAGE, retryable=True)

        if challenge is None:
            return GameViewOut(status="no_challenge", message=NO_CHALLENGE_MESSAGE)

        async with self._lock(player_id):
            current = self.games.get(player_id)
            if current and current.challenge.id == challenge.id:
                return self.view(player_id)
            if current:
                self._stop_timer(player_id)

            machine = await self._initialize(player_id, challenge)
            self.games[player_id] = machine
            if machine.phase == "playing":
                self._start_timer(player_id)
            return self.view(player_id)

    async def _initialize(self, player_id: str, challenge: Challenge) -> GameStateMachine:
        record = await self.store.load_completion(player_id, challenge.date)
        if record:
            logger.info("player %s already completed %s; replay blocked", player_id, challenge.date)
            return GameStateMachine.from_completion(challenge, record, self.rules)

        saved = await self.store.load(player_id)
        if saved and saved.session.date == challenge.date and saved.session.challenge_id == challenge.id:
            machine = GameStateMachine.restore(challenge, saved, self.rules)
            if machine.phase == "ended":
                await self.store.save_completion(player_id, machine.completion_record())
            return machine

        if saved:
            logger.info("discarding stale saved game for %s (date=%s)", player_id, saved.session.date)
            await self.store.clear(player_id)
        return GameStateMachine(challenge, self.rules)

    async def start(self, player_id: str) -> Optional[GameViewOut]:
        async with self._lock(player_id):
            machine = self.games.get(player_id)
            if not machine:
                logger.warning("start ignored: no open game for %s", player_id)
                return None
            if machine.start():
                await self.events.reset(player_id)
                await self.events.append(player_id, {"type": "game_started", **clock_event(machine.session)})
                await self._after_mutation(player_id, machine)
                self._start_timer(player_id)
            return self.view(player_id)

    async def guess(self, player_id: str, candidate: CandidateMovie) -> GuessResult:
        async with self._lock(player_id):
            machine = self.games.get(player_id)
            if not machine:
                return GuessResult(outcome="ignored", movie_id=candidate.id)

            result = machine.guess(candidate)
            if result.outcome == "correct":
                self._record_guess(machine.challenge.id, candidate.id)
            if result.outcome != "ignored":
                await self.events.append(player_id, guess_feedback(result))
            if result.outcome in ("correct", "incorrect"):
                await self._after_mutation(player_id, machine)
            return result

    async def tick(self, player_id: str):
        async with self._lock(player_id):
            machine = self.games.get(player_id)
            if not machine or machine.phase != "playing":
                self._stop_timer(player_id)
                return
            machine.tick()
            await self.events.append(player_id, clock_event(machine.session))
            await self._after_mutation(player_id, machine)

    async def end(self, player_id: str) -> Optional[GameViewOut]:
        async with self._lock(player_id):
            machine = self.games.get(player_id)
            if not machine:
                return None
            if machine.end():
                await self._after_mutation(player_id, machine)
            return self.view(player_id)

    async def close(self, player_id: str):
        """Release a player's game; no tick fires after this returns."""
        async with self._lock(player_id):
            self._stop_timer(player_id)
            self.games.pop(player_id, None)

    async def reset_player(self, player_id: str, day_key: str):
        """Forget the live game and the completion record so the day can be replayed."""
        async with self._lock(player_id):
            self._stop_timer(player_id)
            self.games.pop(player_id, None)
            await self.store.clear(player_id)
            await self.store.clear_completion(player_id, day_key)
            await self.events.reset(player_id)
        logger.info("reset saved state for %s on %s", player_id, day_key)

    async def shutdown(self):
        for player_id in list(self.timers):
            self._stop_timer(player_id)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def _after_mutation(self, player_id: str, machine: GameStateMachine):
        await self.store.save(player_id, machine.snapshot())
        if machine.phase != "ended":
            return
        self._stop_timer(player_id)
        await self.store.save_completion(player_id, machine.completion_record())
        await self.events.append(player_id, game_over_event(machine.session, machine.challenge.total_movies))

    def _start_timer(self, player_id: str):
        self._stop_timer(player_id)
        timer = self.timer_factory(self.rules.tick_seconds, lambda: self.tick(player_id))
        self.timers[player_id] = timer
        timer.start()

    def _stop_timer(self, player_id: str):
        timer = self.timers.pop(player_id, None)
        if timer:
            timer.stop()

    def _record_guess(self, challenge_id: int, movie_id: int):
        task = asyncio.create_task(self.stats.record_guess(challenge_id, movie_id))
        self._background.add(task)
        task.add_done_callback(self._telemetry_done)

    def _telemetry_done(self, task: asyncio.Task):
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.warning("guess telemetry failed: %s", exc)


controller = GameController()
