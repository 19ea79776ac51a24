from __future__ import annotations

import asyncio
from unittest import IsolatedAsyncioTestCase, mock

from .challenges import ChallengeUnavailable
from .db import InMemoryCollection
from .events import EventStore
from .game import GameController
from .models import CandidateMovie, Challenge
from .persistence import SessionStore
from .session import GameRules
from .stats import GuessStats

TODAY = "2026-10-19"


def _challenge(valid=(1, 2, 3), day=TODAY, challenge_id=7) -> Challenge:
    return Challenge(
        id=challenge_id,
        date=day,
        prompt="Frances McDormand",
        total_movies=len(valid),
        valid_movie_ids=list(valid),
    )


def _movie(movie_id: int, vote_count: int = 100, vote_average: float = 6.0) -> CandidateMovie:
    return CandidateMovie(id=movie_id, title=f"Movie {movie_id}", vote_count=vote_count, vote_average=vote_average)


class _FakeChallengeSource:
    def __init__(self, challenge: Challenge | None = None, error: Exception | None = None):
        self.challenge = challenge
        self.error = error
        self.calls: list[str | None] = []

    async def fetch_today_challenge(self, day_key=None):
        self.calls.append(day_key)
        if self.error:
            raise self.error
        return self.challenge


class _FakeTimer:
    instances: list["_FakeTimer"] = []

    def __init__(self, interval, on_tick):
        self.interval = interval
        self.on_tick = on_tick
        self.started = False
        self.stopped = False
        _FakeTimer.instances.append(self)

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    async def fire(self):
        await self.on_tick()


class _FailingStats(GuessStats):
    async def record_guess(self, challenge_id, movie_id):
        raise RuntimeError("stats backend down")


def _stores():
    store = SessionStore()
    store.collection = InMemoryCollection()
    events = EventStore()
    events.counters_collection = InMemoryCollection()
    events.events_collection = InMemoryCollection()
    stats = GuessStats()
    stats.collection = InMemoryCollection()
    return store, events, stats


class GameControllerTests(IsolatedAsyncioTestCase):
    def setUp(self) -> None:  # noqa: D401 - standard unittest hook
        _FakeTimer.instances = []
        self.source = _FakeChallengeSource(_challenge())
        self.store, self.events, self.stats = _stores()
        self.rules = GameRules(initial_time=30, time_penalty=3, max_time=45, tick_seconds=1)
        self.controller = self._controller()

    def _controller(self) -> GameController:
        return GameController(
            challenges=self.source,
            store=self.store,
            events=self.events,
            stats=self.stats,
            rules=self.rules,
            timer_factory=_FakeTimer,
        )

    async def asyncTearDown(self) -> None:
        await self.controller.shutdown()

    async def _play(self, player_id="p1"):
        await self.controller.open(player_id, TODAY)
        return await self.controller.start(player_id)

    async def test_open_without_challenge_reports_state(self):
        self.source.challenge = None
        view = await self.controller.open("p1", TODAY)
        self.assertEqual(view.status, "no_challenge")
        self.assertIn("No challenge", view.message)
        self.assertNotIn("p1", self.controller.games)

    async def test_open_with_source_failure_is_retryable(self):
        self.source.error = ChallengeUnavailable("db offline")
        view = await self.controller.open("p1", TODAY)
        self.assertEqual(view.status, "error")
        self.assertTrue(view.retryable)

    async def test_open_creates_idle_game_without_answers(self):
        view = await self.controller.open("p1", TODAY)
        self.assertEqual(view.status, "ready")
        self.assertEqual(view.session.phase, "idle")
        self.assertNotIn("valid_movie_ids", view.challenge.model_dump())
        self.assertIsNone(await self.store.load("p1"))

    async def test_start_runs_timer_and_saves(self):
        view = await self._play()
        self.assertEqual(view.session.phase, "playing")
        self.assertEqual(view.session.time_remaining, 30)
        self.assertEqual(len(_FakeTimer.instances), 1)
        self.assertTrue(_FakeTimer.instances[0].started)
        saved = await self.store.load("p1")
        self.assertEqual(saved.session.phase, "playing")

    async def test_start_without_open_is_a_no_op(self):
        self.assertIsNone(await self.controller.start("ghost"))
        result = await self.controller.guess("ghost", _movie(1))
        self.assertEqual(result.outcome, "ignored")

    async def test_guesses_update_session_and_snapshot(self):
        await self._play()
        correct = await self.controller.guess("p1", _movie(1))
        wrong = await self.controller.guess("p1", _movie(99))
        again = await self.controller.guess("p1", _movie(99))

        self.assertEqual([correct.outcome, wrong.outcome, again.outcome], ["correct", "incorrect", "already_tried"])
        saved = await self.store.load("p1")
        self.assertEqual(saved.session.guessed_movie_ids, [1])
        self.assertEqual(saved.session.incorrect_count, 1)
        self.assertEqual(saved.session.time_remaining, 37)
        self.assertEqual(sorted(saved.tried_movie_ids), [1, 99])

        events = [e["payload"] for e in await self.events.list("p1")]
        guesses = [e for e in events if e["type"] == "guess"]
        self.assertEqual([g["outcome"] for g in guesses], ["correct", "incorrect", "already_tried"])

    async def test_correct_guess_is_recorded_in_stats(self):
        await self._play()
        await self.controller.guess("p1", _movie(2))
        await self.controller.guess("p1", _movie(99))
        await self.controller.shutdown()
        self.assertEqual(await self.stats.popular(7), [{"tmdb_id": 2, "guess_count": 1}])

    async def test_stats_failure_does_not_interrupt_play(self):
        self.stats = _FailingStats()
        self.controller = self._controller()
        await self._play()
        with self.assertLogs("movierush.game", level="WARNING"):
            result = await self.controller.guess("p1", _movie(1))
            await self.controller.shutdown()
        self.assertEqual(result.outcome, "correct")

    async def test_tick_counts_down_and_ends(self):
        self.rules = GameRules(initial_time=2, tick_seconds=1)
        self.controller = self._controller()
        await self._play()
        timer = _FakeTimer.instances[-1]

        await timer.fire()
        self.assertEqual(self.controller.view("p1").session.time_remaining, 1)
        await timer.fire()

        view = self.controller.view("p1")
        self.assertEqual(view.session.phase, "ended")
        self.assertTrue(timer.stopped)
        self.assertNotIn("p1", self.controller.timers)
        record = await self.store.load_completion("p1", TODAY)
        self.assertEqual(record.score, 0)

    async def test_finding_all_movies_writes_completion_record(self):
        self.source.challenge = _challenge(valid=(5,))
        await self._play()
        result = await self.controller.guess("p1", _movie(5))

        self.assertEqual(result.session.phase, "ended")
        self.assertTrue(_FakeTimer.instances[-1].stopped)
        record = await self.store.load_completion("p1", TODAY)
        self.assertEqual(record.score, result.points_awarded)
        self.assertEqual([m.id for m in record.guessed_movies], [5])
        events = [e["payload"]["type"] for e in await self.events.list("p1")]
        self.assertEqual(events[-1], "game_over")

    async def test_manual_end(self):
        await self._play()
        await self.controller.guess("p1", _movie(3))
        view = await self.controller.end("p1")
        self.assertEqual(view.session.phase, "ended")
        self.assertEqual(view.session.final_score, view.score)
        after = await self.controller.guess("p1", _movie(1))
        self.assertEqual(after.outcome, "ignored")

    async def test_completed_day_cannot_be_replayed(self):
        await self._play()
        await self.controller.end("p1")
        await self.store.clear("p1")

        fresh = self._controller()
        view = await fresh.open("p1", TODAY)
        self.assertEqual(view.session.phase, "ended")
        started = await fresh.start("p1")
        self.assertEqual(started.session.phase, "ended")

    async def test_reload_resumes_playing_game(self):
        await self._play()
        await self.controller.guess("p1", _movie(1))
        await self.controller.close("p1")

        fresh = self._controller()
        view = await fresh.open("p1", TODAY)
        self.assertEqual(view.session.phase, "playing")
        self.assertEqual(view.session.guessed_movie_ids, [1])
        self.assertTrue(_FakeTimer.instances[-1].started)
        again = await fresh.guess("p1", _movie(1))
        self.assertEqual(again.outcome, "already_found")
        await fresh.shutdown()

    async def test_stale_snapshot_is_discarded(self):
        await self._play()
        await self.controller.close("p1")

        self.source.challenge = _challenge(day="2026-10-20", challenge_id=8)
        fresh = self._controller()
        view = await fresh.open("p1", "2026-10-20")
        self.assertEqual(view.session.phase, "idle")
        self.assertEqual(view.session.challenge_id, 8)
        self.assertIsNone(await self.store.load("p1"))

    async def test_close_stops_timer(self):
        await self._play()
        timer = _FakeTimer.instances[-1]
        await self.controller.close("p1")
        self.assertTrue(timer.stopped)
        await timer.fire()
        self.assertIsNone(self.controller.view("p1"))

    async def test_reset_player_allows_replay(self):
        await self._play()
        await self.controller.end("p1")
        await self.controller.reset_player("p1", TODAY)
        self.assertIsNone(await self.store.load_completion("p1", TODAY))
        view = await self.controller.open("p1", TODAY)
        self.assertEqual(view.session.phase, "idle")

    async def test_concurrent_tick_and_guess_are_serialized(self):
        await self._play()
        timer = _FakeTimer.instances[-1]
        with mock.patch.object(self.store, "save", wraps=self.store.save) as save:
            await asyncio.gather(timer.fire(), self.controller.guess("p1", _movie(99)), timer.fire())
        self.assertEqual(save.call_count, 3)
        self.assertEqual(self.controller.view("p1").session.time_remaining, 30 - 1 - 3 - 1)
