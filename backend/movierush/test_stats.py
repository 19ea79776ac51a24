from __future__ import annotations

from unittest import IsolatedAsyncioTestCase, mock

from .db import InMemoryCollection
from .stats import GuessStats


class GuessStatsTests(IsolatedAsyncioTestCase):
    def setUp(self) -> None:  # noqa: D401 - standard unittest hook
        self.stats = GuessStats()
        self.stats.collection = InMemoryCollection()

    async def _record(self, challenge_id, movie_id, times):
        for _ in range(times):
            self.assertTrue(await self.stats.record_guess(challenge_id, movie_id))

    async def test_popular_and_rare_ordering(self):
        await self._record(1, 100, 3)
        await self._record(1, 200, 1)
        await self._record(1, 300, 2)
        await self._record(2, 100, 9)

        popular = await self.stats.popular(1)
        rare = await self.stats.rare(1, limit=2)

        self.assertEqual([m["tmdb_id"] for m in popular], [100, 300, 200])
        self.assertEqual(popular[0]["guess_count"], 3)
        self.assertEqual(rare, [{"tmdb_id": 200, "guess_count": 1}, {"tmdb_id": 300, "guess_count": 2}])

    async def test_record_failure_is_swallowed(self):
        with mock.patch.object(self.stats.collection, "update_one", side_effect=RuntimeError("down")):
            with self.assertLogs("movierush.stats", level="ERROR"):
                self.assertFalse(await self.stats.record_guess(1, 100))
