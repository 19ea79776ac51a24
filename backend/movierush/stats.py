"""Guess counters per challenge, used for the popular and hidden-gem lists."""
from __future__ import annotations

import logging
from typing import Any, List

from .db import db

logger = logging.getLogger(__name__)


class GuessStats:
    collection = db.guess_stats

    async def record_guess(self, challenge_id: int, movie_id: int) -> bool:
        """Increment the counter for a guessed movie. Never raises."""
        try:
            await self.collection.update_one(
                {"challenge_id": challenge_id, "tmdb_id": movie_id},
                {"$inc": {"guess_count": 1}},
                upsert=True,
            )
        except Exception:
            logger.exception("failed to record guess challenge=%s movie=%s", challenge_id, movie_id)
            return False
        return True

    async def _ranked(self, challenge_id: int, direction: int, limit: int) -> List[dict[str, Any]]:
        cursor = self.collection.find({"challenge_id": challenge_id}).sort("guess_count", direction).limit(limit)
        return [
            {"tmdb_id": doc["tmdb_id"], "guess_count": doc.get("guess_count", 0)}
            async for doc in cursor
        ]

    async def popular(self, challenge_id: int, limit: int = 5) -> List[dict[str, Any]]:
        return await self._ranked(challenge_id, -1, limit)

    async def rare(self, challenge_id: int, limit: int = 5) -> List[dict[str, Any]]:
        return await self._ranked(challenge_id, 1, limit)


guess_stats = GuessStats()
