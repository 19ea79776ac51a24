from __future__ import annotations

import logging
from typing import Optional, Protocol

from pydantic import ValidationError

from .db import db
from .models import Challenge
from .utils import today_key

logger = logging.getLogger(__name__)


class ChallengeUnavailable(RuntimeError):
    """The challenge backend could not be reached; the caller may retry."""


class ChallengeSource(Protocol):
    async def fetch_today_challenge(self, day_key: str | None = None) -> Optional[Challenge]:
        ...


class ChallengeRepository:
    """Challenges keyed by calendar day, as written by the generation pipeline."""

    collection = db.challenges

    async def upsert(self, challenge: Challenge):
        await self.collection.update_one(
            {"date": challenge.date},
            {"$set": challenge.model_dump()},
            upsert=True,
        )

    async def fetch_today_challenge(self, day_key: str | None = None) -> Optional[Challenge]:
        day_key = day_key or today_key()
        try:
            doc = await self.collection.find_one({"date": day_key})
        except Exception as exc:
            raise ChallengeUnavailable(f"Failed to fetch challenge for {day_key}") from exc
        if not doc:
            return None
        doc.pop("_id", None)
        # total_movies is derived from the answer set, not trusted from the row
        doc["total_movies"] = len(doc.get("valid_movie_ids") or [])
        try:
            return Challenge(**doc)
        except ValidationError as exc:
            logger.error("challenge row for %s is malformed: %s", day_key, exc)
            raise ChallengeUnavailable(f"Challenge for {day_key} is malformed") from exc


challenge_repository = ChallengeRepository()
