from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError

from .db import db
from .models import CompletionRecord, SavedGame

logger = logging.getLogger(__name__)

LIVE_SESSION_KEY = "movierush_game"


def completion_key(day_key: str) -> str:
    return f"game_{day_key}"


class SessionStore:
    """Per-player key/value snapshots, stored as JSON strings.

    Reads never raise: a missing or malformed value is reported as absent so
    the caller falls back to a fresh game.
    """

    collection = db.local_state

    async def _get(self, player_id: str, key: str) -> Optional[str]:
        doc = await self.collection.find_one({"player_id": player_id, "key": key})
        return doc.get("value") if doc else None

    async def _put(self, player_id: str, key: str, value: str):
        await self.collection.update_one(
            {"player_id": player_id, "key": key},
            {"$set": {"value": value}},
            upsert=True,
        )

    async def _delete(self, player_id: str, key: str):
        await self.collection.delete_one({"player_id": player_id, "key": key})

    async def save(self, player_id: str, saved: SavedGame):
        await self._put(player_id, LIVE_SESSION_KEY, saved.model_dump_json())

    async def load(self, player_id: str) -> Optional[SavedGame]:
        raw = await self._get(player_id, LIVE_SESSION_KEY)
        if raw is None:
            return None
        try:
            return SavedGame.model_validate_json(raw)
        except (ValidationError, TypeError) as exc:
            logger.warning("discarding unreadable saved game for %s: %s", player_id, exc)
            return None

    async def clear(self, player_id: str):
        await self._delete(player_id, LIVE_SESSION_KEY)

    async def save_completion(self, player_id: str, record: CompletionRecord):
        await self._put(player_id, completion_key(record.date), record.model_dump_json())

    async def load_completion(self, player_id: str, day_key: str) -> Optional[CompletionRecord]:
        raw = await self._get(player_id, completion_key(day_key))
        if raw is None:
            return None
        try:
            record = CompletionRecord.model_validate_json(raw)
        except (ValidationError, TypeError) as exc:
            logger.warning("discarding unreadable completion record %s for %s: %s", day_key, player_id, exc)
            return None
        if record.date != day_key:
            return None
        return record

    async def clear_completion(self, player_id: str, day_key: str):
        await self._delete(player_id, completion_key(day_key))


session_store = SessionStore()
