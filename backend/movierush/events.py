from __future__ import annotations

from typing import Any, List

from pymongo import ReturnDocument

from .db import db
from .models import GameSession, GuessResult
from .utils import now_ts

GUESS_MESSAGES = {
    "correct": "+{points} points, +{bonus}s",
    "incorrect": "Not in this filmography. -{penalty:g}s",
    "already_found": "Already found!",
    "already_tried": "You already tried that one.",
    "ignored": "The game is not running.",
}


def guess_feedback(result: GuessResult) -> dict[str, Any]:
    message = GUESS_MESSAGES[result.outcome].format(
        points=result.points_awarded,
        bonus=result.time_bonus,
        penalty=result.time_penalty,
    )
    return {
        "type": "guess",
        "outcome": result.outcome,
        "movie_id": result.movie_id,
        "points_awarded": result.points_awarded,
        "time_bonus": result.time_bonus,
        "message": message,
        "time_remaining": result.session.time_remaining if result.session else None,
    }


def clock_event(session: GameSession) -> dict[str, Any]:
    return {"type": "clock", "time_remaining": session.time_remaining}


def game_over_event(session: GameSession, total_movies: int) -> dict[str, Any]:
    return {
        "type": "game_over",
        "final_score": session.final_score,
        "movies_found": len(session.guessed_movie_ids),
        "total_movies": total_movies,
        "incorrect_count": session.incorrect_count,
    }


class EventStore:
    """Per-player feedback log; clients poll it instead of holding a socket."""

    counters_collection = db.player_event_counters
    events_collection = db.player_events

    async def _next_seq(self, player_id: str) -> int:
        counter_doc = await self.counters_collection.find_one_and_update(
            {"_id": player_id},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        if not counter_doc:
            # Some Mongo-compatible providers complete the upsert but return None.
            counter_doc = await self.counters_collection.find_one({"_id": player_id}) or {}
        return int(counter_doc.get("seq", 1))

    async def append(self, player_id: str, payload: dict[str, Any]) -> int:
        """Store a new event for a player and return its sequence number."""
        seq = await self._next_seq(player_id)
        await self.events_collection.insert_one(
            {
                "player_id": player_id,
                "seq": seq,
                "timestamp": now_ts(),
                "payload": payload,
            }
        )
        return seq

    async def list(self, player_id: str, after: int | None = None, limit: int = 200) -> List[dict[str, Any]]:
        query: dict[str, Any] = {"player_id": player_id}
        if after is not None:
            query["seq"] = {"$gt": after}

        cursor = self.events_collection.find(query).sort("seq", 1).limit(limit)
        return [
            {"seq": doc["seq"], "timestamp": doc.get("timestamp"), "payload": doc.get("payload", {})}
            async for doc in cursor
        ]

    async def reset(self, player_id: str) -> None:
        """Drop a player's history; sequence numbers keep increasing."""
        await self.events_collection.delete_many({"player_id": player_id})
        await self.append(player_id, {"type": "session_reset"})


event_store = EventStore()
