from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Protocol, Set

from .db import db, settings
from .models import CandidateMovie

logger = logging.getLogger(__name__)


class SearchUnavailable(RuntimeError):
    pass


class SearchSource(Protocol):
    async def search(self, query: str) -> List[CandidateMovie]:
        ...


class CatalogSearch:
    """Title search over every known movie.

    Results are deliberately not filtered against any challenge's answers, so
    the candidate list never reveals which movies are correct.
    """

    collection = db.movies

    def __init__(self, min_query_length: int | None = None, limit: int | None = None):
        self.min_query_length = min_query_length or settings.SEARCH_MIN_QUERY_LENGTH
        self.limit = limit or settings.SEARCH_RESULT_LIMIT

    async def add_movies(self, movies: List[CandidateMovie]):
        for movie in movies:
            await self.collection.update_one({"id": movie.id}, {"$set": movie.model_dump()}, upsert=True)

    async def search(self, query: str) -> List[CandidateMovie]:
        needle = query.strip().lower()
        if len(needle) < self.min_query_length:
            return []
        try:
            docs = [doc async for doc in self.collection.find({}).sort("vote_count", -1)]
        except Exception as exc:
            raise SearchUnavailable("Movie search failed") from exc
        results = []
        for doc in docs:
            if needle in doc.get("title", "").lower():
                doc.pop("_id", None)
                results.append(CandidateMovie(**doc))
                if len(results) >= self.limit:
                    break
        return results


ResultsCallback = Callable[[str, List[CandidateMovie]], Awaitable[None]]


class AutocompleteSession:
    """Debounced query state for one search box.

    Every keystroke restarts the debounce delay. A response is only applied if
    no newer query was typed and the dropdown is still open; an in-flight
    request is never cancelled, its result is just dropped.
    """

    def __init__(
        self,
        source: SearchSource,
        on_results: Optional[ResultsCallback] = None,
        debounce_ms: int | None = None,
        min_query_length: int | None = None,
    ):
        self.source = source
        self.on_results = on_results
        self.debounce = (debounce_ms if debounce_ms is not None else settings.SEARCH_DEBOUNCE_MS) / 1000
        self.min_query_length = min_query_length or settings.SEARCH_MIN_QUERY_LENGTH
        self.query = ""
        self.results: List[CandidateMovie] = []
        self.open = False
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._waiting: Set[asyncio.Task] = set()

    def _cancel_waiting(self):
        for task in self._waiting:
            task.cancel()
        self._waiting.clear()

    def type(self, query: str):
        self.query = query
        self._generation += 1
        self._cancel_waiting()
        self._task = asyncio.create_task(self._debounced(self._generation, query))
        self._waiting.add(self._task)

    def dismiss(self):
        self._generation += 1
        self.open = False
        self.results = []
        self._cancel_waiting()

    def select(self, index: int) -> Optional[CandidateMovie]:
        if not self.open or not 0 <= index < len(self.results):
            return None
        movie = self.results[index]
        self.query = ""
        self.dismiss()
        return movie

    async def wait(self):
        """Wait for the latest scheduled search, if any."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    def close(self):
        self.dismiss()

    async def _debounced(self, generation: int, query: str):
        try:
            await asyncio.sleep(self.debounce)
        finally:
            self._waiting.discard(asyncio.current_task())
        if generation != self._generation:
            return

        if len(query.strip()) < self.min_query_length:
            self.results = []
            self.open = False
            return

        try:
            results = await self.source.search(query)
        except SearchUnavailable as exc:
            logger.warning("autocomplete failed for %r: %s", query, exc)
            results = []

        if generation != self._generation:
            logger.debug("dropping stale results for %r", query)
            return

        self.results = results
        self.open = bool(results)
        if self.on_results:
            await self.on_results(query, results)
