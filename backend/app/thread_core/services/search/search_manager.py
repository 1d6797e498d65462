"""Coordinate web searches for conversations."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Set

from thread_core.configs import settings
from thread_core.models.chat_models import SearchResult

from .content_enricher import ContentEnricher
from .engines.base import BaseSearchEngine
from .engines.duckduckgo import DuckDuckGoSearchEngine

logger = logging.getLogger("search.manager")


class SearchManager:
    """Run one engine per query off the event loop and enrich the top hits."""

    def __init__(
        self,
        engine: Optional[BaseSearchEngine] = None,
        enricher: Optional[ContentEnricher] = None,
        result_limit: int = settings.SEARCH_RESULT_LIMIT,
        enrich_limit: int = settings.SEARCH_ENRICH_LIMIT,
    ) -> None:
        self.engine = engine or DuckDuckGoSearchEngine()
        self.enricher = enricher or ContentEnricher()
        self.result_limit = result_limit
        self.enrich_limit = enrich_limit
        self._active: Set[str] = set()
        self._stopped: Set[str] = set()

    def is_searching(self, conversation_id: str) -> bool:
        return conversation_id in self._active

    def _run(self, query: str) -> List[SearchResult]:
        results = self.engine.search(query, self.result_limit)
        if not results:
            return []
        return self.enricher.enrich_results(results, self.enrich_limit)

    async def search(self, conversation_id: str, query: str) -> List[SearchResult]:
        """
        Search for ``query`` on behalf of a conversation.

        Any failure degrades to an empty list. Results of a search stopped
        with ``stop_search`` are discarded.
        """
        self._active.add(conversation_id)
        self._stopped.discard(conversation_id)
        try:
            results = await asyncio.to_thread(self._run, query)
        except Exception:
            logger.exception("Search failed for conversation %s", conversation_id)
            results = []
        finally:
            self._active.discard(conversation_id)

        if conversation_id in self._stopped:
            self._stopped.discard(conversation_id)
            logger.info("Discarding results of stopped search for %s", conversation_id)
            return []
        return results

    def stop_search(self, conversation_id: str) -> None:
        """Discard the results of the running search of a conversation."""
        if conversation_id in self._active:
            self._stopped.add(conversation_id)
            logger.info("Stopping search for conversation %s", conversation_id)
