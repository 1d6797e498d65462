"""Base class for web search engines."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List

from thread_core.models.chat_models import SearchResult

from ..models import SearchEngineError

logger = logging.getLogger("search.engine")


class BaseSearchEngine(ABC):
    """Common behaviour for scraping engines; failures degrade to no results."""

    engine_id: str
    name: str

    def search(self, query: str, max_results: int = 8) -> List[SearchResult]:
        """Public search entry point with error handling."""
        try:
            results = list(self._search_impl(query, max_results))
        except SearchEngineError as exc:
            logger.warning("Search engine %s failed: %s", exc.engine, exc.message)
            return []
        except Exception:
            logger.exception("Unexpected error while searching with %s", self.name)
            return []
        for rank, result in enumerate(results, start=1):
            result.rank = rank
        return results

    @abstractmethod
    def _search_impl(self, query: str, max_results: int) -> Iterable[SearchResult]:
        """Return raw results for the given query."""
        raise NotImplementedError
