"""DuckDuckGo HTML search engine."""

from __future__ import annotations

import logging
from typing import Iterable
from urllib.parse import parse_qs, urlparse

import requests
from bs4 import BeautifulSoup

from thread_core.models.chat_models import SearchResult

from ..models import SearchEngineError
from ..utils import DEFAULT_HEADERS, favicon_for, normalize_whitespace
from .base import BaseSearchEngine

logger = logging.getLogger("search.duckduckgo")


def resolve_redirect(href: str) -> str:
    """Unwrap DuckDuckGo ``/l/?uddg=`` redirect links."""
    parsed = urlparse(href)
    if parsed.path.startswith("/l/"):
        target = parse_qs(parsed.query).get("uddg")
        if target:
            return target[0]
    if href.startswith("//"):
        return "https:" + href
    return href


class DuckDuckGoSearchEngine(BaseSearchEngine):
    """Scrape the JavaScript-free DuckDuckGo results page."""

    engine_id = "duckduckgo"
    name = "DuckDuckGo"
    _search_url = "https://html.duckduckgo.com/html/"

    def _search_impl(self, query: str, max_results: int) -> Iterable[SearchResult]:
        response = requests.post(
            self._search_url, data={"q": query}, headers=DEFAULT_HEADERS, timeout=15
        )
        if response.status_code != 200:
            raise SearchEngineError(
                self.name, f"HTTP {response.status_code} while searching {self.name}."
            )

        soup = BeautifulSoup(response.text, "html.parser")
        count = 0
        for item in soup.select("div.result"):
            anchor = item.select_one("a.result__a")
            if not anchor or not anchor.has_attr("href"):
                continue
            url = resolve_redirect(anchor["href"])
            snippet = item.select_one(".result__snippet")
            description = normalize_whitespace(snippet.get_text(" ")) if snippet else ""

            yield SearchResult(
                title=normalize_whitespace(anchor.get_text(" ")),
                url=url,
                description=description,
                icon=favicon_for(url),
            )
            count += 1
            if count >= max_results:
                break

        if count == 0:
            logger.info("No %s results for '%s'.", self.name, query)
