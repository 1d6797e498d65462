"""Fetch search result pages and extract their readable text."""

from __future__ import annotations

import logging
from typing import List, Optional
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from thread_core.models.chat_models import SearchResult

from .utils import DEFAULT_HEADERS, favicon_for, normalize_whitespace

logger = logging.getLogger("search.enricher")

MAIN_CONTENT_SELECTORS = (
    "article",
    "main",
    '[role="main"]',
    "#content",
    ".content",
    ".post",
    ".article",
)
NOISE_TAGS = ("script", "style", "noscript", "nav", "header", "footer", "aside", "iframe", "svg")
ICON_RELS = ("icon", "shortcut icon", "apple-touch-icon")


class ContentEnricher:
    """Turn result URLs into text the model can cite."""

    def __init__(self, timeout: float = 5.0, max_chars: int = 5000) -> None:
        self.timeout = timeout
        self.max_chars = max_chars

    def _fetch(self, url: str) -> str:
        response = requests.get(url, headers=DEFAULT_HEADERS, timeout=self.timeout)
        response.raise_for_status()
        return response.text

    def extract_main_content(self, html: str) -> str:
        """Return the visible text of the main content area of a page."""
        soup = BeautifulSoup(html, "html.parser")
        for tag in soup(list(NOISE_TAGS)):
            tag.decompose()
        node = None
        for selector in MAIN_CONTENT_SELECTORS:
            node = soup.select_one(selector)
            if node is not None:
                break
        if node is None:
            node = soup.body or soup
        return normalize_whitespace(node.get_text(" "))[: self.max_chars]

    def extract_icon(self, soup: BeautifulSoup, url: str) -> str:
        """Return the page icon from ``<link rel>`` or the default favicon."""
        for link in soup.find_all("link", href=True):
            rel = " ".join(link.get("rel") or []).lower()
            if rel in ICON_RELS:
                return urljoin(url, link["href"])
        return favicon_for(url)

    def enrich_url(self, url: str, rank: int = 1) -> SearchResult:
        """
        Build a result for a bare URL.

        A page that cannot be fetched yields a result titled by its URL.
        """
        try:
            html = self._fetch(url)
        except requests.RequestException as exc:
            logger.warning("Could not fetch %s: %s", url, exc)
            return SearchResult(title=url, url=url, rank=rank)

        soup = BeautifulSoup(html, "html.parser")
        title = normalize_whitespace(soup.title.get_text()) if soup.title else url
        meta = soup.find("meta", attrs={"name": "description"})
        description = meta.get("content", "") if meta else ""
        return SearchResult(
            title=title or url,
            url=url,
            content=self.extract_main_content(html),
            description=description,
            icon=self.extract_icon(soup, url),
            rank=rank,
        )

    def enrich_results(
        self, results: List[SearchResult], limit: Optional[int] = None
    ) -> List[SearchResult]:
        """
        Fill ``content`` for the first ``limit`` results.

        A result whose page fails keeps ``content=''``; the batch never fails.
        """
        selected = results if limit is None else results[:limit]
        enriched: List[SearchResult] = []
        for result in selected:
            try:
                content = self.extract_main_content(self._fetch(result.url))
            except requests.RequestException as exc:
                logger.warning("Could not enrich %s: %s", result.url, exc)
                content = ""
            enriched.append(result.model_copy(update={"content": content}))
        return enriched
