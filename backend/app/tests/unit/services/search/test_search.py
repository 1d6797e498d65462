"""Test web search engines, page enrichment and the search manager."""

import asyncio
import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

from thread_core.models.chat_models import SearchResult
from thread_core.services.search.content_enricher import ContentEnricher
from thread_core.services.search.engines.duckduckgo import (
    DuckDuckGoSearchEngine,
    resolve_redirect,
)
from thread_core.services.search.search_manager import SearchManager

RESULTS_HTML = """
<html><body>
  <div class="result">
    <a class="result__a" href="//duckduckgo.com/l/?uddg=https%3A%2F%2Fexample.com%2Fnews&rut=x">
      Example   News
    </a>
    <a class="result__snippet">Latest   headlines</a>
  </div>
  <div class="result"><span>no link here</span></div>
  <div class="result">
    <a class="result__a" href="https://other.example/page">Other</a>
  </div>
</body></html>
"""

ARTICLE_HTML = """
<html>
  <head>
    <title> Example page </title>
    <meta name="description" content="A page">
    <link rel="icon" href="/static/icon.png">
  </head>
  <body>
    <nav>Menu</nav>
    <article><h1>Heading</h1><p>Body   text</p><script>var x;</script></article>
    <footer>Copyright</footer>
  </body>
</html>
"""


def http_response(text="", status_code=200):
    response = MagicMock()
    response.text = text
    response.status_code = status_code
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(str(status_code))
    return response


class TestDuckDuckGo:
    """Test cases for DuckDuckGoSearchEngine."""

    def test_search_parses_results(self) -> None:
        with patch("requests.post", return_value=http_response(RESULTS_HTML)) as post:
            results = DuckDuckGoSearchEngine().search("news", max_results=5)

        assert post.call_args.kwargs["data"] == {"q": "news"}
        assert [r.title for r in results] == ["Example News", "Other"]
        assert results[0].url == "https://example.com/news"
        assert results[0].description == "Latest headlines"
        assert results[0].icon == "https://example.com/favicon.ico"
        assert [r.rank for r in results] == [1, 2]

    def test_search_respects_max_results(self) -> None:
        with patch("requests.post", return_value=http_response(RESULTS_HTML)):
            results = DuckDuckGoSearchEngine().search("news", max_results=1)

        assert len(results) == 1

    def test_http_error_degrades_to_empty(self) -> None:
        with patch("requests.post", return_value=http_response(status_code=503)):
            assert DuckDuckGoSearchEngine().search("news") == []

    def test_network_error_degrades_to_empty(self) -> None:
        with patch("requests.post", side_effect=requests.ConnectionError("offline")):
            assert DuckDuckGoSearchEngine().search("news") == []

    def test_resolve_redirect(self) -> None:
        assert resolve_redirect("/l/?uddg=https%3A%2F%2Fa.example") == "https://a.example"
        assert resolve_redirect("//a.example/x") == "https://a.example/x"
        assert resolve_redirect("https://a.example") == "https://a.example"


class TestContentEnricher:
    """Test cases for ContentEnricher."""

    def test_extract_main_content_skips_noise(self) -> None:
        content = ContentEnricher().extract_main_content(ARTICLE_HTML)

        assert content == "Heading Body text"

    def test_extract_main_content_is_truncated(self) -> None:
        content = ContentEnricher(max_chars=7).extract_main_content(ARTICLE_HTML)

        assert content == "Heading"

    def test_enrich_results_fills_content(self) -> None:
        results = [
            SearchResult(title="A", url="https://a.example"),
            SearchResult(title="B", url="https://b.example"),
            SearchResult(title="C", url="https://c.example"),
        ]

        def fake_get(url, **kwargs):
            if url == "https://b.example":
                raise requests.Timeout("slow")
            return http_response(ARTICLE_HTML)

        with patch("requests.get", side_effect=fake_get):
            enriched = ContentEnricher().enrich_results(results, limit=2)

        assert [r.title for r in enriched] == ["A", "B"]
        assert enriched[0].content == "Heading Body text"
        assert enriched[1].content == ""
        assert results[0].content == ""

    def test_enrich_url(self) -> None:
        with patch("requests.get", return_value=http_response(ARTICLE_HTML)):
            result = ContentEnricher().enrich_url("https://a.example/post", rank=3)

        assert result.title == "Example page"
        assert result.description == "A page"
        assert result.icon == "https://a.example/static/icon.png"
        assert result.rank == 3

    def test_enrich_url_unreachable_page(self) -> None:
        with patch("requests.get", return_value=http_response(status_code=404)):
            result = ContentEnricher().enrich_url("https://a.example/missing")

        assert result.title == "https://a.example/missing"
        assert result.content == ""


class TestSearchManager:
    """Test cases for SearchManager."""

    @pytest.fixture(autouse=True)
    def setup(self):
        self.engine = MagicMock()
        self.engine.search.return_value = [SearchResult(title="A", url="https://a.example")]
        self.enricher = MagicMock()
        self.enricher.enrich_results.side_effect = lambda results, limit: results
        self.manager = SearchManager(
            engine=self.engine, enricher=self.enricher, result_limit=4, enrich_limit=2
        )

    def test_search_enriches_engine_results(self) -> None:
        results = asyncio.run(self.manager.search("c1", "query"))

        assert [r.title for r in results] == ["A"]
        self.engine.search.assert_called_once_with("query", 4)
        self.enricher.enrich_results.assert_called_once()
        assert self.manager.is_searching("c1") is False

    def test_no_results_skip_enrichment(self) -> None:
        self.engine.search.return_value = []

        assert asyncio.run(self.manager.search("c1", "query")) == []
        self.enricher.enrich_results.assert_not_called()

    def test_failure_degrades_to_empty(self) -> None:
        self.enricher.enrich_results.side_effect = RuntimeError("boom")

        assert asyncio.run(self.manager.search("c1", "query")) == []

    def test_stopped_search_discards_results(self) -> None:
        release = threading.Event()

        def slow_search(query, limit):
            release.wait(5)
            return [SearchResult(title="late", url="https://late.example")]

        self.engine.search.side_effect = slow_search

        async def run():
            task = asyncio.create_task(self.manager.search("c1", "query"))
            await asyncio.sleep(0)
            assert self.manager.is_searching("c1")
            self.manager.stop_search("c1")
            release.set()
            return await task

        assert asyncio.run(run()) == []

    def test_stop_without_search_is_noop(self) -> None:
        self.manager.stop_search("c1")

        assert len(asyncio.run(self.manager.search("c1", "query"))) == 1
