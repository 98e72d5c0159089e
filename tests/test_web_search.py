"""Tests for the Tavily search client. All HTTP is mocked via respx."""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from wayfinder.tools.web_search import (
    TAVILY_URL,
    SearchCache,
    SearchResult,
    WebSearchError,
    is_transient,
    web_search,
)

PAYLOAD = {
    "results": [
        {"url": "https://docs.example.com/a", "title": "A", "content": "Use httpx"},
        {"title": "no url, dropped"},
        {"url": "https://blog.example.com/b", "title": None, "content": None},
    ]
}


@respx.mock
class TestWebSearch:
    def test_results_are_mapped(self, settings):
        route = respx.post(TAVILY_URL).mock(return_value=httpx.Response(200, json=PAYLOAD))
        results = web_search("httpx retries", max_results=3, search_depth="advanced")

        assert [r.url for r in results] == ["https://docs.example.com/a", "https://blog.example.com/b"]
        assert results[0].snippet == "Use httpx"
        assert results[1].title == ""
        body = json.loads(route.calls.last.request.content)
        assert body == {
            "api_key": "tvly-test",
            "query": "httpx retries",
            "max_results": 3,
            "search_depth": "advanced",
        }

    def test_cache_hit_skips_request(self, settings):
        route = respx.post(TAVILY_URL).mock(return_value=httpx.Response(200, json=PAYLOAD))
        cache = SearchCache()
        first = web_search("q", cache=cache)
        second = web_search("q", cache=cache)
        assert first == second
        assert route.call_count == 1
        assert len(cache) == 1

    def test_client_error_is_not_retried(self, settings):
        route = respx.post(TAVILY_URL).mock(return_value=httpx.Response(401, json={"detail": "bad key"}))
        with pytest.raises(WebSearchError, match="401"):
            web_search("q")
        assert route.call_count == 1

    def test_missing_key(self, settings, monkeypatch):
        monkeypatch.setattr(settings, "tavily_api_key", "")
        with pytest.raises(WebSearchError, match="TAVILY_API_KEY"):
            web_search("q")

    def test_unknown_provider(self, settings):
        with pytest.raises(WebSearchError, match="Unsupported"):
            web_search("q", provider="bing")


class TestSearchCache:
    def test_key_includes_provider(self):
        cache = SearchCache()
        cache.put("tavily", "q", [SearchResult(url="https://a")])
        assert cache.get("tavily", "q")[0].url == "https://a"
        assert cache.get("other", "q") is None


class TestIsTransient:
    def _status_error(self, code):
        request = httpx.Request("POST", TAVILY_URL)
        return httpx.HTTPStatusError("err", request=request, response=httpx.Response(code, request=request))

    def test_classification(self):
        assert is_transient(self._status_error(429))
        assert is_transient(self._status_error(503))
        assert not is_transient(self._status_error(401))
        assert is_transient(httpx.ConnectError("down"))
        assert not is_transient(ValueError("x"))
