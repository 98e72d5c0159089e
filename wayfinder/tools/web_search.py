"""Web search through the Tavily API.

Results are memoised per process in a :class:`SearchCache` keyed by
``provider:query`` so repeated queries inside one run cost nothing. Callers
own the web budget; this module only performs the request.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import BaseModel
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from wayfinder.core.config import get_settings
from wayfinder.core.logging import get_logger

logger = get_logger("tools.web_search")

TAVILY_URL = "https://api.tavily.com/search"
HTTP_RETRY_ATTEMPTS = 3


class WebSearchError(Exception):
    """Raised when a search provider fails or is not configured."""


class SearchResult(BaseModel):
    url: str
    title: str = ""
    snippet: str = ""
    source: str = "tavily"


class SearchCache:
    """In-memory ``provider:query`` → results map, injectable for tests."""

    def __init__(self) -> None:
        self._entries: dict[str, list[SearchResult]] = {}

    @staticmethod
    def key(provider: str, query: str) -> str:
        return f"{provider}:{query}"

    def get(self, provider: str, query: str) -> list[SearchResult] | None:
        return self._entries.get(self.key(provider, query))

    def put(self, provider: str, query: str, results: list[SearchResult]) -> None:
        self._entries[self.key(provider, query)] = list(results)

    def __len__(self) -> int:
        return len(self._entries)


def is_transient(exc: BaseException) -> bool:
    """True for network errors and HTTP 429 / 5xx worth retrying."""
    if isinstance(exc, (httpx.TimeoutException, httpx.ConnectError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in (429, 500, 502, 503, 504)
    return False


@retry(
    stop=stop_after_attempt(HTTP_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    retry=retry_if_exception(is_transient),
    reraise=True,
    before_sleep=before_sleep_log(logger, logging.WARNING),
)
def _post_tavily(payload: dict, timeout: float) -> dict:
    with httpx.Client(timeout=timeout) as client:
        response = client.post(TAVILY_URL, json=payload)
        response.raise_for_status()
        return response.json()


def _search_tavily(query: str, max_results: int, search_depth: str) -> list[SearchResult]:
    settings = get_settings()
    if not settings.tavily_api_key:
        raise WebSearchError("Search API key is missing (TAVILY_API_KEY)")

    payload = {
        "api_key": settings.tavily_api_key,
        "query": query,
        "max_results": max_results,
        "search_depth": search_depth,
    }
    try:
        data = _post_tavily(payload, settings.web_timeout_seconds)
    except httpx.HTTPStatusError as exc:
        raise WebSearchError(f"Tavily API error: {exc.response.status_code}") from exc
    except (httpx.HTTPError, ValueError) as exc:
        raise WebSearchError(f"Tavily request failed: {exc}") from exc

    results = []
    for item in data.get("results") or []:
        url = item.get("url")
        if not url:
            continue
        results.append(SearchResult(
            url=url,
            title=item.get("title") or "",
            snippet=item.get("content") or "",
            source="tavily",
        ))
    return results


def web_search(
    query: str,
    max_results: int = 5,
    search_depth: str = "basic",
    provider: str = "tavily",
    cache: SearchCache | None = None,
) -> list[SearchResult]:
    """Search the web for *query*. Raises :class:`WebSearchError` on failure."""
    if cache is not None:
        cached = cache.get(provider, query)
        if cached is not None:
            logger.info("web_search | cache hit | %s", query[:80])
            return cached

    if provider != "tavily":
        raise WebSearchError(f"Unsupported search provider: {provider}")

    logger.info("web_search | %s | depth=%s max=%d", query[:80], search_depth, max_results)
    results = _search_tavily(query, max_results, search_depth)
    logger.info("web_search | %d results", len(results))

    if cache is not None:
        cache.put(provider, query, results)
    return results
