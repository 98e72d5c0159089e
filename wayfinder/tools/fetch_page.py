"""Fetch a web page and reduce it to plain text for research summarisation."""

from __future__ import annotations

from urllib.parse import urlparse

import httpx
import trafilatura
from pydantic import BaseModel

from wayfinder.core.config import get_settings
from wayfinder.core.logging import get_logger

logger = get_logger("tools.fetch_page")

BLOCKED_HOSTS = {"localhost", "127.0.0.1", "0.0.0.0", "::1", "internal", "local"}
BLOCKED_PREFIXES = ("192.168.", "10.")
ALLOWED_CONTENT_TYPES = ("text/html", "text/plain")


class FetchError(Exception):
    """Raised when a page is blocked, unreachable or not textual."""


class FetchedPage(BaseModel):
    url: str
    status: int
    content: str
    content_type: str = ""


def html_to_text(html: str) -> str:
    """Main readable text of *html*; empty when nothing extractable remains."""
    extracted = trafilatura.extract(html, include_links=False, include_comments=False)
    return (extracted or "").strip()


def is_url_allowed(url: str) -> bool:
    """Reject non-http(s) URLs and loopback / private-network hosts."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    host = (parsed.hostname or "").lower()
    if not host or host in BLOCKED_HOSTS:
        return False
    return not host.startswith(BLOCKED_PREFIXES)


class PageCache:
    """URL → page memo for one process."""

    def __init__(self) -> None:
        self._pages: dict[str, FetchedPage] = {}

    def get(self, url: str) -> FetchedPage | None:
        return self._pages.get(url)

    def put(self, page: FetchedPage) -> None:
        self._pages[page.url] = page


def fetch_page(url: str, cache: PageCache | None = None) -> FetchedPage:
    """Download *url* and return its text content. Raises :class:`FetchError`."""
    if cache is not None:
        cached = cache.get(url)
        if cached is not None:
            return cached

    if not is_url_allowed(url):
        raise FetchError(f"URL blocked by policy: {url}")

    settings = get_settings()
    logger.info("fetch_page | %s", url)
    try:
        with httpx.Client(
            timeout=settings.web_timeout_seconds,
            follow_redirects=True,
            headers={"User-Agent": settings.web_user_agent},
        ) as client:
            response = client.get(url)
    except httpx.HTTPError as exc:
        raise FetchError(f"Failed to fetch {url}: {exc}") from exc

    if response.status_code >= 400:
        raise FetchError(f"Failed to fetch {url}: HTTP {response.status_code}")

    content_type = response.headers.get("content-type", "")
    if not any(allowed in content_type for allowed in ALLOWED_CONTENT_TYPES):
        raise FetchError(f"Unsupported content type: {content_type or 'unknown'}")

    text = html_to_text(response.text) if "text/html" in content_type else response.text.strip()
    limit = settings.web_max_page_chars
    if len(text) > limit:
        text = text[:limit] + "... (truncated)"

    page = FetchedPage(url=url, status=response.status_code, content=text, content_type=content_type)
    if cache is not None:
        cache.put(page)
    logger.info("fetch_page | %s | %d chars", url, len(text))
    return page
