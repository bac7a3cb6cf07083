"""
Web search and content extraction.

This module provides:
- DuckDuckGo HTML search (no API key required)
- Webpage fetching with a one-hour on-disk cache keyed by URL hash
- Title, meta description and markdown body extraction
- Concurrent fetching of several URLs
"""

import asyncio
import hashlib
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

import html2text
import httpx
import structlog
from bs4 import BeautifulSoup

from mcp_gateway.core.errors import ToolExecutionError

logger = structlog.get_logger(__name__)

SEARCH_URL = "https://html.duckduckgo.com/html/"
CACHE_MAX_AGE_SECONDS = 3600
MAX_CONTENT_CHARS = 15000

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Referer": "https://www.google.com/",
}

CONTENT_SELECTORS = [
    "main", "article", ".content", ".main", "#content", "#main",
    "[role='main']", ".post", ".entry", ".blog-post",
]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _result_url(href: str) -> str:
    """Unwrap DuckDuckGo redirect links (//duckduckgo.com/l/?uddg=...)."""
    parsed = urlparse(href)
    if parsed.path.startswith("/l/"):
        target = parse_qs(parsed.query).get("uddg")
        if target:
            return target[0]
    if href.startswith("//"):
        return "https:" + href
    return href


def extract_content(html: str) -> dict[str, str]:
    """
    Extract title, meta description and main content (as markdown) from HTML.

    The first matching main-content selector wins; the whole body is used
    when none matches.
    """
    soup = BeautifulSoup(html, "html.parser")
    for node in soup(["script", "style", "noscript", "iframe", "img"]):
        node.decompose()

    title = soup.title.get_text(strip=True) if soup.title else ""
    meta = soup.find("meta", attrs={"name": "description"})
    description = meta.get("content", "").strip() if meta else ""

    main = None
    for selector in CONTENT_SELECTORS:
        main = soup.select_one(selector)
        if main is not None:
            break
    if main is None:
        main = soup.body or soup

    converter = html2text.HTML2Text()
    converter.ignore_links = False
    converter.ignore_images = True
    converter.body_width = 0
    content = converter.handle(str(main)).strip()

    return {
        "title": title,
        "description": description,
        "content": content[:MAX_CONTENT_CHARS],
    }


def parse_search_results(html: str, limit: int) -> list[dict[str, str]]:
    """Parse the result list of the DuckDuckGo HTML endpoint."""
    soup = BeautifulSoup(html, "html.parser")
    results = []
    for result in soup.select(".result"):
        link = result.select_one("a.result__a")
        if link is None or not link.get("href"):
            continue
        snippet = result.select_one(".result__snippet")
        results.append({
            "title": link.get_text(strip=True),
            "url": _result_url(link["href"]),
            "snippet": snippet.get_text(" ", strip=True) if snippet else "",
        })
        if len(results) >= limit:
            break
    return results


class WebSearchClient:
    """Search the web and fetch page content over HTTP."""

    def __init__(
        self,
        cache_dir: str | Path = "./cache",
        timeout: float = 30.0,
        cache_max_age: int = CACHE_MAX_AGE_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.cache_dir = Path(cache_dir)
        self.timeout = timeout
        self.cache_max_age = cache_max_age
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers=BROWSER_HEADERS,
            follow_redirects=True,
            transport=self._transport,
        )

    def _cache_path(self, url: str) -> Path:
        return self.cache_dir / f"{hashlib.md5(url.encode('utf-8')).hexdigest()}.json"

    def _read_cache(self, url: str) -> Optional[str]:
        path = self._cache_path(url)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            cached_at = datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00"))
        except (OSError, ValueError, KeyError) as e:
            logger.warning("Unreadable cache entry", url=url, error=str(e))
            return None

        age = (datetime.now(timezone.utc) - cached_at).total_seconds()
        return data.get("content") if age < self.cache_max_age else None

    def _write_cache(self, url: str, content: str) -> None:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            self._cache_path(url).write_text(
                json.dumps({"url": url, "content": content, "timestamp": _now_iso()}),
                encoding="utf-8",
            )
        except OSError as e:
            logger.warning("Failed to write cache entry", url=url, error=str(e))

    async def fetch_webpage(self, url: str, use_cache: bool = True) -> str:
        """Fetch raw HTML, served from the cache when fresh."""
        if use_cache:
            cached = await asyncio.to_thread(self._read_cache, url)
            if cached:
                logger.debug("Cache hit", url=url)
                return cached

        try:
            async with self._client() as client:
                response = await client.get(url)
                response.raise_for_status()
                html = response.text
        except httpx.HTTPError as e:
            logger.error("Failed to fetch webpage", url=url, error=str(e))
            raise ToolExecutionError(f"Failed to fetch webpage: {e}")

        if use_cache:
            await asyncio.to_thread(self._write_cache, url, html)
        return html

    async def get_webpage_content(self, url: str, use_cache: bool = True) -> dict[str, Any]:
        html = await self.fetch_webpage(url, use_cache)
        content = extract_content(html)
        return {
            "url": url,
            "title": content["title"],
            "description": content["description"],
            "content": content["content"],
            "extractedAt": _now_iso(),
        }

    async def search_web(self, query: str, limit: int = 5) -> dict[str, Any]:
        """
        Search the web through the DuckDuckGo HTML endpoint.

        Returns:
            Dict with query, searchedAt and a list of {title, url, snippet}
        """
        try:
            async with self._client() as client:
                response = await client.post(SEARCH_URL, data={"q": query, "kl": "us-en"})
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Web search failed", query=query, error=str(e))
            raise ToolExecutionError(f"Web search failed: {e}")

        results = parse_search_results(response.text, limit)
        logger.info("Web search completed", query=query, results=len(results))
        return {
            "query": query,
            "searchedAt": _now_iso(),
            "results": results,
        }

    async def fetch_multiple_urls(self, urls: list[str], use_cache: bool = True) -> list[dict[str, Any]]:
        """Fetch several pages concurrently; any failure fails the batch."""
        return list(await asyncio.gather(
            *(self.get_webpage_content(url, use_cache) for url in urls)
        ))
