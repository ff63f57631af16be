"""Web search backends (Serper, Brave, DuckDuckGo) for chat2edit context."""

from typing import Any

import httpx
from bs4 import BeautifulSoup

from board_engine.core.config import Settings, get_settings
from board_engine.core.logging import get_logger
from board_engine.core.schemas_chat2edit import WebSearchResult

logger = get_logger(__name__)

SERPER_URL = "https://google.serper.dev/search"
BRAVE_URL = "https://api.search.brave.com/res/v1/web/search"
DDG_LITE_URL = "https://lite.duckduckgo.com/lite/"
DDG_HTML_URL = "https://html.duckduckgo.com/html/"
DDG_API_URL = "https://api.duckduckgo.com/"

SERPER_TIMEOUTS = (12.0, 20.0)
BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9,zh-CN;q=0.8,zh;q=0.7",
}


class WebSearchError(Exception):
    """A search provider failed in a way the caller should see."""


def coerce_results(items: list[dict[str, Any]], limit: int) -> list[WebSearchResult]:
    """Keep items with a title and URL, de-duplicated by URL, up to ``limit``."""
    results: list[WebSearchResult] = []
    seen: set[str] = set()
    for item in items:
        if len(results) >= limit:
            break
        title = str(item.get("title") or "").strip()
        url = str(item.get("url") or "").strip()
        snippet = str(item.get("snippet") or "").strip()
        if not title or not url or url in seen:
            continue
        seen.add(url)
        results.append(WebSearchResult(title=title, url=url, snippet=snippet))
    return results


def format_results_for_prompt(results: list[WebSearchResult]) -> str:
    """Render results as numbered ``[n] title / url / snippet`` blocks."""
    blocks = []
    for i, r in enumerate(results, start=1):
        parts = [f"[{i}] {r.title}", r.url, r.snippet]
        blocks.append("\n".join(p for p in parts if p))
    return "\n\n".join(blocks)


# =========================
# Providers
# =========================


async def _search_serper(client: httpx.AsyncClient, query: str, limit: int, api_key: str) -> list[WebSearchResult]:
    for attempt, timeout in enumerate(SERPER_TIMEOUTS):
        try:
            response = await client.post(
                SERPER_URL,
                headers={"X-API-KEY": api_key, "Content-Type": "application/json", "Accept": "application/json"},
                json={"q": query, "num": limit},
                timeout=timeout,
            )
            if response.status_code >= 400:
                detail = response.text.strip()
                raise WebSearchError(
                    f"Serper error ({response.status_code}): {detail}" if detail else f"Serper error ({response.status_code})"
                )
            data = response.json()
            organic = data.get("organic") if isinstance(data, dict) else None
            items = [
                {"title": it.get("title"), "url": it.get("link"), "snippet": it.get("snippet")}
                for it in (organic or [])
                if isinstance(it, dict)
            ]
            return coerce_results(items, limit)
        except httpx.TimeoutException:
            if attempt < len(SERPER_TIMEOUTS) - 1:
                logger.info(f"Serper timed out after {timeout}s, retrying with a longer timeout")
                continue
            raise
    return []


async def _search_brave(client: httpx.AsyncClient, query: str, limit: int, api_key: str) -> list[WebSearchResult]:
    response = await client.get(
        BRAVE_URL,
        params={"q": query, "count": max(1, min(10, limit))},
        headers={"Accept": "application/json", "X-Subscription-Token": api_key},
        timeout=10.0,
    )
    if response.status_code >= 400:
        raise WebSearchError(f"Brave error ({response.status_code})")
    data = response.json()
    web = data.get("web") if isinstance(data, dict) else None
    items = [
        {"title": it.get("title"), "url": it.get("url"), "snippet": it.get("description")}
        for it in ((web or {}).get("results") or [])
        if isinstance(it, dict)
    ]
    return coerce_results(items, limit)


def parse_duckduckgo_html(html: str, limit: int) -> list[WebSearchResult]:
    """Parse results from the DuckDuckGo lite or html endpoints."""
    soup = BeautifulSoup(html, "html.parser")
    items = []
    links = soup.select("a.result__a") or soup.select("a.result-link") or soup.select('a[rel="nofollow"]')
    for link in links:
        href = (link.get("href") or "").strip()
        if not href.lower().startswith(("http://", "https://")):
            continue
        snippet_el = link.find_next(class_=["result__snippet", "result-snippet"])
        items.append(
            {
                "title": " ".join(link.get_text().split()),
                "url": href,
                "snippet": " ".join(snippet_el.get_text().split()) if snippet_el else "",
            }
        )
    return coerce_results(items, limit)


def parse_duckduckgo_instant_answer(data: Any, limit: int) -> list[WebSearchResult]:
    if not isinstance(data, dict):
        return []
    items = []

    def _push(topic: Any) -> None:
        if not isinstance(topic, dict):
            return
        text = topic.get("Text") if isinstance(topic.get("Text"), str) else ""
        items.append(
            {"title": text.split(" - ")[0].strip(), "url": topic.get("FirstURL"), "snippet": text.strip()}
        )

    for topic in data.get("RelatedTopics") or []:
        if isinstance(topic, dict) and isinstance(topic.get("Topics"), list):
            for nested in topic["Topics"]:
                _push(nested)
            continue
        _push(topic)
    return coerce_results(items, limit)


async def _search_duckduckgo(client: httpx.AsyncClient, query: str, limit: int) -> list[WebSearchResult]:
    errors: list[Exception] = []

    for url in (DDG_LITE_URL, DDG_HTML_URL):
        try:
            response = await client.get(url, params={"q": query}, headers=BROWSER_HEADERS, timeout=10.0)
            if response.status_code < 400:
                results = parse_duckduckgo_html(response.text, limit)
                if results:
                    return results
        except httpx.HTTPError as e:
            errors.append(e)

    try:
        response = await client.get(
            DDG_API_URL,
            params={"q": query, "format": "json", "no_redirect": 1, "no_html": 1, "skip_disambig": 1},
            headers={"User-Agent": BROWSER_HEADERS["User-Agent"], "Accept": "application/json"},
            timeout=10.0,
        )
        if response.status_code < 400:
            results = parse_duckduckgo_instant_answer(response.json(), limit)
            if results:
                return results
    except (httpx.HTTPError, ValueError) as e:
        errors.append(e)

    # Network-level failures surface; "no results" does not
    if errors and isinstance(errors[-1], (httpx.TimeoutException, httpx.TransportError)):
        raise WebSearchError(f"DuckDuckGo search failed: {errors[-1]}") from errors[-1]
    return []


async def run_web_search(query: str, limit: int = 5, settings: Settings | None = None) -> list[WebSearchResult]:
    """
    Run a web search with the configured provider chain.

    Auto mode picks Serper when it has a key, else Brave. An explicitly
    selected provider's failure propagates; in auto mode a failure yields no
    results, and the keyless DuckDuckGo fallback only runs when no keyed
    provider is configured.

    Args:
        query: Search query
        limit: Maximum results
        settings: Optional settings override

    Returns:
        Ranked results (possibly empty)

    Raises:
        WebSearchError / httpx.HTTPError: On provider failure
    """
    settings = settings or get_settings()
    q = (query or "").strip()
    if not q:
        return []

    provider = settings.WEB_SEARCH_PROVIDER.strip().lower()
    use_serper = provider == "serper" or (not provider and bool(settings.SERPER_API_KEY))
    use_brave = provider == "brave" or (not provider and not use_serper and bool(settings.BRAVE_SEARCH_API_KEY))

    async with httpx.AsyncClient(follow_redirects=True) as client:
        if use_serper and settings.SERPER_API_KEY:
            try:
                results = await _search_serper(client, q, limit, settings.SERPER_API_KEY)
                if results:
                    return results
            except (WebSearchError, httpx.HTTPError, ValueError) as e:
                if provider == "serper":
                    raise
                logger.warning(f"Serper search failed, returning no web results: {e}")

        if use_brave and settings.BRAVE_SEARCH_API_KEY:
            try:
                results = await _search_brave(client, q, limit, settings.BRAVE_SEARCH_API_KEY)
                if results:
                    return results
            except (WebSearchError, httpx.HTTPError, ValueError) as e:
                if provider == "brave":
                    raise
                logger.warning(f"Brave search failed, returning no web results: {e}")

        if not use_serper and not use_brave:
            return await _search_duckduckgo(client, q, limit)

    return []
