from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import httpx
import trafilatura
from bs4 import BeautifulSoup
from readability import Document


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0
RESOLVE_TIMEOUT = 10.0
MIN_TEXT_CHARS = 200

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "ja,en-US;q=0.9,en;q=0.8",
}

YAHOO_PICKUP_MARKER = "news.yahoo.co.jp/pickup/"
YAHOO_ARTICLE_MARKER = "news.yahoo.co.jp/articles/"
_YAHOO_ARTICLE_LINK = re.compile(r'href="(https://news\.yahoo\.co\.jp/articles/[^"]+)"')

_SENTENCE_END = ("。", "．", "！", "？", ".", "!", "?", "\n")


class FetchError(RuntimeError):
    """Body text could not be retrieved or extracted for a URL."""


def new_client(timeout: float = DEFAULT_TIMEOUT, user_agent: Optional[str] = None) -> httpx.AsyncClient:
    headers = dict(DEFAULT_HEADERS)
    if user_agent:
        headers["User-Agent"] = user_agent
    return httpx.AsyncClient(timeout=timeout, headers=headers, follow_redirects=True, trust_env=True)


async def fetch_article_page(client: httpx.AsyncClient, url: str, timeout: float = DEFAULT_TIMEOUT) -> str:
    # Support local file input (useful under restricted network)
    pu = urlparse(url)
    if pu.scheme == "file" and os.path.exists(pu.path):
        with open(pu.path, "r", encoding="utf-8", errors="ignore") as f:
            return f.read()

    resp = await client.get(url, timeout=timeout)
    if resp.status_code != 200:
        raise FetchError(f"HTTP {resp.status_code}")
    if not resp.text:
        raise FetchError("Empty response body")
    return resp.text


async def resolve_yahoo_pickup(client: httpx.AsyncClient, pickup_url: str) -> Optional[str]:
    """Yahoo! News pickup pages only link to the actual article."""
    try:
        resp = await client.get(pickup_url, timeout=RESOLVE_TIMEOUT)
    except httpx.HTTPError as e:
        logger.debug("Pickup page fetch failed", extra={"url": pickup_url, "error": str(e)})
        return None
    if resp.status_code != 200:
        return None
    m = _YAHOO_ARTICLE_LINK.search(resp.text)
    if not m:
        return None
    article_url = m.group(1).split("?")[0]
    if "/images/" in article_url:
        return None
    return article_url


def extract_yahoo_preloaded_state(page_html: str) -> Optional[str]:
    start = page_html.find("__PRELOADED_STATE__")
    if start == -1:
        return None
    end = page_html.find("</script>", start)
    if end == -1:
        return None
    block = page_html[start:end]
    eq = block.find("=")
    if eq == -1:
        return None
    payload = block[eq + 1 :].strip()
    if payload.endswith(";"):
        payload = payload[:-1]
    try:
        state: Dict[str, Any] = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("Could not decode __PRELOADED_STATE__")
        return None

    # articleDetail is the current layout, pageData the older one
    paragraphs_data: List[Any] = (state.get("articleDetail") or {}).get("paragraphs") or []
    if not paragraphs_data:
        paragraphs_data = (state.get("pageData") or {}).get("paragraphs") or []

    paragraphs: List[str] = []
    for paragraph in paragraphs_data:
        for detail in (paragraph or {}).get("textDetails") or []:
            for item in (detail or {}).get("paragraphItems") or []:
                if item and item.get("type") == "text" and item.get("text"):
                    text = str(item["text"]).strip()
                    if text:
                        paragraphs.append(text)
    if not paragraphs:
        return None
    return "\n\n".join(paragraphs)


def _paragraphs_from_lines(text: str) -> List[str]:
    paras: List[str] = []
    buf: List[str] = []
    for ln in (line.strip() for line in text.splitlines()):
        if ln:
            buf.append(ln)
        elif buf:
            paras.append(" ".join(buf))
            buf = []
    if buf:
        paras.append(" ".join(buf))
    return paras


def extract_main_text(page_html: str, base_url: Optional[str] = None) -> Tuple[Optional[str], Optional[str]]:
    """Return (plain text, extractor name) for the main content of a page."""
    # Plaintext input → paragraphs as-is
    if page_html and "<" not in page_html[:1000]:
        paras = _paragraphs_from_lines(page_html)
        if paras:
            return "\n\n".join(paras), "plaintext"

    # 1) Trafilatura (prefer fulltext extraction)
    try:
        txt = trafilatura.extract(
            page_html,
            url=base_url,
            include_comments=False,
            include_tables=False,
            favor_precision=True,
        )
        if txt and len(txt) > MIN_TEXT_CHARS:
            paras = [p.strip() for p in txt.split("\n") if p.strip()]
            return "\n\n".join(paras), "trafilatura"
    except Exception as e:  # noqa: BLE001
        logger.debug("Trafilatura failed", extra={"url": base_url, "error": str(e)})

    # 2) Readability as secondary
    try:
        summary = Document(page_html).summary(html_partial=True)
        soup = BeautifulSoup(summary, "html.parser")
        paras = [p.get_text(" ", strip=True) for p in soup.find_all("p")]
        text = "\n\n".join(p for p in paras if p) or soup.get_text(" ", strip=True)
        if len(text) > MIN_TEXT_CHARS:
            return text, "readability"
    except Exception as e:  # noqa: BLE001
        logger.debug("Readability failed", extra={"url": base_url, "error": str(e)})

    # 3) Heuristic with BeautifulSoup
    soup = BeautifulSoup(page_html, "html.parser")
    for tag in soup(["script", "style", "nav", "header", "footer", "aside"]):
        tag.decompose()
    candidates = [
        {"name": "article"},
        {"name": "div", "attrs": {"data-component": "ArticleBody"}},
        {"name": "section", "attrs": {"role": "main"}},
        {"name": "main"},
    ]
    for sel in candidates:
        node = soup.find(**sel)
        if node and len(node.get_text(strip=True)) > 120:
            return node.get_text("\n", strip=True), "heuristic"
    return None, None


async def fetch_article_text(client: httpx.AsyncClient, url: str, timeout: float = DEFAULT_TIMEOUT) -> str:
    """Fetch `url` and return its extracted body text.

    `timeout` bounds the whole retrieval (pickup resolution included), not
    just each network phase. Raises FetchError (or an httpx error) when
    nothing usable comes back in time.
    """
    try:
        return await asyncio.wait_for(_fetch_article_text(client, url, timeout), timeout)
    except asyncio.TimeoutError:
        raise FetchError(f"Timed out after {timeout:g}s") from None


async def _fetch_article_text(client: httpx.AsyncClient, url: str, timeout: float) -> str:
    target = url
    if YAHOO_PICKUP_MARKER in url:
        resolved = await resolve_yahoo_pickup(client, url)
        if resolved:
            logger.debug("Resolved Yahoo! News pickup", extra={"url": url, "resolved": resolved})
            target = resolved
        else:
            logger.warning("Could not resolve Yahoo! News pickup", extra={"url": url})

    page_html = await fetch_article_page(client, target, timeout=timeout)

    if YAHOO_ARTICLE_MARKER in target:
        text = extract_yahoo_preloaded_state(page_html)
        if text:
            return text
        logger.debug("Yahoo! News state extraction failed; falling back", extra={"url": target})

    text, source = extract_main_text(page_html, base_url=target)
    if not text:
        raise FetchError("Could not extract article body")
    logger.debug("Extracted article body", extra={"url": target, "extractor": source, "chars": len(text)})
    return text


def truncate_content(text: str, max_length: int) -> str:
    """Cut `text` to `max_length`, preferring a sentence boundary near the end."""
    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    last_end = max(truncated.rfind(mark) for mark in _SENTENCE_END)
    if last_end > max_length * 0.7:
        return truncated[: last_end + 1]
    return truncated + "..."
