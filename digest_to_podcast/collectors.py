from __future__ import annotations

import datetime as dt
import logging
from typing import Any, List, Optional, Sequence

import feedparser
import httpx
from bs4 import BeautifulSoup
from dateutil import parser as dateparser

from .config import RSSFeedSource
from .fetcher import DEFAULT_TIMEOUT
from .models import Candidate
from .storage import candidate_id


logger = logging.getLogger(__name__)


def parse_datetime(s: str) -> Optional[dt.datetime]:
    if not s:
        return None
    try:
        v = dateparser.parse(s)
    except (ValueError, OverflowError):
        return None
    if v is not None and v.tzinfo is None:
        v = v.replace(tzinfo=dt.timezone.utc)
    return v


def _plain_text(html_or_text: str) -> str:
    if "<" not in html_or_text:
        return html_or_text.strip()
    return BeautifulSoup(html_or_text, "html.parser").get_text(" ", strip=True)


def candidates_from_feed(raw: bytes, source: RSSFeedSource) -> List[Candidate]:
    parsed = feedparser.parse(raw)
    if parsed.bozo:
        logger.warning("Feed parse warning", extra={"feed": source.name, "detail": str(parsed.get("bozo_exception", ""))})

    items: List[Candidate] = []
    for e in parsed.entries:
        link = (getattr(e, "link", "") or "").strip()
        if not link:
            logger.debug("Skipping feed entry without link", extra={"feed": source.name, "title": getattr(e, "title", "")})
            continue
        summary = getattr(e, "summary", "") or ""
        published = getattr(e, "published", "") or getattr(e, "updated", "")
        metadata: dict = {}
        if source.category:
            metadata["category"] = source.category
        items.append(
            Candidate(
                id=candidate_id(link),
                url=link,
                title=getattr(e, "title", "(no title)"),
                source="rss",
                description=_plain_text(summary),
                source_name=source.name,
                published_at=parse_datetime(published),
                metadata=metadata,
            )
        )
    return items


class RSSCollector:
    name = "rss"

    def __init__(self, feeds: Sequence[RSSFeedSource], client: Optional[Any] = None, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.feeds = list(feeds)
        self.client = client
        self.timeout = timeout

    async def collect(self) -> List[Candidate]:
        """Collect from every feed; a broken feed is logged and skipped."""
        own_client = self.client is None
        client = self.client or httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": "digest-to-podcast/1.0"},
        )
        out: List[Candidate] = []
        try:
            for feed in self.feeds:
                try:
                    logger.debug("Fetching RSS feed", extra={"feed": feed.name, "url": feed.url})
                    resp = await client.get(feed.url)
                    resp.raise_for_status()
                    items = candidates_from_feed(resp.content, feed)
                except Exception as e:  # noqa: BLE001
                    logger.error("RSS feed fetch failed", extra={"feed": feed.name, "error": str(e)})
                    continue
                logger.info("Collected RSS items", extra={"feed": feed.name, "count": len(items)})
                out.extend(items)
        finally:
            if own_client:
                await client.aclose()
        return out
