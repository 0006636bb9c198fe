from __future__ import annotations

import datetime as dt
import email.utils
import html
import logging
import os
from dataclasses import dataclass
from typing import Any, List, Optional

import feedparser

from .audio import format_duration, parse_duration
from .config import SiteConfig
from .models import Episode
from .storage import atomic_write_text


logger = logging.getLogger(__name__)


def rfc2822(dt_obj: dt.datetime) -> str:
    if dt_obj.tzinfo is None:
        dt_obj = dt_obj.replace(tzinfo=dt.timezone.utc)
    return email.utils.format_datetime(dt_obj)


@dataclass
class FeedItem:
    guid: str
    title: str
    link: str
    description_html: str
    pub_date: dt.datetime
    enclosure_url: str
    enclosure_length: int = 0
    enclosure_type: str = "audio/mpeg"
    duration: int = 0  # seconds


def episode_description_html(episode: Episode) -> str:
    lines = [html.escape(ln) for ln in episode.description.splitlines()]
    body = f"<p>{'<br/>'.join(lines)}</p>" if lines else ""
    if episode.articles:
        links = "".join(
            f"<li><a href=\"{html.escape(a.url)}\">{html.escape(a.title)}</a> ({html.escape(a.source)})</li>"
            for a in episode.articles
        )
        body += f"<ul>{links}</ul>"
    return body


def item_from_episode(episode: Episode) -> FeedItem:
    return FeedItem(
        guid=episode.id,
        title=episode.title,
        link=episode.audio_url,
        description_html=episode_description_html(episode),
        pub_date=episode.published_at,
        enclosure_url=episode.audio_url,
        enclosure_length=episode.audio_bytes,
        duration=episode.duration,
    )


def _entry_pub_date(entry: Any) -> dt.datetime:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if parsed:
        return dt.datetime(*parsed[:6], tzinfo=dt.timezone.utc)
    return dt.datetime.now(dt.timezone.utc)


def item_from_entry(entry: Any) -> Optional[FeedItem]:
    enclosures = entry.get("enclosures") or []
    enclosure = enclosures[0] if enclosures else {}
    guid = entry.get("id") or entry.get("guid") or enclosure.get("href")
    if not guid:
        return None
    try:
        length = int(enclosure.get("length") or 0)
    except (TypeError, ValueError):
        length = 0
    return FeedItem(
        guid=str(guid),
        title=entry.get("title", ""),
        link=entry.get("link", ""),
        description_html=entry.get("description") or entry.get("summary") or "",
        pub_date=_entry_pub_date(entry),
        enclosure_url=enclosure.get("href", ""),
        enclosure_length=length,
        enclosure_type=enclosure.get("type") or "audio/mpeg",
        duration=parse_duration(entry.get("itunes_duration", "") or ""),
    )


def render_rss(site: SiteConfig, items: List[FeedItem], feed_url: str, image_url: str) -> str:
    # Namespaces: itunes + atom
    rss_head = (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>\n"
        "<rss version=\"2.0\"\n"
        "     xmlns:itunes=\"http://www.itunes.com/dtds/podcast-1.0.dtd\"\n"
        "     xmlns:atom=\"http://www.w3.org/2005/Atom\">\n"
        "  <channel>\n"
        f"    <title>{html.escape(site.title)}</title>\n"
        f"    <link>{html.escape(site.link)}</link>\n"
        f"    <description>{html.escape(site.description)}</description>\n"
        f"    <language>{html.escape(site.language)}</language>\n"
        f"    <lastBuildDate>{rfc2822(dt.datetime.now(dt.timezone.utc))}</lastBuildDate>\n"
        f"    <atom:link href=\"{html.escape(feed_url)}\" rel=\"self\" type=\"application/rss+xml\" />\n"
        f"    <itunes:author>{html.escape(site.author)}</itunes:author>\n"
        f"    <itunes:category text=\"{html.escape(site.category)}\" />\n"
        "    <itunes:explicit>no</itunes:explicit>\n"
        "    <itunes:type>episodic</itunes:type>\n"
    )
    if image_url:
        img = html.escape(image_url)
        rss_head += f"    <itunes:image href=\"{img}\" />\n"
        # Standard RSS image block for broader compatibility
        rss_head += (
            "    <image>\n"
            f"      <url>{img}</url>\n"
            f"      <title>{html.escape(site.title)}</title>\n"
            f"      <link>{html.escape(site.link)}</link>\n"
            "    </image>\n"
        )

    rss_items = []
    for it in items:
        # CDATA cannot contain its own terminator
        desc = it.description_html.replace("]]>", "]]]]><![CDATA[>")
        item_xml = f"""
    <item>
      <title>{html.escape(it.title)}</title>
      <link>{html.escape(it.link)}</link>
      <guid isPermaLink="false">{html.escape(it.guid)}</guid>
      <pubDate>{rfc2822(it.pub_date)}</pubDate>
      <enclosure url="{html.escape(it.enclosure_url)}" length="{int(it.enclosure_length)}" type="{html.escape(it.enclosure_type)}" />
      <itunes:duration>{format_duration(it.duration)}</itunes:duration>
      <itunes:explicit>no</itunes:explicit>
      <description><![CDATA[{desc}]]></description>
    </item>
"""
        rss_items.append(item_xml)

    rss_tail = "  </channel>\n</rss>\n"
    return rss_head + "".join(rss_items) + rss_tail


class FeedState:
    """In-memory podcast feed mirrored to a single RSS document on disk.

    `load` rebuilds the item list from the persisted document so a restarted
    process appends to the existing history instead of replacing it.
    """

    def __init__(self, site: SiteConfig, feed_path: str, feed_url: str) -> None:
        self.site = site
        self.feed_path = feed_path
        self.feed_url = feed_url
        self.items: List[FeedItem] = []

    @property
    def image_url(self) -> str:
        if self.site.image_url:
            return self.site.image_url
        return self.site.link.rstrip("/") + "/images/podcast-cover.png"

    def load(self) -> None:
        self.items = []
        if not os.path.exists(self.feed_path):
            logger.debug("No persisted feed; starting empty", extra={"path": self.feed_path})
            return
        try:
            with open(self.feed_path, "rb") as f:
                raw = f.read()
            parsed = feedparser.parse(raw)
        except Exception as e:  # noqa: BLE001
            logger.warning("Could not read persisted feed; starting empty", extra={"path": self.feed_path, "error": str(e)})
            return

        if parsed.bozo and not parsed.entries:
            logger.warning(
                "Persisted feed is malformed; starting empty",
                extra={"path": self.feed_path, "detail": str(parsed.get("bozo_exception", ""))},
            )
            return
        if parsed.bozo:
            logger.warning(
                "Persisted feed parsed with warnings",
                extra={"path": self.feed_path, "detail": str(parsed.get("bozo_exception", ""))},
            )

        seen = set()
        for entry in parsed.entries:
            item = item_from_entry(entry)
            if item is None or item.guid in seen:
                continue
            seen.add(item.guid)
            self.items.append(item)
        logger.info("Loaded existing feed", extra={"items": len(self.items)})

    def has_item(self, guid: str) -> bool:
        return any(it.guid == guid for it in self.items)

    def publish(self, episode: Episode) -> bool:
        """Append `episode` and persist the feed. Returns False if already present."""
        if self.has_item(episode.id):
            logger.info("Episode already in feed; skipping", extra={"episode_id": episode.id})
            return False
        self.items.append(item_from_episode(episode))
        self.save()
        logger.info("Added episode to feed", extra={"episode_id": episode.id, "title": episode.title})
        return True

    def render(self) -> str:
        return render_rss(self.site, self.items, self.feed_url, self.image_url)

    def save(self) -> None:
        atomic_write_text(self.feed_path, self.render())
        logger.debug("Feed saved", extra={"path": self.feed_path})

    def clear(self) -> int:
        count = len(self.items)
        self.items = []
        self.save()
        logger.info("Cleared feed", extra={"cleared": count})
        return count
