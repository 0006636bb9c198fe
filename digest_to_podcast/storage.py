from __future__ import annotations

import datetime as dt
import hashlib
import json
import logging
import os
import tempfile
from typing import Any, Callable, Dict, List, Optional

from dateutil import parser as dateparser

from .models import Candidate, FailedUrlRecord, ProcessedRecord


logger = logging.getLogger(__name__)

LEDGER_FILENAME = "processed.json"


def ensure_dirs(*paths: str) -> None:
    for p in paths:
        if p:
            os.makedirs(p, exist_ok=True)


def sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def candidate_id(url: str) -> str:
    return sha256(url.strip())[:16]


def atomic_write_text(path: str, content: str) -> None:
    """Write `content` to `path` so readers only ever see a complete file."""
    directory = os.path.dirname(os.path.abspath(path))
    ensure_dirs(directory)
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def parse_timestamp(value: str) -> Optional[dt.datetime]:
    try:
        parsed = dateparser.isoparse(value)
    except (ValueError, TypeError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


class CandidateStore:
    """Persisted dedup ledger plus failed-URL cooldown tracker.

    The whole ledger lives in one JSON document
    (`{"processedArticles": [...], "failedUrls": [...]}`) and is rewritten
    after every mutation.
    """

    def __init__(self, data_dir: str, clock: Callable[[], dt.datetime] = utcnow) -> None:
        self.path = os.path.join(data_dir, LEDGER_FILENAME)
        self._clock = clock
        self.processed: List[ProcessedRecord] = []
        self.failed_urls: List[FailedUrlRecord] = []

    def load(self) -> None:
        if not os.path.exists(self.path):
            self.processed = []
            self.failed_urls = []
            logger.debug("Ledger file missing; starting empty", extra={"path": self.path})
            return
        with open(self.path, "r", encoding="utf-8") as f:
            data: Dict[str, Any] = json.load(f)
        self.processed = [ProcessedRecord.from_json(r) for r in data.get("processedArticles") or []]
        self.failed_urls = [FailedUrlRecord.from_json(r) for r in data.get("failedUrls") or []]
        logger.debug(
            "Ledger loaded",
            extra={"processed": len(self.processed), "failed_urls": len(self.failed_urls)},
        )

    def save(self) -> None:
        payload = {
            "processedArticles": [r.to_json() for r in self.processed],
            "failedUrls": [r.to_json() for r in self.failed_urls],
        }
        atomic_write_text(self.path, json.dumps(payload, ensure_ascii=False, indent=2))

    # -- processed articles -------------------------------------------------

    def is_processed(self, article_id: str) -> bool:
        return any(r.id == article_id for r in self.processed)

    def mark_as_processed(self, candidate: Candidate, episode_id: Optional[str] = None) -> None:
        if self.is_processed(candidate.id):
            return
        self.processed.append(
            ProcessedRecord(
                id=candidate.id,
                url=candidate.url,
                title=candidate.title,
                processed_at=self._clock().isoformat(),
                episode_id=episode_id,
            )
        )
        self.save()
        logger.debug("Marked as processed", extra={"article_id": candidate.id, "title": candidate.title})

    def processed_ids(self) -> List[str]:
        return [r.id for r in self.processed]

    def cleanup(self, retention_days: int = 30) -> int:
        before = len(self.processed)
        self.processed = [r for r in self.processed if self._within(r.processed_at, retention_days)]
        removed = before - len(self.processed)
        if removed:
            self.save()
            logger.info("Removed old processed records", extra={"removed": removed, "retention_days": retention_days})
        return removed

    # -- failed urls ---------------------------------------------------------

    def _find_failed(self, url: str) -> Optional[FailedUrlRecord]:
        for rec in self.failed_urls:
            if rec.url == url:
                return rec
        return None

    def mark_url_as_failed(self, url: str, error: str) -> None:
        now = self._clock().isoformat()
        existing = self._find_failed(url)
        if existing:
            existing.error = error
            existing.failed_at = now
            existing.failure_count += 1
        else:
            self.failed_urls.append(FailedUrlRecord(url=url, error=error, failed_at=now, failure_count=1))
        self.save()
        logger.debug("Marked URL as failed", extra={"url": url, "error": error})

    def is_url_failed(self, url: str, retention_days: int = 7) -> bool:
        rec = self._find_failed(url)
        if rec is None:
            return False
        # Expired records stay on disk until cleanup_failed_urls
        return self._within(rec.failed_at, retention_days)

    def cleanup_failed_urls(self, retention_days: int = 7) -> int:
        before = len(self.failed_urls)
        self.failed_urls = [r for r in self.failed_urls if self._within(r.failed_at, retention_days)]
        removed = before - len(self.failed_urls)
        if removed:
            self.save()
            logger.info("Removed old failed URLs", extra={"removed": removed, "retention_days": retention_days})
        return removed

    # -- administrative resets ----------------------------------------------

    def clear_processed_articles(self) -> int:
        count = len(self.processed)
        self.processed = []
        self.save()
        logger.info("Cleared processed articles", extra={"cleared": count})
        return count

    def clear_failed_urls(self) -> int:
        count = len(self.failed_urls)
        self.failed_urls = []
        self.save()
        logger.info("Cleared failed URLs", extra={"cleared": count})
        return count

    def clear_all(self) -> Dict[str, int]:
        counts = {"processed_articles": len(self.processed), "failed_urls": len(self.failed_urls)}
        self.processed = []
        self.failed_urls = []
        self.save()
        logger.info("Cleared ledger", extra=counts)
        return counts

    def _within(self, timestamp: str, retention_days: int) -> bool:
        when = parse_timestamp(timestamp)
        if when is None:
            return False
        return (self._clock() - when) < dt.timedelta(days=retention_days)
