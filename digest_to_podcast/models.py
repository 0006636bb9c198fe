from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Candidate:
    """A collected article proposed for an episode.

    `id` is a content hash of `url` (see storage.candidate_id), so the same
    URL always maps to the same id across collectors and runs.
    """

    id: str
    url: str
    title: str
    source: str
    description: Optional[str] = None
    source_name: Optional[str] = None
    published_at: Optional[dt.datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def display_source(self) -> str:
        return self.source_name or self.source


@dataclass
class SelectionOutcome:
    selected: List[Candidate] = field(default_factory=list)
    reasons: Dict[str, str] = field(default_factory=dict)
    priorities: Dict[str, int] = field(default_factory=dict)


@dataclass
class FetchOutcome:
    candidate: Candidate
    success: bool
    text: Optional[str] = None
    error: Optional[str] = None


@dataclass
class EnrichedCandidate:
    """A candidate together with its fetched body text."""

    candidate: Candidate
    content: str


@dataclass
class ProcessedRecord:
    id: str
    url: str
    title: str
    processed_at: str
    episode_id: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "processedAt": self.processed_at,
            "episodeId": self.episode_id,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ProcessedRecord":
        return cls(
            id=str(data["id"]),
            url=str(data.get("url", "")),
            title=str(data.get("title", "")),
            processed_at=str(data.get("processedAt", "")),
            episode_id=data.get("episodeId"),
        )


@dataclass
class FailedUrlRecord:
    url: str
    error: str
    failed_at: str
    failure_count: int = 1

    def to_json(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "error": self.error,
            "failedAt": self.failed_at,
            "failureCount": self.failure_count,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "FailedUrlRecord":
        return cls(
            url=str(data["url"]),
            error=str(data.get("error", "")),
            failed_at=str(data.get("failedAt", "")),
            failure_count=int(data.get("failureCount", 1)),
        )


@dataclass
class Chunk:
    index: int  # 1-based position in the narration
    text: str


@dataclass
class AudioSegment:
    index: int
    data: bytes


@dataclass
class Script:
    id: str
    title: str
    content: str
    generated_at: dt.datetime
    estimated_duration: Optional[float] = None  # minutes


@dataclass
class EpisodeArticle:
    title: str
    url: str
    source: str


@dataclass
class Episode:
    id: str
    title: str
    description: str
    audio_url: str
    duration: int  # seconds
    published_at: dt.datetime
    audio_bytes: int = 0
    articles: List[EpisodeArticle] = field(default_factory=list)


@dataclass
class PipelineResult:
    success: bool
    article_count: int = 0
    episode_id: Optional[str] = None
    episode_title: Optional[str] = None
    script_path: Optional[str] = None
    error: Optional[str] = None
