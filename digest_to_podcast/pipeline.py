from __future__ import annotations

import datetime as dt
import logging
import os
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from .audio import AudioAssembler, get_audio_duration
from .config import AppConfig, UserProfile
from .fetcher import fetch_article_text, new_client
from .logger import EventBus
from .models import (
    Candidate,
    EnrichedCandidate,
    Episode,
    EpisodeArticle,
    PipelineResult,
    Script,
    SelectionOutcome,
)
from .quota import QuotaFetchLoop
from .rss import FeedState
from .storage import CandidateStore, atomic_write_text, ensure_dirs
from .synthesizer import OrderedConcurrentSynthesizer, TTSProvider, create_tts_provider
from .tts import split_into_chunks


logger = logging.getLogger(__name__)


class Collector(Protocol):
    name: str

    async def collect(self) -> List[Candidate]:
        ...


class Selector(Protocol):
    async def select(self, candidates: Sequence[Candidate], profile: UserProfile) -> SelectionOutcome:
        ...


class ScriptGenerator(Protocol):
    async def generate(self, items: Sequence[EnrichedCandidate], profile: UserProfile) -> Script:
        ...


FetchText = Callable[[str], Awaitable[str]]


def generate_description(items: Sequence[EnrichedCandidate], reasons: Dict[str, str], heading: str = "今日紹介する記事:") -> str:
    lines = [heading]
    for item in items:
        c = item.candidate
        lines.append(f"- {c.title} ({c.display_source})")
        reason = reasons.get(c.id)
        if reason:
            lines.append(f"  {reason}")
    return "\n".join(lines)


def _remove_files(directory: str, suffix: str) -> int:
    if not os.path.isdir(directory):
        return 0
    removed = 0
    for name in os.listdir(directory):
        if name.endswith(suffix):
            os.remove(os.path.join(directory, name))
            removed += 1
    return removed


class Pipeline:
    """One run turns collected candidates into a published episode.

    Collaborators are injectable; anything left as None is built from
    `config` on first use so a script-only run never needs TTS credentials.
    """

    def __init__(
        self,
        config: AppConfig,
        profile: UserProfile,
        *,
        bus: Optional[EventBus] = None,
        store: Optional[CandidateStore] = None,
        feed: Optional[FeedState] = None,
        collectors: Optional[Sequence[Collector]] = None,
        selector: Optional[Selector] = None,
        generator: Optional[ScriptGenerator] = None,
        tts_provider: Optional[TTSProvider] = None,
        assembler: Optional[AudioAssembler] = None,
        fetch_text: Optional[FetchText] = None,
        duration_probe: Callable[[str], float] = get_audio_duration,
    ) -> None:
        self.config = config
        self.profile = profile
        self.bus = bus
        self.store = store or CandidateStore(config.output.data_dir)
        self.feed = feed or FeedState(
            config.site,
            os.path.join(config.output.audio_dir, config.output.feed_filename),
            config.feed_url,
        )
        self._collectors = collectors
        self._selector = selector
        self._generator = generator
        self._tts_provider = tts_provider
        self.assembler = assembler or AudioAssembler(ffmpeg_path=config.audio.ffmpeg_path)
        self._fetch_text = fetch_text
        self.duration_probe = duration_probe

    # collaborators

    @property
    def collectors(self) -> Sequence[Collector]:
        if self._collectors is None:
            from .collectors import RSSCollector

            cols: List[Collector] = []
            if self.config.collectors.rss_enabled and self.config.collectors.rss_feeds:
                cols.append(RSSCollector(self.config.collectors.rss_feeds, timeout=self.config.fetch.timeout))
            self._collectors = cols
        return self._collectors

    @property
    def selector(self) -> Selector:
        if self._selector is None:
            from .selection import LLMSelector

            self._selector = LLMSelector(self.config.llm, multiplier=self.config.selection.multiplier)
        return self._selector

    @property
    def generator(self) -> ScriptGenerator:
        if self._generator is None:
            from .script_generator import LLMScriptGenerator

            self._generator = LLMScriptGenerator(self.config.llm)
        return self._generator

    @property
    def tts_provider(self) -> TTSProvider:
        if self._tts_provider is None:
            self._tts_provider = create_tts_provider(self.config.tts)
        return self._tts_provider

    def _stage(self, stage: str, **fields: Any) -> None:
        if self.bus is not None:
            self.bus.emit(logging.INFO, f"stage:{stage}", stage=stage, **fields)

    # lifecycle

    def initialize(self) -> None:
        out = self.config.output
        ensure_dirs(out.scripts_dir, out.audio_dir, out.data_dir)
        self.store.load()
        self.feed.load()
        logger.info("Pipeline initialized", extra={"feed_items": len(self.feed.items)})

    async def run(self, script_only: bool = False) -> PipelineResult:
        logger.info("Pipeline run started", extra={"script_only": script_only})
        self._stage("start", script_only=script_only)
        try:
            return await self._run(script_only)
        except Exception as e:  # noqa: BLE001
            logger.exception("Pipeline run failed", extra={"error": str(e)})
            self._stage("failed", error=str(e))
            return PipelineResult(success=False, article_count=0, error=str(e) or type(e).__name__)

    async def _run(self, script_only: bool) -> PipelineResult:
        candidates = await self.collect()
        self._stage("collected", count=len(candidates))
        if not candidates:
            logger.info("No candidates collected")
            return PipelineResult(success=True, article_count=0)

        fresh = self.filter_new(candidates)
        self._stage("filtered", count=len(fresh), total=len(candidates))
        if not fresh:
            logger.info("No new candidates")
            return PipelineResult(success=True, article_count=0)

        selection = await self.selector.select(fresh, self.profile)
        self._stage("selected", count=len(selection.selected))
        if not selection.selected:
            logger.info("Selector picked nothing")
            return PipelineResult(success=True, article_count=0)

        enriched = await self.fetch_bodies(selection.selected, self.profile.max_articles_per_run)
        self._stage("fetched", count=len(enriched), target=self.profile.max_articles_per_run)
        if not enriched:
            logger.warning("No article bodies could be fetched")
            return PipelineResult(success=True, article_count=0)

        script = await self.generator.generate(enriched, self.profile)
        script_path = self.save_script(script)
        self._stage("script", script_id=script.id, path=script_path)

        if script_only:
            logger.info("Script-only run; skipping audio", extra={"script_path": script_path})
            return PipelineResult(
                success=True,
                article_count=len(enriched),
                episode_id=script.id,
                episode_title=script.title,
                script_path=script_path,
            )

        audio_path = await self.generate_audio(script)
        self._stage("audio", path=audio_path)

        duration = int(round(self.duration_probe(audio_path)))
        episode = Episode(
            id=script.id,
            title=script.title,
            description=generate_description(enriched, selection.reasons),
            audio_url=self.audio_url(os.path.basename(audio_path)),
            duration=duration,
            published_at=dt.datetime.now(dt.timezone.utc),
            audio_bytes=os.path.getsize(audio_path),
            articles=[
                EpisodeArticle(title=e.candidate.title, url=e.candidate.url, source=e.candidate.display_source)
                for e in enriched
            ],
        )
        self.feed.publish(episode)
        self._stage("published", episode_id=episode.id)

        for item in enriched:
            self.store.mark_as_processed(item.candidate, episode.id)

        logger.info(
            "Pipeline run complete",
            extra={"episode_id": episode.id, "articles": len(enriched), "duration": duration},
        )
        return PipelineResult(
            success=True,
            article_count=len(enriched),
            episode_id=episode.id,
            episode_title=episode.title,
            script_path=script_path,
        )

    # stages

    async def collect(self) -> List[Candidate]:
        seen = set()
        out: List[Candidate] = []
        for collector in self.collectors:
            for c in await collector.collect():
                if c.id in seen:
                    continue
                seen.add(c.id)
                out.append(c)
        logger.info("Collected candidates", extra={"count": len(out)})
        return out

    def filter_new(self, candidates: Sequence[Candidate]) -> List[Candidate]:
        retention = self.config.selection.failed_url_retention_days
        fresh: List[Candidate] = []
        for c in candidates:
            if self.store.is_processed(c.id):
                continue
            if self.store.is_url_failed(c.url, retention):
                logger.debug("Skipping recently failed URL", extra={"url": c.url})
                continue
            fresh.append(c)
        logger.info("Filtered candidates", extra={"new": len(fresh), "total": len(candidates)})
        return fresh

    async def fetch_bodies(self, selected: Sequence[Candidate], target: int) -> List[EnrichedCandidate]:
        fcfg = self.config.fetch
        if self._fetch_text is not None:
            loop = QuotaFetchLoop(self.store, self._fetch_text, fcfg.batch_size, fcfg.max_content_chars)
            return await loop.run(selected, target)

        async with new_client(timeout=fcfg.timeout, user_agent=fcfg.user_agent or None) as client:

            async def fetch_text(url: str) -> str:
                return await fetch_article_text(client, url, timeout=fcfg.timeout)

            loop = QuotaFetchLoop(self.store, fetch_text, fcfg.batch_size, fcfg.max_content_chars)
            return await loop.run(selected, target)

    def save_script(self, script: Script) -> str:
        path = os.path.join(self.config.output.scripts_dir, f"{script.id}.txt")
        atomic_write_text(path, script.content)
        logger.debug("Script saved", extra={"path": path})
        return path

    async def generate_audio(self, script: Script) -> str:
        chunks = split_into_chunks(script.content, self.config.tts.chunk_size)
        if not chunks:
            raise ValueError("Script is empty; nothing to synthesize")
        synthesizer = OrderedConcurrentSynthesizer(self.tts_provider, self.config.tts.concurrency)
        segments = await synthesizer.synthesize_all(chunks)
        data = self.assembler.concat(segments)

        out_path = os.path.join(self.config.output.audio_dir, f"{script.id}.mp3")
        acfg = self.config.audio
        return self.assembler.write_episode_audio(
            data,
            out_path,
            title=script.title,
            artist=self.profile.narrator_name or acfg.artist,
            album=acfg.album,
            artwork_path=acfg.artwork_path,
            link=self.config.site.link,
        )

    def audio_url(self, filename: str) -> str:
        return self.config.site.link.rstrip("/") + "/audio/" + filename

    # admin

    def has_audio(self, episode_id: str) -> bool:
        return os.path.exists(os.path.join(self.config.output.audio_dir, f"{episode_id}.mp3"))

    def clear_all_episodes(self) -> Dict[str, int]:
        audio_files = _remove_files(self.config.output.audio_dir, ".mp3")
        script_files = _remove_files(self.config.output.scripts_dir, ".txt")
        self.feed.clear()
        logger.info("Cleared all episodes", extra={"audio_files": audio_files, "script_files": script_files})
        return {"audio_files": audio_files, "script_files": script_files}

    def clear_processed_articles(self) -> int:
        return self.store.clear_processed_articles()

    def clear_failed_urls(self) -> int:
        return self.store.clear_failed_urls()

    def cleanup(self) -> Dict[str, int]:
        sel = self.config.selection
        return {
            "processed_articles": self.store.cleanup(sel.processed_retention_days),
            "failed_urls": self.store.cleanup_failed_urls(sel.failed_url_retention_days),
        }
