from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml


logger = logging.getLogger(__name__)


@dataclass
class SiteConfig:
    title: str = "Digest Podcast"
    link: str = "http://localhost:3000/"
    description: str = "Automatically curated audio digest"
    language: str = "ja"
    image_url: str = ""
    author: str = "Digest Podcast"
    category: str = "Technology"


@dataclass
class OutputConfig:
    scripts_dir: str = "output/scripts"
    audio_dir: str = "output/audio"
    data_dir: str = "data"
    feed_filename: str = "feed.xml"


@dataclass
class FetchConfig:
    timeout: float = 15.0
    batch_size: int = 3
    max_content_chars: int = 5000
    user_agent: str = ""


@dataclass
class SelectionConfig:
    multiplier: float = 1.5
    failed_url_retention_days: int = 7
    processed_retention_days: int = 30


@dataclass
class TTSConfig:
    provider: str = "openai"
    model: str = "gpt-4o-mini-tts"
    voices: List[str] = field(default_factory=lambda: ["nova"])
    language_code: str = "ja-JP"
    speaking_rate: float = 1.0
    pitch: float = 0.0
    chunk_size: int = 1500
    concurrency: int = 6
    # 1 = single attempt; a chunk that still fails aborts the run
    max_retries: int = 1
    initial_retry_delay: float = 2.0
    api_key_env: str = "OPENAI_API_KEY"


@dataclass
class AudioConfig:
    ffmpeg_path: str = "ffmpeg"
    artwork_path: str = "public/images/podcast-cover.png"
    artist: str = "Digest Podcast"
    album: str = "Digest Podcast"


@dataclass
class LLMConfig:
    provider: str = "openai"
    model: str = "gpt-4o-mini"
    api_key_env: str = "OPENAI_API_KEY"


@dataclass
class RSSFeedSource:
    name: str
    url: str
    category: Optional[str] = None


@dataclass
class CollectorsConfig:
    rss_enabled: bool = True
    rss_feeds: List[RSSFeedSource] = field(default_factory=list)


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class AppConfig:
    site: SiteConfig = field(default_factory=SiteConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    tts: TTSConfig = field(default_factory=TTSConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    collectors: CollectorsConfig = field(default_factory=CollectorsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def feed_url(self) -> str:
        return self.site.link.rstrip("/") + "/" + self.output.feed_filename


@dataclass
class ScriptStyle:
    tone: str = "casual"
    include_intro: bool = True
    include_outro: bool = True
    max_duration: int = 10  # minutes
    language: str = "ja"


@dataclass
class UserProfile:
    interests: List[str] = field(default_factory=list)
    exclude_topics: List[str] = field(default_factory=list)
    exclude_keywords: List[str] = field(default_factory=list)
    max_articles_per_run: int = 5
    preferred_sources: List[str] = field(default_factory=list)
    narrator_name: str = ""
    script_style: ScriptStyle = field(default_factory=ScriptStyle)
    selection_prompt: str = ""
    script_prompt: str = ""


def _read_yaml(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        logger.info("Config file not found; using defaults", extra={"path": path})
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_config(path: str = "config.yaml") -> AppConfig:
    data = _read_yaml(path)

    site = data.get("site", {}) or {}
    output = data.get("output", {}) or {}
    fetch = data.get("fetch", {}) or {}
    selection = data.get("selection", {}) or {}
    tts = data.get("tts", {}) or {}
    audio = data.get("audio", {}) or {}
    llm = data.get("llm", {}) or {}
    collectors = data.get("collectors", {}) or {}
    rss = collectors.get("rss", {}) or {}
    logging_cfg = data.get("logging", {}) or {}

    d_site, d_out, d_fetch = SiteConfig(), OutputConfig(), FetchConfig()
    d_sel, d_tts, d_audio, d_llm = SelectionConfig(), TTSConfig(), AudioConfig(), LLMConfig()

    return AppConfig(
        site=SiteConfig(
            title=site.get("title", d_site.title),
            link=site.get("link", d_site.link),
            description=site.get("description", d_site.description),
            language=site.get("language", d_site.language),
            image_url=site.get("image_url", d_site.image_url),
            author=site.get("author", d_site.author),
            category=site.get("category", d_site.category),
        ),
        output=OutputConfig(
            scripts_dir=output.get("scripts_dir", d_out.scripts_dir),
            audio_dir=output.get("audio_dir", d_out.audio_dir),
            data_dir=output.get("data_dir", d_out.data_dir),
            feed_filename=output.get("feed_filename", d_out.feed_filename),
        ),
        fetch=FetchConfig(
            timeout=float(fetch.get("timeout", d_fetch.timeout)),
            batch_size=int(fetch.get("batch_size", d_fetch.batch_size)),
            max_content_chars=int(fetch.get("max_content_chars", d_fetch.max_content_chars)),
            user_agent=fetch.get("user_agent", d_fetch.user_agent),
        ),
        selection=SelectionConfig(
            multiplier=float(selection.get("multiplier", d_sel.multiplier)),
            failed_url_retention_days=int(
                selection.get("failed_url_retention_days", d_sel.failed_url_retention_days)
            ),
            processed_retention_days=int(
                selection.get("processed_retention_days", d_sel.processed_retention_days)
            ),
        ),
        tts=TTSConfig(
            provider=tts.get("provider", d_tts.provider),
            model=tts.get("model", d_tts.model),
            voices=list(tts.get("voices", d_tts.voices)),
            language_code=tts.get("language_code", d_tts.language_code),
            speaking_rate=float(tts.get("speaking_rate", d_tts.speaking_rate)),
            pitch=float(tts.get("pitch", d_tts.pitch)),
            chunk_size=int(tts.get("chunk_size", d_tts.chunk_size)),
            concurrency=int(tts.get("concurrency", d_tts.concurrency)),
            max_retries=int(tts.get("max_retries", d_tts.max_retries)),
            initial_retry_delay=float(tts.get("initial_retry_delay", d_tts.initial_retry_delay)),
            api_key_env=tts.get("api_key_env", d_tts.api_key_env),
        ),
        audio=AudioConfig(
            ffmpeg_path=audio.get("ffmpeg_path", d_audio.ffmpeg_path),
            artwork_path=audio.get("artwork_path", d_audio.artwork_path),
            artist=audio.get("artist", d_audio.artist),
            album=audio.get("album", d_audio.album),
        ),
        llm=LLMConfig(
            provider=llm.get("provider", d_llm.provider),
            model=llm.get("model", d_llm.model),
            api_key_env=llm.get("api_key_env", d_llm.api_key_env),
        ),
        collectors=CollectorsConfig(
            rss_enabled=bool(rss.get("enabled", True)),
            rss_feeds=[
                RSSFeedSource(name=f.get("name", f.get("url", "")), url=f["url"], category=f.get("category"))
                for f in rss.get("feeds", []) or []
                if f.get("url")
            ],
        ),
        logging=LoggingConfig(level=logging_cfg.get("level", "INFO")),
    )


def load_profile(path: str = "profile.yaml") -> UserProfile:
    data = _read_yaml(path)
    style = data.get("script_style", {}) or {}
    prompts = data.get("custom_prompts", {}) or {}
    narrator = data.get("narrator", {}) or {}
    d_style = ScriptStyle()
    return UserProfile(
        interests=list(data.get("interests", [])),
        exclude_topics=list(data.get("exclude_topics", [])),
        exclude_keywords=list(data.get("exclude_keywords", [])),
        max_articles_per_run=int(data.get("max_articles_per_run", 5)),
        preferred_sources=list(data.get("preferred_sources", [])),
        narrator_name=narrator.get("name", ""),
        script_style=ScriptStyle(
            tone=style.get("tone", d_style.tone),
            include_intro=bool(style.get("include_intro", d_style.include_intro)),
            include_outro=bool(style.get("include_outro", d_style.include_outro)),
            max_duration=int(style.get("max_duration", d_style.max_duration)),
            language=style.get("language", d_style.language),
        ),
        selection_prompt=prompts.get("selection", "") or "",
        script_prompt=prompts.get("script_generation", "") or "",
    )


def validate_config(cfg: AppConfig) -> List[str]:
    """Lightweight config validation that logs warnings but avoids hard failures.

    Returns a list of warning strings (empty if none).
    """
    warnings: List[str] = []

    if not cfg.site.link:
        warnings.append("site.link is empty; enclosure URLs will be relative")

    if cfg.collectors.rss_enabled and not cfg.collectors.rss_feeds:
        warnings.append("collectors.rss has no feeds; nothing to collect")

    provider = (cfg.tts.provider or "").lower()
    if provider not in {"openai", "gcp"}:
        warnings.append(f"tts.provider '{cfg.tts.provider}' not in ['openai','gcp']; synthesis will fail")
    if provider == "openai" and not os.environ.get(cfg.tts.api_key_env):
        warnings.append(f"OpenAI TTS selected but env var '{cfg.tts.api_key_env}' not set")
    if cfg.tts.concurrency < 1:
        warnings.append("tts.concurrency must be >= 1")
    if cfg.fetch.batch_size < 1:
        warnings.append("fetch.batch_size must be >= 1")

    if not os.environ.get(cfg.llm.api_key_env):
        warnings.append(f"LLM env var '{cfg.llm.api_key_env}' not set; selection and script generation will fail")

    return warnings
