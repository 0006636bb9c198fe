from __future__ import annotations

import datetime as dt
import logging
import math
import os
import re
import secrets
from typing import Any, List, Optional, Sequence

from openai import AsyncOpenAI

from .config import LLMConfig, UserProfile
from .models import EnrichedCandidate, Script


logger = logging.getLogger(__name__)


# Japanese narration runs at roughly 300-400 chars/minute
CHARS_PER_MINUTE = 350

SCRIPT_SYSTEM_PROMPT = (
    "You are a script writer for a technology podcast.\n"
    "Dig into each article and write natural spoken language that is easy to follow by ear.\n"
    "Return plain text only."
)

TONES = {
    "casual": "friendly, like talking to a friend",
    "formal": "polite, like a news anchor",
    "news": "concise and fact-focused, like a news report",
}


def new_episode_id(now: Optional[dt.datetime] = None) -> str:
    now = now or dt.datetime.now(dt.timezone.utc)
    return f"{now:%Y%m%d}-{secrets.token_hex(4)}"


def estimate_duration(content: str) -> int:
    """Estimated narration length in whole minutes."""
    return int(math.ceil(len(content) / CHARS_PER_MINUTE))


_PREAMBLE = re.compile(r"^(はい、|承知|以下に|了解|Sure|Here is|Here's).*?(。|：|:)\n*", re.IGNORECASE)


def strip_markdown(script: str) -> str:
    cleaned = _PREAMBLE.sub("", script.strip(), count=1)
    cleaned = re.sub(r"```[\s\S]*?```", "", cleaned)
    cleaned = re.sub(r"^---+\n*", "", cleaned, flags=re.MULTILINE)
    cleaned = re.sub(r"^#{1,6}\s*", "", cleaned, flags=re.MULTILINE)
    cleaned = re.sub(r"\*\*([^*]+)\*\*", r"\1", cleaned)
    cleaned = re.sub(r"\*([^*]+)\*", r"\1", cleaned)
    cleaned = re.sub(r"^[*\-]\s+", "・", cleaned, flags=re.MULTILINE)
    cleaned = re.sub(r"^\d+\.\s+", "", cleaned, flags=re.MULTILINE)
    cleaned = re.sub(r"`([^`]+)`", r"\1", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def episode_title(items: Sequence[EnrichedCandidate], date: dt.date, language: str = "ja") -> str:
    if language == "ja":
        date_str = f"{date.year}年{date.month}月{date.day}日"
        if len(items) == 1:
            return f"{date_str}の話題: {items[0].candidate.title}"
        return f"{date_str}のテック記事まとめ"
    date_str = f"{date:%B} {date.day}, {date.year}"
    if len(items) == 1:
        return f"{date_str}: {items[0].candidate.title}"
    return f"Tech digest for {date_str}"


def build_script_prompt(items: Sequence[EnrichedCandidate], profile: UserProfile, today: dt.date) -> str:
    style = profile.script_style
    sections: List[str] = []
    for i, item in enumerate(items, start=1):
        c = item.candidate
        sections.append(
            f"### Article {i}: {c.title}\n"
            f"Source: {c.display_source}\n"
            f"URL: {c.url}\n\n"
            f"[Body]\n{item.content}\n"
        )

    parts = [
        f"Write a podcast script of about {style.max_duration} minutes covering the articles below.",
        f"## Narrator\nName: {profile.narrator_name or 'Host'}. Introduce yourself by name.",
        f"## Tone\n{TONES.get(style.tone, TONES['casual'])}",
        f"## Language\n{style.language}",
    ]
    if style.include_intro:
        parts.append(f"## Opening\nToday is {today:%A, %B} {today.day}, {today.year}. Greet, read the date, preview the topics.")
    if style.include_outro:
        parts.append("## Ending\nClose with a sign-off.")
    if profile.script_prompt:
        parts.append(f"## Additional instructions\n{profile.script_prompt}")
    parts.append("## Articles\n" + "\n---\n\n".join(sections))
    parts.append(
        "## Rules\n"
        "- Explain background and why each topic matters\n"
        "- Briefly explain jargon\n"
        "- No markdown at all; plain spoken text\n"
        "- No preamble such as 'Here is the script'; output the script only"
    )
    return "\n\n".join(parts)


class LLMScriptGenerator:
    def __init__(self, cfg: LLMConfig, client: Optional[Any] = None) -> None:
        self.model = cfg.model
        if client is None:
            api_key = os.environ.get(cfg.api_key_env)
            if not api_key:
                raise RuntimeError(f"LLM env var '{cfg.api_key_env}' not set")
            client = AsyncOpenAI(api_key=api_key)
        self.client = client

    async def generate(self, items: Sequence[EnrichedCandidate], profile: UserProfile) -> Script:
        if not items:
            raise ValueError("Script generation needs at least one article")
        now = dt.datetime.now(dt.timezone.utc)
        prompt = build_script_prompt(items, profile, now.date())
        logger.debug("Generating script", extra={"articles": len(items), "prompt_chars": len(prompt)})

        resp = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SCRIPT_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        )
        raw = resp.choices[0].message.content if resp and resp.choices else None
        if not raw:
            raise RuntimeError("Empty script response from LLM")

        content = strip_markdown(raw)
        script = Script(
            id=new_episode_id(now),
            title=episode_title(items, now.date(), profile.script_style.language),
            content=content,
            generated_at=now,
            estimated_duration=estimate_duration(content),
        )
        logger.info("Script generated", extra={"script_id": script.id, "estimated_minutes": script.estimated_duration})
        return script
