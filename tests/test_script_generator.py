"""Tests for script generation helpers."""

from __future__ import annotations

import asyncio
import datetime as dt
import re
from types import SimpleNamespace

import pytest

from digest_to_podcast.config import LLMConfig, UserProfile
from digest_to_podcast.models import Candidate, EnrichedCandidate
from digest_to_podcast.script_generator import (
    LLMScriptGenerator,
    episode_title,
    estimate_duration,
    new_episode_id,
    strip_markdown,
)


def enriched(title: str) -> EnrichedCandidate:
    return EnrichedCandidate(Candidate(id=title, url=f"https://example.com/{title}", title=title, source="rss"), "body")


def test_new_episode_id_has_date_and_suffix():
    eid = new_episode_id(dt.datetime(2025, 1, 10, tzinfo=dt.timezone.utc))
    assert re.fullmatch(r"20250110-[0-9a-f]{8}", eid)
    assert new_episode_id() != new_episode_id()


def test_strip_markdown():
    raw = "承知しました。\n# 見出し\n**太字**と*斜体*\n- 項目\n1. 番号\n`code`\n\n\n\n終わり"
    assert strip_markdown(raw) == "見出し\n太字と斜体\n・項目\n番号\ncode\n\n終わり"


def test_estimate_duration_rounds_up():
    assert estimate_duration("あ" * 350) == 1
    assert estimate_duration("あ" * 351) == 2


def test_episode_title():
    day = dt.date(2025, 1, 10)
    assert episode_title([enriched("One")], day) == "2025年1月10日の話題: One"
    assert episode_title([enriched("a"), enriched("b")], day) == "2025年1月10日のテック記事まとめ"
    assert episode_title([enriched("a"), enriched("b")], day, language="en") == "Tech digest for January 10, 2025"


class FakeCompletions:
    async def create(self, **kwargs):
        self.kwargs = kwargs
        message = SimpleNamespace(content="## Intro\nHello **there**.")
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def test_generate_cleans_reply():
    completions = FakeCompletions()
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    gen = LLMScriptGenerator(LLMConfig(model="m"), client=client)

    script = asyncio.run(gen.generate([enriched("One")], UserProfile(narrator_name="Aoi")))

    assert script.content == "Intro\nHello there."
    assert "Aoi" in completions.kwargs["messages"][1]["content"]
    assert script.estimated_duration == 1


def test_generate_requires_articles():
    client = SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions()))
    with pytest.raises(ValueError):
        asyncio.run(LLMScriptGenerator(LLMConfig(), client=client).generate([], UserProfile()))
