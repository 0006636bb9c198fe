"""Tests for selection-id matching and response parsing."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

from digest_to_podcast.config import LLMConfig, UserProfile
from digest_to_podcast.models import Candidate
from digest_to_podcast.selection import (
    LLMSelector,
    match_exact,
    match_id_prefix,
    match_index,
    match_prefix,
    match_title,
    match_trimmed,
    parse_selection_response,
    resolve_candidate,
    selection_target,
)


CANDIDATES = [
    Candidate(id="a1b2c3d4e5f60718", url="https://example.com/1", title="Rust 2.0 released with async traits", source="rss"),
    Candidate(id="ffee000011112222", url="https://example.com/2", title="Python packaging in 2025", source="hatena"),
    Candidate(id="0123456789abcdef", url="https://example.com/3", title="Kubernetes cost tricks", source="hackernews"),
]


def test_each_matcher_in_isolation():
    assert match_exact("ffee000011112222", CANDIDATES) is CANDIDATES[1]
    assert match_exact(" ffee000011112222", CANDIDATES) is None
    assert match_trimmed(" ffee000011112222\n", CANDIDATES) is CANDIDATES[1]
    assert match_index("3", CANDIDATES) is CANDIDATES[2]
    assert match_index("4", CANDIDATES) is None
    assert match_index("0", CANDIDATES) is None
    assert match_id_prefix("ID: 0123456789abcdef", CANDIDATES) is CANDIDATES[2]
    assert match_id_prefix("[ID: 0123456789abcdef]", CANDIDATES) is CANDIDATES[2]
    assert match_prefix("A1B2C3", CANDIDATES) is CANDIDATES[0]
    assert match_prefix("", CANDIDATES) is None
    assert match_title("Python packaging", CANDIDATES) is CANDIDATES[1]
    assert match_title("Article: Kubernetes cost tricks (HN)", CANDIDATES) is CANDIDATES[2]
    assert match_title("   ", CANDIDATES) is None


def test_resolve_uses_priority_order():
    # "1" is both a valid index and an id prefix of nothing; index wins
    assert resolve_candidate("1", CANDIDATES) is CANDIDATES[0]
    assert resolve_candidate("unknown", CANDIDATES) is None


def test_resolve_with_custom_policy():
    assert resolve_candidate("2", CANDIDATES, matchers=[match_exact]) is None
    assert resolve_candidate("2", CANDIDATES, matchers=[match_exact, match_index]) is CANDIDATES[1]


def test_parse_fenced_json_sorted_by_priority():
    reply = """Here you go:
```json
{"selectedArticles": [
  {"id": "0123456789abcdef", "priority": 2, "reason": "infra"},
  {"id": "ID: a1b2c3d4e5f60718", "priority": 1, "reason": "lang"},
  {"id": "nope", "priority": 3, "reason": "?"}
]}
```"""
    outcome = parse_selection_response(reply, CANDIDATES)
    assert [c.id for c in outcome.selected] == ["a1b2c3d4e5f60718", "0123456789abcdef"]
    assert outcome.reasons["0123456789abcdef"] == "infra"
    assert outcome.priorities["a1b2c3d4e5f60718"] == 1


def test_parse_drops_duplicate_resolutions():
    reply = '{"selectedArticles": [{"id": "1", "priority": 1, "reason": "x"}, {"id": "a1b2c3d4e5f60718", "priority": 2, "reason": "y"}]}'
    outcome = parse_selection_response(reply, CANDIDATES)
    assert [c.id for c in outcome.selected] == ["a1b2c3d4e5f60718"]
    assert outcome.reasons["a1b2c3d4e5f60718"] == "x"


def test_parse_garbage_selects_nothing():
    assert parse_selection_response("not json at all", CANDIDATES).selected == []
    assert parse_selection_response("", CANDIDATES).selected == []


def test_selection_target_rounds_up():
    assert selection_target(5, 1.5) == 8
    assert selection_target(4, 1.5) == 6


class FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def test_llm_selector_builds_prompt_and_parses():
    completions = FakeCompletions('{"selectedArticles": [{"id": "ffee000011112222", "priority": 1, "reason": "py"}]}')
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    selector = LLMSelector(LLMConfig(model="m"), multiplier=1.5, client=client)
    profile = UserProfile(interests=["python"], max_articles_per_run=2)

    outcome = asyncio.run(selector.select(CANDIDATES, profile))

    assert [c.id for c in outcome.selected] == ["ffee000011112222"]
    prompt = completions.kwargs["messages"][1]["content"]
    assert "[ID: ffee000011112222]" in prompt
    assert "Up to 3" in prompt
    assert completions.kwargs["response_format"] == {"type": "json_object"}


def test_llm_selector_empty_input_skips_call():
    completions = FakeCompletions("{}")
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    selector = LLMSelector(LLMConfig(), client=client)
    assert asyncio.run(selector.select([], UserProfile())).selected == []
    assert completions.kwargs is None
