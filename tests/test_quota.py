"""Tests for the quota-driven body fetch loop."""

from __future__ import annotations

import asyncio

import httpx

from digest_to_podcast.fetcher import fetch_article_text
from digest_to_podcast.models import Candidate
from digest_to_podcast.quota import QuotaFetchLoop
from digest_to_podcast.storage import CandidateStore, candidate_id


def make_candidates(n: int):
    out = []
    for i in range(n):
        url = f"https://example.com/{i}"
        out.append(Candidate(id=candidate_id(url), url=url, title=f"t{i}", source="rss"))
    return out


def make_store(tmp_path) -> CandidateStore:
    store = CandidateStore(str(tmp_path))
    store.load()
    return store


def test_stops_after_batch_reaching_target(tmp_path):
    store = make_store(tmp_path)
    candidates = make_candidates(10)
    calls = []

    async def fetch_text(url: str) -> str:
        calls.append(url)
        idx = int(url.rsplit("/", 1)[1])
        if idx % 2 == 1:
            raise RuntimeError(f"fail {idx}")
        return f"body {idx}"

    loop = QuotaFetchLoop(store, fetch_text, batch_size=3)
    result = asyncio.run(loop.run(candidates, 3))

    # batches [0,1,2] -> 2 ok, [3,4,5] -> 1 ok; stop
    assert len(calls) == 6
    assert [r.candidate.title for r in result] == ["t0", "t2", "t4"]
    assert sorted(r.url for r in store.failed_urls) == [
        "https://example.com/1",
        "https://example.com/3",
        "https://example.com/5",
    ]


def test_returns_first_n_successes_in_priority_order(tmp_path):
    store = make_store(tmp_path)

    async def fetch_text(url: str) -> str:
        return "body"

    loop = QuotaFetchLoop(store, fetch_text, batch_size=3)
    result = asyncio.run(loop.run(make_candidates(5), 2))
    assert [r.candidate.title for r in result] == ["t0", "t1"]
    assert store.failed_urls == []


def test_all_failures_return_empty_and_record(tmp_path):
    store = make_store(tmp_path)

    async def fetch_text(url: str) -> str:
        return "   "

    loop = QuotaFetchLoop(store, fetch_text, batch_size=3)
    result = asyncio.run(loop.run(make_candidates(4), 2))
    assert result == []
    assert len(store.failed_urls) == 4
    assert store.is_url_failed("https://example.com/0")


def test_long_bodies_are_truncated(tmp_path):
    store = make_store(tmp_path)

    async def fetch_text(url: str) -> str:
        return "x" * 300

    loop = QuotaFetchLoop(store, fetch_text, batch_size=3, max_content_chars=100)
    result = asyncio.run(loop.run(make_candidates(1), 1))
    assert result[0].content == "x" * 100 + "..."


def test_zero_target_fetches_nothing(tmp_path):
    store = make_store(tmp_path)
    calls = []

    async def fetch_text(url: str) -> str:
        calls.append(url)
        return "body"

    loop = QuotaFetchLoop(store, fetch_text)
    assert asyncio.run(loop.run(make_candidates(3), 0)) == []
    assert calls == []


def test_slow_fetch_counts_as_failure(tmp_path):
    store = make_store(tmp_path)

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/1":
            await asyncio.sleep(5)
        return httpx.Response(200, text="Body text.")

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:

            async def fetch_text(url: str) -> str:
                return await fetch_article_text(client, url, timeout=0.2)

            return await QuotaFetchLoop(store, fetch_text, batch_size=3).run(make_candidates(3), 2)

    result = asyncio.run(go())
    assert [r.candidate.title for r in result] == ["t0", "t2"]
    assert [r.url for r in store.failed_urls] == ["https://example.com/1"]
