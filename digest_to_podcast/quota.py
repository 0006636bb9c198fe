from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from .batching import run_batched
from .fetcher import truncate_content
from .models import Candidate, EnrichedCandidate, FetchOutcome
from .storage import CandidateStore


logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 3
DEFAULT_MAX_CONTENT_CHARS = 5000

FetchText = Callable[[str], Awaitable[str]]


class QuotaFetchLoop:
    """Fetch bodies for priority-ordered candidates until `target_count` succeed.

    Candidates are consumed in batches; once a batch brings the success count
    to the target no further batches are fetched. Failed URLs go into the
    store's cooldown list and are never retried within the same run.
    """

    def __init__(
        self,
        store: CandidateStore,
        fetch_text: FetchText,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_content_chars: Optional[int] = DEFAULT_MAX_CONTENT_CHARS,
    ) -> None:
        self.store = store
        self.fetch_text = fetch_text
        self.batch_size = batch_size
        self.max_content_chars = max_content_chars

    async def _fetch_one(self, candidate: Candidate) -> FetchOutcome:
        try:
            text = await self.fetch_text(candidate.url)
        except Exception as e:  # noqa: BLE001
            return FetchOutcome(candidate=candidate, success=False, error=str(e) or type(e).__name__)
        if not text or not text.strip():
            return FetchOutcome(candidate=candidate, success=False, error="No article body extracted")
        if self.max_content_chars:
            text = truncate_content(text, self.max_content_chars)
        return FetchOutcome(candidate=candidate, success=True, text=text)

    async def run(self, candidates: Sequence[Candidate], target_count: int) -> List[EnrichedCandidate]:
        if target_count <= 0 or not candidates:
            return []

        logger.info("Fetching article bodies", extra={"candidates": len(candidates), "target": target_count})

        def reached_target(outcomes: List[FetchOutcome]) -> bool:
            return sum(1 for o in outcomes if o.success) >= target_count

        outcomes = await run_batched(candidates, self.batch_size, self._fetch_one, stop_when=reached_target)

        successes: List[EnrichedCandidate] = []
        failed = 0
        for outcome in outcomes:
            if outcome.success and outcome.text:
                successes.append(EnrichedCandidate(candidate=outcome.candidate, content=outcome.text))
                continue
            failed += 1
            error = outcome.error or "Unknown error"
            logger.warning("Article body fetch failed", extra={"url": outcome.candidate.url, "error": error})
            self.store.mark_url_as_failed(outcome.candidate.url, error)

        logger.info(
            "Article body fetch complete",
            extra={
                "total": len(candidates),
                "attempted": len(outcomes),
                "success": len(successes),
                "failed": failed,
            },
        )
        return successes[:target_count]
