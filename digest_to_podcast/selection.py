from __future__ import annotations

import json
import logging
import math
import os
import re
from typing import Any, Callable, List, Optional, Sequence, Tuple

from openai import AsyncOpenAI

from .config import LLMConfig, UserProfile
from .models import Candidate, SelectionOutcome


logger = logging.getLogger(__name__)


# A matcher maps a model-returned identifier to one of the offered candidates.
Matcher = Callable[[str, Sequence[Candidate]], Optional[Candidate]]


def match_exact(raw_id: str, candidates: Sequence[Candidate]) -> Optional[Candidate]:
    for c in candidates:
        if c.id == raw_id:
            return c
    return None


def match_trimmed(raw_id: str, candidates: Sequence[Candidate]) -> Optional[Candidate]:
    return match_exact(raw_id.strip(), candidates)


def match_index(raw_id: str, candidates: Sequence[Candidate]) -> Optional[Candidate]:
    """Interpret "1".."n" as a position in the list shown to the model."""
    value = raw_id.strip()
    if not value.isdigit():
        return None
    pos = int(value)
    if 1 <= pos <= len(candidates):
        return candidates[pos - 1]
    return None


_ID_PREFIX = re.compile(r"^\[?\s*ID:\s*(.+?)\s*\]?$", re.IGNORECASE)


def match_id_prefix(raw_id: str, candidates: Sequence[Candidate]) -> Optional[Candidate]:
    m = _ID_PREFIX.match(raw_id.strip())
    if not m:
        return None
    return match_exact(m.group(1), candidates)


def match_prefix(raw_id: str, candidates: Sequence[Candidate]) -> Optional[Candidate]:
    needle = raw_id.strip().lower()
    if not needle:
        return None
    for c in candidates:
        cid = c.id.lower()
        if cid.startswith(needle) or needle.startswith(cid):
            return c
    return None


def match_title(raw_id: str, candidates: Sequence[Candidate]) -> Optional[Candidate]:
    # Last resort: the model echoed (part of) a title instead of the id
    if not raw_id.strip():
        return None
    for c in candidates:
        head = c.title[:20]
        if raw_id in c.title or (head and head in raw_id):
            return c
    return None


DEFAULT_MATCHERS: Tuple[Matcher, ...] = (
    match_exact,
    match_trimmed,
    match_index,
    match_id_prefix,
    match_prefix,
    match_title,
)


def resolve_candidate(
    raw_id: str,
    candidates: Sequence[Candidate],
    matchers: Sequence[Matcher] = DEFAULT_MATCHERS,
) -> Optional[Candidate]:
    for matcher in matchers:
        found = matcher(raw_id, candidates)
        if found is not None:
            if matcher is not match_exact:
                logger.debug(
                    "Resolved selection id with fallback matcher",
                    extra={"raw_id": raw_id, "id": found.id, "matcher": matcher.__name__},
                )
            return found
    return None


_JSON_BLOCK = re.compile(r"```json\s*([\s\S]*?)\s*```")


def parse_selection_response(
    text: str,
    candidates: Sequence[Candidate],
    matchers: Sequence[Matcher] = DEFAULT_MATCHERS,
) -> SelectionOutcome:
    """Turn a model reply into an ordered selection.

    Accepts either a bare JSON object or one wrapped in a ```json fence.
    Unknown ids are logged and skipped; an unparseable reply selects nothing.
    """
    m = _JSON_BLOCK.search(text or "")
    payload = m.group(1) if m else (text or "")
    if not payload.strip():
        logger.warning("Empty selection response")
        return SelectionOutcome()
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        logger.error("Could not parse selection response", extra={"error": str(e)})
        return SelectionOutcome()

    items = data.get("selectedArticles", []) if isinstance(data, dict) else []
    outcome = SelectionOutcome()
    for item in items:
        if not isinstance(item, dict) or item.get("id") is None:
            continue
        raw_id = str(item["id"])
        found = resolve_candidate(raw_id, candidates, matchers)
        if found is None:
            logger.warning(
                "Selected id not found among candidates",
                extra={"raw_id": raw_id, "sample_ids": [c.id for c in candidates[:5]]},
            )
            continue
        if found.id in outcome.reasons:
            continue
        outcome.selected.append(found)
        outcome.reasons[found.id] = str(item.get("reason", ""))
        try:
            outcome.priorities[found.id] = int(item.get("priority", len(outcome.selected)))
        except (TypeError, ValueError):
            outcome.priorities[found.id] = len(outcome.selected)

    # stable: equal priorities keep reply order
    outcome.selected.sort(key=lambda c: outcome.priorities.get(c.id, 999))
    return outcome


def selection_target(max_articles: int, multiplier: float) -> int:
    return int(math.ceil(max_articles * multiplier))


SELECTION_SYSTEM_PROMPT = "You are an expert article curator. Answer in JSON."


def build_selection_prompt(candidates: Sequence[Candidate], profile: UserProfile, target_count: int) -> str:
    listing: List[str] = []
    for i, c in enumerate(candidates, start=1):
        lines = [
            f"{i}. [ID: {c.id}]",
            f"   Title: {c.title}",
            f"   Source: {c.display_source}",
            f"   Description: {(c.description or '(none)')[:200]}",
        ]
        for key in ("bookmarks", "points"):
            if c.metadata.get(key):
                lines.append(f"   {key.capitalize()}: {c.metadata[key]}")
        listing.append("\n".join(lines))

    extra = f"## Additional criteria\n{profile.selection_prompt}\n\n" if profile.selection_prompt else ""
    return (
        "Pick the most interesting articles for this listener.\n\n"
        f"## Interests\n{', '.join(profile.interests) or '(none)'}\n\n"
        f"## Excluded topics\n{', '.join(profile.exclude_topics) or '(none)'}\n\n"
        f"## Excluded keywords\n{', '.join(profile.exclude_keywords) or '(none)'}\n\n"
        f"## Preferred sources\n{', '.join(profile.preferred_sources) or '(none)'}\n\n"
        f"## How many\nUp to {target_count}, ordered by priority.\n\n"
        f"{extra}"
        "## Articles\n"
        + "\n\n".join(listing)
        + "\n\n## Output\n"
        'Return {"selectedArticles": [{"id": "...", "priority": 1, "reason": "..."}]}.\n'
        "- id: the exact value shown in [ID: ...], not the list number\n"
        "- priority: 1 is highest, consecutive integers\n"
        "- never pick articles matching excluded topics or keywords\n"
        "- pick extra candidates; some bodies may fail to download\n"
    )


class LLMSelector:
    """Asks a chat model to rank candidates against the listener profile."""

    def __init__(
        self,
        cfg: LLMConfig,
        multiplier: float = 1.5,
        client: Optional[Any] = None,
        matchers: Sequence[Matcher] = DEFAULT_MATCHERS,
    ) -> None:
        self.model = cfg.model
        self.multiplier = multiplier
        self.matchers = matchers
        if client is None:
            api_key = os.environ.get(cfg.api_key_env)
            if not api_key:
                raise RuntimeError(f"LLM env var '{cfg.api_key_env}' not set")
            client = AsyncOpenAI(api_key=api_key)
        self.client = client

    async def select(self, candidates: Sequence[Candidate], profile: UserProfile) -> SelectionOutcome:
        if not candidates:
            return SelectionOutcome()
        target = selection_target(profile.max_articles_per_run, self.multiplier)
        prompt = build_selection_prompt(candidates, profile, target)
        logger.debug("Selecting articles", extra={"candidates": len(candidates), "target": target})

        resp = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SELECTION_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            response_format={"type": "json_object"},
        )
        content = resp.choices[0].message.content if resp and resp.choices else None
        if not content:
            raise RuntimeError("Empty selection response from LLM")

        outcome = parse_selection_response(content, candidates, self.matchers)
        logger.info("Selection complete", extra={"selected": len(outcome.selected), "candidates": len(candidates)})
        return outcome

