from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def run_batched(
    items: Sequence[T],
    batch_size: int,
    worker: Callable[[T], Awaitable[R]],
    stop_when: Optional[Callable[[List[R]], bool]] = None,
) -> List[R]:
    """Run `worker` over `items` in sequential windows of `batch_size`.

    Every window is dispatched at once and awaited as a whole before the next
    one starts. The result at position i always belongs to items[i], whatever
    order the awaits finish in. After each window `stop_when` sees the results
    gathered so far; returning True leaves the remaining items untouched, so
    the returned list may be shorter than `items`.

    A worker exception propagates once its whole window has settled; when
    several workers fail, the one with the lowest index wins.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    results: List[R] = []
    for start in range(0, len(items), batch_size):
        window = items[start : start + batch_size]
        settled = await asyncio.gather(*(worker(item) for item in window), return_exceptions=True)
        for outcome in settled:
            if isinstance(outcome, BaseException):
                raise outcome
        results.extend(settled)  # type: ignore[arg-type]
        logger.debug(
            "Batch complete",
            extra={"processed": min(start + batch_size, len(items)), "total": len(items)},
        )
        if stop_when is not None and stop_when(results):
            break
    return results
