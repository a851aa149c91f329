# concurrency.py
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from logging_utils import get_logger

T = TypeVar("T")
R = TypeVar("R")

logger = get_logger(__name__)


async def run_with_concurrency(
    items: Sequence[T],
    fn: Callable[[T], Awaitable[R]],
    limit: int,
    default: Optional[R] = None,
) -> List[Optional[R]]:
    """
    Run ``fn`` over ``items`` with at most ``limit`` calls in flight.

    results[i] always belongs to items[i]. ``fn`` is expected to map its own
    failures to a neutral value; anything it still raises is logged and
    replaced by ``default`` so the rest of the batch completes.
    """
    n = len(items)
    results: List[Optional[R]] = [default] * n
    if n == 0:
        return results

    next_index = 0

    async def worker() -> None:
        nonlocal next_index
        # single-threaded event loop: claiming an index cannot race
        while next_index < n:
            i = next_index
            next_index += 1
            try:
                results[i] = await fn(items[i])
            except Exception as exc:
                logger.warning("limited_task_failed", index=i, error=str(exc))
                results[i] = default

    workers = [asyncio.create_task(worker()) for _ in range(min(max(1, int(limit)), n))]
    await asyncio.gather(*workers)
    return results
