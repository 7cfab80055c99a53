"""Batch-wise concurrent execution with a rate-limiting pause between batches."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

AsyncTask = Callable[[], Awaitable[T]]


async def concurrent_execute(
    tasks: Sequence[AsyncTask[T]],
    max_concurrent: int,
    inter_batch_delay_ms: int,
) -> list[T]:
    """Run *tasks* at most *max_concurrent* at a time and return results in input order.

    Tasks are started in batches. Each batch is awaited in full before the next
    one starts, and the next batch never starts sooner than
    *inter_batch_delay_ms* after the previous one was dispatched.

    The first failure is raised as-is. Siblings already running in the failing
    batch are not cancelled; they settle on their own. Later batches are never
    started and no partial results are returned.
    """
    if not tasks:
        return []

    batch_size = max(1, int(max_concurrent))
    delay_s = max(0, int(inter_batch_delay_ms)) / 1000
    loop = asyncio.get_running_loop()
    results: list[T] = []

    for offset in range(0, len(tasks), batch_size):
        batch = tasks[offset : offset + batch_size]
        dispatched_at = loop.time()
        logger.debug(
            "Dispatching batch of %d task(s) (%d/%d)",
            len(batch),
            offset + len(batch),
            len(tasks),
        )
        results.extend(await asyncio.gather(*(task() for task in batch)))

        if offset + batch_size < len(tasks):
            remaining = delay_s - (loop.time() - dispatched_at)
            if remaining > 0:
                await asyncio.sleep(remaining)

    return results
