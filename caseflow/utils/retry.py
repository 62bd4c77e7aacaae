from __future__ import annotations

import asyncio
import random


def compute_backoff(attempt: int, base: float, jitter: float | None = None) -> float:
    """Compute exponential backoff with jitter."""
    if base <= 0:
        return 0.0
    delay = base * (2 ** attempt)
    return delay + random.uniform(0, base if jitter is None else jitter)


async def sleep_before_retry(attempt: int, base: float) -> None:
    """Sleep for computed backoff delay before retrying."""
    delay = compute_backoff(attempt, base)
    if delay:
        await asyncio.sleep(delay)
