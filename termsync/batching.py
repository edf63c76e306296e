"""Driving large changesets through the rate-limited executor in bounded batches."""
import math
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from termsync.errors import BatchFailedError
from termsync.progress import SyncObserver
from termsync.rate_limit import RateLimitedExecutor

T = TypeVar("T")
R = TypeVar("R")


def chunk(items: Sequence[T], batch_size: int) -> List[List[T]]:
    """Split ``items`` into consecutive chunks of at most ``batch_size``."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


def batch_count(item_count: int, batch_size: int) -> int:
    return math.ceil(item_count / batch_size) if item_count else 0


class BatchOrchestrator:
    """
    Feeds chunks of a changeset through a RateLimitedExecutor, strictly in order.

    N items with batch size B cost exactly ceil(N / B) executor calls, so n
    batches take at least (n - 1) * min_delay_ms of wall-clock time.
    """

    def __init__(self, executor: RateLimitedExecutor, observer: Optional[SyncObserver] = None):
        self.executor = executor
        self.observer = observer or SyncObserver()

    async def run(
            self,
            items: Sequence[T],
            batch_size: int,
            operation: Callable[[List[T]], Awaitable[R]],
            min_delay_ms: int,
            phase: str = "batch"
    ) -> List[R]:
        """
        Run ``operation`` once per chunk and collect the results in order.

        Raises:
            BatchFailedError: When a chunk fails; ``completed`` holds the
                results of the chunks processed before it.
        """
        batches = chunk(items, batch_size)
        total = len(batches)
        results: List[R] = []
        if not total:
            return results

        self.observer.on_phase_start(phase, len(items), total)
        for index, batch in enumerate(batches, start=1):
            self.observer.on_batch(phase, index, total)
            try:
                result = await self.executor.run(lambda b=batch: operation(b), min_delay_ms)
            except Exception as exc:
                raise BatchFailedError(
                    f"Batch {index}/{total} of {phase} failed: {exc}", list(results), index, total
                ) from exc
            results.append(result)
        self.observer.on_phase_end(phase, total)
        return results
