"""Concurrency utilities for async task management.

Provides semaphore-based concurrency control with staggered launches for
async operations, returning one settled outcome per unit of work.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class TaskOutcome(Generic[T]):
    """Settled outcome of one unit of work: either a value or an error."""

    index: int
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


async def run_concurrent_staggered(
    units: Sequence[Callable[[], Awaitable[T]]],
    concurrency: int = 1,
    stagger: float = 0,
    on_result: Optional[Callable[[TaskOutcome[T]], Awaitable[None]]] = None,
) -> List[TaskOutcome[T]]:
    """
    Run zero-argument async callables concurrently with staggered starts.

    Unit ``i`` waits ``i * stagger`` seconds before competing for one of
    ``concurrency`` slots, so consecutive launches are at least ``stagger``
    apart and never more than ``concurrency`` units run at once.

    Args:
        units: Zero-argument async callables to execute.
        concurrency: Maximum number of concurrently running units (min 1).
        stagger: Delay in seconds between consecutive unit launches.
        on_result: Optional async callback invoked with each outcome as soon
            as it settles.

    Returns:
        One TaskOutcome per unit, in input order. Unit failures are captured
        in the outcome and never raised.
    """
    semaphore = asyncio.Semaphore(max(1, int(concurrency)))

    async def worker(index: int, unit: Callable[[], Awaitable[T]]) -> TaskOutcome[T]:
        if stagger > 0 and index > 0:
            await asyncio.sleep(index * stagger)
        async with semaphore:
            try:
                outcome: TaskOutcome[T] = TaskOutcome(index=index, value=await unit())
            except Exception as e:
                logger.debug(f"Unit {index} failed: {e}")
                outcome = TaskOutcome(index=index, error=e)
        if on_result is not None:
            try:
                await on_result(outcome)
            except Exception as cb_exc:
                logger.error(f"on_result callback failed for unit {index}: {cb_exc}")
        return outcome

    tasks = [asyncio.create_task(worker(i, unit)) for i, unit in enumerate(units)]
    try:
        return list(await asyncio.gather(*tasks))
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        raise

