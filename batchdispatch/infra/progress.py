"""Progress tracking utilities for batch dispatch.

Provides a lock-guarded completed counter and fire-and-forget progress
reporting for concurrently executing batches.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from batchdispatch.infra.logger import setup_logger

logger = setup_logger(__name__)

ProgressCallback = Callable[[int, int, str], None]


@dataclass
class ProgressState:
    """Track progress of a dispatch call."""

    total: int
    completed: int = 0
    failed: int = 0
    start_time: Optional[datetime] = None

    def __post_init__(self):
        if self.start_time is None:
            self.start_time = datetime.now()

    @property
    def remaining(self) -> int:
        """Get number of batches not yet settled."""
        return self.total - self.completed - self.failed

    @property
    def elapsed_seconds(self) -> float:
        """Get elapsed time in seconds."""
        if self.start_time is None:
            return 0.0
        return (datetime.now() - self.start_time).total_seconds()

    def format_summary(self) -> str:
        """Format progress summary string."""
        summary = f"{self.completed}/{self.total} batches completed"
        if self.failed > 0:
            summary += f", {self.failed} failed"
        summary += f" [{self.elapsed_seconds:.1f}s elapsed]"
        return summary


class BatchProgress:
    """Async-safe progress reporter for a single dispatch call.

    The completed counter only moves forward. Callback failures are logged
    and never reach the dispatcher.
    """

    def __init__(self, total: int, on_progress: Optional[ProgressCallback] = None):
        self.state = ProgressState(total=total)
        self.on_progress = on_progress
        self._lock = asyncio.Lock()

    @property
    def completed(self) -> int:
        return self.state.completed

    def report(self, message: str, completed: Optional[int] = None) -> None:
        """Invoke the progress callback with the current (or given) count."""
        if self.on_progress is None:
            return
        count = self.state.completed if completed is None else completed
        try:
            self.on_progress(count, self.state.total, message)
        except Exception as e:
            logger.error(f"Progress callback failed: {e}")

    async def mark_completed(self, message: str) -> int:
        """Increment the completed count and report it."""
        async with self._lock:
            self.state.completed += 1
            count = self.state.completed
        self.report(message, completed=count)
        return count

    async def mark_failed(self) -> None:
        """Record a failed batch without moving the completed count."""
        async with self._lock:
            self.state.failed += 1

    def finalize(self, message: str) -> None:
        """Report the terminal state with every batch accounted for."""
        self.report(message, completed=self.state.total)
