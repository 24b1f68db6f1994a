"""Infrastructure utilities package.

Provides logging, staggered concurrency, and progress tracking.
"""

# Avoid circular imports - use direct imports instead of re-exporting
__all__ = [
    "setup_logger",
    "run_concurrent_staggered",
    "TaskOutcome",
    "ProgressState",
    "BatchProgress",
]
