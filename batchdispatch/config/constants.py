"""Centralized constants used across the dispatcher.

Defines token budget ratios, retry defaults, and scheduling defaults.
"""

from __future__ import annotations

# Per-batch input ceiling, applied regardless of the model's advertised context
# window
HARD_CAP_TOKENS = 60_000

# Share of the context window a single batch may occupy
INPUT_BUDGET_RATIO = 0.6

# Share of max completion tokens a single batch may request; the rest is
# headroom for JSON/formatting overhead in the response
OUTPUT_BUDGET_RATIO = 0.8

# Retries per batch (total attempts = 1 + MAX_BATCH_RETRIES)
MAX_BATCH_RETRIES = 2

# Base delay for exponential backoff between batch attempts (seconds)
RETRY_BASE_DELAY = 3.0

# Delay between consecutive batch launches (seconds)
DEFAULT_STAGGER_SECONDS = 5.0

# Default number of batches in flight
DEFAULT_CONCURRENCY = 1

# Default output estimate per item when the caller supplies none
DEFAULT_ITEM_OUTPUT_TOKENS = 300

# Pre-flight guard: refuse requests whose input exceeds this share of the
# context window
CONTEXT_GUARD_RATIO = 0.9

# Characters per token used by the conservative estimator
CHARS_PER_TOKEN = 1.5
