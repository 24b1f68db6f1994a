"""Token estimation and text truncation helpers.

The estimator ``len(text) / 1.5`` overshoots for both CJK text (roughly one
token per character) and Latin text/JSON (roughly one token per three to four
characters).
"""

from __future__ import annotations

import json
import math
from typing import Any

from batchdispatch.config.constants import CHARS_PER_TOKEN

DEFAULT_TRUNCATION_HINT = "...[truncated]"

_SENTENCE_ENDS = ("。", "！", "？", ". ")


def estimate_tokens(text: str) -> int:
    """Return an approximate token count for ``text``."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_item_tokens(item: Any) -> int:
    """Default per-item input estimator: the token cost of the item's JSON form."""
    return estimate_tokens(json.dumps(item, ensure_ascii=False, default=str))


def safe_truncate(
    text: str,
    max_length: int,
    hint: str = DEFAULT_TRUNCATION_HINT,
) -> str:
    """Truncate ``text`` to ``max_length`` characters without cutting mid-sentence.

    Prefers the last newline, then the last sentence end, as long as the cut
    keeps more than 80% of the available space; otherwise cuts hard. ``hint``
    is appended so the model knows the content is incomplete.
    """
    if len(text) <= max_length:
        return text

    budget = max_length - len(hint)
    if budget <= 0:
        return text[:max_length]

    sliced = text[:budget]
    threshold = budget * 0.8

    last_newline = sliced.rfind("\n")
    if last_newline > threshold:
        return sliced[:last_newline] + hint

    last_sentence_end = max(sliced.rfind(mark) for mark in _SENTENCE_ENDS)
    if last_sentence_end > threshold:
        return sliced[: last_sentence_end + 1] + hint

    return sliced + hint
