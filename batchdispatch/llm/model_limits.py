"""Model limit registry: context window and completion size per model.

Lookup order (first hit wins):
  1. Limits discovered at runtime from provider error messages
  2. ``model_limits`` overrides in model_config.yaml
  3. Static registry, exact match
  4. Static registry, prefix match (longest prefix first)
  5. Conservative default

Models with no registry entry and no override resolve to the conservative default.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from batchdispatch.config.service import get_config_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ModelLimits:
    """Hard limits of a text model, in tokens."""

    context_window: int
    max_output: int


@dataclass(frozen=True, slots=True)
class DiscoveredLimits:
    """Partial limits learned from a provider error."""

    context_window: Optional[int] = None
    max_output: Optional[int] = None
    discovered_at: float = field(default_factory=time.time)


DEFAULT_LIMITS = ModelLimits(context_window=32_000, max_output=4_096)

# Every key also matches as a prefix; the longest matching key wins.
STATIC_REGISTRY: Dict[str, ModelLimits] = {
    # DeepSeek
    "deepseek-v3": ModelLimits(128_000, 8_192),
    "deepseek-v3.2": ModelLimits(128_000, 8_192),
    "deepseek-chat": ModelLimits(128_000, 8_192),
    "deepseek-r1": ModelLimits(128_000, 16_384),
    "deepseek-reasoner": ModelLimits(128_000, 16_384),
    # GLM
    "glm-4.7": ModelLimits(200_000, 128_000),
    "glm-4.6v": ModelLimits(128_000, 8_192),
    "glm-4.5-flash": ModelLimits(128_000, 8_192),
    # Gemini
    "gemini-2.5-flash": ModelLimits(1_048_576, 65_536),
    "gemini-2.5-pro": ModelLimits(1_048_576, 65_536),
    "gemini-3-flash-preview": ModelLimits(1_048_576, 65_536),
    "gemini-3-pro-preview": ModelLimits(1_048_576, 65_536),
    "gemini-2.0-flash": ModelLimits(1_048_576, 8_192),
    # OpenAI
    "gpt-4o": ModelLimits(128_000, 16_384),
    "gpt-4.1": ModelLimits(1_000_000, 32_768),
    "gpt-5": ModelLimits(256_000, 128_000),
    # Conservative values
    "kimi-k2": ModelLimits(128_000, 8_192),
    "qwen3-max": ModelLimits(128_000, 8_192),
    "qwen3-max-preview": ModelLimits(128_000, 8_192),
    "minimax-m2.1": ModelLimits(128_000, 8_192),
    # Family prefixes
    "deepseek-": ModelLimits(128_000, 8_192),
    "gemini-": ModelLimits(1_048_576, 65_536),
    "glm-": ModelLimits(128_000, 8_192),
    "claude-": ModelLimits(200_000, 8_192),
    "gpt-": ModelLimits(128_000, 16_384),
    "doubao-": ModelLimits(32_000, 4_096),
}

_SORTED_KEYS = sorted(STATIC_REGISTRY, key=len, reverse=True)


def _norm(name: str) -> str:
    return name.strip().lower()


class DiscoveredLimitsCache:
    """Thread-safe in-memory store of limits learned from provider errors."""

    def __init__(self) -> None:
        self._entries: Dict[str, DiscoveredLimits] = {}
        self._lock = threading.Lock()

    def get(self, model: str) -> Optional[DiscoveredLimits]:
        with self._lock:
            return self._entries.get(_norm(model))

    def update(self, model: str, limits: DiscoveredLimits) -> DiscoveredLimits:
        """Merge ``limits`` into the entry for ``model`` and return the result."""
        key = _norm(model)
        with self._lock:
            current = self._entries.get(key)
            if current is None:
                merged = limits
            else:
                merged = DiscoveredLimits(
                    context_window=limits.context_window or current.context_window,
                    max_output=limits.max_output or current.max_output,
                    discovered_at=limits.discovered_at,
                )
            self._entries[key] = merged
            return merged

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


_discovery_cache = DiscoveredLimitsCache()


def get_discovery_cache() -> DiscoveredLimitsCache:
    return _discovery_cache


def set_discovery_cache(cache: DiscoveredLimitsCache) -> None:
    """Replace the process-wide discovery cache (e.g. with a persistent one)."""
    global _discovery_cache
    _discovery_cache = cache


def _coerce_limits(raw: Any, fallback: ModelLimits) -> Optional[ModelLimits]:
    if not isinstance(raw, dict):
        return None
    try:
        return ModelLimits(
            context_window=int(raw.get("context_window", fallback.context_window)),
            max_output=int(raw.get("max_output", fallback.max_output)),
        )
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed model_limits entry: {raw!r}")
        return None


def _config_overrides() -> Dict[str, Any]:
    # Overrides are optional; a broken or missing config must not block lookups.
    try:
        return get_config_service().get_model_config().get("model_limits") or {}
    except Exception as e:
        logger.debug(f"model_limits overrides unavailable: {e}")
        return {}


def lookup_static(model: str) -> ModelLimits:
    """Resolve limits from the static registry only (no cache, no config)."""
    m = _norm(model)
    if m in STATIC_REGISTRY:
        return STATIC_REGISTRY[m]
    for key in _SORTED_KEYS:
        if m.startswith(key):
            return STATIC_REGISTRY[key]
    return DEFAULT_LIMITS


def get_model_limits(model: str) -> ModelLimits:
    """Return the context window and completion limit for ``model``."""
    m = _norm(model)
    static = lookup_static(m)

    override = _coerce_limits(_config_overrides().get(m), static)
    base = override or static

    discovered = _discovery_cache.get(m)
    if discovered is not None:
        return replace(
            base,
            context_window=discovered.context_window or base.context_window,
            max_output=discovered.max_output or base.max_output,
        )
    return base


# -------- Error-driven discovery --------

_RANGE_RE = re.compile(r"valid\s+range.*?\[\s*\d+\s*,\s*(\d+)\s*\]", re.IGNORECASE)
_LTE_RE = re.compile(
    r"max_tokens.*?(?:less than or equal to|<=|不超过|上限为?)\s*(\d{3,6})", re.IGNORECASE
)
_GENERIC_MAX_RE = re.compile(r"max_tokens.*?\b(\d{3,6})\b", re.IGNORECASE)
_CONTEXT_RE = re.compile(r"context.*?length.*?(\d{4,7})", re.IGNORECASE)
_MAXIMUM_TOKENS_RE = re.compile(r"maximum.*?(\d{4,7})\s*tokens", re.IGNORECASE)


def parse_model_limits_from_error(error_text: str) -> Optional[DiscoveredLimits]:
    """Extract model limits from a provider's "bad request" message.

    Recognizes messages such as::

        Invalid max_tokens value, the valid range of max_tokens is [1, 8192]
        max_tokens must be less than or equal to 8192
        max_tokens 参数不超过8192
        This model's maximum context length is 128000 tokens

    Returns None when no limit can be found.
    """
    max_output: Optional[int] = None
    context_window: Optional[int] = None

    for pattern in (_RANGE_RE, _LTE_RE, _GENERIC_MAX_RE):
        match = pattern.search(error_text)
        if match:
            max_output = int(match.group(1))
            break

    for pattern in (_CONTEXT_RE, _MAXIMUM_TOKENS_RE):
        match = pattern.search(error_text)
        if match:
            context_window = int(match.group(1))
            break

    if max_output is None and context_window is None:
        return None
    return DiscoveredLimits(context_window=context_window, max_output=max_output)


def cache_discovered_limits(model: str, limits: DiscoveredLimits) -> DiscoveredLimits:
    """Record limits learned for ``model`` in the active discovery cache."""
    merged = _discovery_cache.update(model, limits)
    parts = []
    if limits.max_output is not None:
        parts.append(f"max_output={limits.max_output}")
    if limits.context_window is not None:
        parts.append(f"context_window={limits.context_window}")
    logger.info(f"Learned limits for {model}: {', '.join(parts)}")
    return merged
