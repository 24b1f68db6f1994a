"""Dispatch settings value object.

Settings are read once by the caller (typically from dispatch_config.yaml via
the ConfigService) and passed into the dispatcher explicitly.

Expected YAML layout::

    dispatch:
      concurrency: 3
      stagger_seconds: 5
      batch_timeout_seconds: null
      budget:
        hard_cap_tokens: 60000
        input_ratio: 0.6
        output_ratio: 0.8
      retry:
        max_retries: 2
        base_delay_seconds: 3
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from batchdispatch.config.constants import (
    DEFAULT_CONCURRENCY,
    DEFAULT_STAGGER_SECONDS,
    HARD_CAP_TOKENS,
    INPUT_BUDGET_RATIO,
    MAX_BATCH_RETRIES,
    OUTPUT_BUDGET_RATIO,
    RETRY_BASE_DELAY,
)
from batchdispatch.config.service import get_config_service
from batchdispatch.core.executor import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchSettings:
    """Tunables for one dispatch call."""

    concurrency: int = DEFAULT_CONCURRENCY
    stagger_seconds: float = DEFAULT_STAGGER_SECONDS
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    batch_timeout: Optional[float] = None
    hard_cap_tokens: int = HARD_CAP_TOKENS
    input_ratio: float = INPUT_BUDGET_RATIO
    output_ratio: float = OUTPUT_BUDGET_RATIO

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be a positive integer, got {self.concurrency}")
        if self.stagger_seconds < 0:
            raise ValueError(f"stagger_seconds must be >= 0, got {self.stagger_seconds}")
        if not 0 < self.input_ratio <= 1 or not 0 < self.output_ratio <= 1:
            raise ValueError("budget ratios must be in (0, 1]")

    @classmethod
    def from_config(cls, dispatch_config: Dict[str, Any]) -> DispatchSettings:
        """Build settings from the ``dispatch`` section of dispatch_config.yaml.

        Invalid values fall back to defaults with a warning.
        """
        section = (dispatch_config.get("dispatch", {}) or {})
        budget = section.get("budget", {}) or {}
        retry = section.get("retry", {}) or {}

        timeout = _coerce(section.get("batch_timeout_seconds"), float, None, "batch_timeout_seconds")
        if timeout is not None and timeout <= 0:
            timeout = None

        return cls(
            concurrency=max(1, _coerce(section.get("concurrency"), int, DEFAULT_CONCURRENCY, "concurrency")),
            stagger_seconds=max(
                0.0,
                _coerce(section.get("stagger_seconds"), float, DEFAULT_STAGGER_SECONDS, "stagger_seconds"),
            ),
            retry=RetryPolicy(
                max_retries=max(0, _coerce(retry.get("max_retries"), int, MAX_BATCH_RETRIES, "retry.max_retries")),
                base_delay=max(
                    0.0,
                    _coerce(retry.get("base_delay_seconds"), float, RETRY_BASE_DELAY, "retry.base_delay_seconds"),
                ),
            ),
            batch_timeout=timeout,
            hard_cap_tokens=_coerce(budget.get("hard_cap_tokens"), int, HARD_CAP_TOKENS, "budget.hard_cap_tokens"),
            input_ratio=_ratio(budget.get("input_ratio"), INPUT_BUDGET_RATIO, "budget.input_ratio"),
            output_ratio=_ratio(budget.get("output_ratio"), OUTPUT_BUDGET_RATIO, "budget.output_ratio"),
        )

    @classmethod
    def load(cls) -> DispatchSettings:
        """Build settings from the process-wide ConfigService."""
        return cls.from_config(get_config_service().get_dispatch_config())


def _coerce(value: Any, cast: Callable[[Any], Any], default: Any, name: str) -> Any:
    if value is None:
        return default
    try:
        return cast(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid dispatch setting {name}={value!r}; using {default!r}")
        return default


def _ratio(value: Any, default: float, name: str) -> float:
    ratio = _coerce(value, float, default, name)
    if not 0 < ratio <= 1:
        logger.warning(f"Dispatch setting {name}={ratio!r} out of range (0, 1]; using {default!r}")
        return default
    return ratio
