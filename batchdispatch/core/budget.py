"""Token budget resolution for a target model."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Callable

from batchdispatch.config.constants import (
    HARD_CAP_TOKENS,
    INPUT_BUDGET_RATIO,
    OUTPUT_BUDGET_RATIO,
)
from batchdispatch.llm.model_limits import ModelLimits, get_model_limits

LimitsResolver = Callable[[str], ModelLimits]


@dataclass(frozen=True, slots=True)
class TokenBudget:
    """Per-batch token ceilings.

    ``system_overhead`` is the cost of the system prompt, which is resent with
    every batch and therefore seeds each batch's input total.
    """

    input_budget: int
    output_budget: int
    system_overhead: int = 0

    def with_overhead(self, system_overhead: int) -> TokenBudget:
        return replace(self, system_overhead=system_overhead)


def resolve_token_budget(
    model: str,
    limits_resolver: LimitsResolver = get_model_limits,
    *,
    input_ratio: float = INPUT_BUDGET_RATIO,
    output_ratio: float = OUTPUT_BUDGET_RATIO,
    hard_cap: int = HARD_CAP_TOKENS,
) -> TokenBudget:
    """Derive input/output budgets for ``model``.

    ``input_budget = min(floor(context_window * input_ratio), hard_cap)`` and
    ``output_budget = floor(max_output * output_ratio)``. The system overhead
    is measured separately by the orchestrator.
    """
    return budget_from_limits(
        limits_resolver(model),
        input_ratio=input_ratio,
        output_ratio=output_ratio,
        hard_cap=hard_cap,
    )


def budget_from_limits(
    limits: ModelLimits,
    *,
    input_ratio: float = INPUT_BUDGET_RATIO,
    output_ratio: float = OUTPUT_BUDGET_RATIO,
    hard_cap: int = HARD_CAP_TOKENS,
) -> TokenBudget:
    """Apply the budget ratios and hard cap to already-resolved limits."""
    input_budget = min(math.floor(limits.context_window * input_ratio), hard_cap)
    output_budget = math.floor(limits.max_output * output_ratio)
    return TokenBudget(input_budget=input_budget, output_budget=output_budget)
