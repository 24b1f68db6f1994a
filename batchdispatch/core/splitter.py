"""Dual-budget batch splitting.

Greedy, order-preserving bin packing under an input-token budget and an
output-token budget enforced at the same time.
"""

from __future__ import annotations

from typing import Callable, List, Sequence, TypeVar

from batchdispatch.core.budget import TokenBudget

T = TypeVar("T")


def create_batches(
    items: Sequence[T],
    item_input_tokens: Callable[[T], int],
    item_output_tokens: Callable[[T], int],
    budget: TokenBudget,
) -> List[List[T]]:
    """Partition ``items`` into consecutive batches that respect ``budget``.

    Each batch starts with ``budget.system_overhead`` input tokens already
    spent. An item that would push either running total over its budget
    closes the current batch first. An item too large for an empty batch
    still gets a batch of its own: batches are never empty and no item is
    dropped.

    Args:
        items: Work items in submission order.
        item_input_tokens: Estimated input cost of one item.
        item_output_tokens: Estimated output cost of one item.
        budget: Input/output budgets and the per-batch system overhead.

    Returns:
        Batches whose concatenation equals ``items``.
    """
    batches: List[List[T]] = []
    current: List[T] = []
    current_input = budget.system_overhead
    current_output = 0

    for item in items:
        item_input = item_input_tokens(item)
        item_output = item_output_tokens(item)

        exceeds_input = current_input + item_input > budget.input_budget
        exceeds_output = current_output + item_output > budget.output_budget

        if current and (exceeds_input or exceeds_output):
            batches.append(current)
            current = []
            current_input = budget.system_overhead
            current_output = 0

        current.append(item)
        current_input += item_input
        current_output += item_output

    if current:
        batches.append(current)

    return batches


def describe_batches(batches: Sequence[Sequence[object]]) -> str:
    """Return a compact size summary such as ``"4, 4, 2"``."""
    return ", ".join(str(len(batch)) for batch in batches)
