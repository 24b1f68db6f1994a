"""Adaptive batch dispatch: the entry point of the dispatcher.

Resolves per-batch token budgets for the target model, splits the items under
both budgets, executes batches concurrently with staggered launches, and
merges whatever succeeded. Individual batch failures are isolated and
reported through ``DispatchResult.failed_batches``; they never abort sibling
batches and never raise out of ``dispatch``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

from batchdispatch.config.constants import DEFAULT_ITEM_OUTPUT_TOKENS
from batchdispatch.config.settings import DispatchSettings
from batchdispatch.core.budget import LimitsResolver, TokenBudget, budget_from_limits
from batchdispatch.core.executor import (
    InferenceCall,
    PromptBuilder,
    ResultParser,
    execute_batch_with_retry,
)
from batchdispatch.core.splitter import create_batches, describe_batches
from batchdispatch.infra.concurrency import TaskOutcome, run_concurrent_staggered
from batchdispatch.infra.logger import setup_logger
from batchdispatch.infra.progress import BatchProgress, ProgressCallback
from batchdispatch.llm.model_limits import ModelLimits, get_model_limits
from batchdispatch.llm.token_estimation import estimate_item_tokens, estimate_tokens

logger = setup_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

MergeFunction = Callable[[List[Dict[str, R]]], Dict[str, R]]


class DispatchState(str, Enum):
    """Lifecycle of one dispatch call."""

    IDLE = "idle"
    BUDGET_RESOLVED = "budget_resolved"
    SPLIT = "split"
    SINGLE_BATCH_EXECUTING = "single_batch_executing"
    MULTI_BATCH_DISPATCHING = "multi_batch_dispatching"
    MERGING = "merging"
    DONE = "done"


@dataclass
class DispatchOptions(Generic[T, R]):
    """Everything the caller supplies for one dispatch call.

    Attributes:
        items: Work items, in order.
        model: Target model id, used to resolve token limits.
        build_prompts: ``(batch) -> Prompts(system, user)``; called once per
            attempt and once up front on the first item to measure the system
            prompt overhead.
        parse_result: ``(raw_text, batch) -> {key: result}``; may raise to
            signal a malformed response (retried like a transient error).
        merge_results: Optional custom merge of all successful batch maps.
            Not used when the items fit in a single batch.
        estimate_item_tokens: Input cost of one item. Defaults to the token
            estimate of the item's JSON form.
        estimate_item_output_tokens: Output cost of one item. Defaults to a
            flat 300 tokens.
        inference_options: Passed to the inference call unchanged.
        on_progress: ``(completed, total, message)``; fire-and-forget.
        label: Name used in log lines (e.g. the feature being run).
    """

    items: Sequence[T]
    model: str
    build_prompts: PromptBuilder
    parse_result: ResultParser
    merge_results: Optional[MergeFunction] = None
    estimate_item_tokens: Optional[Callable[[T], int]] = None
    estimate_item_output_tokens: Optional[Callable[[T], int]] = None
    inference_options: Optional[Any] = None
    on_progress: Optional[ProgressCallback] = None
    label: str = "dispatch"


@dataclass
class DispatchResult(Generic[R]):
    """Best-effort union of all successful batch results."""

    results: Dict[str, R] = field(default_factory=dict)
    failed_batches: int = 0
    total_batches: int = 0

    @property
    def succeeded_batches(self) -> int:
        return self.total_batches - self.failed_batches

    @property
    def is_complete(self) -> bool:
        return self.failed_batches == 0

    @property
    def is_partial(self) -> bool:
        return 0 < self.failed_batches < self.total_batches


@dataclass
class DispatchPlan(Generic[T]):
    """Resolved limits, budgets and batch boundaries for one dispatch call."""

    limits: ModelLimits
    budget: TokenBudget
    batches: List[List[T]]


def merge_in_order(batch_results: List[Dict[str, R]]) -> Dict[str, R]:
    """Default merge: later maps overwrite earlier ones on key collision."""
    merged: Dict[str, R] = {}
    for batch_result in batch_results:
        merged.update(batch_result)
    return merged


def _default_output_estimate(_item: Any) -> int:
    return DEFAULT_ITEM_OUTPUT_TOKENS


class BatchDispatcher:
    """Splits work items into budget-respecting batches and runs them.

    Args:
        call_inference: The inference endpoint, e.g. ``provider.call_inference``.
        settings: Concurrency, stagger, retry and budget tunables. Read once
            at the start of every ``dispatch`` call.
        limits_resolver: Maps a model id to its ``ModelLimits``.
        token_estimator: Maps text to an approximate token count; used for
            the system prompt overhead.
    """

    def __init__(
        self,
        call_inference: InferenceCall,
        settings: Optional[DispatchSettings] = None,
        *,
        limits_resolver: LimitsResolver = get_model_limits,
        token_estimator: Callable[[str], int] = estimate_tokens,
    ) -> None:
        self.call_inference = call_inference
        self.settings = settings or DispatchSettings()
        self.limits_resolver = limits_resolver
        self.token_estimator = token_estimator

    def plan(self, options: DispatchOptions[T, R]) -> DispatchPlan[T]:
        """Resolve limits and budgets and split the items, without executing anything.

        Errors here (limits resolution, prompt building, estimators)
        propagate to the caller.
        """
        settings = self.settings
        limits = self.limits_resolver(options.model)
        budget = budget_from_limits(
            limits,
            input_ratio=settings.input_ratio,
            output_ratio=settings.output_ratio,
            hard_cap=settings.hard_cap_tokens,
        )
        if not options.items:
            return DispatchPlan(limits=limits, budget=budget, batches=[])
        # System prompt is resent with every batch; measure it once.
        sample_system, _ = options.build_prompts([options.items[0]])
        budget = budget.with_overhead(self.token_estimator(sample_system))

        batches = create_batches(
            options.items,
            options.estimate_item_tokens or estimate_item_tokens,
            options.estimate_item_output_tokens or _default_output_estimate,
            budget,
        )
        return DispatchPlan(limits=limits, budget=budget, batches=batches)

    async def dispatch(self, options: DispatchOptions[T, R]) -> DispatchResult[R]:
        """Run all items through the inference endpoint in batches."""
        label = options.label
        if not options.items:
            return DispatchResult(results={}, failed_batches=0, total_batches=0)

        settings = self.settings
        state = DispatchState.IDLE
        plan = self.plan(options)
        limits, budget, batches = plan.limits, plan.budget, plan.batches
        state = self._advance(label, state, DispatchState.BUDGET_RESOLVED)
        logger.info(
            f"[{label}] model={options.model}, ctx={limits.context_window}, "
            f"max_output={limits.max_output}, input_budget={budget.input_budget}, "
            f"output_budget={budget.output_budget}, "
            f"system_overhead={budget.system_overhead}, items={len(options.items)}"
        )
        state = self._advance(label, state, DispatchState.SPLIT)
        logger.info(f"[{label}] split into {len(batches)} batch(es) ({describe_batches(batches)} items)")

        total = len(batches)
        progress = BatchProgress(total, options.on_progress)

        def run_batch(batch: List[T]):
            return execute_batch_with_retry(
                batch,
                options.build_prompts,
                options.parse_result,
                self.call_inference,
                options.inference_options,
                policy=settings.retry,
                timeout=settings.batch_timeout,
            )

        if total == 1:
            state = self._advance(label, state, DispatchState.SINGLE_BATCH_EXECUTING)
            progress.report("Processing (1/1)...", completed=0)
            try:
                results = await run_batch(batches[0])
            except Exception as e:
                logger.error(f"[{label}] the only batch failed: {e}")
                progress.finalize("Failed")
                self._advance(label, state, DispatchState.DONE)
                return DispatchResult(results={}, failed_batches=1, total_batches=1)
            progress.finalize("Done")
            self._advance(label, state, DispatchState.DONE)
            return DispatchResult(results=results, failed_batches=0, total_batches=1)

        state = self._advance(label, state, DispatchState.MULTI_BATCH_DISPATCHING)

        def make_unit(index: int, batch: List[T]):
            async def unit() -> Dict[str, R]:
                progress.report(f"Processing batch {index + 1}/{total}...")
                result = await run_batch(batch)
                await progress.mark_completed(f"Batch {index + 1} done")
                return result

            return unit

        async def record_failure(outcome: TaskOutcome[Dict[str, R]]) -> None:
            if not outcome.succeeded:
                await progress.mark_failed()

        outcomes = await run_concurrent_staggered(
            [make_unit(i, batch) for i, batch in enumerate(batches)],
            concurrency=settings.concurrency,
            stagger=settings.stagger_seconds,
            on_result=record_failure,
        )

        state = self._advance(label, state, DispatchState.MERGING)
        successes: List[Dict[str, R]] = []
        failed = 0
        for outcome in outcomes:
            if outcome.succeeded:
                successes.append(outcome.value)
            else:
                failed += 1
                logger.error(
                    f"[{label}] batch {outcome.index + 1}/{total} "
                    f"({len(batches[outcome.index])} items) failed: {outcome.error}"
                )
        if failed:
            logger.warning(f"[{label}] {failed}/{total} batches failed, returning partial results")

        merge = options.merge_results or merge_in_order
        results = merge(successes)

        if failed:
            progress.finalize(f"Done ({failed} of {total} batches failed)")
        else:
            progress.finalize("Done (all batches succeeded)")
        self._advance(label, state, DispatchState.DONE)
        return DispatchResult(results=results, failed_batches=failed, total_batches=total)

    @staticmethod
    def _advance(label: str, current: DispatchState, new: DispatchState) -> DispatchState:
        logger.debug(f"[{label}] {current.value} -> {new.value}")
        return new


async def process_batched(
    options: DispatchOptions[T, R],
    call_inference: InferenceCall,
    settings: Optional[DispatchSettings] = None,
    **kwargs: Any,
) -> DispatchResult[R]:
    """Dispatch ``options`` once with a throwaway ``BatchDispatcher``.

    Extra keyword arguments (``limits_resolver``, ``token_estimator``) are
    forwarded to the dispatcher.
    """
    dispatcher = BatchDispatcher(call_inference, settings, **kwargs)
    return await dispatcher.dispatch(options)
