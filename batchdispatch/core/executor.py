"""Single-batch execution with bounded retry.

Each attempt rebuilds the prompts, calls the inference endpoint, and parses
the raw text into a per-item result map. Transient failures (including parse
failures) are retried with exponential backoff; budget-exceeded failures are
surfaced on the first attempt.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional, Protocol, TypeVar

import tenacity

from batchdispatch.config.constants import MAX_BATCH_RETRIES, RETRY_BASE_DELAY
from batchdispatch.llm.errors import ErrorKind

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class Prompts(NamedTuple):
    """System and user prompt for one batch."""

    system: str
    user: str


BatchResult = Dict[str, R]
PromptBuilder = Callable[[List[T]], Prompts]
ResultParser = Callable[[str, List[T]], Dict[str, R]]


class InferenceCall(Protocol):
    """Awaitable text-generation call: (system prompt, user prompt, options) -> text."""

    def __call__(
        self,
        system_prompt: str,
        user_prompt: str,
        options: Optional[Any] = None,
    ) -> Awaitable[str]: ...


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry bounds for one batch.

    Waits ``base_delay * 2 ** attempt`` seconds after failed attempt
    ``attempt`` (zero-based).
    """

    max_retries: int = MAX_BATCH_RETRIES
    base_delay: float = RETRY_BASE_DELAY

    @property
    def attempts(self) -> int:
        return 1 + max(0, self.max_retries)


def classify_error(exc: BaseException) -> ErrorKind:
    """Return the error kind carried by ``exc``; untagged errors are transient."""
    kind = getattr(exc, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind
    return ErrorKind.TRANSIENT


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, asyncio.CancelledError):
        return False
    return classify_error(exc) is not ErrorKind.BUDGET_EXCEEDED


async def execute_batch_with_retry(
    batch: List[T],
    build_prompts: PromptBuilder,
    parse_result: ResultParser,
    call_inference: InferenceCall,
    options: Optional[Any] = None,
    *,
    policy: RetryPolicy = RetryPolicy(),
    timeout: Optional[float] = None,
) -> Dict[str, R]:
    """Execute one batch, retrying transient failures.

    Args:
        batch: Items submitted together in one request.
        build_prompts: Returns ``(system_prompt, user_prompt)`` for the batch.
        parse_result: Turns the raw response text into ``{key: result}``.
        call_inference: The inference endpoint.
        options: Passed through to ``call_inference`` unchanged.
        policy: Attempt ceiling and backoff base.
        timeout: Optional per-attempt timeout in seconds; a timeout counts as
            a transient failure.

    Returns:
        The parsed result map of the first successful attempt.

    Raises:
        The last attempt's exception once retries are exhausted, or the first
        budget-exceeded exception immediately.
    """

    async def attempt_once() -> Dict[str, R]:
        system_prompt, user_prompt = build_prompts(batch)
        call = call_inference(system_prompt, user_prompt, options)
        raw = await (asyncio.wait_for(call, timeout) if timeout else call)
        return parse_result(raw, batch)

    retrying = tenacity.AsyncRetrying(
        retry=tenacity.retry_if_exception(is_retryable),
        wait=tenacity.wait_exponential(multiplier=policy.base_delay, exp_base=2),
        stop=tenacity.stop_after_attempt(policy.attempts),
        before_sleep=_log_retry(policy, len(batch)),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await attempt_once()


def _log_retry(policy: RetryPolicy, batch_size: int) -> Callable[[tenacity.RetryCallState], None]:
    def before_sleep(state: tenacity.RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0.0
        logger.warning(
            f"Batch of {batch_size} item(s) failed "
            f"(attempt {state.attempt_number}/{policy.attempts}), "
            f"retrying in {delay:.2f}s: {exc}"
        )

    return before_sleep
