"""Base provider abstraction for chat-completion endpoints.

Defines the ``call_inference`` contract the dispatcher consumes and the
shared request shaping every provider goes through: max-token clamping,
pre-flight token budget guard, transport-level retry, and error-driven
discovery of model limits.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from langchain_core.messages import HumanMessage, SystemMessage

from batchdispatch.config.constants import CONTEXT_GUARD_RATIO
from batchdispatch.config.service import get_config_service
from batchdispatch.llm.errors import DispatchError, ErrorKind, TokenBudgetExceededError
from batchdispatch.llm.model_limits import (
    ModelLimits,
    cache_discovered_limits,
    get_model_limits,
    parse_model_limits_from_error,
)
from batchdispatch.llm.token_estimation import estimate_tokens

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.7


def load_max_retries() -> int:
    """Load transport retry attempts from dispatch_config.yaml.

    Expected path in YAML::

        provider:
          transport_retries: 3
    """
    try:
        cfg = get_config_service().get_dispatch_config() or {}
        provider_cfg = cfg.get("provider", {}) or {}
        attempts = int(provider_cfg.get("transport_retries", 3))
        return max(1, attempts)
    except Exception:
        return 3


@dataclass(frozen=True)
class InferenceOptions:
    """Per-call overrides for a chat completion."""

    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


class BaseProvider(ABC):
    """Abstract base class for all chat providers.

    Subclasses only construct their LangChain chat model; the request
    lifecycle lives here.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout: Optional[float] = None,
        base_url: Optional[str] = None,
        **kwargs: Any,
    ):
        """Initialize the provider.

        Args:
            api_key: API key for the provider
            model: Model name/identifier
            temperature: Default sampling temperature
            max_tokens: Default requested output tokens
            timeout: Request timeout in seconds
            base_url: Optional endpoint override (OpenAI-compatible gateways)
            **kwargs: Provider-specific configuration
        """
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.base_url = base_url
        self.extra_config = kwargs
        self._llm: Any = None

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'openai', 'anthropic')."""

    def _invoke_kwargs(self, *, max_tokens: int, temperature: float) -> Dict[str, Any]:
        """Per-request parameters forwarded to ``ainvoke``."""
        return {"max_tokens": max_tokens, "temperature": temperature}

    def get_limits(self) -> ModelLimits:
        return get_model_limits(self.model)

    async def call_inference(
        self,
        system_prompt: str,
        user_prompt: str,
        options: Optional[InferenceOptions] = None,
    ) -> str:
        """Send one chat completion and return the response text.

        Raises:
            TokenBudgetExceededError: The input cannot fit the model's context
                window; no request is sent, or the endpoint reported it.
            DispatchError: The endpoint returned no content.
        """
        options = options or InferenceOptions()
        limits = self.get_limits()
        requested = options.max_tokens if options.max_tokens is not None else self.max_tokens
        temperature = options.temperature if options.temperature is not None else self.temperature

        max_tokens = min(requested, limits.max_output)
        if max_tokens < requested:
            logger.info(
                f"Clamping max_tokens {requested} -> {max_tokens} "
                f"({self.model} max_output={limits.max_output})"
            )

        input_tokens = self.check_token_budget(system_prompt, user_prompt, requested, limits)

        messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]
        try:
            response = await self._ainvoke_with_retry(
                messages, **self._invoke_kwargs(max_tokens=max_tokens, temperature=temperature)
            )
        except Exception as e:
            corrected = self._learn_from_error(e, max_tokens, input_tokens)
            if corrected is None:
                raise
            logger.warning(
                f"{self.model} accepts at most {corrected} output tokens; retrying once"
            )
            response = await self._ainvoke_with_retry(
                messages, **self._invoke_kwargs(max_tokens=corrected, temperature=temperature)
            )

        content = self._extract_text(response)
        if not content:
            metadata = getattr(response, "response_metadata", {}) or {}
            finish_reason = metadata.get("finish_reason") or metadata.get("stop_reason")
            raise DispatchError(
                f"Empty response from {self.model} (finish_reason: {finish_reason or 'unknown'})",
                kind=ErrorKind.TRANSIENT,
            )
        return content

    def check_token_budget(
        self,
        system_prompt: str,
        user_prompt: str,
        requested_max_tokens: int,
        limits: ModelLimits,
    ) -> int:
        """Refuse requests whose input exceeds 90% of the context window.

        Returns the estimated input tokens. Warns when less than half of the
        requested output would fit in the remaining context.
        """
        input_tokens = estimate_tokens(system_prompt + user_prompt)
        context_window = limits.context_window
        logger.debug(f"{self.model}: input~{input_tokens} / ctx={context_window}")

        if input_tokens > context_window * CONTEXT_GUARD_RATIO:
            raise TokenBudgetExceededError(
                f"Input tokens (~{input_tokens}) exceed 90% of the {self.model} context "
                f"window ({context_window}); shrink the input or use a larger-context model",
                input_tokens=input_tokens,
                context_window=context_window,
            )

        safety_margin = math.ceil(context_window * (1 - CONTEXT_GUARD_RATIO))
        available_for_output = context_window - input_tokens - safety_margin
        if available_for_output < requested_max_tokens * 0.5:
            logger.warning(
                f"{self.model}: tight output space, ~{available_for_output} tokens available "
                f"for {requested_max_tokens} requested; the response may be truncated"
            )
        return input_tokens

    def _learn_from_error(
        self,
        error: Exception,
        max_tokens: int,
        input_tokens: int,
    ) -> Optional[int]:
        """Cache limits revealed by a 400 response.

        Returns a corrected ``max_tokens`` when the request can be retried with
        a smaller completion size; raises TokenBudgetExceededError when the
        endpoint reports a context overflow; otherwise returns None.
        """
        if getattr(error, "status_code", None) != 400:
            return None
        discovered = parse_model_limits_from_error(str(error))
        if discovered is None:
            return None
        cache_discovered_limits(self.model, discovered)

        if discovered.max_output is not None and max_tokens > discovered.max_output:
            return discovered.max_output
        if discovered.context_window is not None and discovered.max_output is None:
            raise TokenBudgetExceededError(
                f"{self.model} rejected ~{input_tokens} input tokens "
                f"(context window {discovered.context_window})",
                input_tokens=input_tokens,
                context_window=discovered.context_window,
            ) from error
        return None

    @staticmethod
    def _extract_text(response: Any) -> str:
        """Normalize a LangChain message's content to plain text."""
        content = getattr(response, "content", response)
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            parts: List[str] = []
            for block in content:
                if isinstance(block, str):
                    parts.append(block)
                elif isinstance(block, dict) and block.get("type") == "text":
                    parts.append(str(block.get("text", "")))
            return "".join(parts)
        return "" if content is None else str(content)

    async def _ainvoke_with_retry(self, messages: List[Any], **invoke_kwargs: Any) -> Any:
        """Invoke the LangChain model with retry on transient connection errors.

        Acts as a safety net on top of LangChain's internal max_retries,
        targeting raw httpx network failures.

        Retries on:
            httpx.ConnectError: TCP/DNS connection failure
            httpx.TimeoutException: all httpx timeout subclasses

        Uses exponential backoff (2 s -> 4 s -> ... -> 60 s max) with jitter.
        After exhausting all attempts the exception is re-raised to the caller.
        """
        import httpx
        import tenacity

        max_attempts = load_max_retries()

        async for attempt in tenacity.AsyncRetrying(
            retry=tenacity.retry_if_exception_type(
                (httpx.ConnectError, httpx.TimeoutException)
            ),
            wait=tenacity.wait_exponential_jitter(initial=2, max=60),
            stop=tenacity.stop_after_attempt(max_attempts),
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                return await self._llm.ainvoke(messages, **invoke_kwargs)

    async def close(self) -> None:
        """Clean up resources (e.g., HTTP sessions)."""

    async def __aenter__(self) -> "BaseProvider":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[Any],
    ) -> bool:
        await self.close()
        return False
