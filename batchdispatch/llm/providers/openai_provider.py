"""OpenAI provider implementation using LangChain.

Also serves any OpenAI-compatible endpoint (DeepSeek, Qwen, GLM gateways)
through ``base_url``.

LangChain handles:
- Retry logic with exponential backoff (max_retries parameter)
- Renaming max_tokens to max_completion_tokens for reasoning models
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from langchain_openai import ChatOpenAI

from batchdispatch.llm.providers.base import BaseProvider, load_max_retries

logger = logging.getLogger(__name__)

_REASONING_PREFIXES = ("gpt-5", "o1", "o3", "o4")


def is_reasoning_model(model_name: str) -> bool:
    """Reasoning models reject sampler parameters such as temperature."""
    m = model_name.lower().strip()
    return m.startswith(_REASONING_PREFIXES)


class OpenAIProvider(BaseProvider):
    """OpenAI (or OpenAI-compatible) chat provider."""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        timeout: Optional[float] = None,
        base_url: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(
            api_key=api_key,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
            base_url=base_url,
            **kwargs,
        )
        self._reasoning = is_reasoning_model(model)

        llm_kwargs: Dict[str, Any] = {
            "api_key": api_key,
            "model": model,
            "timeout": timeout,
            "max_retries": load_max_retries(),
            "max_tokens": max_tokens,
        }
        if base_url:
            llm_kwargs["base_url"] = base_url
        if self._reasoning:
            llm_kwargs["disabled_params"] = {"temperature": None}
        else:
            llm_kwargs["temperature"] = temperature

        self._llm = ChatOpenAI(**llm_kwargs)

    @property
    def provider_name(self) -> str:
        return "openai"

    def _invoke_kwargs(self, *, max_tokens: int, temperature: float) -> Dict[str, Any]:
        if self._reasoning:
            return {"max_tokens": max_tokens}
        return {"max_tokens": max_tokens, "temperature": temperature}
