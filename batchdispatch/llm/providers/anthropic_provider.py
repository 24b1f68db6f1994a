"""Anthropic (Claude) provider implementation using LangChain."""

from __future__ import annotations

import logging
from typing import Any, Optional

from langchain_anthropic import ChatAnthropic

from batchdispatch.llm.providers.base import BaseProvider, load_max_retries

logger = logging.getLogger(__name__)


class AnthropicProvider(BaseProvider):
    """Claude chat provider.

    Claude requires ``max_tokens`` on every request, so the client is always
    built with one; per-call values override it.
    """

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
        llm_kwargs = {
            "api_key": api_key,
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "timeout": timeout,
            "max_retries": load_max_retries(),
        }
        if base_url:
            llm_kwargs["base_url"] = base_url
        self._llm = ChatAnthropic(**llm_kwargs)

    @property
    def provider_name(self) -> str:
        return "anthropic"
