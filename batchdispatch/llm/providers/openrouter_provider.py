"""OpenRouter provider implementation using LangChain.

OpenRouter exposes models from many vendors through one OpenAI-compatible
API; model names follow the ``vendor/model`` format.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from langchain_openai import ChatOpenAI

from batchdispatch.llm.providers.base import BaseProvider, load_max_retries

logger = logging.getLogger(__name__)

# OpenRouter API base URL
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class OpenRouterProvider(BaseProvider):
    """OpenRouter chat provider."""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        timeout: Optional[float] = None,
        base_url: Optional[str] = None,
        site_url: Optional[str] = None,
        app_name: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(
            api_key=api_key,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
            base_url=base_url or OPENROUTER_BASE_URL,
            **kwargs,
        )
        self.site_url = site_url
        self.app_name = app_name or "batchdispatch"

        # OpenRouter-specific headers
        default_headers: Dict[str, str] = {"X-Title": self.app_name}
        if site_url:
            default_headers["HTTP-Referer"] = site_url

        self._llm = ChatOpenAI(
            api_key=api_key,
            model=model,
            base_url=self.base_url,
            max_tokens=max_tokens,
            temperature=temperature,
            timeout=timeout,
            max_retries=load_max_retries(),
            default_headers=default_headers,
        )

    @property
    def provider_name(self) -> str:
        return "openrouter"
