"""LLM provider abstraction layer using LangChain.

Supported providers:
- OpenAI (and OpenAI-compatible endpoints via base_url)
- Anthropic (Claude)
- OpenRouter
"""

from batchdispatch.llm.providers.base import (
    BaseProvider,
    InferenceOptions,
)
from batchdispatch.llm.providers.factory import (
    get_provider,
    get_available_providers,
    ProviderType,
)

__all__ = [
    "BaseProvider",
    "InferenceOptions",
    "get_provider",
    "get_available_providers",
    "ProviderType",
]
