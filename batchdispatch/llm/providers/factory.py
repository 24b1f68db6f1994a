"""Provider factory for dynamic LLM provider selection.

Creates provider instances based on configuration or explicit parameters.
"""

from __future__ import annotations

import importlib
import logging
import os
from enum import Enum
from typing import Dict, Optional, Type

from batchdispatch.llm.errors import ModelNotConfiguredError
from batchdispatch.llm.providers.base import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    BaseProvider,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"


class ProviderType(str, Enum):
    """Supported LLM provider types."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OPENROUTER = "openrouter"


# Lazy import mapping so only the selected provider's SDK is loaded
_PROVIDER_CLASSES: Dict[ProviderType, str] = {
    ProviderType.OPENAI: "batchdispatch.llm.providers.openai_provider.OpenAIProvider",
    ProviderType.ANTHROPIC: "batchdispatch.llm.providers.anthropic_provider.AnthropicProvider",
    ProviderType.OPENROUTER: "batchdispatch.llm.providers.openrouter_provider.OpenRouterProvider",
}

# Environment variable names for API keys
_API_KEY_ENV_VARS: Dict[ProviderType, str] = {
    ProviderType.OPENAI: "OPENAI_API_KEY",
    ProviderType.ANTHROPIC: "ANTHROPIC_API_KEY",
    ProviderType.OPENROUTER: "OPENROUTER_API_KEY",
}


def _import_provider_class(provider_type: ProviderType) -> Type[BaseProvider]:
    """Dynamically import a provider class."""
    module_name, class_name = _PROVIDER_CLASSES[provider_type].rsplit(".", 1)
    module = importlib.import_module(module_name)
    return getattr(module, class_name)


def get_available_providers() -> list[ProviderType]:
    """Return list of provider types that have API keys configured."""
    return [p for p, env_var in _API_KEY_ENV_VARS.items() if os.environ.get(env_var)]


def detect_provider_from_model(model_name: str) -> ProviderType:
    """Guess the provider from the model name.

    ``vendor/model`` names go to OpenRouter, ``claude`` models to Anthropic,
    everything else to the OpenAI(-compatible) provider.
    """
    m = model_name.lower().strip()

    if "/" in m:
        return ProviderType.OPENROUTER
    if "claude" in m:
        return ProviderType.ANTHROPIC
    return ProviderType.OPENAI


def get_api_key_for_provider(
    provider_type: ProviderType,
    api_key: Optional[str] = None,
) -> str:
    """Get the API key for a provider.

    Raises:
        ModelNotConfiguredError: If no API key is available
    """
    if api_key:
        return api_key

    env_var = _API_KEY_ENV_VARS[provider_type]
    key = os.environ.get(env_var)
    if key:
        return key

    # Fallback: try OPENAI_API_KEY for OpenRouter if OPENROUTER_API_KEY not set
    if provider_type == ProviderType.OPENROUTER:
        key = os.environ.get("OPENAI_API_KEY")
        if key:
            logger.warning("OPENROUTER_API_KEY not set, falling back to OPENAI_API_KEY.")
            return key

    raise ModelNotConfiguredError(
        f"No API key found for provider {provider_type.value}. "
        f"Set {env_var} environment variable or pass api_key parameter."
    )


def get_provider(
    provider: Optional[str] = None,
    model: Optional[str] = None,
    api_key: Optional[str] = None,
    *,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    timeout: Optional[float] = None,
    base_url: Optional[str] = None,
    **kwargs,
) -> BaseProvider:
    """Create a provider instance.

    Unset arguments fall back to the ``dispatch_model`` section of
    model_config.yaml, then to built-in defaults.

    Args:
        provider: "openai", "anthropic" or "openrouter"; detected from the
            model name when None
        model: Model name/identifier
        api_key: Optional explicit API key
        temperature: Default sampling temperature
        max_tokens: Default requested output tokens
        timeout: Request timeout in seconds
        base_url: Endpoint override for OpenAI-compatible gateways
        **kwargs: Provider-specific configuration

    Raises:
        ModelNotConfiguredError: Unknown provider or missing API key
    """
    if model is None or provider is None or temperature is None or max_tokens is None:
        from batchdispatch.config.service import get_config_service

        try:
            dm = get_config_service().get_model_config().get("dispatch_model", {}) or {}
        except ValueError as e:
            logger.warning(f"Could not load config defaults: {e}")
            dm = {}

        if model is None:
            model = dm.get("name") or DEFAULT_MODEL
        if provider is None:
            provider = dm.get("provider")  # May still be None
        if temperature is None and dm.get("temperature") is not None:
            temperature = float(dm["temperature"])
        if max_tokens is None and dm.get("max_output_tokens") is not None:
            max_tokens = int(dm["max_output_tokens"])
        if base_url is None and dm.get("base_url"):
            base_url = dm["base_url"]

    if provider is None:
        provider_type = detect_provider_from_model(model)
        logger.info(f"Auto-detected provider '{provider_type.value}' for model '{model}'")
    else:
        try:
            provider_type = ProviderType(provider.lower())
        except ValueError:
            raise ModelNotConfiguredError(
                f"Unknown provider '{provider}'. "
                f"Supported: {', '.join(p.value for p in ProviderType)}"
            )

    resolved_api_key = get_api_key_for_provider(provider_type, api_key)
    provider_class = _import_provider_class(provider_type)

    return provider_class(
        api_key=resolved_api_key,
        model=model,
        temperature=DEFAULT_TEMPERATURE if temperature is None else temperature,
        max_tokens=DEFAULT_MAX_TOKENS if max_tokens is None else max_tokens,
        timeout=timeout,
        base_url=base_url,
        **kwargs,
    )
