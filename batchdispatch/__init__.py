"""batchdispatch package.

Splits large lists of work items into token-budgeted batches for a
capped-context text-generation endpoint and runs them concurrently, with
retry and partial-failure isolation.

Note: Imports are lazy to avoid circular import issues with config_loader.
"""


def __getattr__(name: str):
    """Lazy import to avoid circular dependencies."""
    if name in ("BatchDispatcher", "DispatchOptions", "DispatchResult", "process_batched"):
        from batchdispatch.core.orchestrator import (
            BatchDispatcher,
            DispatchOptions,
            DispatchResult,
            process_batched,
        )
        return {
            "BatchDispatcher": BatchDispatcher,
            "DispatchOptions": DispatchOptions,
            "DispatchResult": DispatchResult,
            "process_batched": process_batched,
        }[name]

    if name in ("Prompts", "RetryPolicy"):
        from batchdispatch.core.executor import Prompts, RetryPolicy
        return {"Prompts": Prompts, "RetryPolicy": RetryPolicy}[name]

    if name == "DispatchSettings":
        from batchdispatch.config.settings import DispatchSettings
        return DispatchSettings

    if name in ("get_provider", "InferenceOptions"):
        from batchdispatch.llm.providers import InferenceOptions, get_provider
        return {"get_provider": get_provider, "InferenceOptions": InferenceOptions}[name]

    raise AttributeError(f"module 'batchdispatch' has no attribute '{name}'")


__all__ = [
    "BatchDispatcher",
    "DispatchOptions",
    "DispatchResult",
    "process_batched",
    "Prompts",
    "RetryPolicy",
    "DispatchSettings",
    "get_provider",
    "InferenceOptions",
]
