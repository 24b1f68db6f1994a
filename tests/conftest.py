"""Pytest configuration and shared fixtures for batchdispatch tests.

This module provides reusable fixtures for:
- Configuration management
- Temporary file/directory creation
- Mock inference endpoints and LangChain models
- Sample work items
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator, List
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
import sys
sys.path.insert(0, str(PROJECT_ROOT))


# =============================================================================
# Global State Isolation
# =============================================================================

@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset the config singleton and the discovered-limits cache around each test."""
    from batchdispatch.config.service import ConfigService
    from batchdispatch.llm.model_limits import get_discovery_cache

    ConfigService.reset()
    get_discovery_cache().clear()
    yield
    ConfigService.reset()
    get_discovery_cache().clear()


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def mock_dispatch_config() -> Dict[str, Any]:
    """Provide a mock dispatch configuration dictionary."""
    return {
        "general": {"logs_dir": "logs"},
        "dispatch": {
            "concurrency": 3,
            "stagger_seconds": 0,
            "batch_timeout_seconds": None,
            "budget": {
                "hard_cap_tokens": 60000,
                "input_ratio": 0.6,
                "output_ratio": 0.8,
            },
            "retry": {
                "max_retries": 2,
                "base_delay_seconds": 0,
            },
        },
        "provider": {"transport_retries": 1},
    }


@pytest.fixture
def mock_model_config() -> Dict[str, Any]:
    """Provide a mock model configuration dictionary."""
    return {
        "dispatch_model": {
            "provider": "openai",
            "name": "gpt-4o",
            "max_output_tokens": 4096,
            "temperature": 0.1,
        },
        "model_limits": {},
    }


@pytest.fixture
def mock_config_service(mock_dispatch_config, mock_model_config):
    """Provide a mock ConfigService with all configurations."""
    mock_service = MagicMock()
    mock_service.get_dispatch_config.return_value = mock_dispatch_config
    mock_service.get_model_config.return_value = mock_model_config
    mock_service.get_logs_dir.return_value = PROJECT_ROOT / "logs"
    return mock_service


# =============================================================================
# Temporary Directory Fixtures
# =============================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory that is cleaned up after test."""
    temp_path = Path(tempfile.mkdtemp(prefix="batchdispatch_test_"))
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def write_yaml(temp_dir: Path):
    """Return a helper that writes raw YAML text into temp_dir."""
    def _write(name: str, content: str) -> Path:
        path = temp_dir / name
        path.write_text(content, encoding="utf-8")
        return path
    return _write


# =============================================================================
# Work Item Fixtures
# =============================================================================

@pytest.fixture
def sample_items() -> List[Dict[str, Any]]:
    """Ten small work items keyed by id."""
    return [{"id": f"item-{i}", "text": f"line {i}"} for i in range(10)]


def build_prompts(batch):
    """Prompt builder used across dispatcher tests."""
    from batchdispatch.core.executor import Prompts
    return Prompts(
        system="You label lines.",
        user=json.dumps([item["id"] for item in batch]),
    )


def parse_ids(raw: str, batch) -> Dict[str, str]:
    """Result parser: the fake endpoint echoes the id list back."""
    return {item_id: f"ok:{item_id}" for item_id in json.loads(raw)}


@pytest.fixture
def prompt_builder():
    return build_prompts


@pytest.fixture
def id_parser():
    return parse_ids


@pytest.fixture
def echo_inference() -> AsyncMock:
    """Inference endpoint that echoes the user prompt."""
    async def _echo(system_prompt, user_prompt, options=None):
        return user_prompt
    return AsyncMock(side_effect=_echo)


# =============================================================================
# Mock LangChain Fixtures
# =============================================================================

@pytest.fixture
def mock_langchain_llm():
    """Provide a mock LangChain chat model."""
    mock_llm = MagicMock()
    mock_response = MagicMock()
    mock_response.content = json.dumps({"item-0": "label"})
    mock_response.response_metadata = {
        "token_usage": {"prompt_tokens": 100, "completion_tokens": 50},
        "finish_reason": "stop",
    }
    mock_llm.ainvoke = AsyncMock(return_value=mock_response)
    return mock_llm


# =============================================================================
# Environment Fixtures
# =============================================================================

@pytest.fixture
def mock_env_no_api_keys():
    """Mock environment with no API keys set."""
    env_copy = os.environ.copy()
    for key in ["OPENAI_API_KEY", "ANTHROPIC_API_KEY", "OPENROUTER_API_KEY"]:
        env_copy.pop(key, None)
    with patch.dict(os.environ, env_copy, clear=True):
        yield


@pytest.fixture
def mock_env_with_openai_key():
    """Mock environment with OpenAI API key set."""
    with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-test-key-12345"}):
        yield


# =============================================================================
# Skip Markers
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
    config.addinivalue_line("markers", "api: Tests requiring API keys")
