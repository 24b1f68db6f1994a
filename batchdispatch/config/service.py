"""Centralized configuration service with caching and singleton pattern.

Provides a single point of access to the dispatch and model configuration
dictionaries. Only entry points read it; the dispatcher itself receives its
settings explicitly.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Dict, Optional

from batchdispatch.config.config_loader import ConfigLoader


class ConfigService:
    """Thread-safe singleton configuration service with lazy loading and caching."""

    _instance: Optional[ConfigService] = None
    _lock = threading.Lock()

    def __new__(cls) -> ConfigService:
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return

        self._loader: Optional[ConfigLoader] = None
        self._dispatch_config: Optional[Dict[str, Any]] = None
        self._model_config: Optional[Dict[str, Any]] = None
        self._initialized = True

    def load(
        self,
        dispatch_config_path: Optional[Path] = None,
        model_config_path: Optional[Path] = None,
    ) -> None:
        """Load all configurations.

        Args:
            dispatch_config_path: Optional path to dispatch_config.yaml.
            model_config_path: Optional path to model_config.yaml.
        """
        with self._lock:
            self._loader = ConfigLoader(dispatch_config_path, model_config_path)
            self._loader.load_configs()
            self._dispatch_config = None
            self._model_config = None

    def _ensure_loaded(self) -> None:
        if self._loader is None:
            self.load()

    def get_dispatch_config(self) -> Dict[str, Any]:
        """Get dispatch configuration (cached)."""
        self._ensure_loaded()
        if self._dispatch_config is None:
            with self._lock:
                if self._dispatch_config is None:
                    self._dispatch_config = self._loader.get_dispatch_config()
        return self._dispatch_config.copy()

    def get_model_config(self) -> Dict[str, Any]:
        """Get model configuration (cached)."""
        self._ensure_loaded()
        if self._model_config is None:
            with self._lock:
                if self._model_config is None:
                    self._model_config = self._loader.get_model_config()
        return self._model_config.copy()

    def get_logs_dir(self) -> Path:
        """Get the resolved logs directory."""
        self._ensure_loaded()
        return self._loader.get_logs_dir()

    def reload(
        self,
        dispatch_config_path: Optional[Path] = None,
        model_config_path: Optional[Path] = None,
    ) -> None:
        """Force reload of all configurations."""
        self.load(dispatch_config_path, model_config_path)

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton instance (primarily for testing)."""
        with cls._lock:
            cls._instance = None


def get_config_service() -> ConfigService:
    """Get the singleton ConfigService instance."""
    return ConfigService()


def get_dispatch_config() -> Dict[str, Any]:
    """Get dispatch configuration."""
    return get_config_service().get_dispatch_config()


def get_model_config() -> Dict[str, Any]:
    """Get model configuration."""
    return get_config_service().get_model_config()
