# batchdispatch/config/config_loader.py

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def _expand_path_str(p: str) -> Path:
    """
    Expand ~ and environment variables in a path string and return a Path.
    """
    return Path(os.path.expandvars(os.path.expanduser(p)))


def _compute_config_dir() -> Path:
    """
    Resolve BATCHDISPATCH_CONFIG_DIR robustly:
    - If absolute: use it.
    - If relative: resolve against PROJECT_ROOT.
    - If unset: default to PROJECT_ROOT/config.
    """
    raw = os.environ.get("BATCHDISPATCH_CONFIG_DIR")
    if raw:
        expanded = _expand_path_str(raw)
        return (expanded if expanded.is_absolute()
                else (PROJECT_ROOT / expanded)).resolve()
    return (PROJECT_ROOT / "config").resolve()


CONFIG_DIR = _compute_config_dir()
DEFAULT_DISPATCH_CONFIG_PATH = CONFIG_DIR / "dispatch_config.yaml"
DEFAULT_MODEL_CONFIG_PATH = CONFIG_DIR / "model_config.yaml"


class ConfigLoader:
    """
    Loads configuration files and exposes normalized dictionaries to callers.

    A missing file yields an empty section; a malformed file raises.
    """

    def __init__(
        self,
        dispatch_config_path: Optional[Path] = None,
        model_config_path: Optional[Path] = None,
    ) -> None:
        self.dispatch_config_path = dispatch_config_path or DEFAULT_DISPATCH_CONFIG_PATH
        self.model_config_path = model_config_path or DEFAULT_MODEL_CONFIG_PATH
        self._dispatch: Dict[str, Any] = {}
        self._model: Dict[str, Any] = {}

    @staticmethod
    def _load_yaml_file(path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(
                f"YAML parsing error in {path}.\n"
                f"Tip: Windows paths in double quotes require escaped backslashes "
                f"or forward slashes (e.g., C:/Users/name).\nOriginal error: {e}"
            ) from e
        if not isinstance(data, dict):
            raise ValueError(
                f"Configuration file {path} must contain a mapping at the top level, "
                f"got {type(data).__name__}"
            )
        return data

    def load_configs(self) -> None:
        """
        Load YAML configuration into memory.
        """
        self._dispatch = self._load_yaml_file(self.dispatch_config_path)
        self._model = self._load_yaml_file(self.model_config_path)

    def get_dispatch_config(self) -> Dict[str, Any]:
        """Return the raw dispatch configuration dictionary."""
        return self._dispatch.copy()

    def get_model_config(self) -> Dict[str, Any]:
        """
        Return the model configuration with ``model_limits`` keys normalized
        to lower case.
        """
        cfg = self._model.copy()
        if "model_limits" not in cfg:
            return cfg
        raw_limits = cfg.get("model_limits") or {}
        if isinstance(raw_limits, dict):
            cfg["model_limits"] = {
                str(name).strip().lower(): value
                for name, value in raw_limits.items()
            }
        return cfg

    def get_logs_dir(self) -> Path:
        """
        Return the configured logs directory, resolved against PROJECT_ROOT
        when relative.
        """
        general = self._dispatch.get("general", {}) or {}
        raw = general.get("logs_dir")
        if not raw:
            return PROJECT_ROOT / "logs"
        path = _expand_path_str(str(raw))
        if not path.is_absolute():
            path = (PROJECT_ROOT / path).resolve()
        return path
