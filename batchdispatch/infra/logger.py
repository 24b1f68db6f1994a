"""Logging infrastructure for the dispatcher.

Provides centralized logger configuration with file and console handlers.
"""

from __future__ import annotations

import logging

from batchdispatch.config.config_loader import PROJECT_ROOT
from batchdispatch.config.service import get_config_service


def setup_logger(name: str) -> logging.Logger:
    """
    Set up and return a logger with file and console handlers.

    Logs are written to the configured logs directory (``general.logs_dir`` in
    dispatch_config.yaml) or PROJECT_ROOT/logs as a fallback. The console
    handler only shows warnings and errors, while the file handler captures
    all INFO level and above.

    Args:
        name: Name of the logger (typically __name__ from the calling module).

    Returns:
        Configured logger instance.
    """
    # A broken config must not prevent logging.
    try:
        logs_path = get_config_service().get_logs_dir()
    except Exception:
        logs_path = PROJECT_ROOT / "logs"

    if logs_path.suffix == ".log":
        log_file = logs_path
        logs_dir = logs_path.parent
    else:
        logs_dir = logs_path
        log_file = logs_dir / "application.log"

    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    if not logger.handlers:
        try:
            logs_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError:
            file_handler = None
        if file_handler is not None:
            formatter = logging.Formatter(
                "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        # Console only shows warnings and errors.
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.WARNING)
        console_formatter = logging.Formatter("%(levelname)s: %(message)s")
        console_handler.setFormatter(console_formatter)
        logger.addHandler(console_handler)
    return logger
