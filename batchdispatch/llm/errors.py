"""Error taxonomy for batch dispatch.

Every error raised by the dispatcher or its inference providers carries an
``ErrorKind`` so that retry decisions never depend on message text.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification used by the batch executor's retry policy."""

    TRANSIENT = "transient"
    BUDGET_EXCEEDED = "budget_exceeded"
    PARSE = "parse"
    CONFIGURATION = "configuration"


class DispatchError(Exception):
    """Base class for dispatcher errors."""

    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(self, message: str, *, kind: Optional[ErrorKind] = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class TokenBudgetExceededError(DispatchError):
    """Raised when a request is structurally too large for the target model.

    Retrying an unchanged request cannot help, so the executor surfaces this
    immediately.
    """

    kind = ErrorKind.BUDGET_EXCEEDED

    def __init__(
        self,
        message: str,
        *,
        input_tokens: Optional[int] = None,
        context_window: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.input_tokens = input_tokens
        self.context_window = context_window


class ResponseParseError(DispatchError):
    """Raised by result parsers when a response is malformed."""

    kind = ErrorKind.PARSE


class ModelNotConfiguredError(DispatchError):
    """Raised when no model or API key is available for inference."""

    kind = ErrorKind.CONFIGURATION
