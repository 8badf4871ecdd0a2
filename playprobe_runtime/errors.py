"""Categorized error taxonomy shared by every PlayProbe layer.

Collaborator failures (browser driver, perception oracle, filesystem) are
wrapped at the call site into one of a closed set of categories. The category
decides the default ``retryable`` flag; callers may override it per instance
when they know better (an unparsable oracle answer will not improve on retry,
even though the perception-service category is retryable in general).
"""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Dict, Optional


class ErrorCategory(str, Enum):
    """Closed set of failure categories."""

    CONTROL_SURFACE = "control_surface"
    CONNECTIVITY = "connectivity"
    TIMEOUT = "timeout"
    PERCEPTION_SERVICE = "perception_service"
    PERSISTENCE = "persistence"
    UNKNOWN = "unknown"


DEFAULT_RETRYABLE: Dict[ErrorCategory, bool] = {
    ErrorCategory.CONTROL_SURFACE: True,
    ErrorCategory.CONNECTIVITY: True,
    ErrorCategory.TIMEOUT: True,
    ErrorCategory.PERCEPTION_SERVICE: True,
    ErrorCategory.PERSISTENCE: True,
    ErrorCategory.UNKNOWN: False,
}


class CategorizedError(RuntimeError):
    """Base class for every error that carries a category and retry flag."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        category: Optional[ErrorCategory] = None,
        *,
        retryable: Optional[bool] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if category is not None:
            self.category = category
        self.retryable = DEFAULT_RETRYABLE[self.category] if retryable is None else retryable
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"[{self.category.value}] {self.message}: {self.cause}"
        return f"[{self.category.value}] {self.message}"


class ControlSurfaceError(CategorizedError):
    """Raised when the browser or page refuses an operation."""

    category = ErrorCategory.CONTROL_SURFACE


class ConnectivityError(CategorizedError):
    """Raised on network-level failures."""

    category = ErrorCategory.CONNECTIVITY


class OperationTimeoutError(CategorizedError):
    """Raised when a collaborator call exceeds its bound."""

    category = ErrorCategory.TIMEOUT


class PerceptionServiceError(CategorizedError):
    """Raised when the perception oracle fails or answers unusably."""

    category = ErrorCategory.PERCEPTION_SERVICE


class PersistenceError(CategorizedError):
    """Raised when writing cache exports, recordings or other artifacts fails."""

    category = ErrorCategory.PERSISTENCE


class UncategorizedError(CategorizedError):
    """Wraps a foreign exception that fits no known category."""

    category = ErrorCategory.UNKNOWN


class OperationCancelledError(CategorizedError):
    """Raised when a cancellation token fires or its deadline passes."""

    def __init__(self, reason: str = "cancelled", *, deadline_expired: bool = False) -> None:
        category = ErrorCategory.TIMEOUT if deadline_expired else ErrorCategory.UNKNOWN
        super().__init__(reason, category, retryable=False)
        self.deadline_expired = deadline_expired


class RetryExhaustedError(CategorizedError):
    """Raised after every permitted attempt failed."""

    def __init__(self, description: str, last_error: CategorizedError, attempts: int) -> None:
        super().__init__(
            f"{description} failed after {attempts} attempt(s)",
            last_error.category,
            retryable=False,
            cause=last_error,
        )
        self.last_error = last_error
        self.attempts = attempts


def categorize(exc: BaseException) -> CategorizedError:
    """Return ``exc`` as a categorized error, wrapping foreign exceptions."""

    if isinstance(exc, CategorizedError):
        return exc
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return OperationTimeoutError("operation timed out", cause=exc)
    if isinstance(exc, ConnectionError):
        return ConnectivityError("connection failed", cause=exc)
    return UncategorizedError(type(exc).__name__, cause=exc)


__all__ = [
    "CategorizedError",
    "ConnectivityError",
    "ControlSurfaceError",
    "DEFAULT_RETRYABLE",
    "ErrorCategory",
    "OperationCancelledError",
    "OperationTimeoutError",
    "PerceptionServiceError",
    "PersistenceError",
    "RetryExhaustedError",
    "UncategorizedError",
    "categorize",
]
