"""
Error types and fail-open guards

Anything on the hot path of an agent session runs through ``guard`` so that
an infrastructure fault degrades to a safe default instead of blocking the
agent. Explicit user commands raise the typed errors below instead.
"""

from typing import Any, Awaitable, Callable, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class ThreadworkError(Exception):
    """Base class for all Threadwork errors"""


class InvalidTierError(ThreadworkError, ValueError):
    """Raised when setting a skill tier that does not exist"""


class InvalidBudgetError(ThreadworkError, ValueError):
    """Raised when setting a non-positive session budget"""


class ProjectNotInitializedError(ThreadworkError):
    """Raised when project.json is missing"""


def _resolve(fallback: Any) -> Any:
    return fallback() if callable(fallback) else fallback


def guard(
    operation: Callable[[], T],
    fallback: Any,
    event: str = "Operation failed",
    **log_context: Any,
) -> T:
    """
    Run an operation, resolving any fault to a fallback.

    Args:
        operation: Zero-argument callable to run
        fallback: Value returned on failure, or a zero-argument factory for it
        event: Log event recorded when the operation raises
        **log_context: Extra key/values bound to the log event

    Returns:
        The operation's result, or the fallback on any exception
    """
    try:
        return operation()
    except Exception as e:
        logger.error(event, error=str(e), exc_info=True, **log_context)
        return _resolve(fallback)


async def guard_async(
    operation: Callable[[], Awaitable[T]],
    fallback: Any,
    event: str = "Operation failed",
    **log_context: Any,
) -> T:
    """Async counterpart of ``guard``"""
    try:
        return await operation()
    except Exception as e:
        logger.error(event, error=str(e), exc_info=True, **log_context)
        return _resolve(fallback)
