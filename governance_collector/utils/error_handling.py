"""
Error Handling Utility Module

Reusable error handling patterns with structured, sanitized logging.

This module provides three core utilities:
1. log_and_continue() - Log error and continue execution (for expected failures)
2. log_and_return_default() - Log error and return a default value
3. log_and_raise() - Log error with context and re-raise (for unexpected errors)

All functions take the GovernanceLogger passed to the calling component, so
the error context goes through the same secret masking as every other entry.
"""

from typing import Any, Protocol, TypeVar

T = TypeVar("T")


class SupportsLogging(Protocol):
    def warn(self, message: Any, meta: Any = None) -> None: ...

    def error(self, message: Any, meta: Any = None, exc_info: Any = None) -> None: ...


def _error_fields(error: BaseException, context: dict[str, Any], error_type: str) -> dict[str, Any]:
    return {
        "error_type": error_type,
        "exception_class": error.__class__.__name__,
        "error": str(error),
        "context": context,
    }


def log_and_continue(
    logger: SupportsLogging,
    error: BaseException,
    context: dict[str, Any],
    error_type: str = "Operation",
) -> None:
    """
    Log an error with structured context and continue execution gracefully.

    Use this when encountering expected errors that should not halt execution
    (e.g., one workspace failing while the rest of the collection proceeds).

    Args:
        logger: GovernanceLogger of the calling component
        error: The caught exception
        context: Structured data about what failed (workspace_id, collection_uid, ...)
        error_type: Human-readable description of the operation

    Example:
        try:
            detail = await self.get_workspace(workspace_id)
        except PostmanAPIError as e:
            log_and_continue(self.logger, e, {"workspace_id": workspace_id}, "Workspace detail fetch")
            continue
    """
    logger.warn(f"{error_type} failed: {error}", _error_fields(error, context, error_type))


def log_and_return_default(
    logger: SupportsLogging,
    error: BaseException,
    context: dict[str, Any],
    default_value: T,
    error_type: str = "Operation",
) -> T:
    """
    Log an error and return a default value (for functions that need to return something).

    Args:
        logger: GovernanceLogger of the calling component
        error: The caught exception
        context: Structured data about what failed
        default_value: Value to return on error (None, [], {}, etc.)
        error_type: Human-readable description

    Returns:
        default_value
    """
    fields = _error_fields(error, context, error_type)
    fields["default_value"] = str(default_value)
    logger.warn(f"{error_type} failed, returning default value: {error}", fields)
    return default_value


def log_and_raise(
    logger: SupportsLogging,
    error: BaseException,
    context: dict[str, Any],
    error_type: str = "Operation",
) -> None:
    """
    Log an error with context and re-raise it (for unexpected errors).

    Args:
        logger: GovernanceLogger of the calling component
        error: The caught exception
        context: Structured data about what failed
        error_type: Human-readable description

    Raises:
        The original exception after logging
    """
    logger.error(
        f"{error_type} failed critically: {error}",
        _error_fields(error, context, error_type),
        exc_info=(type(error), error, error.__traceback__),
    )
    raise error
