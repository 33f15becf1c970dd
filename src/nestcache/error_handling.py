"""
Standardized Error Handling for nestcache
=========================================

This module provides the exception taxonomy and consistent error handling
patterns used by every cache operation.

A cache miss is never an error: missing and expired keys resolve to a
default value. Exceptions are reserved for configuration mistakes, storage
failures and type misuse (e.g. incrementing a string).
"""

import functools
import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Optional, Type

logger = logging.getLogger(__name__)


class CacheError(Exception):
    """Base exception for all cache-related errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.context = context or {}
        super().__init__(message)

        # Log error with context for debugging
        context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        logger.error(
            f"Cache error: {message}" + (f" ({context_str})" if context_str else "")
        )


class CacheConfigurationError(CacheError):
    """Raised when cache configuration is invalid."""

    pass


class CacheSerializationError(CacheError):
    """Raised when a value cannot be encoded or decoded by the codec."""

    pass


class CacheConnectionError(CacheError):
    """Raised when the backing database cannot be opened.

    Fatal for the operation that triggered it; no retry is attempted.
    """

    pass


class CacheTransactionError(CacheError):
    """Raised when a statement fails inside a transaction.

    The transaction has already been rolled back when this propagates, so
    callers can treat it as "no change occurred".
    """

    pass


# Generic name for any failure coming out of the store layer
StorageError = CacheTransactionError


class CacheTypeError(CacheError, TypeError):
    """Raised when an operation meets a stored value of the wrong type."""

    pass


def with_error_handling(
    error_type: Type[CacheError] = CacheError,
    context: Optional[Dict[str, Any]] = None,
):
    """
    Decorator converting unexpected exceptions into cache errors.

    Args:
        error_type: Type of CacheError to raise
        context: Additional context to include in error
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except CacheError:
                # Re-raise cache errors as-is
                raise
            except Exception as e:
                error_context = (context or {}).copy()
                error_context.update(
                    {
                        "function": func.__name__,
                        "original_error": str(e),
                        "original_error_type": type(e).__name__,
                    }
                )
                raise error_type(f"Error in {func.__name__}: {e}", error_context) from e

        return wrapper

    return decorator


@contextmanager
def cache_operation_context(operation: str, **context):
    """
    Context manager for cache operations with standardized logging.

    Args:
        operation: Description of the operation
        **context: Additional context for logging
    """
    logger.debug(f"Starting cache operation: {operation}", extra=context)
    start_time = time.time()

    try:
        yield
    except CacheError:
        logger.debug(f"Cache operation failed: {operation}", extra=context)
        raise
    except Exception as e:
        logger.error(
            f"Unexpected error in cache operation: {operation} - {e}", extra=context
        )
        raise
    else:
        duration = time.time() - start_time
        logger.debug(
            f"Cache operation completed: {operation} ({duration:.3f}s)", extra=context
        )
