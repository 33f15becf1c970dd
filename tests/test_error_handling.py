"""
Tests for the error_handling module.

This module tests:
- Exception hierarchy and custom errors
- Error handling decorator
- Operation context logging
"""

import logging

import pytest

from nestcache.error_handling import (
    CacheConfigurationError,
    CacheConnectionError,
    CacheError,
    CacheSerializationError,
    CacheTransactionError,
    CacheTypeError,
    StorageError,
    cache_operation_context,
    with_error_handling,
)


class TestCacheErrorHierarchy:
    """Test the cache error exception hierarchy."""

    def test_cache_error_base_initialization(self):
        error = CacheError("Test message")
        assert str(error) == "Test message"
        assert error.context == {}

        context = {"key1": "value1", "key2": 42}
        error = CacheError("Test message", context)
        assert error.context == context

    def test_cache_error_logging(self, caplog):
        """CacheError logs its message and context."""
        with caplog.at_level(logging.ERROR):
            CacheError("Broken", {"cache_key": "a"})
        assert "Cache error: Broken" in caplog.text
        assert "cache_key=a" in caplog.text

    @pytest.mark.parametrize(
        "error_cls",
        [
            CacheConfigurationError,
            CacheConnectionError,
            CacheSerializationError,
            CacheTransactionError,
            CacheTypeError,
        ],
    )
    def test_subclasses(self, error_cls):
        assert issubclass(error_cls, CacheError)

    def test_type_error_is_a_type_error(self):
        with pytest.raises(TypeError):
            raise CacheTypeError("not a number")

    def test_storage_error_alias(self):
        assert StorageError is CacheTransactionError


class TestWithErrorHandling:
    def test_passes_through_results(self):
        @with_error_handling(CacheSerializationError)
        def ok():
            return 3

        assert ok() == 3

    def test_converts_unexpected_errors(self):
        @with_error_handling(CacheSerializationError, context={"stage": "encode"})
        def broken():
            raise KeyError("boom")

        with pytest.raises(CacheSerializationError) as exc_info:
            broken()

        assert exc_info.value.context["stage"] == "encode"
        assert exc_info.value.context["original_error_type"] == "KeyError"
        assert isinstance(exc_info.value.__cause__, KeyError)

    def test_cache_errors_are_not_wrapped(self):
        @with_error_handling(CacheSerializationError)
        def broken():
            raise CacheTypeError("wrong type")

        with pytest.raises(CacheTypeError):
            broken()


class TestCacheOperationContext:
    def test_logs_completion(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="nestcache.error_handling"):
            with cache_operation_context("add", cache_key="k"):
                pass
        assert "Cache operation completed: add" in caplog.text

    def test_reraises_unexpected_errors(self, caplog):
        with caplog.at_level(logging.ERROR):
            with pytest.raises(RuntimeError):
                with cache_operation_context("add"):
                    raise RuntimeError("disk on fire")
        assert "Unexpected error in cache operation: add" in caplog.text
