"""
Error Types

Exceptions raised by the memory decision core.

- StoreUnavailableError: a memory/config store read or write failed
- MemoryValidationError: a record crossed the boundary with missing or
  out-of-range fields
- ConfigurationError: invalid configuration values or config file
"""

from __future__ import annotations

from typing import Any, Optional


class MemoryCoreError(Exception):
    """Base class for all errors raised by the memory decision core."""
    pass


class StoreUnavailableError(MemoryCoreError):
    """
    A store operation failed.

    Store adapters raise this quickly instead of retrying; any retry policy
    belongs to the adapter's caller.
    """

    def __init__(
        self,
        message: str,
        operation: str = 'unknown',
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.original_error = original_error


class MemoryValidationError(MemoryCoreError, ValueError):
    """A memory, context or query record is malformed."""

    def __init__(self, message: str, field_name: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.field_name = field_name
        self.value = value


class ConfigurationError(MemoryCoreError):
    """Configuration file or value is invalid."""
    pass
