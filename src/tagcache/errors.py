"""
Structured error types for tagcache.

Provides a small hierarchy of typed errors carrying a category, a retry
hint, structured context, and an optional chained cause.

Manifesto:
    Expected negative outcomes (a lock held at save time, nothing to
    delete, an empty batch) are NOT errors: the pool reports them through
    boolean or empty-collection return values. Exceptions are reserved for
    conditions the caller must handle or propagate.

    - **Construction errors:** fatal, raised while building a pool
    - **Codec errors:** a stored payload that no longer decodes
    - **Invalid-argument errors:** raised per call for malformed keys
    - **Transport errors:** redis-py exceptions, propagated unchanged

Architecture:
    ::

        CacheError  (category, retryable, context, cause)
        ├── CacheConfigError   CONFIG
        ├── InvalidKeyError    VALIDATION  (also a ValueError)
        ├── CodecError         SERIALIZATION
        └── ScriptError        INTERNAL

        redis.exceptions.RedisError  → propagated as-is
        redis.exceptions.NoScriptError → recovered by the script engine

Examples:
    >>> error = InvalidKeyError("Invalid key (a:b)").with_context(key="a:b")
    >>> error.category
    <ErrorCategory.VALIDATION: 'VALIDATION'>
    >>> error.to_dict()["context"]
    {'key': 'a:b'}

Tags:
    error-handling, exception-hierarchy, tagcache

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for classification in logs."""

    CONFIG = "CONFIG"                # Invalid pool or settings options
    VALIDATION = "VALIDATION"        # Malformed keys or prefixes
    NETWORK = "NETWORK"              # Transport-level failures
    SERIALIZATION = "SERIALIZATION"  # Codec failures
    INTERNAL = "INTERNAL"            # Unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to a :class:`CacheError`.

    Only non-``None`` fields are emitted by :meth:`to_dict`, so the
    context can be splatted straight into a structured log event.
    """

    key: str | None = None
    tag: str | None = None
    prefix: str | None = None
    operation: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["key", "tag", "prefix", "operation"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class CacheError(Exception):
    """
    Base exception for all tagcache errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can
    be overridden per instance.

    Example:
        >>> try:
        ...     raise ValueError("bad method")
        ... except ValueError as e:
        ...     error = CacheError("Pool setup failed", cause=e)
        >>> error.cause
        ValueError('bad method')
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CacheError:
        """
        Add context to this error (fluent API).

        Usage:
            raise InvalidKeyError("Invalid key").with_context(key=key)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


class CacheConfigError(CacheError):
    """Invalid pool configuration. Raised at construction, never recoverable."""

    default_category = ErrorCategory.CONFIG


class InvalidKeyError(CacheError, ValueError):
    """A logical key or key prefix is empty or contains a reserved character."""

    default_category = ErrorCategory.VALIDATION


class CodecError(CacheError):
    """A stored value could not be decompressed or deserialized."""

    default_category = ErrorCategory.SERIALIZATION


class ScriptError(CacheError):
    """A server-side script returned a reply of an unexpected shape."""

    default_category = ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "CacheError",
    "CacheConfigError",
    "InvalidKeyError",
    "CodecError",
    "ScriptError",
]
