"""
Structured error types for forkqueue.

Provides a small hierarchy of typed errors with metadata for retry decisions,
error categorization and root cause analysis through error chaining.

Process creation is the only place where the pool itself can fail; everything
a worker does is reduced to an exit status and never raised in the controller.
The hierarchy therefore centres on spawning:

- **Category:** What kind of error (process, config, internal)
- **Retryable:** Whether the operation can be retried automatically
- **Retry-after:** How long to wait before retrying
- **Context:** Job id, pid, run id and custom fields
- **Cause:** Chained underlying exception (usually the ``OSError`` from fork)

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────┐
        │                     ForkQueueError                        │
        │  (category, retryable, retry_after, context, cause)      │
        ├──────────────────────────────────────────────────────────┤
        │                                                           │
        │  SpawnError            ConfigError                        │
        │  (PROCESS)             (CONFIG)                           │
        │      │                     │                              │
        │  TransientSpawnError   InvalidConfigError                 │
        │  (retryable=True)      CallbackResolutionError            │
        └──────────────────────────────────────────────────────────┘

Examples:
    >>> error = TransientSpawnError("fork failed: EAGAIN", retry_after=5)
    >>> error.retryable
    True
    >>> error.with_context(job_id="nightly").context.job_id
    'nightly'

Usage:
    from forkqueue.core.errors import classify_spawn_error

    try:
        pid = os.fork()
    except OSError as exc:
        raise classify_spawn_error(exc, job_id=job_id) from exc
"""

from __future__ import annotations

import errno
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# fork() errnos that mean "the process table or memory is full right now"
TRANSIENT_SPAWN_ERRNOS = frozenset({errno.EAGAIN, errno.ENOMEM})


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    PROCESS = "PROCESS"           # fork, wait, kill
    CONFIG = "CONFIG"             # invalid pool configuration
    INTERNAL = "INTERNAL"         # bugs, unexpected state
    UNKNOWN = "UNKNOWN"           # uncategorized errors


@dataclass
class ErrorContext:
    """
    Structured metadata context for errors.

    Typed fields cover what the pool knows about a failure; anything else goes
    into ``metadata``. ``to_dict()`` serializes the non-None fields for logging.

    Attributes:
        job_id: Job being spawned or collected
        pid: Worker pid, when one exists
        run_id: Identifier of the dispatcher run
        metadata: Additional key-value pairs
    """

    job_id: str | None = None
    pid: int | None = None
    run_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["job_id", "pid", "run_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ForkQueueError(Exception):
    """
    Base exception for all forkqueue errors.

    Every instance carries a category, a retryable flag, an optional
    retry delay, an :class:`ErrorContext` and the chained cause. Subclasses set
    ``default_category`` and ``default_retryable``.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ForkQueueError:
        """
        Add context to this error (fluent API).

        Usage:
            raise SpawnError("fork failed").with_context(job_id="a", attempt=3)
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
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# PROCESS ERRORS
# =============================================================================


class SpawnError(ForkQueueError):
    """Worker process could not be created and retrying will not help."""

    default_category = ErrorCategory.PROCESS
    default_retryable = False


class TransientSpawnError(SpawnError):
    """
    Worker process could not be created for now.

    Raised for resource exhaustion (process table full, out of memory). The
    dispatcher waits ``retry_after`` seconds and tries the same job again.
    """

    default_retryable = True


# =============================================================================
# CONFIG ERRORS
# =============================================================================


class ConfigError(ForkQueueError):
    """Configuration problem; never retryable."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class InvalidConfigError(ConfigError):
    """A configuration value is out of range or malformed."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        msg = message or f"Invalid value for {key}: {value!r}"
        super().__init__(msg)
        self.context.metadata["config_key"] = key
        self.context.metadata["config_value"] = repr(value)


class CallbackResolutionError(ConfigError):
    """A ``module:function`` work callback reference could not be imported."""

    def __init__(self, reference: str, message: str | None = None, cause: Exception | None = None):
        super().__init__(message or f"Cannot resolve work callback {reference!r}", cause=cause)
        self.context.metadata["callback"] = reference


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, ForkQueueError):
        return error.retryable
    if isinstance(error, OSError):
        return error.errno in TRANSIENT_SPAWN_ERRNOS
    return False


def classify_spawn_error(
    error: OSError,
    *,
    job_id: str | None = None,
    retry_after: float | None = None,
) -> SpawnError:
    """Wrap a fork ``OSError`` in the matching :class:`SpawnError` subclass."""
    context = ErrorContext(job_id=job_id, metadata={"errno": error.errno})
    if error.errno in TRANSIENT_SPAWN_ERRNOS:
        return TransientSpawnError(
            f"Cannot fork worker for now: {error.strerror or error}",
            retry_after=retry_after,
            context=context,
            cause=error,
        )
    return SpawnError(
        f"Cannot fork worker: {error.strerror or error}",
        context=context,
        cause=error,
    )


__all__ = [
    "TRANSIENT_SPAWN_ERRNOS",
    "ErrorCategory",
    "ErrorContext",
    "ForkQueueError",
    "SpawnError",
    "TransientSpawnError",
    "ConfigError",
    "InvalidConfigError",
    "CallbackResolutionError",
    "is_retryable",
    "classify_spawn_error",
]
