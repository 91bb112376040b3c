"""
Structured error types for localci.

Provides a small hierarchy of typed errors carrying a category, retry
semantics, structured context, and the chained root cause. Every failure
that crosses a pipeline boundary is either a ``LocalCIError`` subclass or
an exception raised by the container driver that the pipeline propagates
untouched.

Manifesto:
    - **Typed Error Hierarchy:** Container, pipeline, step, and expression
      failures are distinct types, so callers branch on type, not message.
    - **Explicit Propagation Policy:** Lower layers (context projection,
      naming, env merge) never raise. Mid layers (container lifecycle,
      step execution) raise. The job pipeline is the only place a failure
      terminates a run.
    - **Rich Context:** Errors carry workflow/job/step/container metadata
      for logging.
    - **Error Chaining:** The original exception is kept as ``cause``.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       LocalCIError                               │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ContainerError     PipelineError          ConfigError          │
        │  (CONTAINER)        (PIPELINE)             (CONFIG)             │
        │       │                  │                                       │
        │  DockerNotFound     PipelineCancelled      ExpressionError      │
        │                     UnsupportedStep        (EXPRESSION)         │
        │                                                                  │
        │  GitError  (GIT, degraded: logged, never fatal)                 │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = ContainerError("exec failed", exit_code=2)
    >>> error.category
    <ErrorCategory.CONTAINER: 'CONTAINER'>
    >>> error.with_context(job="ci/build", container="localci-ci-build")
    ContainerError('exec failed', category=CONTAINER)

Tags:
    error-handling, exception-hierarchy, error-context, localci
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    # Execution
    CONTAINER = "CONTAINER"       # Pull, create, start, exec, copy
    PIPELINE = "PIPELINE"         # Pipeline composition / control flow
    STEP = "STEP"                 # Step could not be executed
    CANCELLED = "CANCELLED"       # Execution context cancelled

    # Inputs
    EXPRESSION = "EXPRESSION"     # Expression evaluation
    CONFIG = "CONFIG"             # Missing or invalid settings
    GIT = "GIT"                   # Repository metadata discovery

    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only fields that were set appear in ``to_dict()``; anything without a
    dedicated field lands in ``metadata``.

    Attributes:
        workflow: Workflow name
        job: Job identity (``workflow/job``)
        step: Step identifier
        container: Container name
        image: Container image
        metadata: Additional key-value pairs
    """

    workflow: str | None = None
    job: str | None = None
    step: str | None = None
    container: str | None = None
    image: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["workflow", "job", "step", "container", "image"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class LocalCIError(Exception):
    """
    Base exception for all localci errors.

    Subclasses set ``default_category`` and ``default_retryable`` so call
    sites only pass what differs from the defaults.

    Examples:
        >>> error = LocalCIError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.to_dict()["retryable"]
        False
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

    def with_context(self, **kwargs: Any) -> LocalCIError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ContainerError("create failed").with_context(
                container="localci-ci-build", image="node:16-buster-slim"
            )
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


# =============================================================================
# CONFIG ERRORS
# =============================================================================


class ConfigError(LocalCIError):
    """Missing or invalid runner configuration."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


# =============================================================================
# CONTAINER ERRORS
# =============================================================================


class ContainerError(LocalCIError):
    """
    A container lifecycle operation failed.

    Fatal to the job pipeline: pull, create, start, exec, and copy
    failures all surface as this type.
    """

    default_category = ErrorCategory.CONTAINER
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        command: list[str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.exit_code = exit_code
        self.command = command or []

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.exit_code is not None:
            result["exit_code"] = self.exit_code
        return result


class DockerNotFoundError(ContainerError):
    """Raised when the docker CLI is not available."""


# =============================================================================
# PIPELINE ERRORS
# =============================================================================


class PipelineError(LocalCIError):
    """Pipeline execution error."""

    default_category = ErrorCategory.PIPELINE
    default_retryable = False


class PipelineCancelledError(PipelineError):
    """The execution context was cancelled while a unit was running."""

    default_category = ErrorCategory.CANCELLED


class UnsupportedStepError(PipelineError):
    """A step resolves to an action type the engine cannot execute."""

    default_category = ErrorCategory.STEP

    def __init__(self, step: str, reason: str):
        self.step_name = step
        super().__init__(f"Unable to run step '{step}': {reason}")


# =============================================================================
# INPUT / METADATA ERRORS
# =============================================================================


class ExpressionError(LocalCIError):
    """Expression evaluation failed."""

    default_category = ErrorCategory.EXPRESSION
    default_retryable = False


class GitError(LocalCIError):
    """Repository metadata could not be discovered."""

    default_category = ErrorCategory.GIT
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, LocalCIError):
        return error.category
    if isinstance(error, OSError):
        return ErrorCategory.CONTAINER
    if isinstance(error, (KeyError, AttributeError, ValueError)):
        return ErrorCategory.CONFIG
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "LocalCIError",
    "ConfigError",
    "ContainerError",
    "DockerNotFoundError",
    "PipelineError",
    "PipelineCancelledError",
    "UnsupportedStepError",
    "ExpressionError",
    "GitError",
    "categorize_error",
]
