"""Cross-cutting primitives for localci: errors, logging, settings."""

from localci.core.errors import (
    ConfigError,
    ContainerError,
    DockerNotFoundError,
    ErrorCategory,
    ErrorContext,
    ExpressionError,
    GitError,
    LocalCIError,
    PipelineCancelledError,
    PipelineError,
    UnsupportedStepError,
    categorize_error,
)
from localci.core.logging import configure_logging, get_logger

__all__ = [
    "ConfigError",
    "ContainerError",
    "DockerNotFoundError",
    "ErrorCategory",
    "ErrorContext",
    "ExpressionError",
    "GitError",
    "LocalCIError",
    "PipelineCancelledError",
    "PipelineError",
    "UnsupportedStepError",
    "categorize_error",
    "configure_logging",
    "get_logger",
]
