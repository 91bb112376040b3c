"""Action pipeline: deferred, cancellable, composable units of work."""

from localci.pipeline.context import ExecutionContext
from localci.pipeline.executor import Conditional, Executor, ExecutorFn, noop, pipeline

__all__ = [
    "Conditional",
    "ExecutionContext",
    "Executor",
    "ExecutorFn",
    "noop",
    "pipeline",
]
