"""Expression evaluation seam and the condition policy.

The expression language is provided by a collaborator. This module fixes
the interface it must satisfy and the one policy the job engine owns:
how ``if:`` conditions are turned into booleans.

Condition policy:

    .. code-block:: text

        ""                      → True   (evaluator never called)
        expr                    → evaluate("Boolean(" + interpolate(expr) + ")")
            result == "true"    → True
            any other result    → False
            ExpressionError     → False, kept on ConditionResult.error
            other exception     → False, wrapped in an ExpressionError
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from localci.core.errors import ExpressionError
from localci.runner.contexts import ContextSnapshot


@runtime_checkable
class ExpressionEvaluator(Protocol):
    """Evaluates expressions against one ``ContextSnapshot``."""

    def evaluate(self, expression: str) -> str: ...

    def interpolate(self, text: str) -> str: ...


EvaluatorFactory = Callable[[ContextSnapshot], ExpressionEvaluator]


@dataclass(frozen=True)
class ConditionResult:
    """Boolean outcome of a condition, with the evaluation error if there was one."""

    value: bool
    error: ExpressionError | None = None

    @property
    def coerced(self) -> bool:
        """True when an evaluation error was turned into ``False``."""
        return self.error is not None

    def __bool__(self) -> bool:
        return self.value


def evaluate_condition(evaluator: ExpressionEvaluator, expression: str) -> ConditionResult:
    if not expression:
        return ConditionResult(True)
    try:
        result = evaluator.evaluate(f"Boolean({evaluator.interpolate(expression)})")
    except ExpressionError as exc:
        return ConditionResult(False, exc)
    except Exception as exc:
        error = ExpressionError(f"Unable to evaluate '{expression}': {exc}", cause=exc)
        return ConditionResult(False, error)
    return ConditionResult(result == "true")
