"""Cancellable execution context threaded through every pipeline unit.

Every blocking operation (pull, create, start, exec, copy) awaits through
``ExecutionContext.wait`` so that cancelling the context makes the
in-flight operation return promptly with ``PipelineCancelledError``.

Architecture:

    .. code-block:: text

        ExecutionContext
        ├── logger          structlog logger, bound with job/step fields
        ├── cancel()        flip the shared cancellation flag
        ├── cancel_after()  schedule cancel() on the running loop
        ├── bind(**fields)  child context, same cancellation state
        └── wait(aw)        race aw against cancellation

        wait(aw)
          ├── aw finishes first      → its result / its exception
          └── cancellation first     → aw's task cancelled,
                                       PipelineCancelledError raised

Example:
    >>> ctx = ExecutionContext()
    >>> ctx.cancel_after(600)
    >>> await rc.executor()(ctx.bind(job=str(rc)))
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import Any, TypeVar

from localci.core.errors import PipelineCancelledError
from localci.core.logging import get_logger

T = TypeVar("T")


class _CancelState:
    """Cancellation flag shared by a context and all contexts bound from it."""

    def __init__(self) -> None:
        self.event = asyncio.Event()
        self.reason = ""
        self._timer: asyncio.TimerHandle | None = None


class ExecutionContext:
    """Logger plus cancellation state for one pipeline run."""

    def __init__(self, logger: Any = None, *, _state: _CancelState | None = None) -> None:
        self.logger = logger if logger is not None else get_logger("localci")
        self._state = _state or _CancelState()

    def bind(self, **fields: Any) -> ExecutionContext:
        """Return a child context whose logger carries ``fields``."""
        return ExecutionContext(self.logger.bind(**fields), _state=self._state)

    @property
    def cancelled(self) -> bool:
        return self._state.event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._state.event.is_set():
            self._state.reason = reason
            self._state.event.set()

    def cancel_after(self, seconds: float) -> None:
        """Cancel this context once ``seconds`` have elapsed (must be called inside a loop)."""
        loop = asyncio.get_running_loop()
        if self._state._timer is not None:
            self._state._timer.cancel()
        self._state._timer = loop.call_later(
            seconds, self.cancel, f"deadline of {seconds}s exceeded"
        )

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise PipelineCancelledError(f"Execution {self._state.reason}")

    async def wait(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the context is cancelled first."""
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._state.event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        raise PipelineCancelledError(f"Execution {self._state.reason}")
