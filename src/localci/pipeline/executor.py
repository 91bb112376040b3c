"""Composable deferred units of work.

An ``Executor`` wraps ``async fn(ctx) -> None``. Nothing runs until the
executor is awaited with an ``ExecutionContext``; success is returning,
failure is raising. Every higher-level stage of a job (container start,
step run, teardown) is one executor or a sequence of them.

Composition:

    .. code-block:: text

        pipeline(a, b, c)      a → b → c, first failure stops the rest
        a.then(b)              b only if a succeeded; b's outcome wins
        a.if_(pred)            a only when pred(ctx) is true, else success
        a.if_bool(flag)        a only when flag is true, else success

Example::

    start = pipeline(
        container.pull(force_pull),
        container.remove().if_bool(not reuse),
        container.create(),
        container.start(attach=False),
    )
    await start(ctx)
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from localci.pipeline.context import ExecutionContext

ExecutorFn = Callable[[ExecutionContext], Awaitable[None]]
Conditional = Callable[[ExecutionContext], bool]


class Executor:
    """A deferred, cancellable unit of work."""

    __slots__ = ("_fn",)

    def __init__(self, fn: ExecutorFn) -> None:
        self._fn = fn

    async def __call__(self, ctx: ExecutionContext) -> None:
        ctx.raise_if_cancelled()
        await self._fn(ctx)

    def then(self, then: Executor) -> Executor:
        """Run ``then`` after this executor, only if this one succeeded."""

        async def _then(ctx: ExecutionContext) -> None:
            await self(ctx)
            await then(ctx)

        return Executor(_then)

    def if_(self, conditional: Conditional) -> Executor:
        """Gate this executor on ``conditional(ctx)``; a false gate is a success."""

        async def _if(ctx: ExecutionContext) -> None:
            if conditional(ctx):
                await self(ctx)

        return Executor(_if)

    def if_bool(self, flag: bool) -> Executor:
        """Gate this executor on a precomputed boolean."""
        return self if flag else noop()


def pipeline(*executors: Executor) -> Executor:
    """Run ``executors`` in order, aborting on the first failure."""

    async def _pipeline(ctx: ExecutionContext) -> None:
        for executor in executors:
            await executor(ctx)

    return Executor(_pipeline)


def noop() -> Executor:
    """An executor that does nothing."""

    async def _noop(ctx: ExecutionContext) -> None:
        return None

    return Executor(_noop)
