"""In-memory container engine for tests.

``StubEngine`` satisfies the ``ContainerEngine`` contract without Docker.
Every lifecycle call is recorded in order, files copied into containers
are kept in memory, and failures or exec output can be scripted.

.. code-block:: text

    StubEngine behavior:

    new_container(spec)      → StubContainer (registered by name)
    <container>.<op>(...)    → appends StubCall(container, op, args)
    remove_volume(name)      → appends StubCall(name, "remove_volume", ...)

    Inject failures:
      engine.fail("exec")                       → every exec raises
      engine.fail("pull", name="localci-dind")  → only that container

    Script exec output:
      engine.on_exec = lambda container, cmd, env: ["::set-output name=x::1\\n"]
      (lines are written to the container's stdout sink)

Example::

    engine = StubEngine()
    rc = RunContext("build", config, run, engine=engine, evaluator_factory=...)
    await rc.executor()(ExecutionContext())
    assert engine.ops("localci-ci-build")[:4] == ["pull", "remove", "create", "start"]
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from localci.container._types import ContainerSpec, FileEntry
from localci.core.errors import ContainerError
from localci.pipeline import ExecutionContext, Executor

ExecHook = Callable[["StubContainer", list[str], dict[str, str]], list[str] | None]


@dataclass
class StubCall:
    """One recorded lifecycle call."""

    container: str
    op: str
    args: dict[str, Any] = field(default_factory=dict)


class StubEngine:
    """Records container lifecycle calls instead of running them."""

    def __init__(self) -> None:
        self.calls: list[StubCall] = []
        self.containers: dict[str, StubContainer] = {}
        self.on_exec: ExecHook | None = None
        self._failures: dict[tuple[str, str | None], Exception] = {}

    def new_container(self, spec: ContainerSpec) -> StubContainer:
        container = StubContainer(spec, self)
        self.containers[spec.name] = container
        return container

    def remove_volume(self, name: str, force: bool) -> Executor:
        return self._record(name, "remove_volume", {"force": force})

    def fail(self, op: str, *, name: str | None = None, error: Exception | None = None) -> None:
        """Make ``op`` raise (for one container, or all when ``name`` is None)."""
        self._failures[(op, name)] = error or ContainerError(f"stub {op} failed", exit_code=1)

    def ops(self, name: str) -> list[str]:
        """Operation names recorded for one container, in call order."""
        return [call.op for call in self.calls if call.container == name]

    def _check_failure(self, name: str, op: str) -> None:
        error = self._failures.get((op, name)) or self._failures.get((op, None))
        if error is not None:
            raise error

    def _record(
        self,
        name: str,
        op: str,
        args: dict[str, Any] | None = None,
        action: Callable[[ExecutionContext], None] | None = None,
    ) -> Executor:
        async def _call(ctx: ExecutionContext) -> None:
            self.calls.append(StubCall(name, op, dict(args or {})))
            self._check_failure(name, op)
            if action is not None:
                action(ctx)

        return Executor(_call)


class StubContainer:
    """A container that only exists in the stub engine's memory."""

    def __init__(self, spec: ContainerSpec, engine: StubEngine) -> None:
        self.spec = spec
        self._engine = engine
        self.files: dict[str, FileEntry] = {}
        self.execs: list[tuple[list[str], dict[str, str], str | None]] = []
        self.running = False

    def pull(self, force: bool) -> Executor:
        return self._engine._record(self.spec.name, "pull", {"force": force})

    def remove(self) -> Executor:
        def _remove(ctx: ExecutionContext) -> None:
            self.running = False

        return self._engine._record(self.spec.name, "remove", action=_remove)

    def create(self) -> Executor:
        return self._engine._record(self.spec.name, "create")

    def start(self, attach: bool) -> Executor:
        def _start(ctx: ExecutionContext) -> None:
            self.running = True

        return self._engine._record(self.spec.name, "start", {"attach": attach}, _start)

    def exec(
        self, cmd: list[str], env: dict[str, str], workdir: str | None = None
    ) -> Executor:
        def _exec(ctx: ExecutionContext) -> None:
            self.execs.append((list(cmd), dict(env), workdir))
            if self._engine.on_exec is None:
                return
            for line in self._engine.on_exec(self, cmd, env) or []:
                if self.spec.stdout is not None:
                    self.spec.stdout.write(line)
            if self.spec.stdout is not None:
                self.spec.stdout.flush()

        return self._engine._record(
            self.spec.name, "exec", {"cmd": list(cmd), "workdir": workdir}, _exec
        )

    def copy(self, dest_dir: str, *files: FileEntry) -> Executor:
        def _copy(ctx: ExecutionContext) -> None:
            for entry in files:
                self.files[f"{dest_dir.rstrip('/')}/{entry.name}"] = entry

        return self._engine._record(
            self.spec.name,
            "copy",
            {"dest_dir": dest_dir, "files": [f.name for f in files]},
            _copy,
        )

    def copy_dir(self, dest: str, src: str, use_cache: bool) -> Executor:
        return self._engine._record(
            self.spec.name, "copy_dir", {"dest": dest, "src": src, "use_cache": use_cache}
        )

    def change_remote_to_https(self, path: str) -> Executor:
        return self._engine._record(self.spec.name, "change_remote_to_https", {"path": path})
