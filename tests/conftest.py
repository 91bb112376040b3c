"""
Shared pytest fixtures for localci tests.

This module provides:
- An in-memory container engine (``StubEngine``)
- A small expression evaluator understanding ``${{ a.b.c }}`` lookups and
  ``Boolean(...)`` coercion, recording every call it receives
- A scripted git metadata source
- Builders for workflow runs and run contexts

Usage:
    async def test_job(make_rc, make_run, engine):
        rc = make_rc(make_run([Step(run="echo hi")]))
        await rc.executor()(ExecutionContext())
        assert "exec" in engine.ops(rc.job_container_name())
"""

from __future__ import annotations

import re
from typing import Any, Callable

import pytest

from localci.container import StubEngine
from localci.core.errors import ExpressionError, GitError
from localci.model import Job, JobContainer, Run, Step, Workflow
from localci.runner import ContextSnapshot, RunContext, RunnerConfig

_INTERPOLATION = re.compile(r"\$\{\{\s*([A-Za-z0-9_.\-]+)\s*\}\}")
_BOOLEAN = re.compile(r"^Boolean\((.*)\)$", re.DOTALL)


# =============================================================================
# Expression evaluator
# =============================================================================


class FakeEvaluator:
    """Evaluator bound to one snapshot.

    ``interpolate`` replaces ``${{ path }}`` with the value found by walking
    ``snapshot.to_dict()``. ``evaluate`` understands ``Boolean(x)`` where x
    is ``true``/``false``, ``success()``/``failure()``/``always()``, or any
    other text (truthy unless empty or ``0``). ``explode`` raises.
    """

    def __init__(self, snapshot: ContextSnapshot, calls: list[tuple[str, str]]):
        self.snapshot = snapshot
        self.calls = calls

    def _lookup(self, path: str) -> str:
        node: Any = self.snapshot.to_dict()
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return ""
            node = node[part]
        return node if isinstance(node, str) else str(node)

    def interpolate(self, text: str) -> str:
        self.calls.append(("interpolate", text))
        return _INTERPOLATION.sub(lambda m: self._lookup(m.group(1)), text)

    def evaluate(self, expression: str) -> str:
        self.calls.append(("evaluate", expression))
        match = _BOOLEAN.match(expression)
        inner = (match.group(1) if match else expression).strip()
        if inner == "explode":
            raise ExpressionError(f"Unable to evaluate '{inner}'")
        if inner == "success()":
            return "true" if self.snapshot.job.status == "success" else "false"
        if inner == "failure()":
            return "true" if self.snapshot.job.status == "failure" else "false"
        if inner in ("always()", "true"):
            return "true"
        if inner in ("false", "", "0"):
            return "false"
        return "true"


class EvaluatorRecorder:
    """``EvaluatorFactory`` that keeps every snapshot and call it sees."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.snapshots: list[ContextSnapshot] = []

    def __call__(self, snapshot: ContextSnapshot) -> FakeEvaluator:
        self.snapshots.append(snapshot)
        return FakeEvaluator(snapshot, self.calls)

    def evaluated(self) -> list[str]:
        return [expr for kind, expr in self.calls if kind == "evaluate"]


# =============================================================================
# Git metadata
# =============================================================================


class StubGit:
    """``GitInfo`` with fixed answers; names in ``fail`` raise ``GitError``.

    ``lookups`` counts every call.
    """

    def __init__(
        self,
        repo: str = "nektos/act",
        sha: str = "5a6b7c8d9e0f11223344556677889900aabbccdd",
        ref: str = "refs/heads/main",
        fail: tuple[str, ...] = (),
    ):
        self.repo = repo
        self.sha = sha
        self.ref = ref
        self.fail = fail
        self.lookups = 0

    def find_github_repo(self, path: str) -> str:
        self.lookups += 1
        if "repo" in self.fail:
            raise GitError("no remote named origin")
        return self.repo

    def find_git_revision(self, path: str) -> tuple[str, str]:
        self.lookups += 1
        if "sha" in self.fail:
            raise GitError("no HEAD")
        return self.sha[:7], self.sha

    def find_git_ref(self, path: str) -> str:
        self.lookups += 1
        if "ref" in self.fail:
            raise GitError("detached HEAD")
        return self.ref


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def engine() -> StubEngine:
    return StubEngine()


@pytest.fixture
def evaluator() -> EvaluatorRecorder:
    return EvaluatorRecorder()


@pytest.fixture
def git() -> StubGit:
    return StubGit()


@pytest.fixture
def config() -> RunnerConfig:
    return RunnerConfig(
        workdir="/src/project",
        platforms={"ubuntu-latest": "node:16-buster-slim"},
        event_name="push",
    )


@pytest.fixture
def make_run() -> Callable[..., Run]:
    """Build a one-job ``Run`` (workflow ``ci``, job ``build``)."""

    def _make_run(
        steps: list[Step] | None = None,
        *,
        runs_on: str | list[str] = "ubuntu-latest",
        job_if: str = "",
        container: JobContainer | None = None,
        job_env: dict[str, str] | None = None,
        workflow_env: dict[str, str] | None = None,
    ) -> Run:
        job = Job(
            name="build",
            runs_on=runs_on,
            container=container,
            env=dict(job_env or {}),
            if_=job_if,
            steps=list(steps or []),
        )
        workflow = Workflow(name="ci", env=dict(workflow_env or {}), jobs={"build": job})
        return Run(workflow=workflow, job_id="build")

    return _make_run


@pytest.fixture
def make_rc(
    config: RunnerConfig,
    engine: StubEngine,
    evaluator: EvaluatorRecorder,
    git: StubGit,
) -> Callable[..., RunContext]:
    """Build a ``RunContext`` for job ``build`` wired to the stub collaborators."""

    def _make_rc(run: Run, **kwargs: Any) -> RunContext:
        kwargs.setdefault("engine", engine)
        kwargs.setdefault("evaluator_factory", evaluator)
        kwargs.setdefault("git", git)
        rc_config = kwargs.pop("config", config)
        return RunContext("build", rc_config, run, **kwargs)

    return _make_rc
