"""Job-scoped state and assembly of the job pipeline.

``RunContext`` owns everything mutable about one job run: the cached
environment overlay, matrix values, step results, the current-step
pointer, the expression evaluator, and the two containers (job container
and the privileged dind sidecar). ``executor()`` turns it into a single
``Executor``.

Manifesto:
    - **One pipeline per job:** matrix log, sidecar, job container, one
      stage per step, teardown. A failure at any stage aborts everything
      after it, teardown included.
    - **Skipped is not failed:** a false ``if:`` or a job with no
      resolvable image is gated off and reports success.
    - **Explicit context:** expressions are evaluated against an
      immutable ``ContextSnapshot`` built per step and handed to the
      evaluator factory.

Architecture:

    .. code-block:: text

        executor() = resolve github metadata (worker thread, once) → pipeline(
            log matrix,
            start_dind_container(),    pull → remove? → create → start
            start_job_container(),     pull → remove? → create → start
                                       → copy workspace? → https remote?
                                       → copy event.json + home/.act
            step[0] ... step[n],       new_step_executor(step)
            stop_job_container(),      remove job → remove dind → remove volume
        ).if_(is_enabled)

    Step stage (new_step_executor):

    .. code-block:: text

        register StepResult(success=True) → current_step = id
          → compose env (best-effort) → evaluator(snapshot)
          → condition: false/error → skipped (success)
                       true        → run → succeeded
                                           └─ failed: mark + re-raise

Related Modules:
    - :mod:`localci.runner.step_context` — per-step env and dispatch
    - :mod:`localci.runner.contexts` — projections and snapshots
    - :mod:`localci.container` — the lifecycle contract used here

Tags:
    runner, job, pipeline, containers, steps
"""

from __future__ import annotations

import asyncio
import posixpath
import sys
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

import structlog

from localci.container import (
    Container,
    ContainerEngine,
    ContainerSpec,
    FileEntry,
    LineWriter,
    create_container_name,
)
from localci.core.errors import PipelineCancelledError, PipelineError, categorize_error
from localci.core.logging import get_logger
from localci.model import Run, Step
from localci.pipeline import ExecutionContext, Executor, pipeline
from localci.runner.commands import CommandHandler
from localci.runner.config import RunnerConfig
from localci.runner.contexts import (
    WORKSPACE,
    ContextSnapshot,
    GithubContext,
    StepResult,
    StepState,
    build_github_context,
    merge_maps,
)
from localci.runner.expressions import (
    ConditionResult,
    EvaluatorFactory,
    ExpressionEvaluator,
    evaluate_condition,
)
from localci.runner.git import GitCLI, GitInfo
from localci.runner.step_context import ActionRunner, StepContext

logger = get_logger(__name__)

DIND_IMAGE = "docker:dind"
JOB_ENTRYPOINT = ["/usr/bin/tail", "-f", "/dev/null"]

JOB_CONTAINER_ENV = {
    "RUNNER_TOOL_CACHE": "/opt/hostedtoolcache",
    "RUNNER_OS": "Linux",
    "RUNNER_TEMP": "/tmp",
    "DOCKER_TLS_VERIFY": "1",
    "DOCKER_CERT_PATH": "/certs/client",
    "DOCKER_HOST": "tcp://docker:2376",
}


class RunContext:
    """Everything about one job run.

    Args:
        name: Job id within the workflow.
        config: Runner configuration.
        run: The workflow/job selection.
        engine: Container engine used for both containers.
        evaluator_factory: Builds an evaluator for a ``ContextSnapshot``.
        matrix: Matrix values of this job instance.
        event_json: Raw event payload injected as ``workflow/event.json``.
        git: Repository metadata source (``GitCLI`` by default).
        action_runner: Runs packaged actions; ``uses`` steps fail without one.
    """

    def __init__(
        self,
        name: str,
        config: RunnerConfig,
        run: Run,
        *,
        engine: ContainerEngine,
        evaluator_factory: EvaluatorFactory,
        matrix: dict[str, Any] | None = None,
        event_json: str = "",
        git: GitInfo | None = None,
        action_runner: ActionRunner | None = None,
    ) -> None:
        self.name = name
        self.config = config
        self.run = run
        self.engine = engine
        self.evaluator_factory = evaluator_factory
        self.matrix: dict[str, Any] = dict(matrix or {})
        self.event_json = event_json
        self.git = git if git is not None else GitCLI()
        self.action_runner = action_runner

        self.env: dict[str, str] | None = None
        self.exported_env: dict[str, str] = {}
        self.extra_path: list[str] = []
        self.current_step = ""
        self.step_results: dict[str, StepResult] = {}
        self.job_container: Container | None = None
        self.dind_container: Container | None = None
        self.enabled: bool | None = None
        self._expr_eval: ExpressionEvaluator | None = None
        self._github: GithubContext | None = None

    def __str__(self) -> str:
        return f"{self.run.workflow.name}/{self.name}"

    def __repr__(self) -> str:
        return f"RunContext({str(self)!r})"

    # ── Environment and contexts ─────────────────────────────────────────

    def get_env(self) -> dict[str, str]:
        """Config < workflow < job env, computed once."""
        if self.env is None:
            self.env = merge_maps(
                self.config.env, self.run.workflow.env, self.run.job().env
            )
        return self.env

    def github_context(self) -> GithubContext:
        """GitHub context for the current step.

        Repository metadata and the event payload are resolved on first use
        and reused for the rest of the job; only ``action`` follows the
        current step.
        """
        if self._github is None:
            self._github = build_github_context(
                self.config,
                workflow=self.run.workflow.name,
                event_json=self.event_json,
                git=self.git,
            )
        return replace(self._github, action=self.current_step)

    def snapshot(self, env: dict[str, str] | None = None) -> ContextSnapshot:
        return ContextSnapshot.build(
            github=self.github_context(),
            env=env if env is not None else self.get_env(),
            step_results=self.step_results,
            matrix=self.matrix,
        )

    def new_expression_evaluator(self, env: dict[str, str] | None = None) -> ExpressionEvaluator:
        return self.evaluator_factory(self.snapshot(env))

    @property
    def expr_eval(self) -> ExpressionEvaluator:
        if self._expr_eval is None:
            self._expr_eval = self.new_expression_evaluator()
        return self._expr_eval

    @expr_eval.setter
    def expr_eval(self, evaluator: ExpressionEvaluator) -> None:
        self._expr_eval = evaluator

    def condition(self, expression: str) -> ConditionResult:
        result = evaluate_condition(self.expr_eval, expression)
        if result.coerced:
            logger.debug("condition.error", expression=expression, error=str(result.error))
        elif expression:
            logger.debug("condition.evaluated", expression=expression, value=result.value)
        return result

    def eval_bool(self, expression: str) -> bool:
        """Evaluate ``expression`` as a condition; errors count as false."""
        return self.condition(expression).value

    # ── Containers ───────────────────────────────────────────────────────

    def job_container_name(self) -> str:
        return create_container_name(self.config.tool_name, str(self))

    def dind_container_name(self) -> str:
        return create_container_name(self.config.tool_name, "dind", str(self))

    def dind_cert_volume_name(self) -> str:
        return f"{self.dind_container_name()}-cert"

    def _volume(self, purpose: str) -> str:
        return f"{self.config.tool_name}-{purpose}"

    @staticmethod
    def bind_modifiers() -> str:
        return ":delegated" if sys.platform == "darwin" else ""

    def _binds(self) -> list[str]:
        if not self.config.bind_workdir:
            return []
        return [f"{self.config.workdir}:{WORKSPACE}{self.bind_modifiers()}"]

    def new_log_writer(self, ctx: ExecutionContext) -> LineWriter:
        """Writer feeding container output to workflow commands, then the log."""
        raw_logger = ctx.logger.bind(raw_output=True)
        emit = raw_logger.info if self.config.log_output else raw_logger.debug

        def _raw(line: str) -> bool:
            emit("container.output", line=line.rstrip("\r\n"))
            return True

        return LineWriter(CommandHandler(self, ctx.logger), _raw)

    def start_dind_container(self) -> Executor:
        async def _start_dind(ctx: ExecutionContext) -> None:
            ctx.logger.info("container.start", image=DIND_IMAGE, role="dind")
            writer = self.new_log_writer(ctx)
            self.dind_container = self.engine.new_container(
                ContainerSpec(
                    image=DIND_IMAGE,
                    name=self.dind_container_name(),
                    env=["DOCKER_TLS_CERTDIR=/certs"],
                    mounts={
                        self.dind_cert_volume_name(): "/certs/client",
                        self.job_container_name(): "/github",
                        self._volume("toolcache"): "/toolcache",
                        self._volume("actions"): "/actions",
                        self._volume("runner-home"): "/home/runner",
                        self._volume("dind-imagecache"): "/var/lib/docker/overlay2",
                    },
                    binds=self._binds(),
                    privileged=True,
                    stdout=writer,
                    stderr=writer,
                )
            )
            container = self.dind_container
            await pipeline(
                container.pull(False),
                container.remove().if_bool(not self.config.reuse_containers),
                container.create(),
                container.start(False),
            )(ctx)

        return Executor(_start_dind)

    def start_job_container(self) -> Executor:
        async def _start_job(ctx: ExecutionContext) -> None:
            image = self.platform_image()
            name = self.job_container_name()
            ctx.logger.info("container.start", image=image, role="job")
            writer = self.new_log_writer(ctx)
            self.job_container = self.engine.new_container(
                ContainerSpec(
                    image=image,
                    name=name,
                    entrypoint=list(JOB_ENTRYPOINT),
                    working_dir=WORKSPACE,
                    env=[f"{key}={value}" for key, value in JOB_CONTAINER_ENV.items()],
                    mounts={
                        self.dind_cert_volume_name(): "/certs/client",
                        name: "/github",
                        self._volume("toolcache"): "/toolcache",
                        self._volume("actions"): "/actions",
                        self._volume("runner-home"): "/home/runner",
                    },
                    links=[f"{self.dind_container_name()}:docker"],
                    binds=self._binds(),
                    stdout=writer,
                    stderr=writer,
                )
            )

            copy_workspace = False
            copy_to_path = WORKSPACE
            if not self.config.bind_workdir:
                checkout_path, copy_workspace = self.local_checkout_path()
                copy_to_path = posixpath.join(WORKSPACE, checkout_path)

            container = self.job_container
            await pipeline(
                container.pull(self.config.force_pull),
                container.remove().if_bool(not self.config.reuse_containers),
                container.create(),
                container.start(False),
                container.copy_dir(copy_to_path, self.config.workdir + "/.", False).if_bool(
                    copy_workspace
                ),
                container.change_remote_to_https(copy_to_path).if_bool(copy_workspace),
                container.copy(
                    "/github/",
                    FileEntry(name="workflow/event.json", mode=0o644, body=self.event_json),
                    FileEntry(name="home/.act", mode=0o644, body=""),
                ),
            )(ctx)

        return Executor(_start_job)

    def _require_job_container(self) -> Container:
        if self.job_container is None:
            raise PipelineError(f"Job container for {self} has not been started")
        return self.job_container

    def exec_job_container(
        self, cmd: list[str], env: dict[str, str], workdir: str | None = None
    ) -> Executor:
        async def _exec(ctx: ExecutionContext) -> None:
            await self._require_job_container().exec(cmd, env, workdir)(ctx)

        return Executor(_exec)

    def copy_to_job_container(self, dest_dir: str, *files: FileEntry) -> Executor:
        async def _copy(ctx: ExecutionContext) -> None:
            await self._require_job_container().copy(dest_dir, *files)(ctx)

        return Executor(_copy)

    def stop_job_container(self) -> Executor:
        async def _stop(ctx: ExecutionContext) -> None:
            if self.job_container is None or self.config.reuse_containers:
                return
            teardown = self.job_container.remove()
            if self.dind_container is not None:
                teardown = teardown.then(self.dind_container.remove())
            teardown = teardown.then(self.engine.remove_volume(self.job_container_name(), False))
            await teardown(ctx)
            ctx.logger.debug("job.teardown_complete")

        return Executor(_stop)

    # ── Job assembly ─────────────────────────────────────────────────────

    def platform_image(self) -> str:
        """Explicit container image, else the first runs-on label with a mapping."""
        job = self.run.job()
        if job.container is not None:
            return job.container.image
        for label in job.runner_labels():
            platform = self.expr_eval.interpolate(label)
            image = self.config.platforms.get(platform.lower(), "")
            if image:
                return image
        return ""

    def is_enabled(self, ctx: ExecutionContext) -> bool:
        job = self.run.job()
        if not self.eval_bool(job.if_):
            ctx.logger.debug("job.skipped", job=job.name or self.name, condition=job.if_)
            self.enabled = False
            return False
        if not self.platform_image():
            ctx.logger.info("job.unsupported_platform", runs_on=job.runner_labels())
            self.enabled = False
            return False
        self.enabled = True
        return True

    def local_checkout_path(self) -> tuple[str, bool]:
        """``with.path`` of the first step checking out this repository locally."""
        github = self.github_context()
        for step in self.run.job().steps:
            if github.is_local_checkout(step):
                return step.with_.get("path", ""), True
        return "", False

    def _log_matrix(self) -> Executor:
        async def _matrix(ctx: ExecutionContext) -> None:
            if self.matrix:
                ctx.logger.info("job.matrix", matrix=self.matrix)

        return Executor(_matrix)

    def executor(self) -> Executor:
        """The whole job as one executor, gated on ``is_enabled``."""
        stages = [self._log_matrix(), self.start_dind_container(), self.start_job_container()]
        for index, step in enumerate(self.run.job().steps):
            if not step.id:
                step.id = str(index)
            stages.append(self.new_step_executor(step))
        stages.append(self.stop_job_container())
        return self._resolve_github().then(pipeline(*stages).if_(self.is_enabled))

    def _resolve_github(self) -> Executor:
        async def _resolve(ctx: ExecutionContext) -> None:
            # git subprocesses run in a worker thread
            await ctx.wait(asyncio.to_thread(self.github_context))

        return Executor(_resolve)

    def new_step_executor(self, step: Step) -> Executor:
        sc = StepContext(self, step)

        async def _step(ctx: ExecutionContext) -> None:
            ctx = ctx.bind(step=step.id)
            result = StepResult()
            self.step_results[step.id] = result
            self.current_step = step.id

            try:
                await sc.setup_env()(ctx)
            except PipelineCancelledError:
                raise
            except Exception as exc:
                ctx.logger.warning("step.env_failed", error=str(exc))
            self.expr_eval = sc.new_expression_evaluator()

            result.transition(StepState.EVALUATING_CONDITION)
            condition = self.condition(step.if_)
            if not condition:
                result.transition(StepState.SKIPPED)
                ctx.logger.debug("step.skipped", name=str(step), condition=step.if_)
                return

            result.transition(StepState.RUNNING)
            ctx.logger.info("step.run", name=str(step))
            try:
                await sc.executor()(ctx)
            except Exception as exc:
                result.mark_failed()
                ctx.logger.error(
                    "step.failure",
                    name=str(step),
                    error=str(exc),
                    category=categorize_error(exc).value,
                )
                raise
            result.transition(StepState.SUCCEEDED)
            ctx.logger.info("step.success", name=str(step))

        return Executor(_step)


class JobOutcome(str, Enum):
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class JobResult:
    """Caller-visible outcome of one job."""

    outcome: JobOutcome
    error: Exception | None = None
    step_results: dict[str, StepResult] = field(default_factory=dict)


async def run_job(rc: RunContext, ctx: ExecutionContext | None = None) -> JobResult:
    """Run ``rc``'s job pipeline and classify the outcome."""
    ctx = (ctx or ExecutionContext()).bind(job=str(rc))
    # module-level loggers (git, conditions) pick up job= from contextvars
    with structlog.contextvars.bound_contextvars(job=str(rc)):
        try:
            await rc.executor()(ctx)
        except Exception as exc:
            ctx.logger.error(
                "job.failed", error=str(exc), category=categorize_error(exc).value
            )
            return JobResult(JobOutcome.FAILED, exc, dict(rc.step_results))

    if not rc.enabled:
        return JobResult(JobOutcome.SKIPPED, None, dict(rc.step_results))
    if any(not result.success for result in rc.step_results.values()):
        return JobResult(JobOutcome.FAILED, None, dict(rc.step_results))
    ctx.logger.info("job.succeeded")
    return JobResult(JobOutcome.SUCCEEDED, None, dict(rc.step_results))
