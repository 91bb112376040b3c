"""Per-step environment composition and step execution.

``StepContext`` pairs one ``Step`` with its ``RunContext``. It composes the
step's environment, builds the evaluator the step's expressions see, and
turns the step into an ``Executor`` according to its type. The surrounding
state machine (result registration, condition, outcome logging) lives in
``RunContext.new_step_executor``.

Environment precedence (lowest to highest):

    .. code-block:: text

        config env < workflow env < job env       (RunContext.get_env)
          < job container env
          < env exported by earlier steps         (::set-env)
          < step env
          + PATH prefixed with added paths        (::add-path)
          + INPUT_<NAME> for ``with`` inputs      (uses steps only)
          → every value interpolated
          → HOME and GITHUB_* injected

Step dispatch:

    .. code-block:: text

        run: ...               script copied to /github/workflow/<id>,
                               executed in the job container via its shell
        uses: docker://image   one-shot container sharing /github
        uses: actions/checkout local checkout of the same repo/ref → no-op
        uses: anything else    ActionRunner, or UnsupportedStepError
"""

from __future__ import annotations

import posixpath
import shlex
from typing import TYPE_CHECKING, Protocol

from localci.container import ContainerSpec, FileEntry, create_container_name
from localci.core.errors import UnsupportedStepError
from localci.model import Step, StepType
from localci.pipeline import ExecutionContext, Executor, pipeline
from localci.runner.contexts import WORKSPACE, merge_maps, with_github_env
from localci.runner.expressions import ExpressionEvaluator

if TYPE_CHECKING:
    from localci.runner.run_context import RunContext

DEFAULT_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"
SCRIPT_DIR = "/github/workflow"

SHELLS = {
    "": "bash --noprofile --norc -eo pipefail {0}",
    "bash": "bash --noprofile --norc -eo pipefail {0}",
    "sh": "sh -e {0}",
    "python": "python {0}",
}


class ActionRunner(Protocol):
    """Runs packaged actions (``uses:`` steps other than ``docker://``)."""

    def executor(self, sc: StepContext) -> Executor: ...


def input_env_name(name: str) -> str:
    """``with`` input name → ``INPUT_*`` variable name."""
    return "INPUT_" + name.strip().replace(" ", "_").upper()


def shell_command(shell: str, script_path: str) -> list[str]:
    """Expand a ``shell:`` value into argv for running ``script_path``."""
    template = SHELLS.get(shell, shell)
    if "{0}" not in template:
        template = f"{template} {{0}}"
    return [part.replace("{0}", script_path) for part in shlex.split(template)]


class StepContext:
    """One step of one job."""

    def __init__(self, rc: RunContext, step: Step) -> None:
        self.rc = rc
        self.step = step
        self.env: dict[str, str] = {}

    def __repr__(self) -> str:
        return f"StepContext(job={str(self.rc)!r}, step={self.step.id!r})"

    def setup_env(self) -> Executor:
        async def _setup_env(ctx: ExecutionContext) -> None:
            self.env = self.compose_env()

        return Executor(_setup_env)

    def compose_env(self) -> dict[str, str]:
        rc = self.rc
        job = rc.run.job()
        container_env = job.container.env if job.container is not None else {}
        env = merge_maps(rc.get_env(), container_env, rc.exported_env, self.step.env)

        if rc.extra_path:
            env["PATH"] = ":".join([*rc.extra_path, env.get("PATH", DEFAULT_PATH)])
        if self.step.uses:
            for name, value in self.step.with_.items():
                env[input_env_name(name)] = value

        evaluator = rc.new_expression_evaluator(env)
        env = {key: evaluator.interpolate(value) for key, value in env.items()}
        return with_github_env(env, rc.github_context())

    def new_expression_evaluator(self) -> ExpressionEvaluator:
        return self.rc.new_expression_evaluator(self.env)

    def executor(self) -> Executor:
        step = self.step
        step_type = step.type()

        if step_type is StepType.RUN:
            return self._run_executor()
        if step_type is StepType.USES_DOCKER_URL:
            return self._docker_executor(step.uses[len("docker://"):])
        if step_type is StepType.USES_ACTION_REMOTE and self.rc.github_context().is_local_checkout(step):
            return self._local_checkout_executor()
        if step_type is StepType.INVALID:
            return _failing(UnsupportedStepError(str(step), "a step needs exactly one of 'run' or 'uses'"))
        if self.rc.action_runner is None:
            return _failing(UnsupportedStepError(str(step), f"no action runner configured for '{step.uses}'"))
        return self.rc.action_runner.executor(self)

    def _run_executor(self) -> Executor:
        evaluator = self.new_expression_evaluator()
        script = evaluator.interpolate(self.step.run)
        script_path = posixpath.join(SCRIPT_DIR, self.step.id)
        cmd = shell_command(self.step.shell, script_path)

        workdir = None
        if self.step.working_directory:
            workdir = posixpath.join(WORKSPACE, evaluator.interpolate(self.step.working_directory))

        return pipeline(
            self.rc.copy_to_job_container(
                SCRIPT_DIR + "/", FileEntry(name=self.step.id, mode=0o755, body=script)
            ),
            self.rc.exec_job_container(cmd, self.env, workdir),
        )

    def _local_checkout_executor(self) -> Executor:
        async def _skip_checkout(ctx: ExecutionContext) -> None:
            ctx.logger.debug("step.local_checkout", step=self.step.id, uses=self.step.uses)

        return Executor(_skip_checkout)

    def _docker_executor(self, image: str) -> Executor:
        rc = self.rc
        config = rc.config

        async def _docker(ctx: ExecutionContext) -> None:
            evaluator = self.new_expression_evaluator()
            args = shlex.split(evaluator.interpolate(self.step.with_.get("args", "")))
            entrypoint = shlex.split(evaluator.interpolate(self.step.with_.get("entrypoint", "")))
            writer = rc.new_log_writer(ctx)
            binds = [f"{config.workdir}:{WORKSPACE}{rc.bind_modifiers()}"] if config.bind_workdir else []

            container = rc.engine.new_container(
                ContainerSpec(
                    image=image,
                    name=create_container_name(config.tool_name, str(rc), self.step.id),
                    cmd=args,
                    entrypoint=entrypoint,
                    working_dir=WORKSPACE,
                    env=[f"{key}={value}" for key, value in self.env.items()],
                    mounts={
                        rc.job_container_name(): "/github",
                        f"{config.tool_name}-toolcache": "/toolcache",
                        f"{config.tool_name}-actions": "/actions",
                    },
                    binds=binds,
                    stdout=writer,
                    stderr=writer,
                )
            )
            await pipeline(
                container.pull(config.force_pull),
                container.remove().if_bool(not config.reuse_containers),
                container.create(),
                container.start(attach=True),
                container.remove().if_bool(not config.reuse_containers),
            )(ctx)

        return Executor(_docker)


def _failing(error: Exception) -> Executor:
    async def _fail(ctx: ExecutionContext) -> None:
        raise error

    return Executor(_fail)


__all__ = ["ActionRunner", "StepContext", "input_env_name", "shell_command"]
