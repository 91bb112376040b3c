"""Job runner: run context, step execution and context projections.

Example::

    from localci.container import DockerEngine
    from localci.runner import RunContext, RunnerSettings, run_job

    config = RunnerSettings().to_config(
        workdir=".",
        platforms={"ubuntu-latest": "node:16-buster-slim"},
    )
    rc = RunContext(
        "build", config, run, engine=DockerEngine(), evaluator_factory=make_evaluator
    )
    result = await run_job(rc)
"""

from localci.runner.actions import RemoteAction
from localci.runner.commands import CommandHandler
from localci.runner.config import DEFAULT_ACTOR, RunnerConfig, RunnerSettings
from localci.runner.contexts import (
    ContextSnapshot,
    GithubContext,
    JobContext,
    StepResult,
    StepState,
    as_string,
    build_github_context,
    build_job_context,
    merge_maps,
    nested_lookup,
    with_github_env,
)
from localci.runner.expressions import (
    ConditionResult,
    EvaluatorFactory,
    ExpressionEvaluator,
    evaluate_condition,
)
from localci.runner.git import GitCLI, GitInfo, repo_slug
from localci.runner.run_context import JobOutcome, JobResult, RunContext, run_job
from localci.runner.step_context import ActionRunner, StepContext

__all__ = [
    "RemoteAction",
    "CommandHandler",
    "DEFAULT_ACTOR",
    "RunnerConfig",
    "RunnerSettings",
    "ContextSnapshot",
    "GithubContext",
    "JobContext",
    "StepResult",
    "StepState",
    "as_string",
    "build_github_context",
    "build_job_context",
    "merge_maps",
    "nested_lookup",
    "with_github_env",
    "ConditionResult",
    "EvaluatorFactory",
    "ExpressionEvaluator",
    "evaluate_condition",
    "GitCLI",
    "GitInfo",
    "repo_slug",
    "JobOutcome",
    "JobResult",
    "RunContext",
    "run_job",
    "ActionRunner",
    "StepContext",
]
