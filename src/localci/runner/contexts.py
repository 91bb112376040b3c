"""Read-only context projections over job state.

Expression evaluation and the job container's environment both read job
state through the projections built here. None of the builders raise:
every metadata source that can fail does so in isolation, logs, and leaves
its field at the zero value.

Key Concepts:
    StepResult: Per-step success flag, outputs and lifecycle state.
    JobContext: ``job.status`` derived from recorded step results.
    GithubContext: The ``github.*`` fields plus the ``GITHUB_*`` env set.
    ContextSnapshot: Immutable bundle of every context for one step,
        handed explicitly to the evaluator factory.

Architecture:

    .. code-block:: text

        RunContext state ──► build_job_context()     ──► JobContext
                         ──► build_github_context()  ──► GithubContext
                                 │  git: repo / sha / ref  (each best-effort)
                                 │  event JSON             (best-effort)
                                 ▼
                         ContextSnapshot(github, env, job, steps, matrix)
                                 │
                                 ▼
                         EvaluatorFactory(snapshot) ──► ExpressionEvaluator

    Step state machine:

    .. code-block:: text

        pending → evaluating-condition ─┬─► skipped
                                        └─► running ─┬─► succeeded
                                                     └─► failed

Tags:
    contexts, projection, github, degradation
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from localci.core.errors import GitError
from localci.core.logging import get_logger
from localci.model import Step, StepType
from localci.runner.actions import RemoteAction
from localci.runner.config import DEFAULT_ACTOR, RunnerConfig
from localci.runner.git import GitInfo

logger = get_logger(__name__)

EVENT_PATH = "/github/workflow/event.json"
WORKSPACE = "/github/workspace"
HOME = "/github/home"


class StepState(str, Enum):
    """Lifecycle state of one step."""

    PENDING = "pending"
    EVALUATING_CONDITION = "evaluating-condition"
    SKIPPED = "skipped"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class StepResult:
    """Outcome of one step. ``success`` starts optimistic and only ever goes false."""

    success: bool = True
    outputs: dict[str, str] = field(default_factory=dict)
    state: StepState = StepState.PENDING

    def mark_failed(self) -> None:
        self.success = False
        self.state = StepState.FAILED

    def transition(self, state: StepState) -> None:
        if self.state is StepState.FAILED:
            return
        self.state = state

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "outputs": dict(self.outputs)}


@dataclass(frozen=True)
class JobContext:
    """The ``job`` context: overall status plus container/service info."""

    status: str = "success"
    container: Mapping[str, Any] = field(default_factory=dict)
    services: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "container": dict(self.container),
            "services": dict(self.services),
        }


def build_job_context(step_results: Mapping[str, StepResult]) -> JobContext:
    """``failure`` if any recorded step failed, else ``success``."""
    failed = any(not result.success for result in step_results.values())
    return JobContext(status="failure" if failed else "success")


@dataclass(frozen=True)
class GithubContext:
    """The ``github`` context."""

    event: Mapping[str, Any] = field(default_factory=dict)
    event_path: str = EVENT_PATH
    workflow: str = ""
    run_id: str = "1"
    run_number: str = "1"
    actor: str = DEFAULT_ACTOR
    repository: str = ""
    event_name: str = ""
    sha: str = ""
    ref: str = ""
    head_ref: str = ""
    base_ref: str = ""
    token: str = ""
    workspace: str = WORKSPACE
    action: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": dict(self.event),
            "event_path": self.event_path,
            "workflow": self.workflow,
            "run_id": self.run_id,
            "run_number": self.run_number,
            "actor": self.actor,
            "repository": self.repository,
            "event_name": self.event_name,
            "sha": self.sha,
            "ref": self.ref,
            "head_ref": self.head_ref,
            "base_ref": self.base_ref,
            "token": self.token,
            "workspace": self.workspace,
            "action": self.action,
        }

    def is_local_checkout(self, step: Step) -> bool:
        """True when ``step`` checks out the repository and ref already on disk."""
        if step.type() is not StepType.USES_ACTION_REMOTE:
            return False
        action = RemoteAction.parse(step.uses)
        if action is None or not action.is_checkout():
            return False
        # a declared input must match, even when empty
        if "repository" in step.with_ and step.with_["repository"] != self.repository:
            return False
        if "ref" in step.with_ and step.with_["ref"] != self.ref:
            return False
        return True


def nested_lookup(tree: Any, *keys: str) -> Any:
    """Walk ``keys`` through nested mappings; ``None`` on any miss.

    >>> nested_lookup({"pull_request": {"base": {"ref": "main"}}}, "pull_request", "base", "ref")
    'main'
    >>> nested_lookup({"pull_request": "oops"}, "pull_request", "base", "ref") is None
    True
    """
    node = tree
    for key in keys:
        if not isinstance(node, Mapping) or key not in node:
            return None
        node = node[key]
    return node


def as_string(value: Any) -> str:
    """``value`` if it is a string, otherwise ``""``."""
    return value if isinstance(value, str) else ""


def merge_maps(*maps: Mapping[str, str] | None) -> dict[str, str]:
    """Union of ``maps``; on key conflicts the later map wins."""
    merged: dict[str, str] = {}
    for mapping in maps:
        if mapping:
            merged.update(mapping)
    return merged


def _decode_event(event_json: str) -> dict[str, Any]:
    if not event_json:
        return {}
    try:
        event = json.loads(event_json)
    except ValueError as exc:
        logger.error("event_decode_failed", error=str(exc))
        return {}
    if not isinstance(event, dict):
        logger.error("event_decode_failed", error="event payload is not an object")
        return {}
    return event


def build_github_context(
    config: RunnerConfig,
    *,
    workflow: str,
    action: str = "",
    event_json: str = "",
    git: GitInfo | None = None,
) -> GithubContext:
    """Project the ``github`` context from configuration and repository metadata."""
    token = config.secrets.get("GITHUB_TOKEN", config.github_token)
    repository = sha = ref = ""

    if git is not None:
        try:
            repository = git.find_github_repo(config.workdir)
        except GitError as exc:
            logger.warning("github_repository_unavailable", workdir=config.workdir, error=str(exc))
        try:
            _, sha = git.find_git_revision(config.workdir)
        except GitError as exc:
            logger.warning("github_sha_unavailable", workdir=config.workdir, error=str(exc))
        try:
            ref = git.find_git_ref(config.workdir)
        except GitError as exc:
            logger.warning("github_ref_unavailable", workdir=config.workdir, error=str(exc))

    event = _decode_event(event_json)
    base_ref = head_ref = ""
    if config.event_name == "pull_request":
        base_ref = as_string(nested_lookup(event, "pull_request", "base", "ref"))
        head_ref = as_string(nested_lookup(event, "pull_request", "head", "ref"))

    return GithubContext(
        event=MappingProxyType(event),
        workflow=workflow,
        actor=config.actor or DEFAULT_ACTOR,
        repository=repository,
        event_name=config.event_name,
        sha=sha,
        ref=ref,
        head_ref=head_ref,
        base_ref=base_ref,
        token=token,
        action=action,
    )


def with_github_env(env: Mapping[str, str], github: GithubContext) -> dict[str, str]:
    """Return ``env`` plus ``HOME`` and the ``GITHUB_*`` variables."""
    result = dict(env)
    result["HOME"] = HOME
    result["GITHUB_WORKFLOW"] = github.workflow
    result["GITHUB_RUN_ID"] = github.run_id
    result["GITHUB_RUN_NUMBER"] = github.run_number
    result["GITHUB_ACTION"] = github.action
    result["GITHUB_ACTIONS"] = "true"
    result["GITHUB_ACTOR"] = github.actor
    result["GITHUB_REPOSITORY"] = github.repository
    result["GITHUB_EVENT_NAME"] = github.event_name
    result["GITHUB_EVENT_PATH"] = github.event_path
    result["GITHUB_WORKSPACE"] = github.workspace
    result["GITHUB_SHA"] = github.sha
    result["GITHUB_REF"] = github.ref
    result["GITHUB_TOKEN"] = github.token
    return result


@dataclass(frozen=True)
class ContextSnapshot:
    """Every context visible to expressions at one point of a job."""

    github: GithubContext
    env: Mapping[str, str]
    job: JobContext
    steps: Mapping[str, Mapping[str, Any]]
    matrix: Mapping[str, Any]

    @classmethod
    def build(
        cls,
        *,
        github: GithubContext,
        env: Mapping[str, str],
        step_results: Mapping[str, StepResult],
        matrix: Mapping[str, Any] | None = None,
    ) -> ContextSnapshot:
        return cls(
            github=github,
            env=MappingProxyType(dict(env)),
            job=build_job_context(step_results),
            steps=MappingProxyType(
                {step_id: result.to_dict() for step_id, result in step_results.items()}
            ),
            matrix=MappingProxyType(dict(matrix or {})),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "github": self.github.to_dict(),
            "env": dict(self.env),
            "job": self.job.to_dict(),
            "steps": {step_id: dict(result) for step_id, result in self.steps.items()},
            "matrix": dict(self.matrix),
        }
