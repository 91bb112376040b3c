"""Workflow model consumed by the job engine.

Parsing workflow files is outside this package; whatever parser is used
produces these plain dataclasses. Only the fields the engine reads are
modelled.

.. code-block:: text

    Run ──► Workflow ──► jobs[job_id] ──► Job ──► steps[] ──► Step
                                            └──► JobContainer
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class StepType(str, Enum):
    """How a step is executed."""

    RUN = "run"                                # inline shell script
    USES_DOCKER_URL = "uses-docker-url"        # uses: docker://image
    USES_ACTION_LOCAL = "uses-action-local"    # uses: ./path
    USES_ACTION_REMOTE = "uses-action-remote"  # uses: org/repo@ref
    INVALID = "invalid"                        # both or neither of run/uses


@dataclass
class Step:
    """One ordered unit of work within a job."""

    id: str = ""
    name: str = ""
    uses: str = ""
    run: str = ""
    shell: str = ""
    with_: dict[str, str] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    if_: str = ""
    working_directory: str = ""

    def __str__(self) -> str:
        if self.name:
            return self.name
        if self.uses:
            return self.uses
        if self.run:
            return self.run
        return self.id

    def type(self) -> StepType:
        if bool(self.run) == bool(self.uses):
            return StepType.INVALID
        if self.run:
            return StepType.RUN
        if self.uses.startswith("docker://"):
            return StepType.USES_DOCKER_URL
        if self.uses.startswith("./"):
            return StepType.USES_ACTION_LOCAL
        return StepType.USES_ACTION_REMOTE


@dataclass
class JobContainer:
    """An explicit ``container:`` block on a job."""

    image: str
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class Job:
    """A named unit of work within a workflow."""

    name: str = ""
    runs_on: str | list[str] = field(default_factory=list)
    container: JobContainer | None = None
    env: dict[str, str] = field(default_factory=dict)
    if_: str = ""
    steps: list[Step] = field(default_factory=list)

    def runner_labels(self) -> list[str]:
        if isinstance(self.runs_on, str):
            return [self.runs_on] if self.runs_on else []
        return list(self.runs_on)


@dataclass
class Workflow:
    name: str
    env: dict[str, str] = field(default_factory=dict)
    jobs: dict[str, Job] = field(default_factory=dict)


@dataclass
class Run:
    """The selection of one job from one workflow."""

    workflow: Workflow
    job_id: str

    def job(self) -> Job:
        return self.workflow.jobs[self.job_id]

    def __str__(self) -> str:
        return f"{self.workflow.name}/{self.job_id}"
