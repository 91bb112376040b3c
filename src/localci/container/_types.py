"""Container adapter types and protocols.

This module defines the fixed contract between the job engine and a
container engine driver:

- ContainerSpec: declarative description of one container
- FileEntry: a file injected into a running container
- Container: lifecycle operations, each returned as an ``Executor``
- ContainerEngine: container factory plus named-volume removal

Design Notes:
    Every operation returns a deferred ``Executor`` rather than doing
    work immediately. The run context assembles these into one pipeline
    per job, so ordering, gating (``if_bool``) and cancellation are all
    handled by the pipeline, not by the driver.

Architecture:

    .. code-block:: text

        ContainerSpec ──► ContainerEngine.new_container() ──► Container
                                                               │
            pull(force) → remove() → create() → start(attach)  │
            exec(cmd, env) / copy(dest, *files) / copy_dir()   │
                                                               ▼
                                                     Executor (deferred)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from localci.pipeline import Executor


@runtime_checkable
class OutputSink(Protocol):
    """Anything container output can be written to (e.g. ``LineWriter``)."""

    def write(self, data: str) -> int: ...

    def flush(self) -> None: ...


@dataclass(frozen=True)
class FileEntry:
    """A file written into a container by ``Container.copy``.

    ``name`` is relative to the destination directory and may contain
    sub-directories (``workflow/event.json``).
    """

    name: str
    mode: int = 0o644
    body: str = ""


@dataclass
class ContainerSpec:
    """Declarative specification of one container.

    .. code-block:: text

        ContainerSpec
        ├── Identity: image, name
        ├── Process: entrypoint, cmd, working_dir
        ├── Environment: env (KEY=VALUE list)
        ├── Storage: mounts {volume: path}, binds ["host:path[:mode]"]
        ├── Network: network_mode, links ["container:alias"]
        ├── Security: privileged
        └── Output: stdout, stderr sinks
    """

    image: str
    name: str
    cmd: list[str] = field(default_factory=list)
    entrypoint: list[str] = field(default_factory=list)
    working_dir: str = ""
    env: list[str] = field(default_factory=list)
    mounts: dict[str, str] = field(default_factory=dict)
    binds: list[str] = field(default_factory=list)
    network_mode: str = "default"
    links: list[str] = field(default_factory=list)
    privileged: bool = False
    stdout: OutputSink | None = None
    stderr: OutputSink | None = None


@runtime_checkable
class Container(Protocol):
    """Lifecycle operations on one container, each as a deferred executor."""

    spec: ContainerSpec

    def pull(self, force: bool) -> Executor: ...

    def remove(self) -> Executor: ...

    def create(self) -> Executor: ...

    def start(self, attach: bool) -> Executor: ...

    def exec(
        self, cmd: list[str], env: dict[str, str], workdir: str | None = None
    ) -> Executor: ...

    def copy(self, dest_dir: str, *files: FileEntry) -> Executor: ...

    def copy_dir(self, dest: str, src: str, use_cache: bool) -> Executor: ...

    def change_remote_to_https(self, path: str) -> Executor: ...


@runtime_checkable
class ContainerEngine(Protocol):
    """Factory for containers plus engine-level volume management."""

    def new_container(self, spec: ContainerSpec) -> Container: ...

    def remove_volume(self, name: str, force: bool) -> Executor: ...
