"""Container lifecycle over the ``docker`` CLI.

Implements the ``Container`` / ``ContainerEngine`` contract by driving the
``docker`` binary through ``asyncio`` subprocesses. No docker SDK
dependency: anything exposing a docker-compatible CLI (Docker Desktop,
Colima, Podman's docker shim) works.

Key Concepts:
    DockerEngine: Finds the CLI, runs commands, creates containers,
        removes volumes.
    DockerContainer: One ``ContainerSpec``; every lifecycle operation
        returns a deferred ``Executor``.
    DockerResult: Exit code plus captured stdout/stderr of one command.

Architecture Decisions:
    - Every docker invocation awaits through ``ExecutionContext.wait``;
      on cancellation the subprocess is killed and
      ``PipelineCancelledError`` propagates.
    - Output is read in fixed-size chunks and written to the spec's sinks
      as it arrives; line splitting is the sink's job, so a single line of
      any length is streamed without a buffer limit.
    - The docker CLI always runs with the host's environment. Step
      environment reaches ``docker exec`` through ``--env-file`` (a 0600
      temp file removed afterwards), keeping values off the command line.
      Values spanning several lines cannot be written to an env file and
      are passed as ``--env NAME=VALUE``.
    - Reuse: ``create()`` is a no-op when a container with the spec's name
      already exists; whether the old one was removed first is decided by
      the caller gating ``remove()``.

Related Modules:
    - :mod:`localci.container._types` — the contract implemented here
    - :mod:`localci.container.stub` — in-memory engine for tests
    - :mod:`localci.runner.run_context` — assembles these executors

Tags:
    container, docker, lifecycle, subprocess, asyncio
"""

from __future__ import annotations

import asyncio
import codecs
import os
import re
import shlex
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from localci.container._types import ContainerSpec, FileEntry, OutputSink
from localci.core.errors import ContainerError, DockerNotFoundError
from localci.pipeline import ExecutionContext, Executor

_SCP_LIKE_URL = re.compile(r"^(?:[^@/]+@)?([^:/]+):(?!//)(.+)$")
_SSH_URL = re.compile(r"^ssh://(?:[^@/]+@)?([^:/]+)(?::\d+)?/(.+)$")

READ_CHUNK = 64 * 1024


def https_remote_url(url: str) -> str:
    """Rewrite an SSH-style git remote URL to its HTTPS form.

    ``git@github.com:org/repo.git`` and ``ssh://git@github.com/org/repo.git``
    both become ``https://github.com/org/repo.git``. Anything else is
    returned unchanged.
    """
    match = _SSH_URL.match(url) or _SCP_LIKE_URL.match(url)
    if match is None or url.startswith(("http://", "https://", "file://")):
        return url
    host, path = match.groups()
    return f"https://{host}/{path.lstrip('/')}"


@dataclass
class DockerResult:
    """Outcome of one docker CLI invocation."""

    returncode: int
    stdout: str = ""
    stderr: str = ""


class DockerEngine:
    """Runs docker CLI commands and hands out ``DockerContainer`` objects.

    Parameters
    ----------
    docker_cmd
        Path to the docker binary (looked up on PATH when omitted).
    """

    def __init__(self, docker_cmd: str | None = None) -> None:
        self._docker_cmd = docker_cmd or self._find_docker()

    @staticmethod
    def _find_docker() -> str:
        docker = shutil.which("docker")
        if docker is None:
            raise DockerNotFoundError(
                "Docker CLI not found on PATH. Install Docker or add it to PATH.\n"
                "  - Linux:   https://docs.docker.com/engine/install/\n"
                "  - macOS:   https://docs.docker.com/desktop/install/mac-install/"
            )
        return docker

    def new_container(self, spec: ContainerSpec) -> DockerContainer:
        return DockerContainer(spec, self)

    def remove_volume(self, name: str, force: bool) -> Executor:
        async def _remove_volume(ctx: ExecutionContext) -> None:
            args = ["volume", "rm"]
            if force:
                args.append("--force")
            args.append(name)
            result = await self.run(ctx, args, check=False)
            if result.returncode != 0 and "no such volume" not in result.stderr.lower():
                raise ContainerError(
                    f"Unable to remove volume {name}: {result.stderr.strip()}",
                    exit_code=result.returncode,
                ).with_context(container=name)
            ctx.logger.debug("volume.removed", volume=name)

        return Executor(_remove_volume)

    async def run(
        self,
        ctx: ExecutionContext,
        args: list[str],
        *,
        check: bool = True,
        stdout: OutputSink | None = None,
        stderr: OutputSink | None = None,
    ) -> DockerResult:
        """Run one docker CLI command, streaming output to the given sinks."""
        cmd = [self._docker_cmd, *args]
        ctx.logger.debug("docker.exec", cmd=" ".join(args))
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            out, err = await ctx.wait(_communicate(proc, stdout, stderr))
        except BaseException:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        result = DockerResult(returncode=proc.returncode or 0, stdout=out, stderr=err)
        if check and result.returncode != 0:
            raise ContainerError(
                f"Docker command failed (exit {result.returncode}): "
                f"{' '.join(args)}\n{result.stderr.strip()}",
                exit_code=result.returncode,
                command=cmd,
            )
        return result


async def _communicate(
    proc: asyncio.subprocess.Process,
    stdout: OutputSink | None,
    stderr: OutputSink | None,
) -> tuple[str, str]:
    out: list[str] = []
    err: list[str] = []
    await asyncio.gather(
        _pump(proc.stdout, stdout, out),
        _pump(proc.stderr, stderr, err),
    )
    await proc.wait()
    for sink in {id(s): s for s in (stdout, stderr) if s is not None}.values():
        sink.flush()
    return "".join(out), "".join(err)


async def _pump(
    stream: asyncio.StreamReader | None,
    sink: OutputSink | None,
    chunks: list[str],
) -> None:
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        data = await stream.read(READ_CHUNK)
        text = decoder.decode(data, final=not data)
        if text:
            chunks.append(text)
            if sink is not None:
                sink.write(text)
        if not data:
            break


@contextmanager
def env_file(env: dict[str, str]) -> Iterator[tuple[str, list[str]]]:
    """Write ``env`` to a private temp file for ``docker exec --env-file``.

    Yields the file path and the ``--env NAME=VALUE`` arguments for values
    the env-file format cannot hold (those containing a line break).
    """
    fd, path = tempfile.mkstemp(prefix="localci-env-")
    inline: list[str] = []
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            for key, value in env.items():
                if "\n" in value or "\r" in value:
                    inline.extend(["--env", f"{key}={value}"])
                else:
                    handle.write(f"{key}={value}\n")
        yield path, inline
    finally:
        os.unlink(path)


class DockerContainer:
    """One container described by ``spec``, driven through ``engine``."""

    def __init__(self, spec: ContainerSpec, engine: DockerEngine) -> None:
        self.spec = spec
        self._engine = engine

    def __repr__(self) -> str:
        return f"DockerContainer(name={self.spec.name!r}, image={self.spec.image!r})"

    async def _exists(self, ctx: ExecutionContext) -> bool:
        result = await self._engine.run(
            ctx,
            ["container", "inspect", "--format", "{{.Id}}", self.spec.name],
            check=False,
        )
        return result.returncode == 0

    def pull(self, force: bool) -> Executor:
        async def _pull(ctx: ExecutionContext) -> None:
            image = self.spec.image
            if not force:
                result = await self._engine.run(
                    ctx, ["image", "inspect", "--format", "{{.Id}}", image], check=False
                )
                if result.returncode == 0:
                    ctx.logger.debug("container.pull.cached", image=image)
                    return
            ctx.logger.info("container.pull", image=image)
            try:
                await self._engine.run(ctx, ["pull", image])
            except ContainerError as exc:
                raise exc.with_context(image=image)

        return Executor(_pull)

    def remove(self) -> Executor:
        async def _remove(ctx: ExecutionContext) -> None:
            name = self.spec.name
            result = await self._engine.run(
                ctx, ["rm", "--force", "--volumes", name], check=False
            )
            if result.returncode != 0 and "no such container" not in result.stderr.lower():
                raise ContainerError(
                    f"Unable to remove container {name}: {result.stderr.strip()}",
                    exit_code=result.returncode,
                ).with_context(container=name)
            ctx.logger.debug("container.removed", container=name)

        return Executor(_remove)

    def create(self) -> Executor:
        async def _create(ctx: ExecutionContext) -> None:
            spec = self.spec
            if await self._exists(ctx):
                ctx.logger.debug("container.reused", container=spec.name)
                return

            args = ["create", "--name", spec.name]
            if spec.entrypoint:
                args.extend(["--entrypoint", spec.entrypoint[0]])
            if spec.working_dir:
                args.extend(["--workdir", spec.working_dir])
            for item in spec.env:
                args.extend(["--env", item])
            for volume, path in spec.mounts.items():
                args.extend(["--volume", f"{volume}:{path}"])
            for bind in spec.binds:
                args.extend(["--volume", bind])
            if spec.network_mode:
                args.extend(["--network", spec.network_mode])
            for link in spec.links:
                args.extend(["--link", link])
            if spec.privileged:
                args.append("--privileged")
            args.append(spec.image)
            args.extend(spec.entrypoint[1:])
            args.extend(spec.cmd)

            try:
                await self._engine.run(ctx, args)
            except ContainerError as exc:
                raise exc.with_context(container=spec.name, image=spec.image)
            ctx.logger.debug("container.created", container=spec.name, image=spec.image)

        return Executor(_create)

    def start(self, attach: bool) -> Executor:
        async def _start(ctx: ExecutionContext) -> None:
            name = self.spec.name
            ctx.logger.debug("container.start", container=name, attach=attach)
            try:
                if attach:
                    await self._engine.run(
                        ctx,
                        ["start", "--attach", name],
                        stdout=self.spec.stdout,
                        stderr=self.spec.stderr,
                    )
                else:
                    await self._engine.run(ctx, ["start", name])
            except ContainerError as exc:
                raise exc.with_context(container=name)

        return Executor(_start)

    def exec(
        self, cmd: list[str], env: dict[str, str], workdir: str | None = None
    ) -> Executor:
        async def _exec(ctx: ExecutionContext) -> None:
            name = self.spec.name
            ctx.logger.debug("container.exec", container=name, cmd=shlex.join(cmd))
            with env_file(env) as (path, inline):
                args = ["exec", "--env-file", path, *inline]
                if workdir:
                    args.extend(["--workdir", workdir])
                args.append(name)
                args.extend(cmd)
                result = await self._engine.run(
                    ctx,
                    args,
                    check=False,
                    stdout=self.spec.stdout,
                    stderr=self.spec.stderr,
                )
            if result.returncode != 0:
                raise ContainerError(
                    f"exit with `FAILURE`: {result.returncode}",
                    exit_code=result.returncode,
                    command=cmd,
                ).with_context(container=name)

        return Executor(_exec)

    def copy(self, dest_dir: str, *files: FileEntry) -> Executor:
        async def _copy(ctx: ExecutionContext) -> None:
            name = self.spec.name
            with tempfile.TemporaryDirectory(prefix="localci-") as tmp:
                for entry in files:
                    path = Path(tmp) / entry.name
                    path.parent.mkdir(parents=True, exist_ok=True)
                    path.write_text(entry.body, encoding="utf-8")
                    path.chmod(entry.mode)
                    ctx.logger.debug(
                        "container.copy", container=name, file=f"{dest_dir.rstrip('/')}/{entry.name}"
                    )
                try:
                    await self._engine.run(ctx, ["cp", f"{tmp}/.", f"{name}:{dest_dir}"])
                except ContainerError as exc:
                    raise exc.with_context(container=name)

        return Executor(_copy)

    def copy_dir(self, dest: str, src: str, use_cache: bool) -> Executor:
        async def _copy_dir(ctx: ExecutionContext) -> None:
            name = self.spec.name
            if use_cache:
                existing = await self._engine.run(
                    ctx,
                    ["exec", name, "sh", "-c", f'[ -n "$(ls -A {shlex.quote(dest)} 2>/dev/null)" ]'],
                    check=False,
                )
                if existing.returncode == 0:
                    ctx.logger.debug("container.copy_dir.cached", container=name, dest=dest)
                    return
            ctx.logger.debug("container.copy_dir", container=name, src=src, dest=dest)
            try:
                await self._engine.run(ctx, ["exec", name, "mkdir", "-p", dest])
                await self._engine.run(ctx, ["cp", src, f"{name}:{dest}"])
            except ContainerError as exc:
                raise exc.with_context(container=name)

        return Executor(_copy_dir)

    def change_remote_to_https(self, path: str) -> Executor:
        async def _change_remote(ctx: ExecutionContext) -> None:
            name = self.spec.name
            base = ["exec", "--workdir", path, name, "git"]
            current = await self._engine.run(
                ctx, [*base, "config", "--get", "remote.origin.url"], check=False
            )
            if current.returncode != 0:
                ctx.logger.debug("git.remote.missing", container=name, path=path)
                return
            url = current.stdout.strip()
            https = https_remote_url(url)
            if https == url:
                return
            result = await self._engine.run(
                ctx, [*base, "remote", "set-url", "origin", https], check=False
            )
            if result.returncode != 0:
                ctx.logger.warning(
                    "git.remote.rewrite_failed", container=name, error=result.stderr.strip()
                )
                return
            ctx.logger.debug("git.remote.rewritten", container=name, url=https)

        return Executor(_change_remote)
