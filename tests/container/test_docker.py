"""Tests for the docker CLI container driver.

Docker invocations are intercepted at ``asyncio.create_subprocess_exec`` or
answered by a fake ``docker`` shell script; no Docker daemon is required.
"""

from __future__ import annotations

import asyncio
import os
import stat
import sys
from pathlib import Path
from typing import Callable
from unittest.mock import patch

import pytest

from localci.container import (
    ContainerSpec,
    DockerEngine,
    FileEntry,
    LineWriter,
    https_remote_url,
)
from localci.container.docker import READ_CHUNK
from localci.core.errors import ContainerError, DockerNotFoundError
from localci.pipeline import ExecutionContext

Responder = Callable[[list[str]], tuple[int, bytes, bytes]]


class FakeProcess:
    """Minimal stand-in for ``asyncio.subprocess.Process``."""

    def __init__(self, returncode: int, stdout: bytes = b"", stderr: bytes = b""):
        self.stdout = asyncio.StreamReader()
        self.stdout.feed_data(stdout)
        self.stdout.feed_eof()
        self.stderr = asyncio.StreamReader()
        self.stderr.feed_data(stderr)
        self.stderr.feed_eof()
        self._exit = returncode
        self.returncode: int | None = None

    async def wait(self) -> int:
        self.returncode = self._exit
        return self._exit

    def kill(self) -> None:
        self.returncode = -9


class FakeDocker:
    """Records docker invocations and answers them through ``responder``."""

    def __init__(self, responder: Responder | None = None):
        self.calls: list[list[str]] = []
        self.envs: list[dict[str, str] | None] = []
        self.responder = responder or (lambda args: (0, b"", b""))

    async def __call__(self, *cmd: str, stdout=None, stderr=None, env=None) -> FakeProcess:
        args = list(cmd[1:])
        self.calls.append(args)
        self.envs.append(env)
        return FakeProcess(*self.responder(args))


@pytest.fixture
def fake_docker():
    fake = FakeDocker()
    with patch("localci.container.docker.asyncio.create_subprocess_exec", fake):
        yield fake


@pytest.fixture
def docker_engine() -> DockerEngine:
    return DockerEngine(docker_cmd="docker")


def _spec(**overrides) -> ContainerSpec:
    values = dict(
        image="node:16-buster-slim",
        name="localci-ci-build",
        entrypoint=["/usr/bin/tail", "-f", "/dev/null"],
        working_dir="/github/workspace",
        env=["RUNNER_OS=Linux"],
        mounts={"localci-ci-build": "/github"},
        binds=["/src/project:/github/workspace"],
        links=["localci-dind-ci-build:docker"],
    )
    values.update(overrides)
    return ContainerSpec(**values)


class TestHttpsRemoteUrl:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("git@github.com:nektos/act.git", "https://github.com/nektos/act.git"),
            ("ssh://git@github.com/nektos/act.git", "https://github.com/nektos/act.git"),
            ("https://github.com/nektos/act.git", "https://github.com/nektos/act.git"),
        ],
    )
    def test_rewrite(self, url, expected):
        assert https_remote_url(url) == expected


class TestDockerEngine:
    def test_missing_cli(self):
        with patch("localci.container.docker.shutil.which", return_value=None):
            with pytest.raises(DockerNotFoundError, match="Docker CLI not found"):
                DockerEngine()

    @pytest.mark.asyncio
    async def test_run_raises_on_failure(self, fake_docker, docker_engine):
        fake_docker.responder = lambda args: (125, b"", b"bad flag\n")

        with pytest.raises(ContainerError) as exc_info:
            await docker_engine.run(ExecutionContext(), ["ps"])
        assert exc_info.value.exit_code == 125
        assert "bad flag" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_remove_volume_ignores_missing(self, fake_docker, docker_engine):
        fake_docker.responder = lambda args: (1, b"", b"Error: No such volume: localci-ci-build\n")

        await docker_engine.remove_volume("localci-ci-build", False)(ExecutionContext())
        assert fake_docker.calls == [["volume", "rm", "localci-ci-build"]]

    @pytest.mark.asyncio
    async def test_remove_volume_force(self, fake_docker, docker_engine):
        await docker_engine.remove_volume("cache", True)(ExecutionContext())
        assert fake_docker.calls == [["volume", "rm", "--force", "cache"]]


class TestDockerContainer:
    """Lifecycle operations translated to docker CLI calls."""

    @pytest.mark.asyncio
    async def test_pull_skipped_when_image_present(self, fake_docker, docker_engine):
        container = docker_engine.new_container(_spec())
        await container.pull(False)(ExecutionContext())

        assert fake_docker.calls == [
            ["image", "inspect", "--format", "{{.Id}}", "node:16-buster-slim"]
        ]

    @pytest.mark.asyncio
    async def test_pull_forced(self, fake_docker, docker_engine):
        container = docker_engine.new_container(_spec())
        await container.pull(True)(ExecutionContext())

        assert fake_docker.calls == [["pull", "node:16-buster-slim"]]

    @pytest.mark.asyncio
    async def test_pull_failure_carries_image(self, fake_docker, docker_engine):
        fake_docker.responder = lambda args: (1, b"", b"manifest unknown\n")
        container = docker_engine.new_container(_spec())

        with pytest.raises(ContainerError) as exc_info:
            await container.pull(False)(ExecutionContext())
        assert exc_info.value.context.image == "node:16-buster-slim"

    @pytest.mark.asyncio
    async def test_create_arguments(self, fake_docker, docker_engine):
        fake_docker.responder = lambda args: (1, b"", b"No such container") if args[0] == "container" else (0, b"", b"")
        container = docker_engine.new_container(_spec(privileged=True))

        await container.create()(ExecutionContext())

        create = fake_docker.calls[-1]
        assert create == [
            "create",
            "--name", "localci-ci-build",
            "--entrypoint", "/usr/bin/tail",
            "--workdir", "/github/workspace",
            "--env", "RUNNER_OS=Linux",
            "--volume", "localci-ci-build:/github",
            "--volume", "/src/project:/github/workspace",
            "--network", "default",
            "--link", "localci-dind-ci-build:docker",
            "--privileged",
            "node:16-buster-slim",
            "-f", "/dev/null",
        ]

    @pytest.mark.asyncio
    async def test_create_reuses_existing(self, fake_docker, docker_engine):
        container = docker_engine.new_container(_spec())
        await container.create()(ExecutionContext())

        assert [args[0] for args in fake_docker.calls] == ["container"]

    @pytest.mark.asyncio
    async def test_remove_ignores_missing_container(self, fake_docker, docker_engine):
        fake_docker.responder = lambda args: (1, b"", b"Error: No such container: localci-ci-build\n")
        container = docker_engine.new_container(_spec())

        await container.remove()(ExecutionContext())
        assert fake_docker.calls == [["rm", "--force", "--volumes", "localci-ci-build"]]

    @pytest.mark.asyncio
    async def test_remove_other_failure_raises(self, fake_docker, docker_engine):
        fake_docker.responder = lambda args: (1, b"", b"permission denied\n")
        container = docker_engine.new_container(_spec())

        with pytest.raises(ContainerError, match="permission denied"):
            await container.remove()(ExecutionContext())

    @pytest.mark.asyncio
    async def test_start_detached(self, fake_docker, docker_engine):
        container = docker_engine.new_container(_spec())
        await container.start(False)(ExecutionContext())

        assert fake_docker.calls == [["start", "localci-ci-build"]]

    @pytest.mark.asyncio
    async def test_exec_passes_env_through_env_file(self, fake_docker, docker_engine):
        seen: dict[str, object] = {}

        def responder(args: list[str]) -> tuple[int, bytes, bytes]:
            path = args[args.index("--env-file") + 1]
            seen["path"] = path
            seen["mode"] = stat.S_IMODE(os.stat(path).st_mode)
            seen["body"] = Path(path).read_text()
            return 0, b"", b""

        fake_docker.responder = responder
        container = docker_engine.new_container(_spec())
        await container.exec(
            ["bash", "/github/workflow/0"],
            {"GITHUB_TOKEN": "s3cret", "HOME": "/github/home"},
            "/github/workspace/sub",
        )(ExecutionContext())

        assert fake_docker.calls == [
            [
                "exec",
                "--env-file", seen["path"],
                "--workdir", "/github/workspace/sub",
                "localci-ci-build",
                "bash", "/github/workflow/0",
            ]
        ]
        assert seen["body"] == "GITHUB_TOKEN=s3cret\nHOME=/github/home\n"
        assert seen["mode"] == 0o600
        assert not Path(seen["path"]).exists()
        assert "s3cret" not in " ".join(fake_docker.calls[0])
        assert fake_docker.envs == [None]

    @pytest.mark.asyncio
    async def test_exec_multiline_value_inline(self, fake_docker, docker_engine):
        container = docker_engine.new_container(_spec())
        await container.exec(["true"], {"NOTES": "one\ntwo", "MODE": "ci"})(ExecutionContext())

        args = fake_docker.calls[0]
        assert args[3:5] == ["--env", "NOTES=one\ntwo"]
        assert "MODE=ci" not in args

    @pytest.mark.asyncio
    async def test_exec_streams_line_longer_than_read_buffer(self, fake_docker, docker_engine):
        seen: list[str] = []
        writer = LineWriter(lambda line: seen.append(line) or True)
        long_line = b"x" * 200_000 + b"\n"
        fake_docker.responder = lambda args: (0, long_line + b"done\n", b"")
        container = docker_engine.new_container(_spec(stdout=writer, stderr=writer))

        await container.exec(["cat", "bundle.min.js"], {})(ExecutionContext())

        assert seen == [long_line.decode(), "done\n"]

    @pytest.mark.asyncio
    async def test_exec_split_multibyte_character(self, fake_docker, docker_engine):
        seen: list[str] = []
        writer = LineWriter(lambda line: seen.append(line) or True)
        # "é" straddles the chunk boundary
        payload = b"a" * (READ_CHUNK - 1) + "é\n".encode()
        fake_docker.responder = lambda args: (0, payload, b"")
        container = docker_engine.new_container(_spec(stdout=writer, stderr=writer))

        await container.exec(["echo"], {})(ExecutionContext())

        assert seen == ["a" * (READ_CHUNK - 1) + "é\n"]

    @pytest.mark.asyncio
    async def test_exec_streams_output_to_sink(self, fake_docker, docker_engine):
        seen: list[str] = []
        writer = LineWriter(lambda line: seen.append(line) or True)
        fake_docker.responder = lambda args: (0, b"line one\nline two", b"")
        container = docker_engine.new_container(_spec(stdout=writer, stderr=writer))

        await container.exec(["echo"], {})(ExecutionContext())

        assert seen == ["line one\n", "line two"]

    @pytest.mark.asyncio
    async def test_exec_failure(self, fake_docker, docker_engine):
        fake_docker.responder = lambda args: (2, b"", b"")
        container = docker_engine.new_container(_spec())

        with pytest.raises(ContainerError, match="exit with `FAILURE`: 2") as exc_info:
            await container.exec(["false"], {})(ExecutionContext())
        assert exc_info.value.exit_code == 2
        assert exc_info.value.context.container == "localci-ci-build"

    @pytest.mark.asyncio
    async def test_copy_writes_files(self, fake_docker, docker_engine):
        copied: dict[str, str] = {}

        def responder(args: list[str]) -> tuple[int, bytes, bytes]:
            if args[0] == "cp":
                root = Path(args[1].rstrip("."))
                for path in root.rglob("*"):
                    if path.is_file():
                        copied[path.relative_to(root).as_posix()] = path.read_text()
            return 0, b"", b""

        fake_docker.responder = responder
        container = docker_engine.new_container(_spec())

        await container.copy(
            "/github/",
            FileEntry(name="workflow/event.json", body='{"ref": "main"}'),
            FileEntry(name="home/.act"),
        )(ExecutionContext())

        assert copied == {"workflow/event.json": '{"ref": "main"}', "home/.act": ""}
        assert fake_docker.calls[0][2] == "localci-ci-build:/github/"

    @pytest.mark.asyncio
    async def test_copy_dir(self, fake_docker, docker_engine):
        container = docker_engine.new_container(_spec())
        await container.copy_dir("/github/workspace", "/src/project/.", False)(ExecutionContext())

        assert fake_docker.calls == [
            ["exec", "localci-ci-build", "mkdir", "-p", "/github/workspace"],
            ["cp", "/src/project/.", "localci-ci-build:/github/workspace"],
        ]

    @pytest.mark.asyncio
    async def test_copy_dir_cached(self, fake_docker, docker_engine):
        container = docker_engine.new_container(_spec())
        await container.copy_dir("/github/workspace", "/src/project/.", True)(ExecutionContext())

        assert len(fake_docker.calls) == 1
        assert fake_docker.calls[0][:4] == ["exec", "localci-ci-build", "sh", "-c"]

    @pytest.mark.asyncio
    async def test_change_remote_to_https(self, fake_docker, docker_engine):
        def responder(args: list[str]) -> tuple[int, bytes, bytes]:
            if "--get" in args:
                return 0, b"git@github.com:nektos/act.git\n", b""
            return 0, b"", b""

        fake_docker.responder = responder
        container = docker_engine.new_container(_spec())

        await container.change_remote_to_https("/github/workspace")(ExecutionContext())

        assert fake_docker.calls[-1][-4:] == [
            "remote", "set-url", "origin", "https://github.com/nektos/act.git"
        ]

    @pytest.mark.asyncio
    async def test_change_remote_without_origin(self, fake_docker, docker_engine):
        fake_docker.responder = lambda args: (1, b"", b"")
        container = docker_engine.new_container(_spec())

        await container.change_remote_to_https("/github/workspace")(ExecutionContext())
        assert len(fake_docker.calls) == 1


FAKE_DOCKER_SCRIPT = """#!/bin/sh
echo "cli HOME=$HOME DOCKER_HOST=${DOCKER_HOST:-unset}"
while [ $# -gt 0 ]; do
    if [ "$1" = "--env-file" ]; then
        cat "$2"
    fi
    shift
done
"""


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
class TestDockerCliEnvironment:
    """The docker CLI process keeps the host environment during exec."""

    @pytest.mark.asyncio
    async def test_step_env_does_not_reach_cli(self, tmp_path, monkeypatch):
        script = tmp_path / "docker"
        script.write_text(FAKE_DOCKER_SCRIPT)
        script.chmod(0o755)
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.delenv("DOCKER_HOST", raising=False)

        seen: list[str] = []
        writer = LineWriter(lambda line: seen.append(line.rstrip("\n")) or True)
        engine = DockerEngine(docker_cmd=str(script))
        container = engine.new_container(_spec(stdout=writer, stderr=writer))

        await container.exec(
            ["true"], {"HOME": "/github/home", "DOCKER_HOST": "tcp://docker:2376"}
        )(ExecutionContext())

        assert seen == [
            f"cli HOME={tmp_path} DOCKER_HOST=unset",
            "HOME=/github/home",
            "DOCKER_HOST=tcp://docker:2376",
        ]
