"""Tests for git metadata discovery.

``subprocess.run`` is mocked; no repository is needed.
"""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from localci.core.errors import GitError
from localci.runner import GitCLI, repo_slug


def _completed(stdout: str) -> MagicMock:
    result = MagicMock()
    result.stdout = stdout
    return result


class TestRepoSlug:
    @pytest.mark.parametrize(
        "url",
        [
            "git@github.com:nektos/act.git",
            "https://github.com/nektos/act.git",
            "https://github.com/nektos/act",
            "ssh://git@github.com/nektos/act.git",
        ],
    )
    def test_slug(self, url):
        assert repo_slug(url) == "nektos/act"

    def test_unparseable(self):
        with pytest.raises(GitError):
            repo_slug("not-a-url")


class TestGitCLI:
    def test_find_github_repo(self):
        with patch("localci.runner.git.subprocess.run", return_value=_completed("git@github.com:nektos/act.git\n")) as run:
            assert GitCLI().find_github_repo("/src/project") == "nektos/act"
        args, kwargs = run.call_args
        assert args[0] == ["git", "config", "--get", "remote.origin.url"]
        assert kwargs["cwd"] == "/src/project"

    def test_find_git_revision(self):
        sha = "5a6b7c8d9e0f11223344556677889900aabbccdd"
        with patch("localci.runner.git.subprocess.run", return_value=_completed(sha + "\n")):
            assert GitCLI().find_git_revision("/src/project") == ("5a6b7c8", sha)

    def test_find_git_ref_branch(self):
        with patch("localci.runner.git.subprocess.run", return_value=_completed("refs/heads/main\n")):
            assert GitCLI().find_git_ref("/src/project") == "refs/heads/main"

    def test_find_git_ref_detached_tag(self):
        def run(cmd, **kwargs):
            if "symbolic-ref" in cmd:
                raise subprocess.CalledProcessError(1, cmd)
            return _completed("v1.2.0\n")

        with patch("localci.runner.git.subprocess.run", side_effect=run):
            assert GitCLI().find_git_ref("/src/project") == "refs/tags/v1.2.0"

    def test_failure_raises_git_error(self):
        with patch(
            "localci.runner.git.subprocess.run",
            side_effect=FileNotFoundError("git"),
        ):
            with pytest.raises(GitError) as exc_info:
                GitCLI().find_git_revision("/src/project")
        assert isinstance(exc_info.value.cause, FileNotFoundError)
